"""
Stock ledger domain types (``fulfillment_kernel.domain.stock``).

Responsibility
--------------
Value objects for stock levels and movements, and the pure fold that
rebuilds a stock record from its movement trail.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``available = quantity - reserved - damaged`` is derived, never stored.
* ``StockLevels.is_consistent``: available >= 0, reserved <= quantity,
  damaged <= quantity, nothing negative.
* Each movement type governs one counter (``GOVERNED_COUNTER``); the
  movement's ``quantity_change`` is that counter's signed delta.  OUT also
  consumes the reservation and DISPOSAL also consumes the damaged pile.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable
from uuid import UUID


class MovementType(str, Enum):
    """Kinds of stock movement."""

    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"
    RESERVE = "RESERVE"
    RELEASE = "RELEASE"
    DAMAGE = "DAMAGE"
    DISPOSAL = "DISPOSAL"
    TRANSFER = "TRANSFER"


QUANTITY = "quantity"
RESERVED = "reserved_quantity"
DAMAGED = "damaged_quantity"

GOVERNED_COUNTER: dict[MovementType, str] = {
    MovementType.IN: QUANTITY,
    MovementType.OUT: QUANTITY,
    MovementType.ADJUSTMENT: QUANTITY,
    MovementType.TRANSFER: QUANTITY,
    MovementType.DISPOSAL: QUANTITY,
    MovementType.RESERVE: RESERVED,
    MovementType.RELEASE: RESERVED,
    MovementType.DAMAGE: DAMAGED,
}

# Counters that move in lock-step with the governed counter
_COUPLED_COUNTERS: dict[MovementType, tuple[str, ...]] = {
    MovementType.OUT: (RESERVED,),
    MovementType.DISPOSAL: (DAMAGED,),
}


@dataclass(frozen=True)
class StockLevels:
    """The three primitive counters of a stock record."""

    quantity: int = 0
    reserved_quantity: int = 0
    damaged_quantity: int = 0

    @property
    def available_quantity(self) -> int:
        return self.quantity - self.reserved_quantity - self.damaged_quantity

    @property
    def is_consistent(self) -> bool:
        return (
            self.quantity >= 0
            and self.reserved_quantity >= 0
            and self.damaged_quantity >= 0
            and self.available_quantity >= 0
        )

    def counter(self, name: str) -> int:
        return getattr(self, name)

    def apply(self, movement_type: MovementType, change: int) -> StockLevels:
        """Return the levels after one movement (no validation)."""
        values = {
            QUANTITY: self.quantity,
            RESERVED: self.reserved_quantity,
            DAMAGED: self.damaged_quantity,
        }
        values[GOVERNED_COUNTER[movement_type]] += change
        for coupled in _COUPLED_COUNTERS.get(movement_type, ()):
            values[coupled] += change
        return StockLevels(**values)


def fold_movements(
    movements: Iterable[tuple[MovementType | str, int]],
) -> StockLevels:
    """Replay ``(movement_type, quantity_change)`` pairs from zero."""
    levels = StockLevels()
    for movement_type, change in movements:
        levels = levels.apply(MovementType(movement_type), change)
    return levels


@dataclass(frozen=True)
class StockSnapshot:
    """What every ledger operation returns to its caller."""

    product_id: UUID
    warehouse_id: UUID
    quantity: int
    reserved_quantity: int
    damaged_quantity: int
    bin_location: str | None = None

    @property
    def available_quantity(self) -> int:
        return self.quantity - self.reserved_quantity - self.damaged_quantity

    @property
    def levels(self) -> StockLevels:
        return StockLevels(
            self.quantity, self.reserved_quantity, self.damaged_quantity,
        )

    def as_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "quantity": self.quantity,
            "reserved_quantity": self.reserved_quantity,
            "damaged_quantity": self.damaged_quantity,
            "available_quantity": self.available_quantity,
        }


@dataclass(frozen=True)
class StockMovementRecord:
    """Read-side view of one persisted movement."""

    movement_id: UUID
    product_id: UUID
    warehouse_id: UUID
    movement_type: MovementType
    quantity_change: int
    previous_quantity: int
    new_quantity: int
    version: int
    reason: str | None
    actor_id: UUID
    reference_type: str | None
    reference_id: UUID | None
    reference_number: str | None


@dataclass(frozen=True)
class StockReference:
    """The document that caused a movement."""

    reference_type: str
    reference_id: UUID | None = None
    reference_number: str | None = None
