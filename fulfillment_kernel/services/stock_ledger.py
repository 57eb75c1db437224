"""
StockLedgerService -- the only writer of stock records.

Responsibility:
    Owns quantity / reserved / damaged per (product, warehouse) and exposes
    reserve, release, adjust, damage and commit-shipment operations (plus
    goods receipt, damage reversal and disposal).  Every operation appends
    exactly one StockMovement and returns the new StockSnapshot.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the transfer and
    delivery module services and by the surrounding application
    (sales orders reserve, goods receipts receive).

Invariants enforced:
    - ``available = quantity - reserved - damaged >= 0`` after every
      operation; reserved <= quantity; damaged <= quantity.
    - Row lock: the StockRecord is read ``FOR UPDATE`` for the duration of
      the operation; the field mutation and the movement insert are flushed
      in the caller's transaction and commit or fail together.
    - Fixed lock order: multi-record operations lock in ascending
      (warehouse_id, product_id) order (``lock_records``), so two transfers
      touching the same rows cannot deadlock.
    - Round-trip law: folding a record's movements from zero reproduces the
      record (``verify``).

Failure modes:
    - ValidationError: non-positive or non-integer quantities, missing reason.
    - InsufficientStockError: the record cannot give what is asked.
    - InvalidReleaseError: releasing more than is reserved.
    - LedgerIntegrityError: ``verify`` found a record that disagrees with
      its movements.
    - ProductNotFoundError / WarehouseNotFoundError when creating a record.
"""

from __future__ import annotations

from typing import Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.stock import (
    GOVERNED_COUNTER,
    MovementType,
    StockLevels,
    StockMovementRecord,
    StockReference,
    StockSnapshot,
    fold_movements,
)
from fulfillment_kernel.exceptions import (
    InsufficientStockError,
    InvalidReleaseError,
    LedgerIntegrityError,
    ProductNotFoundError,
    ValidationError,
    WarehouseNotFoundError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.reference import Product, Warehouse
from fulfillment_kernel.models.stock import ProductStock, StockMovement

logger = get_logger("services.stock_ledger")

StockKey = tuple[UUID, UUID]  # (product_id, warehouse_id)

_ADJUSTMENT_TYPES = frozenset({MovementType.ADJUSTMENT, MovementType.TRANSFER})


def _require_positive(field: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, f"must be a whole number, got {value!r}")
    if value <= 0:
        raise ValidationError(field, f"must be positive, got {value}")
    return value


def _require_reason(reason: str | None) -> str:
    if reason is None or not reason.strip():
        raise ValidationError("reason", "a reason is required")
    return reason.strip()


def lock_order(key: StockKey) -> tuple[str, str]:
    """Global lock order: warehouse first, then product."""
    product_id, warehouse_id = key
    return (str(warehouse_id), str(product_id))


class StockLedgerService:
    """
    Append-only stock ledger over ``product_stock`` / ``stock_movements``.

    Contract:
        Each mutating method validates, locks the record, applies one
        movement and flushes.  It never commits.

    Usage:
        ledger = StockLedgerService(session, clock)
        snapshot = ledger.reserve(product_id, warehouse_id, 10, actor_id=actor)
        snapshot.available_quantity
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def reserve(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        quantity: int,
        *,
        actor_id: UUID,
        reference: StockReference | None = None,
        reason: str | None = None,
    ) -> StockSnapshot:
        """Set aside ``quantity`` of available stock."""
        _require_positive("quantity", quantity)
        record = self._lock(product_id, warehouse_id)
        available = 0 if record is None else record.available_quantity
        if record is None or quantity > available:
            raise InsufficientStockError(
                str(product_id), str(warehouse_id), quantity, available, "reserve",
            )
        return self._apply(
            record, MovementType.RESERVE, quantity,
            actor_id=actor_id, reference=reference, reason=reason,
        )

    def release(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        quantity: int,
        *,
        actor_id: UUID,
        reference: StockReference | None = None,
        reason: str | None = None,
    ) -> StockSnapshot:
        """Give back ``quantity`` of a reservation."""
        _require_positive("quantity", quantity)
        record = self._lock(product_id, warehouse_id)
        reserved = 0 if record is None else record.reserved_quantity
        if record is None or quantity > reserved:
            raise InvalidReleaseError(
                str(product_id), str(warehouse_id), quantity, reserved,
            )
        return self._apply(
            record, MovementType.RELEASE, -quantity,
            actor_id=actor_id, reference=reference, reason=reason,
        )

    def adjust(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        delta: int,
        *,
        actor_id: UUID,
        reason: str,
        reference: StockReference | None = None,
        movement_type: MovementType = MovementType.ADJUSTMENT,
    ) -> StockSnapshot:
        """
        Change on-hand quantity by ``delta`` (may be negative).

        ``movement_type`` is ADJUSTMENT for stock counts and corrections and
        TRANSFER for goods arriving from another warehouse.
        """
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise ValidationError("delta", f"must be a non-zero whole number, got {delta!r}")
        if movement_type not in _ADJUSTMENT_TYPES:
            raise ValidationError(
                "movement_type", f"{movement_type} is not an adjustment type",
            )
        reason = _require_reason(reason)

        record = self._lock(product_id, warehouse_id, create=delta > 0, actor_id=actor_id)
        if record is None:
            raise InsufficientStockError(
                str(product_id), str(warehouse_id), -delta, 0, "adjust",
            )
        new_quantity = record.quantity + delta
        if new_quantity < record.reserved_quantity + record.damaged_quantity:
            raise InsufficientStockError(
                str(product_id), str(warehouse_id),
                -delta, record.available_quantity, "adjust",
            )
        return self._apply(
            record, movement_type, delta,
            actor_id=actor_id, reference=reference, reason=reason,
        )

    def receive(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        quantity: int,
        *,
        actor_id: UUID,
        reference: StockReference | None = None,
        reason: str | None = None,
    ) -> StockSnapshot:
        """Book goods in (goods receipt, customer return)."""
        _require_positive("quantity", quantity)
        record = self._lock(product_id, warehouse_id, create=True, actor_id=actor_id)
        return self._apply(
            record, MovementType.IN, quantity,
            actor_id=actor_id, reference=reference, reason=reason,
        )

    def report_damage(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        quantity: int,
        *,
        actor_id: UUID,
        reason: str,
        reference: StockReference | None = None,
    ) -> StockSnapshot:
        """Move ``quantity`` from available into damaged; on-hand is unchanged."""
        _require_positive("quantity", quantity)
        reason = _require_reason(reason)
        record = self._lock(product_id, warehouse_id)
        available = 0 if record is None else record.available_quantity
        if record is None or quantity > available:
            raise InsufficientStockError(
                str(product_id), str(warehouse_id), quantity, available, "report_damage",
            )
        return self._apply(
            record, MovementType.DAMAGE, quantity,
            actor_id=actor_id, reference=reference, reason=reason,
        )

    def reverse_damage(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        quantity: int,
        *,
        actor_id: UUID,
        reason: str,
        reference: StockReference | None = None,
    ) -> StockSnapshot:
        """Return ``quantity`` of damaged stock to available (damage report withdrawn)."""
        _require_positive("quantity", quantity)
        reason = _require_reason(reason)
        record = self._lock(product_id, warehouse_id)
        damaged = 0 if record is None else record.damaged_quantity
        if record is None or quantity > damaged:
            raise InsufficientStockError(
                str(product_id), str(warehouse_id), quantity, damaged, "reverse_damage",
            )
        return self._apply(
            record, MovementType.DAMAGE, -quantity,
            actor_id=actor_id, reference=reference, reason=reason,
        )

    def dispose_damaged(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        quantity: int,
        *,
        actor_id: UUID,
        reason: str,
        reference: StockReference | None = None,
    ) -> StockSnapshot:
        """Write damaged goods off: both on-hand and damaged drop by ``quantity``."""
        _require_positive("quantity", quantity)
        reason = _require_reason(reason)
        record = self._lock(product_id, warehouse_id)
        damaged = 0 if record is None else record.damaged_quantity
        if record is None or quantity > damaged:
            raise InsufficientStockError(
                str(product_id), str(warehouse_id), quantity, damaged, "dispose_damaged",
            )
        return self._apply(
            record, MovementType.DISPOSAL, -quantity,
            actor_id=actor_id, reference=reference, reason=reason,
        )

    def commit_shipment(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        quantity: int,
        *,
        actor_id: UUID,
        reference: StockReference | None = None,
        reason: str | None = None,
    ) -> StockSnapshot:
        """Goods leave the warehouse: on-hand and reserved both drop by ``quantity``."""
        _require_positive("quantity", quantity)
        record = self._lock(product_id, warehouse_id)
        reserved = 0 if record is None else record.reserved_quantity
        if record is None or quantity > reserved:
            raise InsufficientStockError(
                str(product_id), str(warehouse_id), quantity, reserved, "commit_shipment",
            )
        return self._apply(
            record, MovementType.OUT, -quantity,
            actor_id=actor_id, reference=reference, reason=reason,
        )

    def assign_bin_location(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        bin_location: str | None,
        *,
        actor_id: UUID,
    ) -> StockSnapshot:
        """Record where the product sits in the warehouse (no movement)."""
        record = self._lock(product_id, warehouse_id, create=True, actor_id=actor_id)
        record.bin_location = bin_location
        record.updated_by_id = actor_id
        self._session.flush()
        return record.to_snapshot()

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def lock_records(
        self,
        keys: Iterable[StockKey],
    ) -> dict[StockKey, ProductStock | None]:
        """
        Lock several records in the global lock order.

        Call this before a multi-line operation so every row is held before
        the first mutation.  Missing records map to None.
        """
        locked: dict[StockKey, ProductStock | None] = {}
        for key in sorted(set(keys), key=lock_order):
            locked[key] = self._lock(*key)
        return locked

    def _lock(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        *,
        create: bool = False,
        actor_id: UUID | None = None,
    ) -> ProductStock | None:
        record = self._select_for_update(product_id, warehouse_id)
        if record is not None or not create:
            return record

        if self._session.get(Product, product_id) is None:
            raise ProductNotFoundError(str(product_id))
        if self._session.get(Warehouse, warehouse_id) is None:
            raise WarehouseNotFoundError(str(warehouse_id))

        savepoint = self._session.begin_nested()
        try:
            record = ProductStock(
                product_id=product_id,
                warehouse_id=warehouse_id,
                quantity=0,
                reserved_quantity=0,
                damaged_quantity=0,
                version=0,
                created_by_id=actor_id,
            )
            self._session.add(record)
            self._session.flush()
            savepoint.commit()
            logger.debug(
                "stock_record_created",
                extra={"product_id": product_id, "warehouse_id": warehouse_id},
            )
            return record
        except IntegrityError:
            logger.debug(
                "stock_record_race_retry",
                extra={"product_id": product_id, "warehouse_id": warehouse_id},
            )
            savepoint.rollback()
            record = self._select_for_update(product_id, warehouse_id)
            if record is None:
                raise
            return record

    def _select_for_update(self, product_id: UUID, warehouse_id: UUID) -> ProductStock | None:
        return self._session.execute(
            select(ProductStock)
            .where(
                ProductStock.product_id == product_id,
                ProductStock.warehouse_id == warehouse_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Movement append
    # ------------------------------------------------------------------

    def _apply(
        self,
        record: ProductStock,
        movement_type: MovementType,
        change: int,
        *,
        actor_id: UUID,
        reference: StockReference | None,
        reason: str | None,
    ) -> StockSnapshot:
        counter = GOVERNED_COUNTER[movement_type]
        before = record.levels
        after = before.apply(movement_type, change)
        if not after.is_consistent:
            raise InsufficientStockError(
                str(record.product_id), str(record.warehouse_id),
                abs(change), before.available_quantity, movement_type.value.lower(),
            )

        record.quantity = after.quantity
        record.reserved_quantity = after.reserved_quantity
        record.damaged_quantity = after.damaged_quantity
        record.version += 1
        record.updated_by_id = actor_id

        self._session.add(StockMovement(
            stock_id=record.id,
            product_id=record.product_id,
            warehouse_id=record.warehouse_id,
            movement_type=movement_type.value,
            quantity_change=change,
            previous_quantity=before.counter(counter),
            new_quantity=after.counter(counter),
            version=record.version,
            reason=reason,
            actor_id=actor_id,
            reference_type=reference.reference_type if reference else None,
            reference_id=reference.reference_id if reference else None,
            reference_number=reference.reference_number if reference else None,
            created_at=self._clock.now_utc(),
        ))
        self._session.flush()

        snapshot = record.to_snapshot()
        logger.info(
            "stock_movement_recorded",
            extra={
                "movement_type": movement_type.value,
                "product_id": record.product_id,
                "warehouse_id": record.warehouse_id,
                "quantity_change": change,
                "quantity": snapshot.quantity,
                "reserved_quantity": snapshot.reserved_quantity,
                "damaged_quantity": snapshot.damaged_quantity,
                "available_quantity": snapshot.available_quantity,
                "reference_number": reference.reference_number if reference else None,
            },
        )
        return snapshot

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_stock(self, product_id: UUID, warehouse_id: UUID) -> StockSnapshot:
        """Current snapshot; a zero snapshot when the pair has no record."""
        record = self._session.execute(
            select(ProductStock).where(
                ProductStock.product_id == product_id,
                ProductStock.warehouse_id == warehouse_id,
            )
        ).scalar_one_or_none()
        if record is None:
            return StockSnapshot(product_id, warehouse_id, 0, 0, 0)
        return record.to_snapshot()

    def movements(self, product_id: UUID, warehouse_id: UUID) -> list[StockMovementRecord]:
        """The record's movement trail, oldest first."""
        rows = self._session.execute(
            select(StockMovement)
            .where(
                StockMovement.product_id == product_id,
                StockMovement.warehouse_id == warehouse_id,
            )
            .order_by(StockMovement.version)
        ).scalars().all()
        return [row.to_record() for row in rows]

    def reserved_under(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        reference: StockReference,
    ) -> int:
        """
        Units still held by reservations made under ``reference``.

        RESERVE and RELEASE movements carry the reserved delta; an OUT under
        the same reference consumed its share of the reservation.
        """
        held = self._session.execute(
            select(func.coalesce(func.sum(StockMovement.quantity_change), 0)).where(
                StockMovement.product_id == product_id,
                StockMovement.warehouse_id == warehouse_id,
                StockMovement.reference_type == reference.reference_type,
                StockMovement.reference_id == reference.reference_id,
                StockMovement.movement_type.in_((
                    MovementType.RESERVE.value,
                    MovementType.RELEASE.value,
                    MovementType.OUT.value,
                )),
            )
        ).scalar_one()
        return max(int(held), 0)

    def verify(self, product_id: UUID, warehouse_id: UUID) -> StockSnapshot:
        """
        Fold the movement trail and compare it with the stored record.

        Raises:
            LedgerIntegrityError: the record disagrees with its movements, or
                the trail has a hole in its version numbering.
        """
        snapshot = self.get_stock(product_id, warehouse_id)
        trail = self.movements(product_id, warehouse_id)
        folded = fold_movements((m.movement_type, m.quantity_change) for m in trail)
        versions = [m.version for m in trail]

        if folded != snapshot.levels or versions != list(range(1, len(trail) + 1)):
            logger.error(
                "stock_ledger_mismatch",
                extra={
                    "product_id": product_id,
                    "warehouse_id": warehouse_id,
                    "movement_count": len(trail),
                },
            )
            raise LedgerIntegrityError(
                str(product_id),
                str(warehouse_id),
                expected=_levels_dict(folded),
                actual=_levels_dict(snapshot.levels),
            )
        return snapshot


def _levels_dict(levels: StockLevels) -> dict:
    return {
        "quantity": levels.quantity,
        "reserved_quantity": levels.reserved_quantity,
        "damaged_quantity": levels.damaged_quantity,
    }
