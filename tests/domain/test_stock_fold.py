"""
Tests for the pure stock fold (``fulfillment_kernel.domain.stock``).

The ledger round-trip law rests on ``StockLevels.apply``: each movement
type changes the counter it governs, and OUT / DISPOSAL also consume the
reservation / damaged pile.
"""

from uuid import uuid4

import pytest

from fulfillment_kernel.domain.stock import (
    GOVERNED_COUNTER,
    MovementType,
    StockLevels,
    StockSnapshot,
    fold_movements,
)


class TestStockLevels:

    def test_available_is_derived(self):
        levels = StockLevels(quantity=100, reserved_quantity=10, damaged_quantity=5)
        assert levels.available_quantity == 85

    def test_consistent_levels(self):
        assert StockLevels(100, 100, 0).is_consistent
        assert StockLevels(0, 0, 0).is_consistent

    @pytest.mark.parametrize("levels", [
        StockLevels(10, 11, 0),
        StockLevels(10, 5, 6),
        StockLevels(-1, 0, 0),
        StockLevels(10, -1, 0),
    ])
    def test_inconsistent_levels(self, levels):
        assert not levels.is_consistent

    def test_reserve_changes_only_reserved(self):
        after = StockLevels(100, 10, 0).apply(MovementType.RESERVE, 90)
        assert after == StockLevels(100, 100, 0)
        assert after.available_quantity == 0

    def test_out_consumes_reservation(self):
        after = StockLevels(100, 30, 0).apply(MovementType.OUT, -30)
        assert after == StockLevels(70, 0, 0)

    def test_disposal_consumes_damaged(self):
        after = StockLevels(50, 0, 5).apply(MovementType.DISPOSAL, -5)
        assert after == StockLevels(45, 0, 0)

    def test_damage_leaves_quantity(self):
        after = StockLevels(50, 0, 0).apply(MovementType.DAMAGE, 4)
        assert after == StockLevels(50, 0, 4)
        assert after.available_quantity == 46

    def test_every_movement_type_governs_a_counter(self):
        assert set(GOVERNED_COUNTER) == set(MovementType)


class TestFold:

    def test_empty_trail_is_zero(self):
        assert fold_movements([]) == StockLevels()

    def test_fold_reproduces_sequence(self):
        trail = [
            (MovementType.IN, 100),
            (MovementType.RESERVE, 10),
            (MovementType.DAMAGE, 3),
            (MovementType.ADJUSTMENT, -7),
            (MovementType.RELEASE, -4),
            (MovementType.OUT, -6),
            (MovementType.DISPOSAL, -3),
            (MovementType.TRANSFER, 20),
        ]
        assert fold_movements(trail) == StockLevels(
            quantity=100 - 7 - 6 - 3 + 20,
            reserved_quantity=10 - 4 - 6,
            damaged_quantity=3 - 3,
        )

    def test_fold_accepts_raw_strings(self):
        assert fold_movements([("IN", 5), ("RESERVE", 2)]) == StockLevels(5, 2, 0)

    def test_reserve_release_pair_is_a_no_op(self):
        base = [(MovementType.IN, 40)]
        assert fold_movements(base + [(MovementType.RESERVE, 15), (MovementType.RELEASE, -15)]) == (
            fold_movements(base)
        )


def test_snapshot_as_dict_includes_available():
    snapshot = StockSnapshot(uuid4(), uuid4(), quantity=100, reserved_quantity=10, damaged_quantity=0)
    data = snapshot.as_dict()
    assert data["available_quantity"] == 90
    assert set(data) == {
        "product_id", "warehouse_id", "quantity",
        "reserved_quantity", "damaged_quantity", "available_quantity",
    }
