"""
Tests for PickingService.

Picking lists move no stock; they record what was pulled from which bin
and gate delivery orders through the COMPLETED status.
"""

from types import SimpleNamespace
from uuid import uuid4

import pytest

from fulfillment_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from fulfillment_kernel.exceptions import (
    DocumentDeletionError,
    DocumentNotFoundError,
    InvalidTransitionError,
    TransitionGuardError,
    ValidationError,
    WarehouseNotFoundError,
)
from fulfillment_modules.picking import (
    PickingItemStatus,
    PickingLine,
    PickingListStatus,
)


class TestCreate:

    def test_create_numbers_the_list(self, picking_service, stocked, jakarta, test_actor_id):
        item = stocked(jakarta.id, 50)
        picking = picking_service.create(
            jakarta.id, [PickingLine(item.id, 10)], actor_id=test_actor_id,
        )
        assert picking.picking_number == "PL-001/JKT/11-2025"
        assert picking.status == PickingListStatus.DRAFT
        assert picking.items[0].quantity_picked == 0
        assert picking.items[0].status == PickingItemStatus.PENDING

    def test_bin_location_from_stock_record(self, picking_service, stocked, jakarta, test_actor_id):
        binned = stocked(jakarta.id, 50, bin_location="A-01-03")
        explicit = stocked(jakarta.id, 50, bin_location="B-02-01")
        picking = picking_service.create(
            jakarta.id,
            [PickingLine(binned.id, 5), PickingLine(explicit.id, 5, bin_location="Z-99")],
            actor_id=test_actor_id,
        )
        assert [i.bin_location for i in picking.items] == ["A-01-03", "Z-99"]

    def test_lines_keep_their_order(self, picking_service, stocked, jakarta, test_actor_id):
        products = [stocked(jakarta.id, 5) for _ in range(3)]
        picking = picking_service.create(
            jakarta.id, [PickingLine(p.id, 1) for p in products], actor_id=test_actor_id,
        )
        assert [i.product_id for i in picking_service.get(picking.id).items] == [p.id for p in products]

    def test_creating_moves_no_stock(self, picking_service, stock_ledger, stocked, jakarta, test_actor_id):
        item = stocked(jakarta.id, 50)
        before = stock_ledger.get_stock(item.id, jakarta.id)
        picking_service.create(jakarta.id, [PickingLine(item.id, 10)], actor_id=test_actor_id)
        assert stock_ledger.get_stock(item.id, jakarta.id) == before

    def test_validation(self, picking_service, product, jakarta, test_actor_id):
        with pytest.raises(ValidationError):
            picking_service.create(jakarta.id, [], actor_id=test_actor_id)
        with pytest.raises(ValidationError):
            picking_service.create(jakarta.id, [PickingLine(product.id, 0)], actor_id=test_actor_id)
        with pytest.raises(ValidationError):
            picking_service.create(
                jakarta.id,
                [PickingLine(product.id, 1), PickingLine(product.id, 2)],
                actor_id=test_actor_id,
            )
        with pytest.raises(WarehouseNotFoundError):
            picking_service.create(uuid4(), [PickingLine(product.id, 1)], actor_id=test_actor_id)


class TestPicking:

    @pytest.fixture
    def lines(self, stocked, jakarta):
        return SimpleNamespace(first=stocked(jakarta.id, 50), second=stocked(jakarta.id, 50))

    @pytest.fixture
    def picking(self, picking_service, lines, jakarta, test_actor_id):
        return picking_service.create(
            jakarta.id,
            [PickingLine(lines.first.id, 10), PickingLine(lines.second.id, 4)],
            actor_id=test_actor_id,
        )

    def test_start_assigns_picker(self, picking_service, picking):
        picker = uuid4()
        started = picking_service.start(picking.id, actor_id=picker)
        assert started.status == PickingListStatus.PICKING
        assert started.assigned_to_id == picker

    def test_start_twice_rejected(self, picking_service, picking, test_actor_id):
        picking_service.start(picking.id, actor_id=test_actor_id)
        with pytest.raises(InvalidTransitionError):
            picking_service.start(picking.id, actor_id=test_actor_id)

    def test_partial_picks_accumulate(self, picking_service, picking, lines, test_actor_id):
        result = picking_service.record_picks(picking.id, {lines.first.id: 6}, actor_id=test_actor_id)
        assert result.status == PickingListStatus.PICKING
        line = next(i for i in result.items if i.product_id == lines.first.id)
        assert (line.quantity_picked, line.status) == (6, PickingItemStatus.PARTIAL)

        result = picking_service.record_picks(picking.id, {lines.first.id: 4}, actor_id=test_actor_id)
        line = next(i for i in result.items if i.product_id == lines.first.id)
        assert (line.quantity_picked, line.status) == (10, PickingItemStatus.COMPLETED)
        assert result.status == PickingListStatus.PICKING

    def test_last_pick_completes_the_list(self, picking_service, picking, lines, test_actor_id):
        result = picking_service.record_picks(
            picking.id, {lines.first.id: 10, lines.second.id: 4}, actor_id=test_actor_id,
        )
        assert result.status == PickingListStatus.COMPLETED
        assert result.completed_at is not None
        assert result.is_fully_picked

    def test_over_pick_rejected(self, picking_service, picking, lines, test_actor_id):
        with pytest.raises(ValidationError) as exc_info:
            picking_service.record_picks(picking.id, {lines.second.id: 5}, actor_id=test_actor_id)
        assert exc_info.value.field == "quantity_picked"
        assert picking_service.get(picking.id).status == PickingListStatus.DRAFT

    def test_pick_of_unlisted_product(self, picking_service, picking, test_actor_id):
        with pytest.raises(ValidationError):
            picking_service.record_picks(picking.id, {uuid4(): 1}, actor_id=test_actor_id)

    def test_complete_needs_every_line_picked(self, picking_service, picking, lines, test_actor_id):
        picking_service.record_picks(picking.id, {lines.first.id: 10}, actor_id=test_actor_id)
        with pytest.raises(TransitionGuardError) as exc_info:
            picking_service.complete(picking.id, actor_id=test_actor_id)
        assert exc_info.value.guard == "all_items_picked"

    def test_closed_list_takes_no_picks(self, picking_service, picking, lines, test_actor_id):
        picking_service.cancel(picking.id, actor_id=test_actor_id, reason="Order withdrawn")
        with pytest.raises(InvalidTransitionError) as exc_info:
            picking_service.record_picks(picking.id, {lines.first.id: 1}, actor_id=test_actor_id)
        assert exc_info.value.action == "record_picks"

    def test_cancel_needs_reason(self, picking_service, picking, test_actor_id):
        with pytest.raises(ValidationError):
            picking_service.cancel(picking.id, actor_id=test_actor_id, reason="")

    def test_completed_list_cannot_be_cancelled(self, picking_service, picking, lines, test_actor_id):
        picking_service.record_picks(
            picking.id, {lines.first.id: 10, lines.second.id: 4}, actor_id=test_actor_id,
        )
        with pytest.raises(InvalidTransitionError):
            picking_service.cancel(picking.id, actor_id=test_actor_id, reason="Too late")


class TestDelete:

    def test_draft_list_deleted(self, picking_service, stocked, jakarta, test_actor_id):
        item = stocked(jakarta.id, 5)
        picking = picking_service.create(jakarta.id, [PickingLine(item.id, 1)], actor_id=test_actor_id)
        picking_service.delete(picking.id, actor_id=test_actor_id)
        with pytest.raises(DocumentNotFoundError):
            picking_service.get(picking.id)

    def test_started_list_kept(self, picking_service, stocked, jakarta, test_actor_id):
        item = stocked(jakarta.id, 5)
        picking = picking_service.create(jakarta.id, [PickingLine(item.id, 1)], actor_id=test_actor_id)
        picking_service.start(picking.id, actor_id=test_actor_id)
        with pytest.raises(DocumentDeletionError):
            picking_service.delete(picking.id, actor_id=test_actor_id)
        assert picking_service.get(picking.id).status == PickingListStatus.PICKING

    def test_started_list_kept_without_listeners(self, picking_service, stocked, jakarta, test_actor_id):
        item = stocked(jakarta.id, 5)
        picking = picking_service.create(jakarta.id, [PickingLine(item.id, 1)], actor_id=test_actor_id)
        picking_service.start(picking.id, actor_id=test_actor_id)
        unregister_immutability_listeners()
        try:
            with pytest.raises(DocumentDeletionError):
                picking_service.delete(picking.id, actor_id=test_actor_id)
        finally:
            register_immutability_listeners()
        assert picking_service.get(picking.id).status == PickingListStatus.PICKING
