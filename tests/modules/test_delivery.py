"""
Tests for DeliveryService.

Flow:
    picking list COMPLETED -> delivery order PREPARING
    mark_ready  reserves the goods
    ship        commits the shipment (on-hand and reserved drop together)
    deliver     records what the customer accepted

Invariants tested:
- READY_TO_SHIP needs a completed picking list.
- SHIPPED needs a shipping method.
- Cancelling a READY order gives the reservation back.
- Only PREPARING orders can be deleted, with or without the flush-time
  immutability listeners.
- A sales order's reservation is handed over at mark_ready, never taken
  twice, and handed back when the READY order is cancelled.
"""

from datetime import date
from uuid import uuid4

import pytest

from fulfillment_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from fulfillment_kernel.domain.numbering import DocumentType
from fulfillment_kernel.domain.stock import MovementType, StockReference
from fulfillment_kernel.exceptions import (
    DocumentDeletionError,
    DocumentNotFoundError,
    InsufficientStockError,
    InvalidTransitionError,
    TransitionGuardError,
    ValidationError,
)
from fulfillment_modules.delivery import (
    DeliveryItemStatus,
    DeliveryLine,
    DeliveryStatus,
    ShippingDetails,
)
from fulfillment_modules.picking import PickingLine

TRUCK = ShippingDetails(
    shipping_method="Truck", tracking_number="TRK-8812",
    driver_name="Budi", vehicle_number="B 1234 XYZ",
)


@pytest.fixture
def goods(stocked, jakarta):
    return stocked(jakarta.id, 100)


@pytest.fixture
def completed_picking(picking_service, goods, jakarta, test_actor_id):
    picking = picking_service.create(
        jakarta.id, [PickingLine(goods.id, 10)], actor_id=test_actor_id,
        source_type="SALES_ORDER", source_id=uuid4(),
    )
    return picking_service.record_picks(picking.id, {goods.id: 10}, actor_id=test_actor_id)


@pytest.fixture
def order(delivery_service, completed_picking, test_actor_id):
    return delivery_service.create_from_picking_list(
        completed_picking.id, actor_id=test_actor_id,
        recipient_name="PT Sinar Jaya", shipping_address="Jl. Sudirman 1, Jakarta",
    )


@pytest.fixture
def ready(delivery_service, order, test_actor_id):
    return delivery_service.mark_ready(order.id, actor_id=test_actor_id)


class TestCreate:

    def test_from_completed_picking_list(self, order, completed_picking, goods):
        assert order.delivery_number == "DO-001/JKT/11-2025"
        assert order.status == DeliveryStatus.PREPARING
        assert order.picking_list_id == completed_picking.id
        assert order.sales_order_id == completed_picking.source_id
        assert order.item_for(goods.id).quantity_shipped == 10
        assert order.item_for(goods.id).status == DeliveryItemStatus.PREPARING

    def test_from_open_picking_list_rejected(self, delivery_service, picking_service, goods, jakarta, test_actor_id):
        picking = picking_service.create(jakarta.id, [PickingLine(goods.id, 10)], actor_id=test_actor_id)
        with pytest.raises(ValidationError):
            delivery_service.create_from_picking_list(picking.id, actor_id=test_actor_id)

    def test_creating_moves_no_stock(self, order, stock_ledger, goods, jakarta):
        snapshot = stock_ledger.get_stock(goods.id, jakarta.id)
        assert (snapshot.quantity, snapshot.reserved_quantity) == (100, 0)

    def test_picking_list_from_other_warehouse(
        self, delivery_service, completed_picking, goods, makassar, test_actor_id,
    ):
        with pytest.raises(ValidationError):
            delivery_service.create(
                makassar.id, [DeliveryLine(goods.id, 10)], actor_id=test_actor_id,
                picking_list_id=completed_picking.id,
            )


class TestMarkReady:

    def test_reserves_the_goods(self, ready, stock_ledger, goods, jakarta):
        assert ready.status == DeliveryStatus.READY_TO_SHIP
        assert ready.ready_at is not None
        snapshot = stock_ledger.get_stock(goods.id, jakarta.id)
        assert (snapshot.quantity, snapshot.reserved_quantity, snapshot.available_quantity) == (100, 10, 90)

        last = stock_ledger.movements(goods.id, jakarta.id)[-1]
        assert last.movement_type == MovementType.RESERVE
        assert last.reference_number == "DO-001/JKT/11-2025"

    def test_needs_a_picking_list(self, delivery_service, goods, jakarta, test_actor_id):
        order = delivery_service.create(jakarta.id, [DeliveryLine(goods.id, 5)], actor_id=test_actor_id)
        with pytest.raises(TransitionGuardError) as exc_info:
            delivery_service.mark_ready(order.id, actor_id=test_actor_id)
        assert exc_info.value.guard == "picking_completed"
        assert delivery_service.get(order.id).status == DeliveryStatus.PREPARING

    def test_needs_a_completed_picking_list(
        self, delivery_service, picking_service, goods, jakarta, test_actor_id,
    ):
        picking = picking_service.create(jakarta.id, [PickingLine(goods.id, 5)], actor_id=test_actor_id)
        order = delivery_service.create(
            jakarta.id, [DeliveryLine(goods.id, 5)], actor_id=test_actor_id,
            picking_list_id=picking.id,
        )
        with pytest.raises(TransitionGuardError):
            delivery_service.mark_ready(order.id, actor_id=test_actor_id)

        picking_service.record_picks(picking.id, {goods.id: 5}, actor_id=test_actor_id)
        assert delivery_service.mark_ready(order.id, actor_id=test_actor_id).status == DeliveryStatus.READY_TO_SHIP

    def test_insufficient_stock_leaves_order_preparing(
        self, session, delivery_service, stock_ledger, order, goods, jakarta, test_actor_id,
    ):
        stock_ledger.reserve(goods.id, jakarta.id, 95, actor_id=test_actor_id)
        session.commit()
        with pytest.raises(InsufficientStockError):
            delivery_service.mark_ready(order.id, actor_id=test_actor_id)
        assert delivery_service.get(order.id).status == DeliveryStatus.PREPARING
        assert stock_ledger.get_stock(goods.id, jakarta.id).reserved_quantity == 95

    def test_mark_ready_twice(self, delivery_service, stock_ledger, ready, goods, jakarta, test_actor_id):
        with pytest.raises(InvalidTransitionError):
            delivery_service.mark_ready(ready.id, actor_id=test_actor_id)
        assert stock_ledger.get_stock(goods.id, jakarta.id).reserved_quantity == 10


class TestShip:

    def test_ship_commits_the_shipment(self, delivery_service, stock_ledger, ready, goods, jakarta, test_actor_id):
        shipped = delivery_service.ship(ready.id, actor_id=test_actor_id, shipping=TRUCK)
        assert shipped.status == DeliveryStatus.SHIPPED
        assert shipped.shipped_at is not None
        assert shipped.shipping.shipping_method == "Truck"
        assert shipped.shipping.shipping_date == date(2025, 11, 3)
        assert all(i.status == DeliveryItemStatus.IN_TRANSIT for i in shipped.items)

        snapshot = stock_ledger.get_stock(goods.id, jakarta.id)
        assert (snapshot.quantity, snapshot.reserved_quantity) == (90, 0)
        stock_ledger.verify(goods.id, jakarta.id)

    def test_ship_needs_shipping_method(self, delivery_service, stock_ledger, ready, goods, jakarta, test_actor_id):
        with pytest.raises(ValidationError) as exc_info:
            delivery_service.ship(ready.id, actor_id=test_actor_id)
        assert exc_info.value.field == "shipping_method"
        assert delivery_service.get(ready.id).status == DeliveryStatus.READY_TO_SHIP
        assert stock_ledger.get_stock(goods.id, jakarta.id).quantity == 100

    def test_shipping_recorded_ahead(self, delivery_service, ready, test_actor_id):
        delivery_service.update_shipping(ready.id, TRUCK, actor_id=test_actor_id)
        delivery_service.update_shipping(
            ready.id, ShippingDetails(tracking_number="TRK-9000"), actor_id=test_actor_id,
        )
        shipped = delivery_service.ship(ready.id, actor_id=test_actor_id)
        assert shipped.shipping.shipping_method == "Truck"
        assert shipped.shipping.tracking_number == "TRK-9000"
        assert shipped.shipping.driver_name == "Budi"

    def test_ship_straight_from_preparing_rejected(self, delivery_service, order, test_actor_id):
        with pytest.raises(InvalidTransitionError):
            delivery_service.ship(order.id, actor_id=test_actor_id, shipping=TRUCK)

    def test_ship_twice(self, delivery_service, stock_ledger, ready, goods, jakarta, test_actor_id):
        delivery_service.ship(ready.id, actor_id=test_actor_id, shipping=TRUCK)
        with pytest.raises(InvalidTransitionError):
            delivery_service.ship(ready.id, actor_id=test_actor_id, shipping=TRUCK)
        assert stock_ledger.get_stock(goods.id, jakarta.id).quantity == 90

    def test_shipping_fixed_after_ship(self, delivery_service, ready, test_actor_id):
        delivery_service.ship(ready.id, actor_id=test_actor_id, shipping=TRUCK)
        with pytest.raises(InvalidTransitionError):
            delivery_service.update_shipping(
                ready.id, ShippingDetails(shipping_method="Air"), actor_id=test_actor_id,
            )


class TestDeliver:

    @pytest.fixture
    def shipped(self, delivery_service, ready, test_actor_id):
        return delivery_service.ship(ready.id, actor_id=test_actor_id, shipping=TRUCK)

    def test_full_delivery(self, delivery_service, shipped, test_actor_id):
        delivered = delivery_service.deliver(shipped.id, actor_id=test_actor_id, recipient_name="Andi")
        assert delivered.status == DeliveryStatus.DELIVERED
        assert delivered.is_fully_delivered
        assert delivered.recipient_name == "Andi"
        assert delivered.delivered_at is not None

    def test_partial_delivery(self, delivery_service, stock_ledger, shipped, goods, jakarta, test_actor_id):
        delivered = delivery_service.deliver(
            shipped.id, actor_id=test_actor_id, quantities={goods.id: 7},
            notes="Three units refused",
        )
        item = delivered.item_for(goods.id)
        assert (item.quantity_delivered, item.status) == (7, DeliveryItemStatus.PARTIAL)
        assert item.quantity_undelivered == 3
        assert not delivered.is_fully_delivered
        assert stock_ledger.get_stock(goods.id, jakarta.id).quantity == 90

    def test_deliver_more_than_shipped(self, delivery_service, shipped, goods, test_actor_id):
        with pytest.raises(TransitionGuardError) as exc_info:
            delivery_service.deliver(shipped.id, actor_id=test_actor_id, quantities={goods.id: 11})
        assert exc_info.value.guard == "delivered_within_shipped"

    def test_delivered_order_cannot_be_cancelled(self, delivery_service, shipped, test_actor_id):
        delivery_service.deliver(shipped.id, actor_id=test_actor_id)
        with pytest.raises(InvalidTransitionError):
            delivery_service.cancel(shipped.id, actor_id=test_actor_id, reason="Customer changed mind")


class TestCancelAndDelete:

    def test_cancel_preparing_moves_nothing(self, delivery_service, stock_ledger, order, goods, jakarta, test_actor_id):
        trail = len(stock_ledger.movements(goods.id, jakarta.id))
        cancelled = delivery_service.cancel(order.id, actor_id=test_actor_id, reason="Order withdrawn")
        assert cancelled.status == DeliveryStatus.CANCELLED
        assert len(stock_ledger.movements(goods.id, jakarta.id)) == trail

    def test_cancel_ready_releases_reservation(
        self, delivery_service, stock_ledger, ready, goods, jakarta, test_actor_id,
    ):
        cancelled = delivery_service.cancel(ready.id, actor_id=test_actor_id, reason="Truck unavailable")
        assert cancelled.status == DeliveryStatus.CANCELLED
        assert cancelled.cancel_reason == "Truck unavailable"
        assert all(i.status == DeliveryItemStatus.CANCELLED for i in cancelled.items)

        snapshot = stock_ledger.get_stock(goods.id, jakarta.id)
        assert (snapshot.quantity, snapshot.reserved_quantity) == (100, 0)
        assert stock_ledger.movements(goods.id, jakarta.id)[-1].movement_type == MovementType.RELEASE

    def test_shipped_order_cannot_be_cancelled(self, delivery_service, ready, test_actor_id):
        delivery_service.ship(ready.id, actor_id=test_actor_id, shipping=TRUCK)
        with pytest.raises(InvalidTransitionError):
            delivery_service.cancel(ready.id, actor_id=test_actor_id, reason="Too late")

    def test_cancel_needs_reason(self, delivery_service, order, test_actor_id):
        with pytest.raises(ValidationError):
            delivery_service.cancel(order.id, actor_id=test_actor_id, reason="")

    def test_delete_preparing(self, delivery_service, goods, jakarta, test_actor_id):
        order = delivery_service.create(jakarta.id, [DeliveryLine(goods.id, 1)], actor_id=test_actor_id)
        delivery_service.delete(order.id, actor_id=test_actor_id)
        with pytest.raises(DocumentNotFoundError):
            delivery_service.get(order.id)

    def test_delete_ready_rejected(self, delivery_service, ready, test_actor_id):
        with pytest.raises(DocumentDeletionError):
            delivery_service.delete(ready.id, actor_id=test_actor_id)
        assert delivery_service.get(ready.id).status == DeliveryStatus.READY_TO_SHIP

    def test_delete_guarded_without_listeners(self, delivery_service, ready, test_actor_id):
        unregister_immutability_listeners()
        try:
            with pytest.raises(DocumentDeletionError):
                delivery_service.delete(ready.id, actor_id=test_actor_id)
        finally:
            register_immutability_listeners()
        assert delivery_service.get(ready.id).status == DeliveryStatus.READY_TO_SHIP


def _sales_order(sales_order_id):
    return StockReference(DocumentType.SALES_ORDER.value, sales_order_id, "SO-001/JKT/11-2025")


def _delivery(order):
    return StockReference(DocumentType.DELIVERY_ORDER.value, order.id)


class TestSalesOrderReservation:
    """Goods a sales order already holds are handed over, not reserved again."""

    @pytest.fixture
    def sales_order_id(self):
        return uuid4()

    @pytest.fixture
    def tight(self, stocked, jakarta):
        """Ten units on hand and nothing to spare once the sales order reserves."""
        return stocked(jakarta.id, 10)

    @pytest.fixture
    def order_for(self, session, stock_ledger, picking_service, delivery_service, jakarta, test_actor_id):
        def _order_for(product, sales_order_id, held):
            if held:
                stock_ledger.reserve(
                    product.id, jakarta.id, held,
                    actor_id=test_actor_id, reference=_sales_order(sales_order_id),
                )
                session.commit()
            picking = picking_service.create(
                jakarta.id, [PickingLine(product.id, 10)], actor_id=test_actor_id,
                source_type=DocumentType.SALES_ORDER.value, source_id=sales_order_id,
            )
            picking_service.record_picks(picking.id, {product.id: 10}, actor_id=test_actor_id)
            return delivery_service.create_from_picking_list(picking.id, actor_id=test_actor_id)

        return _order_for

    def test_fully_reserved_stock_ships(
        self, delivery_service, stock_ledger, order_for, tight, sales_order_id, jakarta, test_actor_id,
    ):
        order = order_for(tight, sales_order_id, held=10)
        assert order.sales_order_id == sales_order_id

        ready = delivery_service.mark_ready(order.id, actor_id=test_actor_id)
        assert ready.status == DeliveryStatus.READY_TO_SHIP
        assert ready.item_for(tight.id).quantity_adopted == 10
        snapshot = stock_ledger.get_stock(tight.id, jakarta.id)
        assert (snapshot.quantity, snapshot.reserved_quantity, snapshot.available_quantity) == (10, 10, 0)
        assert stock_ledger.reserved_under(tight.id, jakarta.id, _sales_order(sales_order_id)) == 0
        assert stock_ledger.reserved_under(tight.id, jakarta.id, _delivery(ready)) == 10

        delivery_service.ship(ready.id, actor_id=test_actor_id, shipping=TRUCK)
        snapshot = stock_ledger.verify(tight.id, jakarta.id)
        assert (snapshot.quantity, snapshot.reserved_quantity) == (0, 0)
        assert stock_ledger.reserved_under(tight.id, jakarta.id, _delivery(ready)) == 0

    def test_partial_reservation_is_topped_up(
        self, delivery_service, stock_ledger, order_for, tight, sales_order_id, jakarta, test_actor_id,
    ):
        order = order_for(tight, sales_order_id, held=6)
        ready = delivery_service.mark_ready(order.id, actor_id=test_actor_id)

        assert ready.item_for(tight.id).quantity_adopted == 6
        snapshot = stock_ledger.verify(tight.id, jakarta.id)
        assert (snapshot.reserved_quantity, snapshot.available_quantity) == (10, 0)

        handover = [
            m for m in stock_ledger.movements(tight.id, jakarta.id)
            if m.reference_type == DocumentType.SALES_ORDER.value
        ]
        assert [(m.movement_type, m.quantity_change) for m in handover] == [
            (MovementType.RESERVE, 6), (MovementType.RELEASE, -6),
        ]

    def test_shortfall_keeps_the_sales_order_reservation(
        self, session, delivery_service, stock_ledger, order_for, tight, sales_order_id, jakarta, test_actor_id,
    ):
        order = order_for(tight, sales_order_id, held=6)
        # Another customer takes the remaining four units
        stock_ledger.reserve(tight.id, jakarta.id, 4, actor_id=test_actor_id)
        session.commit()

        with pytest.raises(InsufficientStockError):
            delivery_service.mark_ready(order.id, actor_id=test_actor_id)

        assert delivery_service.get(order.id).status == DeliveryStatus.PREPARING
        assert stock_ledger.reserved_under(tight.id, jakarta.id, _sales_order(sales_order_id)) == 6
        assert stock_ledger.get_stock(tight.id, jakarta.id).reserved_quantity == 10

    def test_cancel_hands_reservation_back(
        self, delivery_service, stock_ledger, order_for, tight, sales_order_id, jakarta, test_actor_id,
    ):
        order = order_for(tight, sales_order_id, held=10)
        ready = delivery_service.mark_ready(order.id, actor_id=test_actor_id)

        delivery_service.cancel(ready.id, actor_id=test_actor_id, reason="Customer postponed")

        snapshot = stock_ledger.verify(tight.id, jakarta.id)
        assert (snapshot.quantity, snapshot.reserved_quantity) == (10, 10)
        assert stock_ledger.reserved_under(tight.id, jakarta.id, _sales_order(sales_order_id)) == 10
        assert stock_ledger.reserved_under(tight.id, jakarta.id, _delivery(ready)) == 0

    def test_sales_order_without_reservation_reserves_fresh(
        self, delivery_service, stock_ledger, order_for, tight, sales_order_id, jakarta, test_actor_id,
    ):
        order = order_for(tight, sales_order_id, held=0)
        ready = delivery_service.mark_ready(order.id, actor_id=test_actor_id)

        assert ready.item_for(tight.id).quantity_adopted == 0
        assert stock_ledger.get_stock(tight.id, jakarta.id).reserved_quantity == 10
