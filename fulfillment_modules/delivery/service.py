"""
Delivery Module Service (``fulfillment_modules.delivery.service``).

Responsibility
--------------
Creates delivery orders (allocating a DO number for the shipping
warehouse) and drives them through ``DELIVERY_WORKFLOW``:

    mark_ready -- picking list must be COMPLETED; RESERVE per line, taking
                  over what the sales order already holds
    ship       -- shipping method required; OUT per line, lines IN_TRANSIT
    deliver    -- per-line delivered quantity, line DELIVERED or PARTIAL
    cancel     -- reason required; releases reservations once READY_TO_SHIP

Warehouse transfers get a document-only order (``open_for_transfer``) that
starts SHIPPED and is closed by ``deliver`` on receipt.

Invariants
----------
- Each public method owns its transaction boundary unless constructed with
  ``auto_commit=False``.
- Re-invoking an applied transition raises ``InvalidTransitionError``;
  stock is never moved twice.
- Every stock effect is a ledger call referencing the delivery order, or
  the sales order whose reservation is being handed over or given back.

Failure Modes
-------------
- ``TransitionGuardError``: picking list missing or not COMPLETED.
- ``ValidationError``: no shipping method at ship time, bad quantities,
  missing cancel reason.
- ``InsufficientStockError``: the warehouse cannot reserve a line.
- ``DocumentDeletionError``: deleting an order that is no longer PREPARING.
"""

from __future__ import annotations

from typing import Mapping, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.numbering import DocumentType
from fulfillment_kernel.domain.stock import StockReference
from fulfillment_kernel.exceptions import (
    InvalidTransitionError,
    ProductNotFoundError,
    TransitionGuardError,
    ValidationError,
    WarehouseNotFoundError,
)
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.models.reference import Product, Warehouse
from fulfillment_kernel.services.sequence_service import SequenceService
from fulfillment_kernel.services.stock_ledger import StockLedgerService
from fulfillment_modules._service_helpers import (
    load,
    load_for_update,
    require_deletable,
    require_lines,
    require_reason,
    require_unique_products,
    transaction_boundary,
)
from fulfillment_modules.delivery.models import (
    DeliveryItemStatus,
    DeliveryLine,
    DeliveryOrder,
    DeliveryStatus,
    ShippingDetails,
)
from fulfillment_modules.delivery.orm import DeliveryOrderItemModel, DeliveryOrderModel
from fulfillment_modules.delivery.workflows import (
    DELIVERED_WITHIN_SHIPPED,
    DELIVERY_WORKFLOW,
    PICKING_COMPLETED,
)
from fulfillment_modules.picking.models import PickingListStatus
from fulfillment_modules.picking.orm import PickingListModel

logger = get_logger("modules.delivery.service")

_DOCUMENT = "DeliveryOrder"
_REFERENCE_TYPE = DocumentType.DELIVERY_ORDER.value
_EDITABLE = (DeliveryStatus.PREPARING.value, DeliveryStatus.READY_TO_SHIP.value)
TRANSFER_SHIPPING_METHOD = "INTERNAL_TRANSFER"


class DeliveryService:
    """
    Orchestrates delivery orders through the ledger and numbering.

    Transaction boundary: commits on success, rolls back on failure, unless
    ``auto_commit=False``.
    """

    def __init__(
        self,
        session: Session,
        sequence: SequenceService | None = None,
        clock: Clock | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence = sequence or SequenceService(session, self._clock)
        self._ledger = StockLedgerService(session, self._clock)
        self._auto_commit = auto_commit

    # =========================================================================
    # Creation
    # =========================================================================

    def create(
        self,
        warehouse_id: UUID,
        lines: Sequence[DeliveryLine],
        *,
        actor_id: UUID,
        picking_list_id: UUID | None = None,
        sales_order_id: UUID | None = None,
        sales_order_number: str | None = None,
        recipient_name: str | None = None,
        shipping_address: str | None = None,
        shipping: ShippingDetails | None = None,
        notes: str | None = None,
    ) -> DeliveryOrder:
        """Create a PREPARING delivery order.  No stock moves yet."""
        require_lines(lines)
        require_unique_products([line.product_id for line in lines])
        for line in lines:
            if line.quantity_shipped <= 0:
                raise ValidationError(
                    "quantity_shipped", f"must be positive, got {line.quantity_shipped}",
                )

        with transaction_boundary(self._session, "delivery.create", self._auto_commit):
            order = self._new_order(
                warehouse_id, lines,
                actor_id=actor_id,
                picking_list_id=picking_list_id,
                sales_order_id=sales_order_id,
                sales_order_number=sales_order_number,
                recipient_name=recipient_name,
                shipping_address=shipping_address,
                shipping=shipping,
                notes=notes,
            )
            result = order.to_dto()
        return result

    def create_from_picking_list(
        self,
        picking_list_id: UUID,
        *,
        actor_id: UUID,
        sales_order_id: UUID | None = None,
        sales_order_number: str | None = None,
        recipient_name: str | None = None,
        shipping_address: str | None = None,
        shipping: ShippingDetails | None = None,
        notes: str | None = None,
    ) -> DeliveryOrder:
        """Create a delivery order shipping exactly what a completed picking list picked."""
        with transaction_boundary(self._session, "delivery.create_from_picking_list", self._auto_commit):
            picking = load(self._session, PickingListModel, picking_list_id, "PickingList")
            if picking.status != PickingListStatus.COMPLETED.value:
                raise ValidationError(
                    "picking_list_id",
                    f"{picking.picking_number} is {picking.status}, not COMPLETED",
                )
            lines = [
                DeliveryLine(item.product_id, item.quantity_picked)
                for item in picking.items if item.quantity_picked > 0
            ]
            order = self._new_order(
                picking.warehouse_id, lines,
                actor_id=actor_id,
                picking_list_id=picking.id,
                sales_order_id=sales_order_id or (
                    picking.source_id if picking.source_type == DocumentType.SALES_ORDER.value else None
                ),
                sales_order_number=sales_order_number,
                recipient_name=recipient_name,
                shipping_address=shipping_address,
                shipping=shipping,
                notes=notes,
            )
            result = order.to_dto()
        return result

    def open_for_transfer(
        self,
        warehouse_id: UUID,
        lines: Sequence[DeliveryLine],
        *,
        actor_id: UUID,
        transfer_number: str,
        picking_list_id: UUID | None = None,
        recipient_name: str | None = None,
    ) -> DeliveryOrder:
        """
        Paper trail for a warehouse transfer leaving ``warehouse_id``.

        The order starts SHIPPED with every line IN_TRANSIT and never touches
        the ledger: the transfer's own movements carry the stock effect.
        ``deliver`` closes it when the transfer is received.
        """
        with transaction_boundary(self._session, "delivery.open_for_transfer", self._auto_commit):
            now = self._clock.now_utc()
            order = self._new_order(
                warehouse_id, lines,
                actor_id=actor_id,
                picking_list_id=picking_list_id,
                sales_order_id=None,
                sales_order_number=None,
                recipient_name=recipient_name,
                shipping_address=None,
                shipping=ShippingDetails(
                    shipping_method=TRANSFER_SHIPPING_METHOD,
                    shipping_date=now.date(),
                ),
                notes=f"For warehouse transfer: {transfer_number}",
            )
            for item in order.items:
                item.status = DeliveryItemStatus.IN_TRANSIT.value
            order.status = DeliveryStatus.SHIPPED.value
            order.shipped_at = now
            self._session.flush()
            logger.info(
                "delivery_opened_for_transfer",
                extra={
                    "delivery_number": order.delivery_number,
                    "transfer_number": transfer_number,
                },
            )
            result = order.to_dto()
        return result

    def update_shipping(
        self,
        delivery_order_id: UUID,
        shipping: ShippingDetails,
        *,
        actor_id: UUID,
    ) -> DeliveryOrder:
        """Record shipping details while the order has not shipped yet."""
        with transaction_boundary(self._session, "delivery.update_shipping", self._auto_commit):
            order = load_for_update(self._session, DeliveryOrderModel, delivery_order_id, _DOCUMENT)
            if order.status not in _EDITABLE:
                raise InvalidTransitionError(
                    DELIVERY_WORKFLOW.name,
                    str(order.id),
                    order.status,
                    "update_shipping",
                    reason="shipping details are fixed once shipped",
                )
            order.apply_shipping(order.shipping.merged_with(shipping))
            order.updated_by_id = actor_id
            self._session.flush()
            logger.info(
                "delivery_shipping_updated",
                extra={
                    "delivery_number": order.delivery_number,
                    "shipping_method": order.shipping_method,
                },
            )
            result = order.to_dto()
        return result

    # =========================================================================
    # Transitions
    # =========================================================================

    def mark_ready(self, delivery_order_id: UUID, *, actor_id: UUID) -> DeliveryOrder:
        """
        PREPARING -> READY_TO_SHIP.

        Requires the associated picking list to be COMPLETED.  The picked
        goods are reserved in the shipping warehouse.  When the order belongs
        to a sales order, whatever that sales order still holds in reserve
        is handed over to the delivery order first, so only the remainder
        needs free stock.
        """
        with transaction_boundary(self._session, "delivery.mark_ready", self._auto_commit):
            order = load_for_update(self._session, DeliveryOrderModel, delivery_order_id, _DOCUMENT)
            DELIVERY_WORKFLOW.require(order.id, order.status, "mark_ready")

            picking = (
                None if order.picking_list_id is None
                else self._session.get(PickingListModel, order.picking_list_id)
            )
            if picking is None or picking.status != PickingListStatus.COMPLETED.value:
                raise TransitionGuardError(
                    DELIVERY_WORKFLOW.name,
                    str(order.id),
                    order.status,
                    "mark_ready",
                    PICKING_COMPLETED.name,
                )

            reference = self._reference(order)
            sales_order = self._sales_order_reference(order)
            self._lock_lines(order)
            for item in order.items:
                adopted = 0
                if sales_order is not None:
                    adopted = min(
                        item.quantity_shipped,
                        self._ledger.reserved_under(item.product_id, order.warehouse_id, sales_order),
                    )
                if adopted:
                    self._ledger.release(
                        item.product_id, order.warehouse_id, adopted,
                        actor_id=actor_id, reference=sales_order,
                        reason=f"Handed over to {order.delivery_number}",
                    )
                self._ledger.reserve(
                    item.product_id, order.warehouse_id, item.quantity_shipped,
                    actor_id=actor_id, reference=reference,
                    reason=f"Reserved for {order.delivery_number}",
                )
                item.quantity_adopted = adopted
                item.updated_by_id = actor_id

            order.status = DeliveryStatus.READY_TO_SHIP.value
            order.ready_at = self._clock.now_utc()
            order.updated_by_id = actor_id
            self._session.flush()
            logger.info(
                "delivery_ready_to_ship",
                extra={
                    "delivery_number": order.delivery_number,
                    "picking_number": picking.picking_number,
                    "adopted_units": sum(i.quantity_adopted for i in order.items),
                },
            )
            result = order.to_dto()
        return result

    def ship(
        self,
        delivery_order_id: UUID,
        *,
        actor_id: UUID,
        shipping: ShippingDetails | None = None,
    ) -> DeliveryOrder:
        """
        READY_TO_SHIP -> SHIPPED.

        Commits the shipment of every line (on-hand and reserved drop
        together), sets every line IN_TRANSIT and stamps ``shipped_at``.
        """
        with transaction_boundary(self._session, "delivery.ship", self._auto_commit):
            order = load_for_update(self._session, DeliveryOrderModel, delivery_order_id, _DOCUMENT)
            DELIVERY_WORKFLOW.require(order.id, order.status, "ship")

            details = order.shipping.merged_with(shipping)
            if not details.shipping_method:
                raise ValidationError(
                    "shipping_method",
                    f"{order.delivery_number} cannot ship without a shipping method",
                )
            now = self._clock.now_utc()
            if details.shipping_date is None:
                details = details.merged_with(ShippingDetails(shipping_date=now.date()))
            order.apply_shipping(details)

            reference = self._reference(order)
            self._lock_lines(order)
            for item in order.items:
                self._ledger.commit_shipment(
                    item.product_id, order.warehouse_id, item.quantity_shipped,
                    actor_id=actor_id, reference=reference,
                    reason=f"Shipped {order.delivery_number}",
                )
                item.status = DeliveryItemStatus.IN_TRANSIT.value
                item.updated_by_id = actor_id

            order.status = DeliveryStatus.SHIPPED.value
            order.shipped_at = now
            order.updated_by_id = actor_id
            self._session.flush()
            logger.info(
                "delivery_shipped",
                extra={
                    "delivery_number": order.delivery_number,
                    "shipping_method": details.shipping_method,
                    "tracking_number": details.tracking_number,
                },
            )
            result = order.to_dto()
        return result

    def deliver(
        self,
        delivery_order_id: UUID,
        *,
        actor_id: UUID,
        quantities: Mapping[UUID, int] | None = None,
        recipient_name: str | None = None,
        notes: str | None = None,
    ) -> DeliveryOrder:
        """
        SHIPPED -> DELIVERED.

        ``quantities`` maps product id -> units the customer accepted
        (default: everything shipped).  Lines below their shipped quantity
        end PARTIAL.
        """
        with transaction_boundary(self._session, "delivery.deliver", self._auto_commit):
            order = load_for_update(self._session, DeliveryOrderModel, delivery_order_id, _DOCUMENT)
            DELIVERY_WORKFLOW.require(order.id, order.status, "deliver")

            if quantities is not None:
                unknown = [p for p in quantities if order.item_for(p) is None]
                if unknown:
                    raise ValidationError(
                        "quantities",
                        f"product(s) {', '.join(str(p) for p in unknown)} not on "
                        f"{order.delivery_number}",
                    )

            for item in order.items:
                delivered = (
                    item.quantity_shipped if quantities is None
                    else quantities.get(item.product_id, 0)
                )
                if delivered < 0:
                    raise ValidationError("quantities", f"must not be negative, got {delivered}")
                if delivered > item.quantity_shipped:
                    raise TransitionGuardError(
                        DELIVERY_WORKFLOW.name,
                        str(order.id),
                        order.status,
                        "deliver",
                        DELIVERED_WITHIN_SHIPPED.name,
                    )
                item.quantity_delivered = delivered
                item.status = (
                    DeliveryItemStatus.DELIVERED.value
                    if delivered == item.quantity_shipped
                    else DeliveryItemStatus.PARTIAL.value
                )
                item.updated_by_id = actor_id

            order.status = DeliveryStatus.DELIVERED.value
            order.delivered_at = self._clock.now_utc()
            order.updated_by_id = actor_id
            if recipient_name:
                order.recipient_name = recipient_name
            if notes:
                order.notes = notes
            self._session.flush()

            partial = [str(i.product_id) for i in order.items if i.status == DeliveryItemStatus.PARTIAL.value]
            logger.info(
                "delivery_delivered",
                extra={
                    "delivery_number": order.delivery_number,
                    "partial_lines": partial,
                },
            )
            result = order.to_dto()
        return result

    def cancel(self, delivery_order_id: UUID, *, actor_id: UUID, reason: str) -> DeliveryOrder:
        """
        PREPARING or READY_TO_SHIP -> CANCELLED.

        A READY order's reservation is released; the part taken over from a
        sales order goes back to that sales order.
        """
        reason = require_reason(reason)
        with transaction_boundary(self._session, "delivery.cancel", self._auto_commit):
            order = load_for_update(self._session, DeliveryOrderModel, delivery_order_id, _DOCUMENT)
            transition = DELIVERY_WORKFLOW.require(order.id, order.status, "cancel")

            if transition.moves_stock:
                reference = self._reference(order)
                sales_order = self._sales_order_reference(order)
                self._lock_lines(order)
                for item in order.items:
                    self._ledger.release(
                        item.product_id, order.warehouse_id, item.quantity_shipped,
                        actor_id=actor_id, reference=reference,
                        reason=f"{order.delivery_number} cancelled: {reason}",
                    )
                    if item.quantity_adopted and sales_order is not None:
                        self._ledger.reserve(
                            item.product_id, order.warehouse_id, item.quantity_adopted,
                            actor_id=actor_id, reference=sales_order,
                            reason=f"Returned from cancelled {order.delivery_number}",
                        )

            for item in order.items:
                item.status = DeliveryItemStatus.CANCELLED.value
                item.updated_by_id = actor_id
            order.status = DeliveryStatus.CANCELLED.value
            order.cancelled_at = self._clock.now_utc()
            order.cancel_reason = reason
            order.updated_by_id = actor_id
            self._session.flush()
            logger.info(
                "delivery_cancelled",
                extra={
                    "delivery_number": order.delivery_number,
                    "reason": reason,
                    "released": transition.moves_stock,
                },
            )
            result = order.to_dto()
        return result

    def delete(self, delivery_order_id: UUID, *, actor_id: UUID) -> None:
        """Hard-delete an order that is still PREPARING."""
        with transaction_boundary(self._session, "delivery.delete", self._auto_commit):
            order = load_for_update(self._session, DeliveryOrderModel, delivery_order_id, _DOCUMENT)
            require_deletable(order, _DOCUMENT, order.delivery_number)
            number = order.delivery_number
            self._session.delete(order)
            self._session.flush()
            logger.info(
                "delivery_deleted",
                extra={"delivery_number": number, "actor_id": str(actor_id)},
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, delivery_order_id: UUID) -> DeliveryOrder:
        return load(self._session, DeliveryOrderModel, delivery_order_id, _DOCUMENT).to_dto()

    # =========================================================================
    # Internals
    # =========================================================================

    def _new_order(
        self,
        warehouse_id: UUID,
        lines: Sequence[DeliveryLine],
        *,
        actor_id: UUID,
        picking_list_id: UUID | None,
        sales_order_id: UUID | None,
        sales_order_number: str | None,
        recipient_name: str | None,
        shipping_address: str | None,
        shipping: ShippingDetails | None,
        notes: str | None,
    ) -> DeliveryOrderModel:
        require_lines(lines)
        if self._session.get(Warehouse, warehouse_id) is None:
            raise WarehouseNotFoundError(str(warehouse_id))
        if picking_list_id is not None:
            picking = load(self._session, PickingListModel, picking_list_id, "PickingList")
            if picking.warehouse_id != warehouse_id:
                raise ValidationError(
                    "picking_list_id",
                    f"{picking.picking_number} belongs to another warehouse",
                )
            if picking.status == PickingListStatus.CANCELLED.value:
                raise ValidationError(
                    "picking_list_id", f"{picking.picking_number} is cancelled",
                )

        number = self._sequence.next_number(DocumentType.DELIVERY_ORDER, warehouse_id)
        order = DeliveryOrderModel(
            delivery_number=number,
            warehouse_id=warehouse_id,
            status=DELIVERY_WORKFLOW.initial_state,
            picking_list_id=picking_list_id,
            sales_order_id=sales_order_id,
            sales_order_number=sales_order_number,
            recipient_name=recipient_name,
            shipping_address=shipping_address,
            notes=notes,
            created_by_id=actor_id,
        )
        order.apply_shipping(ShippingDetails().merged_with(shipping))
        for line_number, line in enumerate(lines, start=1):
            if self._session.get(Product, line.product_id) is None:
                raise ProductNotFoundError(str(line.product_id))
            order.items.append(DeliveryOrderItemModel(
                line_number=line_number,
                product_id=line.product_id,
                quantity_shipped=line.quantity_shipped,
                quantity_delivered=0,
                status=DeliveryItemStatus.PREPARING.value,
                notes=line.notes,
                created_by_id=actor_id,
            ))
        self._session.add(order)
        self._session.flush()

        with LogContext.bind(document_number=number, actor_id=actor_id):
            logger.info(
                "delivery_order_created",
                extra={
                    "delivery_order_id": str(order.id),
                    "warehouse_id": str(warehouse_id),
                    "picking_list_id": str(picking_list_id) if picking_list_id else None,
                    "line_count": len(lines),
                },
            )
        return order

    def _reference(self, order: DeliveryOrderModel) -> StockReference:
        return StockReference(
            reference_type=_REFERENCE_TYPE,
            reference_id=order.id,
            reference_number=order.delivery_number,
        )

    def _sales_order_reference(self, order: DeliveryOrderModel) -> StockReference | None:
        if order.sales_order_id is None:
            return None
        return StockReference(
            reference_type=DocumentType.SALES_ORDER.value,
            reference_id=order.sales_order_id,
            reference_number=order.sales_order_number,
        )

    def _lock_lines(self, order: DeliveryOrderModel) -> None:
        self._ledger.lock_records((item.product_id, order.warehouse_id) for item in order.items)
