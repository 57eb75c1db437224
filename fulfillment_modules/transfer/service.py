"""
Transfer Module Service (``fulfillment_modules.transfer.service``).

Responsibility
--------------
Drives warehouse transfers through ``TRANSFER_WORKFLOW`` and performs the
stock effects of each transition through ``StockLedgerService``:

    approve  -- authority + availability check, picking list for the source
    deliver  -- RESERVE then OUT per line at the source warehouse; opens a
                document-only delivery order for what was sent
    receive  -- TRANSFER (+received) per line at the destination warehouse;
                closes that delivery order with the received quantities

Invariants
----------
- Each public method owns its transaction boundary unless constructed with
  ``auto_commit=False``; numbering, picking list, movements and the status
  change commit or roll back together.
- A transition that was already applied raises ``InvalidTransitionError``
  instead of moving stock twice.
- Stock rows are locked in the ledger's global order before the first
  mutation of a multi-line transition.

Failure Modes
-------------
- ``ValidationError``: empty or duplicate lines, bad quantities, same
  source and destination, missing cancel reason.
- ``UnauthorizedActorError``: approver lacks transfer authority for the source.
- ``InsufficientStockError``: source cannot cover a line.
- ``ContentionError``: lock wait timed out (retry the whole call).
- ``DocumentDeletionError``: deleting a transfer that is no longer REQUESTED.
"""

from __future__ import annotations

from typing import Mapping, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from fulfillment_kernel.domain.actor import APPROVE_TRANSFERS, Actor
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.numbering import DocumentType
from fulfillment_kernel.domain.stock import MovementType, StockReference
from fulfillment_kernel.exceptions import (
    InsufficientStockError,
    ProductNotFoundError,
    TransitionGuardError,
    UnauthorizedActorError,
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
from fulfillment_modules.delivery.models import DeliveryLine
from fulfillment_modules.delivery.service import DeliveryService
from fulfillment_modules.picking.models import PickingLine, PickingListStatus
from fulfillment_modules.picking.orm import PickingListModel
from fulfillment_modules.picking.service import PickingService
from fulfillment_modules.transfer.config import TransferConfig
from fulfillment_modules.transfer.models import (
    TransferLine,
    TransferStatus,
    WarehouseTransfer,
)
from fulfillment_modules.transfer.orm import (
    WarehouseTransferItemModel,
    WarehouseTransferModel,
)
from fulfillment_modules.transfer.workflows import (
    DELIVERED_WITHIN_REQUESTED,
    RECEIVED_WITHIN_DELIVERED,
    TRANSFER_WORKFLOW,
)

logger = get_logger("modules.transfer.service")

_DOCUMENT = "WarehouseTransfer"


class TransferService:
    """
    Orchestrates warehouse transfers through the ledger and numbering.

    Transaction boundary: this service commits on success, rolls back on
    failure.  The picking and delivery services it uses run with
    ``auto_commit=False`` so their documents join the transition's
    transaction.
    """

    def __init__(
        self,
        session: Session,
        sequence: SequenceService | None = None,
        clock: Clock | None = None,
        config: TransferConfig | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or TransferConfig()
        self._auto_commit = auto_commit
        self._sequence = sequence or SequenceService(session, self._clock)
        self._ledger = StockLedgerService(session, self._clock)
        self._picking = PickingService(
            session, sequence=self._sequence, clock=self._clock, auto_commit=False,
        )
        self._delivery = DeliveryService(
            session, sequence=self._sequence, clock=self._clock, auto_commit=False,
        )

    # =========================================================================
    # Request
    # =========================================================================

    def request(
        self,
        source_warehouse_id: UUID,
        destination_warehouse_id: UUID,
        lines: Sequence[TransferLine],
        *,
        actor_id: UUID,
        notes: str | None = None,
    ) -> WarehouseTransfer:
        """Create a REQUESTED transfer numbered in the source warehouse's WT sequence."""
        if source_warehouse_id == destination_warehouse_id:
            raise ValidationError(
                "destination_warehouse_id", "must differ from the source warehouse",
            )
        require_lines(lines)
        require_unique_products([line.product_id for line in lines])
        for line in lines:
            if line.quantity_requested <= 0:
                raise ValidationError(
                    "quantity_requested",
                    f"must be positive, got {line.quantity_requested}",
                )

        with transaction_boundary(self._session, "transfer.request", self._auto_commit):
            for warehouse_id in (source_warehouse_id, destination_warehouse_id):
                if self._session.get(Warehouse, warehouse_id) is None:
                    raise WarehouseNotFoundError(str(warehouse_id))

            number = self._sequence.next_number(
                DocumentType.WAREHOUSE_TRANSFER, source_warehouse_id,
            )
            transfer = WarehouseTransferModel(
                transfer_number=number,
                source_warehouse_id=source_warehouse_id,
                destination_warehouse_id=destination_warehouse_id,
                status=TRANSFER_WORKFLOW.initial_state,
                requested_by_id=actor_id,
                notes=notes,
                created_by_id=actor_id,
            )
            for line_number, line in enumerate(lines, start=1):
                if self._session.get(Product, line.product_id) is None:
                    raise ProductNotFoundError(str(line.product_id))
                transfer.items.append(WarehouseTransferItemModel(
                    line_number=line_number,
                    product_id=line.product_id,
                    quantity_requested=line.quantity_requested,
                    quantity_delivered=0,
                    quantity_received=0,
                    shortfall=0,
                    notes=line.notes,
                    created_by_id=actor_id,
                ))
            self._session.add(transfer)
            self._session.flush()

            with LogContext.bind(document_number=number, actor_id=actor_id):
                logger.info(
                    "transfer_requested",
                    extra={
                        "transfer_id": str(transfer.id),
                        "source_warehouse_id": str(source_warehouse_id),
                        "destination_warehouse_id": str(destination_warehouse_id),
                        "line_count": len(lines),
                    },
                )
            result = transfer.to_dto()
        return result

    # =========================================================================
    # Transitions
    # =========================================================================

    def approve(
        self,
        transfer_id: UUID,
        *,
        actor: Actor,
        notes: str | None = None,
    ) -> WarehouseTransfer:
        """
        REQUESTED -> APPROVED.

        No stock moves.  The actor must be allowed to approve transfers out
        of the source warehouse, and (by default) the source must have every
        requested quantity available.  A DRAFT picking list is created for
        the source warehouse.
        """
        with transaction_boundary(self._session, "transfer.approve", self._auto_commit):
            transfer = load_for_update(self._session, WarehouseTransferModel, transfer_id, _DOCUMENT)
            TRANSFER_WORKFLOW.require(transfer.id, transfer.status, "approve")

            if not actor.can_approve_transfer_from(transfer.source_warehouse_id):
                raise UnauthorizedActorError(
                    str(actor.actor_id),
                    APPROVE_TRANSFERS,
                    f"transfer {transfer.transfer_number} from warehouse "
                    f"{transfer.source_warehouse_id}",
                )

            if self._config.check_availability_on_approval:
                for item in transfer.items:
                    snapshot = self._ledger.get_stock(item.product_id, transfer.source_warehouse_id)
                    if snapshot.available_quantity < item.quantity_requested:
                        raise InsufficientStockError(
                            str(item.product_id),
                            str(transfer.source_warehouse_id),
                            item.quantity_requested,
                            snapshot.available_quantity,
                            "transfer_approval",
                        )

            transfer.status = TransferStatus.APPROVED.value
            transfer.approved_by_id = actor.actor_id
            transfer.approved_at = self._clock.now_utc()
            transfer.updated_by_id = actor.actor_id
            if notes:
                transfer.notes = notes

            if self._config.create_picking_list:
                picking = self._picking.create(
                    transfer.source_warehouse_id,
                    [PickingLine(i.product_id, i.quantity_requested) for i in transfer.items],
                    actor_id=actor.actor_id,
                    source_type=self._config.reference_type,
                    source_id=transfer.id,
                    notes=f"For warehouse transfer: {transfer.transfer_number}",
                )
                transfer.picking_list_id = picking.id
            self._session.flush()

            logger.info(
                "transfer_approved",
                extra={
                    "transfer_number": transfer.transfer_number,
                    "approved_by": str(actor.actor_id),
                    "picking_list_id": str(transfer.picking_list_id) if transfer.picking_list_id else None,
                },
            )
            result = transfer.to_dto()
        return result

    def deliver(
        self,
        transfer_id: UUID,
        *,
        actor_id: UUID,
        quantities: Mapping[UUID, int] | None = None,
        notes: str | None = None,
    ) -> WarehouseTransfer:
        """
        APPROVED -> IN_TRANSIT.

        ``quantities`` maps product id -> units sent (default: everything
        requested).  Each line sent is reserved and then shipped out of the
        source warehouse.
        """
        with transaction_boundary(self._session, "transfer.deliver", self._auto_commit):
            transfer = load_for_update(self._session, WarehouseTransferModel, transfer_id, _DOCUMENT)
            TRANSFER_WORKFLOW.require(transfer.id, transfer.status, "deliver")

            sent = self._resolve_quantities(
                transfer, quantities,
                default=lambda item: item.quantity_requested,
                ceiling=lambda item: item.quantity_requested,
                action="deliver",
                guard=DELIVERED_WITHIN_REQUESTED.name,
            )
            if not any(sent.values()):
                raise ValidationError("quantities", "nothing to deliver")

            reference = self._reference(transfer)
            reason = f"Warehouse transfer {transfer.transfer_number} out"
            self._ledger.lock_records(
                (product_id, transfer.source_warehouse_id)
                for product_id, quantity in sent.items() if quantity
            )
            for item in transfer.items:
                quantity = sent[item.product_id]
                item.quantity_delivered = quantity
                item.updated_by_id = actor_id
                if quantity == 0:
                    continue
                self._ledger.reserve(
                    item.product_id, transfer.source_warehouse_id, quantity,
                    actor_id=actor_id, reference=reference, reason=reason,
                )
                self._ledger.commit_shipment(
                    item.product_id, transfer.source_warehouse_id, quantity,
                    actor_id=actor_id, reference=reference, reason=reason,
                )

            if self._config.create_delivery_order:
                delivery = self._delivery.open_for_transfer(
                    transfer.source_warehouse_id,
                    [
                        DeliveryLine(i.product_id, i.quantity_delivered, notes=i.notes)
                        for i in transfer.items if i.quantity_delivered
                    ],
                    actor_id=actor_id,
                    transfer_number=transfer.transfer_number,
                )
                transfer.delivery_order_id = delivery.id

            transfer.status = TransferStatus.IN_TRANSIT.value
            transfer.delivered_by_id = actor_id
            transfer.delivered_at = self._clock.now_utc()
            transfer.updated_by_id = actor_id
            if notes:
                transfer.notes = notes
            self._session.flush()

            logger.info(
                "transfer_delivered",
                extra={
                    "transfer_number": transfer.transfer_number,
                    "quantities": {str(k): v for k, v in sent.items()},
                    "delivery_order_id": (
                        str(transfer.delivery_order_id) if transfer.delivery_order_id else None
                    ),
                },
            )
            result = transfer.to_dto()
        return result

    def receive(
        self,
        transfer_id: UUID,
        *,
        actor_id: UUID,
        quantities: Mapping[UUID, int] | None = None,
        notes: str | None = None,
    ) -> WarehouseTransfer:
        """
        IN_TRANSIT -> RECEIVED.

        ``quantities`` maps product id -> units that arrived (default:
        everything delivered).  Arrivals are booked into the destination as
        TRANSFER movements.  Missing units are kept per line as
        ``shortfall``; the transfer still ends RECEIVED.
        """
        with transaction_boundary(self._session, "transfer.receive", self._auto_commit):
            transfer = load_for_update(self._session, WarehouseTransferModel, transfer_id, _DOCUMENT)
            TRANSFER_WORKFLOW.require(transfer.id, transfer.status, "receive")

            arrived = self._resolve_quantities(
                transfer, quantities,
                default=lambda item: item.quantity_delivered,
                ceiling=lambda item: item.quantity_delivered,
                action="receive",
                guard=RECEIVED_WITHIN_DELIVERED.name,
            )
            shortfall = {
                item.product_id: item.quantity_delivered - arrived[item.product_id]
                for item in transfer.items
            }
            total_shortfall = sum(shortfall.values())
            if total_shortfall:
                if not self._config.allow_partial_receipt:
                    raise ValidationError(
                        "quantities", f"{total_shortfall} unit(s) short; partial receipt is disabled",
                    )
                if self._config.require_notes_on_shortfall and not (notes and notes.strip()):
                    raise ValidationError("notes", "a short receipt needs notes")

            reference = self._reference(transfer)
            reason = f"Warehouse transfer {transfer.transfer_number} in"
            self._ledger.lock_records(
                (product_id, transfer.destination_warehouse_id)
                for product_id, quantity in arrived.items() if quantity
            )
            for item in transfer.items:
                quantity = arrived[item.product_id]
                item.quantity_received = quantity
                item.shortfall = shortfall[item.product_id]
                item.updated_by_id = actor_id
                if quantity == 0:
                    continue
                self._ledger.adjust(
                    item.product_id, transfer.destination_warehouse_id, quantity,
                    actor_id=actor_id, reason=reason, reference=reference,
                    movement_type=MovementType.TRANSFER,
                )

            if transfer.delivery_order_id is not None:
                self._delivery.deliver(
                    transfer.delivery_order_id,
                    actor_id=actor_id,
                    quantities={
                        item.product_id: item.quantity_received
                        for item in transfer.items if item.quantity_delivered
                    },
                )

            transfer.status = TransferStatus.RECEIVED.value
            transfer.received_by_id = actor_id
            transfer.received_at = self._clock.now_utc()
            transfer.updated_by_id = actor_id
            if notes:
                transfer.notes = notes
            self._session.flush()

            if total_shortfall:
                logger.warning(
                    "transfer_received_with_shortfall",
                    extra={
                        "transfer_number": transfer.transfer_number,
                        "total_shortfall": total_shortfall,
                        "shortfall": {str(k): v for k, v in shortfall.items() if v},
                    },
                )
            else:
                logger.info(
                    "transfer_received",
                    extra={"transfer_number": transfer.transfer_number},
                )
            result = transfer.to_dto()
        return result

    def cancel(self, transfer_id: UUID, *, actor_id: UUID, reason: str) -> WarehouseTransfer:
        """REQUESTED or APPROVED -> CANCELLED; an open picking list is cancelled too."""
        reason = require_reason(reason)
        with transaction_boundary(self._session, "transfer.cancel", self._auto_commit):
            transfer = load_for_update(self._session, WarehouseTransferModel, transfer_id, _DOCUMENT)
            TRANSFER_WORKFLOW.require(transfer.id, transfer.status, "cancel")

            if transfer.picking_list_id is not None:
                picking = self._session.get(PickingListModel, transfer.picking_list_id)
                if picking is not None and picking.status in (
                    PickingListStatus.DRAFT.value, PickingListStatus.PICKING.value,
                ):
                    self._picking.cancel(
                        picking.id, actor_id=actor_id,
                        reason=f"Transfer {transfer.transfer_number} cancelled: {reason}",
                    )

            transfer.status = TransferStatus.CANCELLED.value
            transfer.cancelled_by_id = actor_id
            transfer.cancelled_at = self._clock.now_utc()
            transfer.cancel_reason = reason
            transfer.updated_by_id = actor_id
            self._session.flush()

            logger.info(
                "transfer_cancelled",
                extra={"transfer_number": transfer.transfer_number, "reason": reason},
            )
            result = transfer.to_dto()
        return result

    def delete(self, transfer_id: UUID, *, actor_id: UUID) -> None:
        """Hard-delete a transfer that is still REQUESTED."""
        with transaction_boundary(self._session, "transfer.delete", self._auto_commit):
            transfer = load_for_update(self._session, WarehouseTransferModel, transfer_id, _DOCUMENT)
            require_deletable(transfer, _DOCUMENT, transfer.transfer_number)
            number = transfer.transfer_number
            self._session.delete(transfer)
            self._session.flush()
            logger.info(
                "transfer_deleted",
                extra={"transfer_number": number, "actor_id": str(actor_id)},
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, transfer_id: UUID) -> WarehouseTransfer:
        return load(self._session, WarehouseTransferModel, transfer_id, _DOCUMENT).to_dto()

    def statistics(self, warehouse_id: UUID | None = None) -> dict[str, int]:
        """Transfer count per status, optionally for transfers touching one warehouse."""
        query = select(WarehouseTransferModel.status, func.count()).group_by(
            WarehouseTransferModel.status,
        )
        if warehouse_id is not None:
            query = query.where(
                (WarehouseTransferModel.source_warehouse_id == warehouse_id)
                | (WarehouseTransferModel.destination_warehouse_id == warehouse_id)
            )
        counts = {status.value: 0 for status in TransferStatus}
        for status, count in self._session.execute(query):
            counts[status] = count
        counts["total"] = sum(counts.values())
        return counts

    # =========================================================================
    # Internals
    # =========================================================================

    def _reference(self, transfer: WarehouseTransferModel) -> StockReference:
        return StockReference(
            reference_type=self._config.reference_type,
            reference_id=transfer.id,
            reference_number=transfer.transfer_number,
        )

    @staticmethod
    def _resolve_quantities(
        transfer: WarehouseTransferModel,
        quantities: Mapping[UUID, int] | None,
        *,
        default,
        ceiling,
        action: str,
        guard: str,
    ) -> dict[UUID, int]:
        """Per-line quantities for a transition, validated against ``ceiling``."""
        if quantities is None:
            return {item.product_id: default(item) for item in transfer.items}

        unknown = [p for p in quantities if transfer.item_for(p) is None]
        if unknown:
            raise ValidationError(
                "quantities",
                f"product(s) {', '.join(str(p) for p in unknown)} not on "
                f"{transfer.transfer_number}",
            )
        resolved: dict[UUID, int] = {}
        for item in transfer.items:
            quantity = quantities.get(item.product_id, 0)
            if quantity < 0:
                raise ValidationError("quantities", f"must not be negative, got {quantity}")
            if quantity > ceiling(item):
                raise TransitionGuardError(
                    TRANSFER_WORKFLOW.name,
                    str(transfer.id),
                    transfer.status,
                    action,
                    guard,
                )
            resolved[item.product_id] = quantity
        return resolved
