"""
Picking Module Service (``fulfillment_modules.picking.service``).

Responsibility
--------------
Creates picking lists (allocating a PL number for the warehouse), records
picked quantities and drives the list through ``PICKING_LIST_WORKFLOW``.

Invariants
----------
- Each public method owns its transaction boundary unless constructed with
  ``auto_commit=False`` (the transfer service does this to keep the
  picking list in the approval's transaction).
- Status changes go through the workflow table; a repeated transition
  raises ``InvalidTransitionError``.
- Picked quantities never exceed the required quantity.

Failure Modes
-------------
- ``ValidationError`` for empty lines, non-positive or over-picked quantities.
- ``WarehouseNotFoundError`` / ``ProductNotFoundError`` for unknown references.
- ``TransitionGuardError`` when completing a list with unpicked lines.
"""

from __future__ import annotations

from typing import Mapping, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.numbering import DocumentType
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
from fulfillment_modules.picking.models import (
    PickingLine,
    PickingList,
    PickingListStatus,
    item_status_for,
)
from fulfillment_modules.picking.orm import PickingListItemModel, PickingListModel
from fulfillment_modules.picking.workflows import ALL_ITEMS_PICKED, PICKING_LIST_WORKFLOW

logger = get_logger("modules.picking.service")

_DOCUMENT = "PickingList"


class PickingService:
    """
    Orchestrates picking lists.

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
        lines: Sequence[PickingLine],
        *,
        actor_id: UUID,
        source_type: str | None = None,
        source_id: UUID | None = None,
        notes: str | None = None,
    ) -> PickingList:
        """
        Create a DRAFT picking list with a freshly allocated PL number.

        Lines without a bin location take the one assigned to the product's
        stock record in this warehouse.
        """
        require_lines(lines)
        require_unique_products([line.product_id for line in lines])
        for line in lines:
            if line.quantity_required <= 0:
                raise ValidationError(
                    "quantity_required",
                    f"must be positive, got {line.quantity_required}",
                )

        with transaction_boundary(self._session, "picking.create", self._auto_commit):
            if self._session.get(Warehouse, warehouse_id) is None:
                raise WarehouseNotFoundError(str(warehouse_id))

            number = self._sequence.next_number(DocumentType.PICKING_LIST, warehouse_id)
            picking = PickingListModel(
                picking_number=number,
                warehouse_id=warehouse_id,
                status=PICKING_LIST_WORKFLOW.initial_state,
                source_type=source_type,
                source_id=source_id,
                notes=notes,
                created_by_id=actor_id,
            )
            for line_number, line in enumerate(lines, start=1):
                if self._session.get(Product, line.product_id) is None:
                    raise ProductNotFoundError(str(line.product_id))
                bin_location = line.bin_location or self._ledger.get_stock(
                    line.product_id, warehouse_id,
                ).bin_location
                picking.items.append(PickingListItemModel(
                    line_number=line_number,
                    product_id=line.product_id,
                    quantity_required=line.quantity_required,
                    quantity_picked=0,
                    bin_location=bin_location,
                    created_by_id=actor_id,
                ))
            self._session.add(picking)
            self._session.flush()

            with LogContext.bind(document_number=number, actor_id=actor_id):
                logger.info(
                    "picking_list_created",
                    extra={
                        "picking_list_id": str(picking.id),
                        "warehouse_id": str(warehouse_id),
                        "line_count": len(lines),
                        "source_type": source_type,
                    },
                )
            result = picking.to_dto()
        return result

    # =========================================================================
    # Transitions
    # =========================================================================

    def start(self, picking_list_id: UUID, *, actor_id: UUID) -> PickingList:
        """DRAFT -> PICKING; the actor becomes the assignee."""
        with transaction_boundary(self._session, "picking.start", self._auto_commit):
            picking = load_for_update(self._session, PickingListModel, picking_list_id, _DOCUMENT)
            self._start(picking, actor_id)
            result = picking.to_dto()
        return result

    def record_picks(
        self,
        picking_list_id: UUID,
        picks: Mapping[UUID, int],
        *,
        actor_id: UUID,
    ) -> PickingList:
        """
        Add picked quantities (product id -> units picked now).

        A DRAFT list is started implicitly.  When every line is fully
        picked the list completes.
        """
        if not picks:
            raise ValidationError("picks", "at least one product must be picked")

        with transaction_boundary(self._session, "picking.record_picks", self._auto_commit):
            picking = load_for_update(self._session, PickingListModel, picking_list_id, _DOCUMENT)
            if picking.status == PickingListStatus.DRAFT.value:
                self._start(picking, actor_id)
            elif picking.status != PickingListStatus.PICKING.value:
                raise InvalidTransitionError(
                    PICKING_LIST_WORKFLOW.name,
                    str(picking.id),
                    picking.status,
                    "record_picks",
                    reason="picking is closed",
                )

            for product_id, quantity in picks.items():
                item = picking.item_for(product_id)
                if item is None:
                    raise ValidationError(
                        "picks", f"product {product_id} is not on {picking.picking_number}",
                    )
                if quantity <= 0:
                    raise ValidationError("quantity_picked", f"must be positive, got {quantity}")
                picked = item.quantity_picked + quantity
                if picked > item.quantity_required:
                    raise ValidationError(
                        "quantity_picked",
                        f"{picked} exceeds required {item.quantity_required} "
                        f"for product {product_id}",
                    )
                item.quantity_picked = picked
                item.status = item_status_for(picked, item.quantity_required).value
                item.updated_by_id = actor_id

            logger.info(
                "picking_quantities_recorded",
                extra={
                    "picking_number": picking.picking_number,
                    "picks": {str(k): v for k, v in picks.items()},
                },
            )
            if all(i.quantity_picked == i.quantity_required for i in picking.items):
                self._complete(picking, actor_id)
            self._session.flush()
            result = picking.to_dto()
        return result

    def complete(self, picking_list_id: UUID, *, actor_id: UUID) -> PickingList:
        """PICKING -> COMPLETED; every line must be fully picked."""
        with transaction_boundary(self._session, "picking.complete", self._auto_commit):
            picking = load_for_update(self._session, PickingListModel, picking_list_id, _DOCUMENT)
            self._complete(picking, actor_id)
            result = picking.to_dto()
        return result

    def cancel(self, picking_list_id: UUID, *, actor_id: UUID, reason: str) -> PickingList:
        reason = require_reason(reason)
        with transaction_boundary(self._session, "picking.cancel", self._auto_commit):
            picking = load_for_update(self._session, PickingListModel, picking_list_id, _DOCUMENT)
            PICKING_LIST_WORKFLOW.require(picking.id, picking.status, "cancel")
            picking.status = PickingListStatus.CANCELLED.value
            picking.cancelled_at = self._clock.now_utc()
            picking.cancel_reason = reason
            picking.updated_by_id = actor_id
            self._session.flush()
            logger.info(
                "picking_list_cancelled",
                extra={"picking_number": picking.picking_number, "reason": reason},
            )
            result = picking.to_dto()
        return result

    def delete(self, picking_list_id: UUID, *, actor_id: UUID) -> None:
        """Hard-delete a DRAFT list."""
        with transaction_boundary(self._session, "picking.delete", self._auto_commit):
            picking = load_for_update(self._session, PickingListModel, picking_list_id, _DOCUMENT)
            require_deletable(picking, _DOCUMENT, picking.picking_number)
            number = picking.picking_number
            self._session.delete(picking)
            self._session.flush()
            logger.info(
                "picking_list_deleted",
                extra={"picking_number": number, "actor_id": str(actor_id)},
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, picking_list_id: UUID) -> PickingList:
        return load(self._session, PickingListModel, picking_list_id, _DOCUMENT).to_dto()

    # =========================================================================
    # Internals
    # =========================================================================

    def _start(self, picking: PickingListModel, actor_id: UUID) -> None:
        PICKING_LIST_WORKFLOW.require(picking.id, picking.status, "start")
        picking.status = PickingListStatus.PICKING.value
        picking.assigned_to_id = actor_id
        picking.updated_by_id = actor_id
        logger.info(
            "picking_list_started",
            extra={"picking_number": picking.picking_number},
        )

    def _complete(self, picking: PickingListModel, actor_id: UUID) -> None:
        PICKING_LIST_WORKFLOW.require(picking.id, picking.status, "complete")
        if any(i.quantity_picked < i.quantity_required for i in picking.items):
            raise TransitionGuardError(
                PICKING_LIST_WORKFLOW.name,
                str(picking.id),
                picking.status,
                "complete",
                ALL_ITEMS_PICKED.name,
            )
        picking.status = PickingListStatus.COMPLETED.value
        picking.completed_at = self._clock.now_utc()
        picking.updated_by_id = actor_id
        self._session.flush()
        logger.info(
            "picking_list_completed",
            extra={"picking_number": picking.picking_number},
        )
