"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The stock ledger is only trustworthy if its movement trail is complete:
every StockRecord must be reproducible by folding its movements from zero.
That breaks the moment a movement is edited or deleted, or a document that
caused movements disappears.  Likewise a decided approval level is the
record of who signed off on what; it must not be rewritten afterwards.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_flush]  --> _check_document_deletion_before_flush() --+
         |                                                        |
    [before_update] --> _check_*_immutability() ------------------+--> error
         |                                                        |
    [before_delete] --> _check_*_delete() ------------------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable                        | Why
------------------|---------------------------------------|------------------------------
StockMovement     | ALWAYS (from creation)                | Ledger trail is append-only
ProductStock      | Never deletable once it has movements | Movements reference it
ApprovalModel     | After status leaves PENDING           | Decision record
Documents*        | Not deletable outside their initial   | Stock effects must stay
                  | status, or once movements cite them   | attributable

* Any model declaring a ``deletable_statuses`` class attribute (picking
  lists, warehouse transfers, delivery orders).

===============================================================================
USAGE
===============================================================================

    from fulfillment_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup, idempotent

    # TESTS ONLY
    unregister_immutability_listeners()
"""

from sqlalchemy import event, exists, inspect, select
from sqlalchemy.orm import Session

from fulfillment_kernel.exceptions import (
    DocumentDeletionError,
    ImmutabilityViolationError,
)
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_registered = False


def _check_stock_movement_immutability(mapper, connection, target):
    raise ImmutabilityViolationError(
        "StockMovement", str(target.id), "stock movements are append-only",
    )


def _check_stock_movement_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        "StockMovement", str(target.id), "stock movements cannot be deleted",
    )


def _check_product_stock_delete(mapper, connection, target):
    if target.version:
        raise DocumentDeletionError(
            "ProductStock",
            str(target.id),
            f"{target.version} movement(s) reference this record",
        )


def _check_approval_immutability(mapper, connection, target):
    from fulfillment_kernel.domain.approval import ApprovalStatus

    history = inspect(target).attrs.status.history
    previous = history.deleted[0] if history.deleted else target.status
    if previous != ApprovalStatus.PENDING.value:
        raise ImmutabilityViolationError(
            "Approval",
            str(target.id),
            f"level already decided ({previous})",
        )


def _check_approval_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        "Approval", str(target.id), "approval rows cannot be deleted",
    )


def _check_document_deletion_before_flush(session, flush_context, instances):
    """
    Refuse to delete documents that left their initial status or moved stock.

    Runs in SessionEvents.before_flush, before the flush plan is finalized.
    """
    from fulfillment_kernel.models.stock import StockMovement

    for obj in list(session.deleted):
        deletable = getattr(type(obj), "deletable_statuses", None)
        if deletable is None:
            continue

        history = inspect(obj).attrs.status.history
        status = history.deleted[0] if history.deleted else obj.status
        if status not in deletable:
            raise DocumentDeletionError(
                type(obj).__name__,
                str(obj.id),
                f"status {status} is past its initial state",
            )

        with session.no_autoflush:
            referenced = session.execute(
                select(exists().where(StockMovement.reference_id == obj.id))
            ).scalar()
        if referenced:
            raise DocumentDeletionError(
                type(obj).__name__,
                str(obj.id),
                "stock movements reference this document",
            )


def _listener_table():
    from fulfillment_kernel.models.approval import ApprovalModel
    from fulfillment_kernel.models.stock import ProductStock, StockMovement

    return (
        (StockMovement, "before_update", _check_stock_movement_immutability),
        (StockMovement, "before_delete", _check_stock_movement_delete),
        (ProductStock, "before_delete", _check_product_stock_delete),
        (ApprovalModel, "before_update", _check_approval_immutability),
        (ApprovalModel, "before_delete", _check_approval_delete),
        (Session, "before_flush", _check_document_deletion_before_flush),
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    global _registered
    if _registered:
        return
    for target, identifier, fn in _listener_table():
        if not event.contains(target, identifier, fn):
            event.listen(target, identifier, fn)
    _registered = True
    logger.info("immutability_listeners_registered")


def unregister_immutability_listeners() -> None:
    """Remove all immutability listeners. FOR TESTING ONLY."""
    global _registered
    for target, identifier, fn in _listener_table():
        if event.contains(target, identifier, fn):
            event.remove(target, identifier, fn)
    _registered = False
    logger.info("immutability_listeners_unregistered")
