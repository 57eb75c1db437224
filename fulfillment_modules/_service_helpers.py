"""
Shared plumbing for the module services.

Transaction boundary, locked document loads, the delete guard, and
the small input checks every document service repeats.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment_kernel.db.unit_of_work import unit_of_work
from fulfillment_kernel.exceptions import (
    DocumentDeletionError,
    DocumentNotFoundError,
    ValidationError,
)

M = TypeVar("M")


@contextmanager
def transaction_boundary(
    session: Session,
    operation: str,
    auto_commit: bool,
) -> Generator[Session, None, None]:
    """
    Own the commit when ``auto_commit`` is set; otherwise leave it to the caller.

    With ``auto_commit=False`` the block only flushes, so a caller composing
    several services keeps everything in one transaction.
    """
    if auto_commit:
        with unit_of_work(session, operation):
            yield session
    else:
        yield session
        session.flush()


def load_for_update(
    session: Session,
    model: type[M],
    document_id: UUID,
    document_type: str,
) -> M:
    """Load a document row under ``SELECT ... FOR UPDATE`` or raise not-found."""
    row = session.execute(
        select(model)
        .where(model.id == document_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if row is None:
        raise DocumentNotFoundError(document_type, str(document_id))
    return row


def load(session: Session, model: type[M], document_id: UUID, document_type: str) -> M:
    row = session.get(model, document_id)
    if row is None:
        raise DocumentNotFoundError(document_type, str(document_id))
    return row


def require_reason(reason: str | None, field: str = "reason") -> str:
    if reason is None or not reason.strip():
        raise ValidationError(field, "a non-empty reason is required")
    return reason.strip()


def require_unique_products(product_ids: list[UUID]) -> None:
    seen: set[UUID] = set()
    for product_id in product_ids:
        if product_id in seen:
            raise ValidationError(
                "items", f"product {product_id} appears on more than one line",
            )
        seen.add(product_id)


def require_lines(lines) -> None:
    if not lines:
        raise ValidationError("items", "at least one line is required")


def require_deletable(document, document_type: str, number: str) -> None:
    """Refuse a hard delete once the document has left its initial status."""
    if document.status not in type(document).deletable_statuses:
        raise DocumentDeletionError(
            document_type,
            number,
            f"status {document.status} is past its initial state",
        )
