"""
SequenceService -- document number allocation via locked counter rows.

Responsibility:
    Hands out the next integer of a (document type, warehouse, year-month)
    sequence and renders it as a document number such as
    ``PQ-001/JKT/11-2025``.  Each warehouse and each calendar month has an
    independent sequence starting at 1; documents without a warehouse share
    the ``GEN`` partition.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by the picking, transfer and delivery module services, and by
    the surrounding application for quotations, orders and invoices.

Invariants enforced:
    - Uniqueness: ``SELECT ... FOR UPDATE`` on the counter row serializes
      concurrent allocations for the same key.  The aggregate-max-plus-one
      anti-pattern is never used -- the locked counter row is the sole
      source of truth for the next value.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  Rollback returns the value, so committed
      numbers stay gap-free.
    - Monthly reset by key rollover: a new year-month is a new row.

Failure modes:
    - UnknownDocumentTypeError when no prefix is configured for the type.
    - WarehouseNotFoundError for an unknown warehouse id.
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).
    - Lock wait timeout: surfaces from the unit of work as ContentionError.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.numbering import (
    GENERAL_CODE,
    DocumentType,
    document_type_key,
    format_document_number,
    prefix_for,
    year_month_key,
)
from fulfillment_kernel.exceptions import WarehouseNotFoundError
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.reference import Warehouse
from fulfillment_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")

_DISPLAY_LIMIT = 999


class SequenceService:
    """
    Service for allocating document numbers.

    Contract:
        ``next_number(document_type, warehouse_id)`` returns the next
        canonical document number for the current month.  The increment is
        transactional -- it is only committed when the caller's transaction
        commits.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.

    Usage:
        with session_scope() as session:
            number = SequenceService(session, clock).next_number(
                DocumentType.QUOTATION, warehouse_id,
            )
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        prefixes: dict[str, str] | None = None,
        timezone: str | None = None,
    ):
        """
        Args:
            session: SQLAlchemy session (should be in a transaction).
            clock: Source of "now" for the year-month partition.
            prefixes: Document type -> prefix map (defaults to the built-in map).
            timezone: IANA zone in which the month boundary is evaluated;
                UTC when omitted.
        """
        self._session = session
        self._clock = clock or SystemClock()
        self._prefixes = prefixes
        self._tz = ZoneInfo(timezone) if timezone else None

    def current_period(self) -> str:
        """The ``YYYY-MM`` key allocations made now would use."""
        now: datetime = self._clock.now_utc()
        if self._tz is not None:
            now = now.astimezone(self._tz)
        return year_month_key(now)

    def next_number(
        self,
        document_type: DocumentType | str,
        warehouse_id: UUID | None = None,
    ) -> str:
        """
        Allocate and format the next document number.

        Postconditions:
            - The returned number has never been returned before for this
              (document type, warehouse, month) within committed work.
        """
        key = document_type_key(document_type)
        prefix = prefix_for(key, self._prefixes)
        warehouse_code = self._warehouse_code(warehouse_id)
        year_month = self.current_period()

        value = self._allocate(key, prefix, warehouse_id, year_month)
        number = format_document_number(prefix, value, warehouse_code, year_month)

        logger.info(
            "document_number_allocated",
            extra={
                "document_type": key,
                "warehouse_code": warehouse_code or GENERAL_CODE,
                "year_month": year_month,
                "sequence": value,
                "document_number": number,
            },
        )
        return number

    def next_value(
        self,
        document_type: DocumentType | str,
        warehouse_id: UUID | None = None,
        year_month: str | None = None,
    ) -> int:
        """Allocate the next raw counter value without formatting it."""
        key = document_type_key(document_type)
        prefix = prefix_for(key, self._prefixes)
        if warehouse_id is not None:
            self._warehouse_code(warehouse_id)
        return self._allocate(
            key, prefix, warehouse_id, year_month or self.current_period(),
        )

    def current_value(
        self,
        document_type: DocumentType | str,
        warehouse_id: UUID | None = None,
        year_month: str | None = None,
    ) -> int | None:
        """
        Last value handed out for the key, without incrementing.

        Returns:
            The last allocated value, or None if the key has no counter yet.
        """
        counter = self._session.execute(
            self._counter_query(
                document_type_key(document_type),
                warehouse_id,
                year_month or self.current_period(),
            )
        ).scalar_one_or_none()
        return None if counter is None else counter.next_value - 1

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _scope_key(warehouse_id: UUID | None) -> str:
        return GENERAL_CODE if warehouse_id is None else str(warehouse_id)

    def _counter_query(self, document_type: str, warehouse_id, year_month: str):
        return select(SequenceCounter).where(
            SequenceCounter.document_type == document_type,
            SequenceCounter.scope_key == self._scope_key(warehouse_id),
            SequenceCounter.year_month == year_month,
        )

    def _warehouse_code(self, warehouse_id: UUID | None) -> str | None:
        if warehouse_id is None:
            return None
        warehouse = self._session.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise WarehouseNotFoundError(str(warehouse_id))
        return warehouse.code

    def _lock_counter(
        self, document_type: str, warehouse_id, year_month: str,
    ) -> SequenceCounter | None:
        return self._session.execute(
            self._counter_query(document_type, warehouse_id, year_month)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _allocate(
        self,
        document_type: str,
        prefix: str,
        warehouse_id: UUID | None,
        year_month: str,
    ) -> int:
        # Row lock serializes concurrent allocations for the same key
        counter = self._lock_counter(document_type, warehouse_id, year_month)

        if counter is None:
            # First use of this key this month.  Another transaction may be
            # creating it too; a savepoint keeps the caller's work intact.
            now = self._clock.now_utc()
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(
                    document_type=document_type,
                    warehouse_id=warehouse_id,
                    scope_key=self._scope_key(warehouse_id),
                    year_month=year_month,
                    prefix=prefix,
                    next_value=1,
                    created_at=now,
                    updated_at=now,
                )
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_counter_created",
                    extra={
                        "document_type": document_type,
                        "scope_key": counter.scope_key,
                        "year_month": year_month,
                    },
                )
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"document_type": document_type, "year_month": year_month},
                )
                savepoint.rollback()
                counter = self._lock_counter(document_type, warehouse_id, year_month)
                if counter is None:
                    raise

        value = counter.next_value
        counter.next_value = value + 1
        counter.updated_at = self._clock.now_utc()
        self._session.flush()

        if value > _DISPLAY_LIMIT:
            logger.warning(
                "sequence_exceeds_display_width",
                extra={
                    "document_type": document_type,
                    "scope_key": counter.scope_key,
                    "year_month": year_month,
                    "sequence": value,
                },
            )
        logger.debug(
            "sequence_allocated",
            extra={"document_type": document_type, "value": value},
        )
        return value
