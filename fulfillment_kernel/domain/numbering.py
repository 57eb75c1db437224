"""
Document numbering (``fulfillment_kernel.domain.numbering``).

Responsibility
--------------
Pure formatting and parsing of human-readable document numbers::

    {PREFIX}-{SEQ:03d}/{WAREHOUSE_CODE|GEN}/{MM-YYYY}
    PQ-001/JKT/11-2025

Architecture position
---------------------
**Kernel domain layer** -- pure functions.  ZERO I/O.  The counter that
feeds ``sequence`` lives in ``services/sequence_service.py``.

Invariants enforced
-------------------
* The prefix is exactly two uppercase letters, mapped 1:1 from a document type.
* Warehouse codes are 3-4 uppercase letters; ``GEN`` is a reserved sentinel
  for documents without a warehouse and is never a real warehouse code.
* The sequence is zero-padded to at least three digits.  Past 999 it widens
  (``PQ-1000/JKT/11-2025``) rather than wrapping, so numbers stay unique.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from fulfillment_kernel.exceptions import (
    InvalidDocumentNumberError,
    UnknownDocumentTypeError,
    ValidationError,
)

GENERAL_CODE = "GEN"
SEQUENCE_WIDTH = 3

_DOCUMENT_NUMBER_RE = re.compile(
    r"^(?P<prefix>[A-Z]{2})-(?P<sequence>\d{3,})/"
    r"(?P<warehouse>[A-Z]{3,4})/(?P<month>\d{2})-(?P<year>\d{4})$"
)
_WAREHOUSE_CODE_RE = re.compile(r"^[A-Z]{3,4}$")
_PREFIX_RE = re.compile(r"^[A-Z]{2}$")


class DocumentType(str, Enum):
    """Business documents that receive a number."""

    QUOTATION = "QUOTATION"
    SALES_ORDER = "SALES_ORDER"
    DELIVERY_ORDER = "DELIVERY_ORDER"
    INVOICE = "INVOICE"
    PICKING_LIST = "PICKING_LIST"
    PURCHASE_ORDER = "PURCHASE_ORDER"
    GOODS_RECEIPT = "GOODS_RECEIPT"
    WAREHOUSE_TRANSFER = "WAREHOUSE_TRANSFER"


DEFAULT_PREFIXES: dict[str, str] = {
    DocumentType.QUOTATION.value: "PQ",
    DocumentType.SALES_ORDER.value: "SO",
    DocumentType.DELIVERY_ORDER.value: "DO",
    DocumentType.INVOICE.value: "PI",
    DocumentType.PICKING_LIST.value: "PL",
    DocumentType.PURCHASE_ORDER.value: "PO",
    DocumentType.GOODS_RECEIPT.value: "GR",
    DocumentType.WAREHOUSE_TRANSFER.value: "WT",
}


@dataclass(frozen=True)
class ParsedDocumentNumber:
    """The components of a canonical document number."""

    prefix: str
    sequence: int
    warehouse_code: str
    month: int
    year: int

    @property
    def year_month(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def is_general(self) -> bool:
        return self.warehouse_code == GENERAL_CODE


def document_type_key(document_type: DocumentType | str) -> str:
    """Normalize an enum member or a raw string to the registry key."""
    if isinstance(document_type, DocumentType):
        return document_type.value
    return str(document_type).strip().upper()


def prefix_for(
    document_type: DocumentType | str,
    prefixes: dict[str, str] | None = None,
) -> str:
    """Look up the prefix for ``document_type`` or raise UnknownDocumentTypeError."""
    key = document_type_key(document_type)
    table = DEFAULT_PREFIXES if prefixes is None else prefixes
    try:
        return table[key]
    except KeyError:
        raise UnknownDocumentTypeError(key) from None


def year_month_key(moment: datetime) -> str:
    """Counter partition key for ``moment``: ``YYYY-MM``."""
    return f"{moment.year:04d}-{moment.month:02d}"


def validate_warehouse_code(code: str) -> str:
    """Return ``code`` if it is a usable warehouse code."""
    if not isinstance(code, str) or not _WAREHOUSE_CODE_RE.match(code):
        raise ValidationError(
            "warehouse_code", f"'{code}' must be 3-4 uppercase letters",
        )
    if code == GENERAL_CODE:
        raise ValidationError(
            "warehouse_code", f"'{GENERAL_CODE}' is reserved for general documents",
        )
    return code


def validate_prefix(prefix: str) -> str:
    if not isinstance(prefix, str) or not _PREFIX_RE.match(prefix):
        raise ValidationError("prefix", f"'{prefix}' must be two uppercase letters")
    return prefix


def format_document_number(
    prefix: str,
    sequence: int,
    warehouse_code: str | None,
    year_month: str,
) -> str:
    """
    Render the canonical document number.

    Args:
        prefix: Two-letter document prefix (e.g. ``PQ``).
        sequence: Allocated counter value (>= 1).
        warehouse_code: Warehouse code, or None for the ``GEN`` fallback.
        year_month: Counter period as ``YYYY-MM``.
    """
    validate_prefix(prefix)
    if sequence < 1:
        raise ValidationError("sequence", f"must be >= 1, got {sequence}")
    code = GENERAL_CODE if warehouse_code is None else warehouse_code
    year, month = year_month.split("-")
    return f"{prefix}-{sequence:0{SEQUENCE_WIDTH}d}/{code}/{month}-{year}"


def parse_document_number(document_number: str) -> ParsedDocumentNumber:
    """Split a document number into its components."""
    match = _DOCUMENT_NUMBER_RE.match(document_number or "")
    if match is None:
        raise InvalidDocumentNumberError(document_number)
    month = int(match.group("month"))
    if not 1 <= month <= 12:
        raise InvalidDocumentNumberError(document_number)
    return ParsedDocumentNumber(
        prefix=match.group("prefix"),
        sequence=int(match.group("sequence")),
        warehouse_code=match.group("warehouse"),
        month=month,
        year=int(match.group("year")),
    )


def is_valid_document_number(document_number: str) -> bool:
    try:
        parse_document_number(document_number)
    except InvalidDocumentNumberError:
        return False
    return True
