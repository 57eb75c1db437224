"""
Pure domain layer.

Value objects and pure functions with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (except the injected Clock abstraction)
- I/O
"""

from fulfillment_kernel.domain.actor import Actor
from fulfillment_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from fulfillment_kernel.domain.numbering import (
    DocumentType,
    format_document_number,
    parse_document_number,
)
from fulfillment_kernel.domain.stock import (
    MovementType,
    StockLevels,
    StockSnapshot,
    fold_movements,
)
from fulfillment_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "Actor",
    "Clock",
    "DeterministicClock",
    "DocumentType",
    "Guard",
    "MovementType",
    "StockLevels",
    "StockSnapshot",
    "SystemClock",
    "Transition",
    "Workflow",
    "fold_movements",
    "format_document_number",
    "parse_document_number",
]
