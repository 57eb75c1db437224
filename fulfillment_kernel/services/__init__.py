"""Services for the fulfillment kernel (write side)."""

from fulfillment_kernel.services.approval_service import ApprovalService
from fulfillment_kernel.services.sequence_service import SequenceService
from fulfillment_kernel.services.stock_ledger import StockLedgerService

__all__ = [
    "ApprovalService",
    "SequenceService",
    "StockLedgerService",
]
