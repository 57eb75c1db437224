"""ORM models for the fulfillment kernel."""

from fulfillment_kernel.models.approval import (
    ApprovalLevelModel,
    ApprovalModel,
    ApprovalRuleLevelModel,
    ApprovalRuleModel,
)
from fulfillment_kernel.models.reference import Product, Warehouse
from fulfillment_kernel.models.sequence import SequenceCounter
from fulfillment_kernel.models.stock import ProductStock, StockMovement

__all__ = [
    "ApprovalLevelModel",
    "ApprovalModel",
    "ApprovalRuleLevelModel",
    "ApprovalRuleModel",
    "Product",
    "ProductStock",
    "SequenceCounter",
    "StockMovement",
    "Warehouse",
]
