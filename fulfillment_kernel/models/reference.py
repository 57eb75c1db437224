"""
Module: fulfillment_kernel.models.reference
Responsibility: Minimal reference tables the kernel needs as foreign-key
    targets: warehouses (whose code appears in document numbers) and products.
    Their full master-data screens belong to the surrounding application.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/numbering.py only.

Invariants enforced:
    - Warehouse.code is unique and 3-4 uppercase letters; ``GEN`` is reserved.
    - Product.sku is unique.
"""

from __future__ import annotations

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, validates

from fulfillment_kernel.db.base import TrackedBase
from fulfillment_kernel.domain.numbering import validate_warehouse_code


class Warehouse(TrackedBase):
    """A stock-holding location with its own document number sequences."""

    __tablename__ = "warehouses"

    code: Mapped[str] = mapped_column(String(4), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @validates("code")
    def _validate_code(self, key: str, value: str) -> str:
        return validate_warehouse_code(value)

    def __repr__(self) -> str:
        return f"<Warehouse {self.code}>"


class Product(TrackedBase):
    """A stock-keeping unit."""

    __tablename__ = "products"

    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="pcs")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Product {self.sku}>"
