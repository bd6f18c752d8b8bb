"""
Product Model (read-only view used by the catalog collaborator).
"""

from __future__ import annotations

from sqlalchemy import Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from pos_shared.config.constants import PrinterCategory

from .base import AuditMixin, Base, BigIntId


class Product(AuditMixin, Base):
    """
    Sellable product. ``category`` is the preparation area whose printer
    receives the product on kitchen tickets.
    Inherits: is_active, created_at, updated_at, deleted_at from AuditMixin.
    """

    __tablename__ = "product"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    category: Mapped[str] = mapped_column(
        Text, nullable=False, default=PrinterCategory.KITCHEN.value
    )
