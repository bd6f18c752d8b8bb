"""
Printer Destination Model ("comandera").
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import BigInteger, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import AuditMixin, Base, BigIntId


class PrinterDestination(AuditMixin, Base):
    """
    A kitchen/bar/dessert printer that receives routed tickets.

    ``sector_id`` is the routing context; NULL means the house-wide default.
    Priority 1 is the primary printer of its context.
    Inherits: is_active, created_at, updated_at, deleted_at from AuditMixin.
    """

    __tablename__ = "printer_destination"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False, index=True)  # COCINA, BAR, POSTRES
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    sector_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True, index=True)

    __table_args__ = (
        UniqueConstraint("sector_id", "priority", name="uq_printer_context_priority"),
    )
