"""
Active Order Snapshot Model.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ActiveOrderSnapshot(Base):
    """
    Durable copy of the in-progress order of one table ("venta activa").

    One row per table at most. The row is written together with the table
    status and deleted when the order is finalized or canceled.
    """

    __tablename__ = "active_order_snapshot"

    table_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    order_id: Mapped[str] = mapped_column(Text, nullable=False)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    line_items: Mapped[str] = mapped_column(Text, nullable=False, default="[]")  # JSON array
    subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    origin: Mapped[Optional[str]] = mapped_column(Text)
    waiter: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<ActiveOrderSnapshot(table_id={self.table_id}, revision={self.revision})>"
