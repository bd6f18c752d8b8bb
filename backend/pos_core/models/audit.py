"""
Audit Log Model.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import BigInteger, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import AuditMixin, Base, BigIntId


class AuditLog(AuditMixin, Base):
    """
    Records overrides, cancellations and operator actions on tables.
    Inherits: is_active, created_at, updated_at, deleted_at from AuditMixin.
    """

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    table_id: Mapped[Optional[int]] = mapped_column(BigInteger, index=True)  # NULL for floor-wide actions
    order_id: Mapped[Optional[str]] = mapped_column(Text)
    action: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    origin: Mapped[Optional[str]] = mapped_column(Text)  # Device/tab or operator
    details: Mapped[Optional[str]] = mapped_column(Text)  # JSON

    __table_args__ = (
        Index("ix_audit_log_table_action", "table_id", "action"),
    )
