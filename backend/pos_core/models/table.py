"""
Table Model.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import BigInteger, Float, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from pos_shared.config.constants import TableShape, TableState

from .base import AuditMixin, Base, BigIntId


class Table(AuditMixin, Base):
    """
    Physical table on the floor plan ("mesa").

    Geometry and capacity belong to the table CRUD; the engine only writes
    ``status``, and only through the table state machine.
    Inherits: is_active, created_at, updated_at, deleted_at from AuditMixin.
    """

    # "table" is a reserved SQL keyword
    __tablename__ = "restaurant_table"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    number: Mapped[int] = mapped_column(Integer, nullable=False)  # Number painted on the table
    capacity: Mapped[int] = mapped_column(Integer, default=4)
    shape: Mapped[str] = mapped_column(Text, default=TableShape.SQUARE.value)
    pos_x: Mapped[float] = mapped_column(Float, default=0.0)
    pos_y: Mapped[float] = mapped_column(Float, default=0.0)
    size: Mapped[float] = mapped_column(Float, default=1.0)
    sector_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        Text, default=TableState.LIBRE.value, nullable=False, index=True
    )

    __table_args__ = (
        Index("ix_restaurant_table_number", "number"),
    )
