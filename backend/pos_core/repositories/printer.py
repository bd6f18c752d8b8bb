"""
Printer Destination Repository - read-only access to configured printers.
"""

from typing import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from pos_core.models import PrinterDestination


class PrinterRepository:
    """Repository for PrinterDestination entities."""

    def __init__(self, db: Session):
        self._db = db

    def list_all(self) -> Sequence[PrinterDestination]:
        """All printers, active or not, ordered by context and priority."""
        return self._db.scalars(
            select(PrinterDestination).order_by(
                PrinterDestination.sector_id,
                PrinterDestination.priority,
                PrinterDestination.id,
            )
        ).all()
