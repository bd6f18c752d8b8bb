"""
Repository layer for data access.
Each repository wraps a SQLAlchemy session; callers own the transaction.
"""

from .table import TableRepository
from .snapshot import SnapshotRepository, snapshot_from_row
from .printer import PrinterRepository

__all__ = [
    "TableRepository",
    "SnapshotRepository",
    "snapshot_from_row",
    "PrinterRepository",
]
