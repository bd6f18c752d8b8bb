"""
Table Repository - Data access for restaurant tables.

The engine reads every table column but only ever writes ``status``.
"""

from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from pos_shared.config.constants import TableState
from pos_core.models import Table


class TableRepository:
    """Repository for Table entities."""

    def __init__(self, db: Session):
        self._db = db

    def get(self, table_id: int) -> Table | None:
        """Get a table by id, active or not."""
        return self._db.get(Table, table_id)

    def list_all(self, include_inactive: bool = True) -> Sequence[Table]:
        """List tables ordered by their display number."""
        query = select(Table).order_by(Table.number, Table.id)
        if not include_inactive:
            query = query.where(Table.is_active.is_(True))
        return self._db.scalars(query).all()

    def set_status(self, table_id: int, state: TableState) -> None:
        """Write the occupancy state of one table."""
        self._db.execute(
            update(Table).where(Table.id == table_id).values(status=state.value)
        )

    def reset_all_status(self, state: TableState = TableState.LIBRE) -> int:
        """Write the same state on every table. Returns rows updated."""
        result = self._db.execute(update(Table).values(status=state.value))
        return result.rowcount or 0
