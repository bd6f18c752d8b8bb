"""
Table Registry.

Holds the in-memory TableAggregate of every known table. Table metadata
(number, geometry, capacity, sector, active flag) comes from the table
CRUD through TableRepository; occupancy state and the active order are
owned by the store and restored by reconciliation.
"""

from __future__ import annotations

import threading

from sqlalchemy.orm import Session, sessionmaker

from pos_shared.config.logging import get_logger
from pos_shared.infrastructure.db import get_session_factory, session_scope
from pos_shared.utils.exceptions import NotFoundError, TableUnavailableError
from pos_shared.config.constants import TableState
from pos_core.repositories import TableRepository
from .order_aggregate import TableAggregate

logger = get_logger(__name__)


class TableRegistry:
    """
    Map of table id to TableAggregate.

    The internal lock only protects the dictionary itself. Mutating an
    aggregate requires the table lock from TableLockManager.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self._session_factory = session_factory or get_session_factory()
        self._tables: dict[int, TableAggregate] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._tables)

    def __contains__(self, table_id: int) -> bool:
        return table_id in self._tables

    def find(self, table_id: int) -> TableAggregate | None:
        with self._lock:
            return self._tables.get(table_id)

    def get(self, table_id: int) -> TableAggregate:
        """
        Get the aggregate of a table.

        Raises:
            NotFoundError: If the table is unknown.
        """
        aggregate = self.find(table_id)
        if aggregate is None:
            raise NotFoundError("Mesa", table_id)
        return aggregate

    def require_available(self, table_id: int) -> TableAggregate:
        """
        Get a table that can take orders.

        Raises:
            NotFoundError: If the table is unknown.
            TableUnavailableError: If it is deactivated or out of service.
        """
        aggregate = self.get(table_id)
        if not aggregate.is_active:
            raise TableUnavailableError(table_id, "mesa desactivada")
        if aggregate.state == TableState.FUERA_DE_SERVICIO:
            raise TableUnavailableError(table_id, "mesa fuera de servicio")
        return aggregate

    def all(self) -> list[TableAggregate]:
        """Every aggregate, ordered by table number."""
        with self._lock:
            tables = list(self._tables.values())
        return sorted(tables, key=lambda t: (t.number, t.table_id))

    def put(self, aggregate: TableAggregate) -> None:
        with self._lock:
            self._tables[aggregate.table_id] = aggregate

    def remove(self, table_id: int) -> None:
        with self._lock:
            self._tables.pop(table_id, None)

    def replace_all(self, aggregates: list[TableAggregate]) -> None:
        """Swap the whole registry (used by recovery)."""
        with self._lock:
            self._tables = {a.table_id: a for a in aggregates}

    def refresh(self, table_id: int) -> TableAggregate | None:
        """
        Re-read CRUD-owned columns of one table.

        Call after the table CRUD creates, edits or deactivates a table. An
        existing aggregate keeps its state and order. Returns None if the
        table no longer exists.
        """
        with session_scope(self._session_factory) as db:
            table = TableRepository(db).get(table_id)
            if table is None:
                self.remove(table_id)
                logger.warning("Table vanished from persistence", table_id=table_id)
                return None

            aggregate = self.find(table_id)
            if aggregate is None:
                aggregate = TableAggregate.from_model(table)
                self.put(aggregate)
                logger.info("Table registered", table_id=table_id, number=table.number)
            else:
                aggregate.apply_model(table)
            return aggregate
