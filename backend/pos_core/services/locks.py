"""
Lock Manager for the active order store.

One lock per table id so mutations on different tables never block each
other.

LOCK ORDERING CONSTRAINTS:
==========================
The _meta_lock only guards the lock dictionary and is never held while a
table lock is being acquired. Operations that need several tables (transfer,
reset) go through hold_many(), which acquires table locks in ascending id
order. Acquiring two table locks by hand in any other order can deadlock.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager

from pos_shared.config.logging import get_logger

logger = get_logger(__name__)


class TableLockManager:
    """
    Manages per-table locks.

    Locks are created lazily and kept for the life of the process; the
    number of tables in a dining room is small and bounded.
    """

    def __init__(self) -> None:
        self._table_locks: dict[int, threading.Lock] = {}
        self._meta_lock = threading.Lock()

    @property
    def lock_count(self) -> int:
        """Number of table locks currently cached."""
        return len(self._table_locks)

    def get_table_lock(self, table_id: int) -> threading.Lock:
        """Get or create the lock for a table."""
        with self._meta_lock:
            lock = self._table_locks.get(table_id)
            if lock is None:
                lock = threading.Lock()
                self._table_locks[table_id] = lock
            return lock

    @contextmanager
    def hold(self, table_id: int) -> Iterator[None]:
        """Hold the lock of one table."""
        with self.get_table_lock(table_id):
            yield

    @contextmanager
    def hold_many(self, *table_ids: int) -> Iterator[None]:
        """Hold the locks of several tables, acquired in ascending id order."""
        with ExitStack() as stack:
            for table_id in sorted(set(table_ids)):
                stack.enter_context(self.get_table_lock(table_id))
            yield
