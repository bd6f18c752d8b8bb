"""
Active Order Snapshot Repository.

Snapshots are keyed by table id; a save replaces the previous row only when
the incoming revision is not older (last write wins per revision).
"""

from typing import Sequence

from pydantic import TypeAdapter
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from pos_shared.config.logging import get_logger
from pos_core.models import ActiveOrderSnapshot
from pos_core.schemas import LineItemOutput, OrderSnapshot

logger = get_logger(__name__)

_line_items_adapter = TypeAdapter(list[LineItemOutput])


def snapshot_from_row(row: ActiveOrderSnapshot) -> OrderSnapshot:
    """
    Parse a snapshot row.

    Raises pydantic.ValidationError if the stored line items are corrupt.
    """
    return OrderSnapshot(
        table_id=row.table_id,
        order_id=row.order_id,
        revision=row.revision,
        line_items=_line_items_adapter.validate_json(row.line_items or "[]"),
        subtotal_cents=row.subtotal_cents,
        created_at=row.created_at,
        updated_at=row.updated_at,
        origin=row.origin,
        waiter=row.waiter,
    )


class SnapshotRepository:
    """Repository for ActiveOrderSnapshot rows."""

    def __init__(self, db: Session):
        self._db = db

    def get_row(self, table_id: int) -> ActiveOrderSnapshot | None:
        return self._db.get(ActiveOrderSnapshot, table_id)

    def get(self, table_id: int) -> OrderSnapshot | None:
        row = self.get_row(table_id)
        return snapshot_from_row(row) if row is not None else None

    def list_rows(self) -> Sequence[ActiveOrderSnapshot]:
        return self._db.scalars(
            select(ActiveOrderSnapshot).order_by(ActiveOrderSnapshot.table_id)
        ).all()

    def save(self, snapshot: OrderSnapshot) -> bool:
        """
        Insert or replace the snapshot of a table.

        A stored snapshot of the same order with a higher revision is kept
        and the write is skipped. Returns True if the row was written.
        """
        row = self.get_row(snapshot.table_id)
        if row is None:
            row = ActiveOrderSnapshot(table_id=snapshot.table_id)
            self._db.add(row)
        elif row.order_id == snapshot.order_id and row.revision > snapshot.revision:
            logger.warning(
                "Stale snapshot write skipped",
                table_id=snapshot.table_id,
                stored_revision=row.revision,
                incoming_revision=snapshot.revision,
            )
            return False

        row.order_id = snapshot.order_id
        row.revision = snapshot.revision
        row.line_items = _line_items_adapter.dump_json(snapshot.line_items).decode("utf-8")
        row.subtotal_cents = snapshot.subtotal_cents
        row.origin = snapshot.origin
        row.waiter = snapshot.waiter
        row.created_at = snapshot.created_at
        row.updated_at = snapshot.updated_at
        return True

    def delete(self, table_id: int) -> bool:
        """Delete the snapshot of a table. Returns True if a row existed."""
        result = self._db.execute(
            delete(ActiveOrderSnapshot).where(ActiveOrderSnapshot.table_id == table_id)
        )
        return bool(result.rowcount)

    def delete_all(self) -> int:
        result = self._db.execute(delete(ActiveOrderSnapshot))
        return result.rowcount or 0
