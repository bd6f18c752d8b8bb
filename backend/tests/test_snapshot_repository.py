"""
Tests for snapshot persistence and the table repository.
"""

from datetime import datetime, timezone

import pydantic
import pytest

from pos_shared.config.constants import PrinterCategory, TableState
from pos_core.models import ActiveOrderSnapshot, Table
from pos_core.repositories import SnapshotRepository, TableRepository, snapshot_from_row
from pos_core.schemas import LineItemOutput, OrderSnapshot

AT = datetime(2026, 3, 14, 20, 15, tzinfo=timezone.utc)


def make_snapshot(table_id=1, order_id="orden-1", revision=1, quantity=2):
    line = LineItemOutput(
        line_id=1,
        product_id=101,
        product_name="Hamburguesa",
        quantity=quantity,
        unit_price_cents=1500,
        category=PrinterCategory.KITCHEN,
        notes="sin cebolla",
        added_at=AT,
    )
    return OrderSnapshot(
        table_id=table_id,
        order_id=order_id,
        revision=revision,
        line_items=[line],
        subtotal_cents=line.quantity * line.unit_price_cents,
        created_at=AT,
        updated_at=AT,
        origin="tab-a",
        waiter="Marta",
    )


class TestSnapshotRepository:

    def test_save_and_read_back(self, db_session):
        repo = SnapshotRepository(db_session)

        assert repo.save(make_snapshot(table_id=3, revision=4))
        db_session.commit()

        stored = repo.get(3)
        assert stored.revision == 4
        assert stored.order_id == "orden-1"
        assert stored.line_items[0].notes == "sin cebolla"
        assert stored.line_items[0].category == PrinterCategory.KITCHEN
        assert stored.subtotal_cents == 3000
        assert stored.waiter == "Marta"

    def test_newer_revision_replaces_row(self, db_session):
        repo = SnapshotRepository(db_session)
        repo.save(make_snapshot(revision=1))
        db_session.commit()

        assert repo.save(make_snapshot(revision=2, quantity=5))
        db_session.commit()

        assert repo.get(1).line_items[0].quantity == 5
        assert len(repo.list_rows()) == 1

    def test_stale_revision_of_same_order_is_skipped(self, db_session):
        repo = SnapshotRepository(db_session)
        repo.save(make_snapshot(revision=5, quantity=3))
        db_session.commit()

        assert not repo.save(make_snapshot(revision=4, quantity=1))
        db_session.commit()

        stored = repo.get(1)
        assert stored.revision == 5
        assert stored.line_items[0].quantity == 3

    def test_new_order_replaces_old_order_at_any_revision(self, db_session):
        repo = SnapshotRepository(db_session)
        repo.save(make_snapshot(order_id="vieja", revision=7))
        db_session.commit()

        assert repo.save(make_snapshot(order_id="nueva", revision=0))
        db_session.commit()

        assert repo.get(1).order_id == "nueva"

    def test_delete(self, db_session):
        repo = SnapshotRepository(db_session)
        repo.save(make_snapshot(table_id=2))
        db_session.commit()

        assert repo.delete(2)
        assert not repo.delete(2)
        db_session.commit()
        assert repo.get(2) is None

    def test_delete_all(self, db_session):
        repo = SnapshotRepository(db_session)
        for table_id in (1, 2, 3):
            repo.save(make_snapshot(table_id=table_id))
        db_session.commit()

        assert repo.delete_all() == 3
        db_session.commit()
        assert repo.list_rows() == []

    def test_corrupt_line_items(self, db_session):
        db_session.add(ActiveOrderSnapshot(
            table_id=1,
            order_id="orden-1",
            revision=1,
            line_items='[{"line_id": 1}]',
            subtotal_cents=0,
            created_at=AT,
            updated_at=AT,
        ))
        db_session.commit()

        with pytest.raises(pydantic.ValidationError):
            snapshot_from_row(SnapshotRepository(db_session).get_row(1))


class TestTableRepository:

    def test_list_all_ordered_by_number(self, db_session):
        db_session.add_all([
            Table(id=1, number=3, capacity=2, status=TableState.LIBRE.value),
            Table(id=2, number=1, capacity=4, status=TableState.LIBRE.value),
            Table(id=3, number=2, capacity=6, status=TableState.LIBRE.value, is_active=False),
        ])
        db_session.commit()
        repo = TableRepository(db_session)

        assert [t.number for t in repo.list_all()] == [1, 2, 3]
        assert [t.number for t in repo.list_all(include_inactive=False)] == [1, 3]

    def test_set_status_and_reset(self, seed_tables, db_session):
        repo = TableRepository(db_session)

        repo.set_status(2, TableState.OCUPADA)
        repo.set_status(3, TableState.RESERVADA)
        db_session.commit()
        db_session.expire_all()
        assert repo.get(2).status == TableState.OCUPADA.value

        assert repo.reset_all_status() == 8
        db_session.commit()
        db_session.expire_all()
        assert {t.status for t in repo.list_all()} == {TableState.LIBRE.value}
