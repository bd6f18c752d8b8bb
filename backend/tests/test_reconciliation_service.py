"""
Tests for startup recovery, cross-device reloads and operator resets.
"""

import json
import logging
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select, update

from pos_shared.config.constants import AnomalyKind, AuditAction, TableState
from pos_shared.utils.exceptions import NoActiveOrderError, TableUnavailableError, ValidationError
from pos_core.models import ActiveOrderSnapshot, AuditLog, Table
from pos_core.services.domain import ActiveOrderService, ReconciliationService, TableRegistry
from pos_core.services.locks import TableLockManager
from tests.conftest import BEER, BURGER

WRITTEN_AT = datetime(2026, 3, 14, 19, 0, tzinfo=timezone.utc)


def line_json(line_id=1, product_id=BURGER, quantity=2, unit_price_cents=1500):
    return {
        "line_id": line_id,
        "product_id": product_id,
        "product_name": "Hamburguesa",
        "quantity": quantity,
        "unit_price_cents": unit_price_cents,
        "category": "COCINA",
        "notes": None,
        "sent": False,
        "printer_id": None,
        "added_at": WRITTEN_AT.isoformat(),
    }


def write_snapshot(db, table_id, order_id="orden-1", revision=2, line_items=None):
    items = [line_json()] if line_items is None else line_items
    db.add(ActiveOrderSnapshot(
        table_id=table_id,
        order_id=order_id,
        revision=revision,
        line_items=items if isinstance(items, str) else json.dumps(items),
        subtotal_cents=3000,
        created_at=WRITTEN_AT,
        updated_at=WRITTEN_AT,
    ))
    db.commit()


def set_status(db, table_id, status):
    db.execute(update(Table).where(Table.id == table_id).values(status=status))
    db.commit()


def stored(session_factory, table_id):
    with session_factory() as db:
        table = db.get(Table, table_id)
        snapshot = db.get(ActiveOrderSnapshot, table_id)
        return (
            table.status if table is not None else None,
            snapshot.revision if snapshot is not None else None,
        )


def repair_records(caplog):
    return [r for r in caplog.records if r.getMessage() == "Table anomaly repaired"]


# =============================================================================
# Startup recovery
# =============================================================================


class TestRecover:

    def test_clean_floor(self, seed_tables, reconciliation, registry):
        report = reconciliation.recover()

        assert report.clean
        assert report.tables_loaded == 8
        assert report.orders_restored == 0
        assert len(registry) == 8

    def test_occupied_table_without_order_is_freed_once(
        self, seed_tables, db_session, reconciliation, registry, session_factory, caplog
    ):
        set_status(db_session, 7, TableState.OCUPADA.value)

        with caplog.at_level(logging.WARNING):
            report = reconciliation.recover()

        assert [(a.kind, a.table_id) for a in report.anomalies] == [(AnomalyKind.STATE_WITHOUT_ORDER, 7)]
        assert registry.get(7).state == TableState.LIBRE
        assert stored(session_factory, 7) == (TableState.LIBRE.value, None)
        assert len(repair_records(caplog)) == 1

        caplog.clear()
        with caplog.at_level(logging.WARNING):
            second = reconciliation.recover()

        assert second.clean
        assert repair_records(caplog) == []

    def test_repair_is_audited(self, seed_tables, db_session, reconciliation, session_factory):
        set_status(db_session, 7, TableState.CUENTA_PEDIDA.value)

        reconciliation.recover()

        with session_factory() as db:
            entries = db.scalars(select(AuditLog).where(AuditLog.table_id == 7)).all()
            assert [e.action for e in entries] == [AuditAction.RECOVERY_REPAIR]
            assert json.loads(entries[0].details)["kind"] == AnomalyKind.STATE_WITHOUT_ORDER
            assert entries[0].origin == "server-test"

    def test_consistent_order_is_restored(self, seed_tables, db_session, reconciliation, registry):
        set_status(db_session, 2, TableState.ESPERANDO_PEDIDO.value)
        write_snapshot(db_session, 2, revision=4)

        report = reconciliation.recover()

        assert report.clean
        assert report.orders_restored == 1
        aggregate = registry.get(2)
        assert aggregate.state == TableState.ESPERANDO_PEDIDO
        assert aggregate.order.revision == 4
        assert aggregate.order.items[0].quantity == 2
        assert aggregate.order.subtotal_cents == 3000

    def test_orphan_order_reattached(self, seed_tables, db_session, reconciliation, registry, session_factory):
        write_snapshot(db_session, 3)

        report = reconciliation.recover()

        assert [a.kind for a in report.anomalies] == [AnomalyKind.ORPHAN_ORDER]
        assert registry.get(3).state == TableState.OCUPADA
        assert registry.get(3).order.order_id == "orden-1"
        assert stored(session_factory, 3) == (TableState.OCUPADA.value, 2)

    def test_orphan_order_discarded(self, seed_tables, db_session, registry, locks, session_factory):
        write_snapshot(db_session, 3)
        recon = ReconciliationService(
            registry=registry,
            locks=locks,
            session_factory=session_factory,
            notifier=MagicMock(),
            orphan_policy="discard",
            own_origin="server-test",
        )

        report = recon.recover()

        assert [a.action for a in report.anomalies] == ["discarded"]
        assert registry.get(3).order is None
        assert stored(session_factory, 3) == (TableState.LIBRE.value, None)

    def test_snapshot_for_unknown_table(self, seed_tables, db_session, reconciliation, session_factory):
        write_snapshot(db_session, 99)

        report = reconciliation.recover()

        assert [(a.kind, a.table_id) for a in report.anomalies] == [(AnomalyKind.UNKNOWN_TABLE, 99)]
        with session_factory() as db:
            assert db.get(ActiveOrderSnapshot, 99) is None

    def test_snapshot_for_deactivated_table(self, seed_tables, db_session, reconciliation, registry):
        db_session.get(Table, 4).soft_delete()
        db_session.commit()
        set_status(db_session, 4, TableState.OCUPADA.value)
        write_snapshot(db_session, 4)

        report = reconciliation.recover()

        assert [a.kind for a in report.anomalies] == [AnomalyKind.UNKNOWN_TABLE, AnomalyKind.STATE_WITHOUT_ORDER]
        assert registry.get(4).state == TableState.LIBRE
        assert not registry.get(4).is_active

    def test_corrupt_snapshot_discarded(self, seed_tables, db_session, reconciliation, registry, session_factory):
        set_status(db_session, 5, TableState.OCUPADA.value)
        write_snapshot(db_session, 5, line_items="{not json")

        report = reconciliation.recover()

        assert [a.kind for a in report.anomalies] == [AnomalyKind.CORRUPT_SNAPSHOT, AnomalyKind.STATE_WITHOUT_ORDER]
        assert registry.get(5).order is None
        assert stored(session_factory, 5) == (TableState.LIBRE.value, None)

    def test_unknown_state_value(self, seed_tables, db_session, reconciliation, registry, session_factory):
        set_status(db_session, 6, "ROTA")

        report = reconciliation.recover()

        assert [a.kind for a in report.anomalies] == [AnomalyKind.INVALID_STATE]
        assert registry.get(6).state == TableState.LIBRE
        assert stored(session_factory, 6) == (TableState.LIBRE.value, None)

    def test_orders_survive_restart(self, service, session_factory, catalog, printers):
        """A new process rebuilds the same orders from persistence."""
        opened = service.start_or_ensure(2)
        added = service.add_item(2, BURGER, 2, expected_revision=opened.revision)
        service.add_item(2, BEER, 1, expected_revision=added.revision)

        registry = TableRegistry(session_factory)
        locks = TableLockManager()
        recon = ReconciliationService(registry, locks, session_factory, notifier=MagicMock(), own_origin="restart")
        report = recon.recover()
        restarted = ActiveOrderService(
            registry=registry,
            catalog=catalog,
            printers=printers,
            notifier=MagicMock(),
            session_factory=session_factory,
            locks=locks,
        )

        assert report.clean
        before, after = service.get_order(2), restarted.get_order(2)
        assert (after.order_id, after.revision) == (before.order_id, before.revision)
        assert [(i.line_id, i.product_id, i.quantity, i.unit_price_cents) for i in after.items] == [
            (i.line_id, i.product_id, i.quantity, i.unit_price_cents) for i in before.items
        ]
        assert restarted.get_table(2).state == TableState.OCUPADA

    def test_rejects_unknown_policy(self, registry, locks, session_factory):
        with pytest.raises(ValueError):
            ReconciliationService(registry, locks, session_factory, notifier=MagicMock(), orphan_policy="keep")


# =============================================================================
# Cross-device notifications
# =============================================================================


@pytest.fixture
def remote_service(service, session_factory, catalog, printers):
    """A second device working on the same database."""
    registry = TableRegistry(session_factory)
    locks = TableLockManager()
    ReconciliationService(registry, locks, session_factory, notifier=MagicMock(), own_origin="device-b").recover()
    return ActiveOrderService(
        registry=registry,
        catalog=catalog,
        printers=printers,
        notifier=MagicMock(),
        session_factory=session_factory,
        locks=locks,
    )


class TestOnChangeNotification:

    def test_reloads_order_written_by_another_device(self, service, remote_service, reconciliation):
        opened = remote_service.start_or_ensure(3, origin="device-b")
        added = remote_service.add_item(3, BURGER, 1, expected_revision=opened.revision, origin="device-b")

        reloaded = reconciliation.on_change_notification(3, added.revision, "device-b")

        assert reloaded
        order = service.get_order(3)
        assert order.revision == added.revision
        assert [i.product_id for i in order.items] == [BURGER]
        assert service.get_table(3).state == TableState.OCUPADA

        # The local store can now continue from the reloaded revision
        result = service.add_item(3, BEER, 1, expected_revision=order.revision)
        assert result.revision == added.revision + 1

    def test_ignores_own_origin(self, service, reconciliation, session_factory):
        service.start_or_ensure(3)
        with session_factory() as db:
            db.execute(update(ActiveOrderSnapshot).where(ActiveOrderSnapshot.table_id == 3).values(revision=9))
            db.commit()

        assert reconciliation.on_change_notification(3, 9, "server-test") is False
        assert service.get_order(3).revision == 0

    def test_ignores_known_revision(self, service, reconciliation):
        service.start_or_ensure(3)

        assert reconciliation.on_change_notification(3, 0, "device-b") is False

    def test_cancel_on_other_device_frees_local_table(self, service, remote_service, reconciliation):
        opened = remote_service.start_or_ensure(4, origin="device-b")
        reconciliation.on_change_notification(4, opened.revision, "device-b")
        assert service.has_active_order(4)

        remote_service.cancel(4, reason="mesa equivocada", origin="device-b")
        reloaded = reconciliation.on_change_notification(4, None, "device-b")

        assert reloaded
        assert not service.has_active_order(4)
        assert service.get_table(4).state == TableState.LIBRE

    def test_keeps_finalizing_flag(self, service, registry, reconciliation, session_factory):
        service.start_or_ensure(2)
        registry.get(2).order.finalizing = True
        with session_factory() as db:
            db.execute(update(ActiveOrderSnapshot).where(ActiveOrderSnapshot.table_id == 2).values(revision=1))
            db.commit()

        assert reconciliation.on_change_notification(2, 1, "device-b")

        assert registry.get(2).order.revision == 1
        assert registry.get(2).order.finalizing

    def test_table_deleted_elsewhere(self, service, registry, reconciliation, session_factory):
        with session_factory() as db:
            db.delete(db.get(Table, 8))
            db.commit()

        assert reconciliation.on_change_notification(8, None, "admin")

        assert registry.find(8) is None

    def test_out_of_service_on_other_device(self, service, remote_service, reconciliation, session_factory):
        remote_service.mark_out_of_service(3, origin="device-b")

        assert reconciliation.on_change_notification(3, None, "device-b")

        assert service.get_table(3).state == TableState.FUERA_DE_SERVICIO
        with pytest.raises(TableUnavailableError):
            service.start_or_ensure(3)
        assert stored(session_factory, 3) == (TableState.FUERA_DE_SERVICIO.value, None)

    def test_reservation_on_other_device(self, service, remote_service, reconciliation):
        remote_service.reserve(5, origin="device-b")
        reconciliation.on_change_notification(5, None, "device-b")
        assert service.get_table(5).state == TableState.RESERVADA

        remote_service.cancel_reservation(5, origin="device-b")
        reconciliation.on_change_notification(5, None, "device-b")

        assert service.get_table(5).state == TableState.LIBRE

    def test_reset_on_other_device_clears_local_orders(self, service, reconciliation, session_factory):
        opened = service.start_or_ensure(1)
        added = service.add_item(1, BURGER, 1, expected_revision=opened.revision)
        remote = ReconciliationService(
            TableRegistry(session_factory), TableLockManager(), session_factory,
            notifier=MagicMock(), own_origin="device-b",
        )
        remote.recover()
        remote.reset_all("gerente")

        assert reconciliation.on_reset_notification("device-b")

        assert not service.has_active_order(1)
        with pytest.raises(NoActiveOrderError):
            service.add_item(1, BEER, 1, expected_revision=added.revision)
        assert stored(session_factory, 1) == (TableState.LIBRE.value, None)

    def test_own_reset_is_ignored(self, service, reconciliation):
        service.start_or_ensure(1)

        assert reconciliation.on_reset_notification("server-test") is False
        assert service.has_active_order(1)


# =============================================================================
# Operator actions
# =============================================================================


class TestResetAll:

    def test_clears_every_table(self, service, reconciliation, session_factory, notifier):
        opened = service.start_or_ensure(1)
        service.add_item(1, BURGER, 1, expected_revision=opened.revision)
        service.start_or_ensure(2)
        service.reserve(3)
        service.mark_out_of_service(4)

        cleared = reconciliation.reset_all("gerente")

        assert cleared == 2
        assert all(t.state == TableState.LIBRE for t in service.list_tables())
        assert not any(t.has_active_order for t in service.list_tables())
        with session_factory() as db:
            assert db.scalars(select(ActiveOrderSnapshot)).all() == []
            assert set(db.scalars(select(Table.status))) == {TableState.LIBRE.value}
            resets = db.scalars(select(AuditLog).where(AuditLog.action == AuditAction.RESET_ALL)).all()
            assert len(resets) == 1
            assert resets[0].origin == "gerente"
            assert resets[0].table_id is None
        notifier.notify_reset.assert_called_once_with("gerente", origin="server-test")

    def test_requires_operator(self, service, reconciliation):
        service.start_or_ensure(1)

        with pytest.raises(ValidationError):
            reconciliation.reset_all("  ")

        assert service.has_active_order(1)


class TestStats:

    def test_counts(self, service, reconciliation):
        opened = service.start_or_ensure(1)
        added = service.add_item(1, BURGER, 2, expected_revision=opened.revision)
        service.add_item(1, BEER, 1, expected_revision=added.revision)
        service.start_or_ensure(2)
        service.reserve(3)

        stats = reconciliation.stats()

        assert stats.active_orders == 2
        assert stats.occupied_tables == 2
        assert stats.total_line_items == 2
        assert stats.pending_total_cents == 3800
