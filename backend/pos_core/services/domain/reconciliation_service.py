"""
Reconciliation / Recovery Service.

Persistence is the source of truth. On startup, after a reset made on
another device, and whenever another device reports a change this process
does not have, tables and snapshots are reloaded and the table/order
invariant is repaired:

- occupied-family state with no snapshot -> table set to LIBRE
- snapshot on a table that is not occupied -> reattached (OCUPADA) or
  discarded, per ``orphan_order_policy``
- snapshot for an unknown or deactivated table -> discarded
- unreadable snapshot -> discarded
- unknown state value -> table set to LIBRE

Every repair is persisted and audited in the same transaction, so a second
run finds nothing to fix. Each anomaly is logged once, when it is repaired.
"""

from __future__ import annotations

import pydantic
from sqlalchemy.orm import Session, sessionmaker

from pos_shared.config.constants import (
    ORDER_STATES,
    AnomalyKind,
    AuditAction,
    Limits,
    OrphanOrderPolicy,
    TableState,
    validate_table_state,
)
from pos_shared.config.logging import recovery_logger as logger
from pos_shared.config.settings import settings
from pos_shared.infrastructure.db import get_session_factory, session_scope
from pos_shared.utils.exceptions import ValidationError
from pos_core.models import ActiveOrderSnapshot, Table
from pos_core.repositories import SnapshotRepository, TableRepository, snapshot_from_row
from pos_core.schemas import Anomaly, ReconciliationReport, StoreStats
from pos_core.services.audit import log_table_action
from pos_core.services.locks import TableLockManager
from pos_core.services.notifications import OrderChangeNotifier
from .order_aggregate import ActiveOrder, TableAggregate
from .table_registry import TableRegistry


class ReconciliationService:
    """
    Rebuilds the table registry from persistence and repairs inconsistencies.

    Shares the registry and the lock manager with ActiveOrderService.
    """

    def __init__(
        self,
        registry: TableRegistry,
        locks: TableLockManager,
        session_factory: sessionmaker[Session] | None = None,
        notifier: OrderChangeNotifier | None = None,
        orphan_policy: str | None = None,
        own_origin: str | None = None,
    ):
        self._registry = registry
        self._locks = locks
        self._session_factory = session_factory or get_session_factory()
        self._notifier = notifier if notifier is not None else OrderChangeNotifier()
        self._orphan_policy = orphan_policy or settings.orphan_order_policy
        self._own_origin = own_origin or settings.default_origin
        if self._orphan_policy not in (OrphanOrderPolicy.REATTACH, OrphanOrderPolicy.DISCARD):
            raise ValueError(f"Unknown orphan order policy: {self._orphan_policy}")

    # =========================================================================
    # Startup recovery
    # =========================================================================

    def recover(self) -> ReconciliationReport:
        """Load every table and snapshot, repair, and rebuild the registry."""
        table_ids = [aggregate.table_id for aggregate in self._registry.all()]
        with self._locks.hold_many(*table_ids):
            return self._reload_all()

    def _reload_all(self) -> ReconciliationReport:
        report = ReconciliationReport()
        aggregates: list[TableAggregate] = []

        with session_scope(self._session_factory) as db:
            tables = TableRepository(db).list_all(include_inactive=True)
            snapshots = SnapshotRepository(db)
            rows = {row.table_id: row for row in snapshots.list_rows()}
            known_ids = {table.id for table in tables}

            for table_id, row in rows.items():
                if table_id not in known_ids:
                    self._repair(
                        db, report, AnomalyKind.UNKNOWN_TABLE, table_id,
                        "snapshot de venta activa para una mesa inexistente",
                        "discarded",
                    )
                    snapshots.delete(table_id)

            for table in tables:
                aggregate = self._reconcile_table(db, report, table, rows.get(table.id))
                aggregates.append(aggregate)
                if aggregate.order is not None:
                    report.orders_restored += 1

        self._registry.replace_all(aggregates)
        report.tables_loaded = len(aggregates)
        logger.info(
            "Recovery finished",
            tables_loaded=report.tables_loaded,
            orders_restored=report.orders_restored,
            anomalies=len(report.anomalies),
        )
        return report

    # =========================================================================
    # Cross-device notifications
    # =========================================================================

    def on_change_notification(
        self,
        table_id: int,
        revision: int | None,
        origin: str | None = None,
    ) -> bool:
        """
        Reload one table if the notified revision differs from ours.

        A notification without a revision (order cleared, table state
        changed) always reloads, since the table state is not versioned.
        Returns True if the table was reloaded.
        """
        if origin is not None and origin == self._own_origin:
            return False

        with self._locks.hold(table_id):
            current = self._registry.find(table_id)
            current_revision = (
                current.order.revision if current is not None and current.order is not None else None
            )
            if current is not None and revision is not None and current_revision == revision:
                return False

            report = ReconciliationReport()
            with session_scope(self._session_factory) as db:
                table = TableRepository(db).get(table_id)
                snapshots = SnapshotRepository(db)
                row = snapshots.get_row(table_id)
                if table is None:
                    if row is not None:
                        self._repair(
                            db, report, AnomalyKind.UNKNOWN_TABLE, table_id,
                            "snapshot de venta activa para una mesa inexistente",
                            "discarded",
                        )
                        snapshots.delete(table_id)
                    self._registry.remove(table_id)
                    return True
                aggregate = self._reconcile_table(db, report, table, row)

            if (
                current is not None
                and current.order is not None
                and current.order.finalizing
                and aggregate.order is not None
                and aggregate.order.order_id == current.order.order_id
            ):
                aggregate.order.finalizing = True
            self._registry.put(aggregate)

        logger.info(
            "Table reloaded from persistence",
            table_id=table_id,
            notified_revision=revision,
            previous_revision=current_revision,
            origin=origin,
        )
        return True

    def on_reset_notification(self, origin: str | None = None) -> bool:
        """
        Reload every table after another device ran reset_all().

        Returns True if the registry was rebuilt.
        """
        if origin is not None and origin == self._own_origin:
            return False

        report = self.recover()
        logger.warning(
            "Tables reloaded after remote reset",
            origin=origin,
            orders_restored=report.orders_restored,
        )
        return True

    # =========================================================================
    # Operator actions
    # =========================================================================

    def reset_all(self, operator: str) -> int:
        """
        Clear every active order and set every table LIBRE.

        Emergency operator action. Returns the number of orders cleared.
        """
        operator = (operator or "").strip()
        if not operator or len(operator) > Limits.MAX_ORIGIN_LENGTH:
            raise ValidationError("Se requiere identificar al operador", field="operator")

        table_ids = [aggregate.table_id for aggregate in self._registry.all()]
        with self._locks.hold_many(*table_ids):
            aggregates = self._registry.all()
            cleared = sum(1 for a in aggregates if a.order is not None)
            with session_scope(self._session_factory) as db:
                snapshots_deleted = SnapshotRepository(db).delete_all()
                tables_reset = TableRepository(db).reset_all_status(TableState.LIBRE)
                log_table_action(
                    db,
                    action=AuditAction.RESET_ALL,
                    table_id=None,
                    origin=operator,
                    details={
                        "orders_cleared": cleared,
                        "snapshots_deleted": snapshots_deleted,
                        "tables_reset": tables_reset,
                    },
                )
            for aggregate in aggregates:
                aggregate.order = None
                aggregate.state = TableState.LIBRE

        logger.warning("All tables reset", operator=operator, orders_cleared=cleared)
        self._notifier.notify_reset(operator, origin=self._own_origin)
        return cleared

    def stats(self) -> StoreStats:
        """Counters over every table."""
        active_orders = occupied = line_items = pending = 0
        for aggregate in self._registry.all():
            with self._locks.hold(aggregate.table_id):
                if aggregate.state in ORDER_STATES:
                    occupied += 1
                if aggregate.order is not None:
                    active_orders += 1
                    line_items += len(aggregate.order.items)
                    pending += aggregate.order.subtotal_cents
        return StoreStats(
            active_orders=active_orders,
            occupied_tables=occupied,
            total_line_items=line_items,
            pending_total_cents=pending,
        )

    # =========================================================================
    # Repairs
    # =========================================================================

    def _reconcile_table(
        self,
        db: Session,
        report: ReconciliationReport,
        table: Table,
        row: ActiveOrderSnapshot | None,
    ) -> TableAggregate:
        """Repair one table and its snapshot row; returns the aggregate."""
        snapshots = SnapshotRepository(db)
        tables = TableRepository(db)

        if validate_table_state(table.status):
            state = TableState(table.status)
        else:
            self._repair(
                db, report, AnomalyKind.INVALID_STATE, table.id,
                f"estado desconocido '{table.status}'",
                "set LIBRE",
            )
            state = TableState.LIBRE
            tables.set_status(table.id, state)

        order = None
        if row is not None:
            if not table.is_active:
                self._repair(
                    db, report, AnomalyKind.UNKNOWN_TABLE, table.id,
                    "snapshot de venta activa para una mesa desactivada",
                    "discarded",
                )
                snapshots.delete(table.id)
            else:
                try:
                    order = ActiveOrder.from_snapshot(snapshot_from_row(row))
                except pydantic.ValidationError as e:
                    self._repair(
                        db, report, AnomalyKind.CORRUPT_SNAPSHOT, table.id,
                        f"snapshot ilegible: {e.error_count()} errores",
                        "discarded",
                    )
                    snapshots.delete(table.id)

        if state in ORDER_STATES and order is None:
            self._repair(
                db, report, AnomalyKind.STATE_WITHOUT_ORDER, table.id,
                f"mesa en estado {state.value} sin venta activa",
                "set LIBRE",
            )
            state = TableState.LIBRE
            tables.set_status(table.id, state)
        elif order is not None and state not in ORDER_STATES:
            if self._orphan_policy == OrphanOrderPolicy.REATTACH:
                self._repair(
                    db, report, AnomalyKind.ORPHAN_ORDER, table.id,
                    f"venta activa en mesa {state.value}",
                    "reattached as OCUPADA",
                    order_id=order.order_id,
                )
                state = TableState.OCUPADA
                tables.set_status(table.id, state)
            else:
                self._repair(
                    db, report, AnomalyKind.ORPHAN_ORDER, table.id,
                    f"venta activa en mesa {state.value}",
                    "discarded",
                    order_id=order.order_id,
                )
                snapshots.delete(table.id)
                order = None

        return TableAggregate.from_model(table, state=state, order=order)

    def _repair(
        self,
        db: Session,
        report: ReconciliationReport,
        kind: str,
        table_id: int,
        detail: str,
        action: str,
        order_id: str | None = None,
    ) -> None:
        """Record an anomaly: report, log once, audit."""
        report.anomalies.append(Anomaly(kind=kind, table_id=table_id, detail=detail, action=action))
        logger.warning(
            "Table anomaly repaired",
            kind=kind,
            table_id=table_id,
            detail=detail,
            action=action,
        )
        log_table_action(
            db,
            action=AuditAction.RECOVERY_REPAIR,
            table_id=table_id,
            order_id=order_id,
            reason=detail,
            origin=self._own_origin,
            details={"kind": kind, "action": action},
        )
