"""
Wiring of the table engine for application startup.

Usage (inside the HTTP app lifespan):
    engine = build_table_engine()
    engine.start()
    ...
    await engine.shutdown()
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.orm import Session, sessionmaker

from pos_shared.config.logging import get_logger
from pos_shared.config.settings import settings
from pos_shared.infrastructure.db import get_session_factory
from pos_shared.infrastructure.events import close_redis_pool
from pos_core.schemas import ReconciliationReport
from pos_core.services.collaborators import (
    HttpSaleFinalizer,
    ProductCatalog,
    SaleFinalizer,
    SqlProductCatalog,
    TicketDispatcher,
)
from pos_core.services.domain import (
    ActiveOrderService,
    PrinterRoutingTable,
    ReconciliationService,
    TableRegistry,
)
from pos_core.services.locks import TableLockManager
from pos_core.services.notifications import (
    OrderChangeNotifier,
    OrderChangeSubscriber,
    RedisTicketDispatcher,
)

logger = get_logger(__name__)


@dataclass
class TableEngine:
    """The services of one process, sharing registry and locks."""

    orders: ActiveOrderService
    reconciliation: ReconciliationService
    printers: PrinterRoutingTable
    registry: TableRegistry
    subscriber: OrderChangeSubscriber | None = None
    finalizer: SaleFinalizer | None = None
    last_recovery: ReconciliationReport | None = field(default=None)

    def start(self) -> ReconciliationReport:
        """Recover from persistence, then start listening to other devices."""
        self.last_recovery = self.reconciliation.recover()
        if self.subscriber is not None:
            self.subscriber.start()
        return self.last_recovery

    async def shutdown(self) -> None:
        if self.subscriber is not None:
            self.subscriber.stop(timeout=5.0)
        if isinstance(self.finalizer, HttpSaleFinalizer):
            await self.finalizer.close()
        if settings.notifications_enabled:
            close_redis_pool()
        logger.info("Table engine stopped")


def build_table_engine(
    session_factory: sessionmaker[Session] | None = None,
    catalog: ProductCatalog | None = None,
    finalizer: SaleFinalizer | None = None,
    notifier: OrderChangeNotifier | None = None,
    dispatcher: TicketDispatcher | None = None,
    subscribe: bool | None = None,
) -> TableEngine:
    """
    Build the engine with production collaborators unless given others.

    Errors from validate_production_settings() are logged, not raised.
    """
    for error in settings.validate_production_settings():
        logger.error("Configuration problem", error=error)

    session_factory = session_factory or get_session_factory()
    notifier = notifier if notifier is not None else OrderChangeNotifier()
    subscribe = settings.notifications_enabled if subscribe is None else subscribe
    finalizer = finalizer if finalizer is not None else HttpSaleFinalizer()
    if dispatcher is None and settings.notifications_enabled:
        dispatcher = RedisTicketDispatcher()

    locks = TableLockManager()
    registry = TableRegistry(session_factory)
    printers = PrinterRoutingTable.load(session_factory)

    orders = ActiveOrderService(
        registry=registry,
        catalog=catalog or SqlProductCatalog(session_factory),
        printers=printers,
        finalizer=finalizer,
        notifier=notifier,
        dispatcher=dispatcher,
        session_factory=session_factory,
        locks=locks,
    )
    reconciliation = ReconciliationService(
        registry=registry,
        locks=locks,
        session_factory=session_factory,
        notifier=notifier,
    )
    subscriber = (
        OrderChangeSubscriber(
            reconciliation.on_change_notification,
            on_reset=reconciliation.on_reset_notification,
        )
        if subscribe
        else None
    )
    return TableEngine(
        orders=orders,
        reconciliation=reconciliation,
        printers=printers,
        registry=registry,
        subscriber=subscriber,
        finalizer=finalizer,
    )
