"""
Pytest configuration and fixtures for backend tests.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pos_shared.config.constants import PrinterCategory, TableState
from pos_shared.infrastructure.events import circuit_breaker
from pos_shared.utils.exceptions import NotFoundError
from pos_core.models import Base, Product, Table
from pos_core.schemas import ProductInfo, SaleRequest, SaleResult
from pos_core.services.domain import (
    ActiveOrderService,
    PrinterInfo,
    PrinterRoutingTable,
    ReconciliationService,
    TableRegistry,
)
from pos_core.services.locks import TableLockManager
from pos_core.services.notifications import OrderChangeNotifier


# SQLite in-memory database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

BURGER = 101
FRIES = 102
BEER = 201
FLAN = 301

TABLE_COUNT = 8


class FakeCatalog:
    """In-memory product catalog."""

    def __init__(self):
        self.products: dict[int, ProductInfo] = {
            BURGER: ProductInfo(product_id=BURGER, name="Hamburguesa", unit_price_cents=1500, category=PrinterCategory.KITCHEN),
            FRIES: ProductInfo(product_id=FRIES, name="Papas fritas", unit_price_cents=600, category=PrinterCategory.KITCHEN),
            BEER: ProductInfo(product_id=BEER, name="Cerveza", unit_price_cents=800, category=PrinterCategory.BAR),
            FLAN: ProductInfo(product_id=FLAN, name="Flan casero", unit_price_cents=700, category=PrinterCategory.DESSERT),
        }

    def resolve(self, product_id: int) -> ProductInfo:
        product = self.products.get(product_id)
        if product is None:
            raise NotFoundError("Producto", product_id)
        return product

    def set_price(self, product_id: int, unit_price_cents: int) -> None:
        self.products[product_id] = self.products[product_id].model_copy(
            update={"unit_price_cents": unit_price_cents}
        )


class FakeFinalizer:
    """
    Sale finalizer double.

    ``result`` is returned, ``error`` is raised, ``delay`` seconds are slept
    first. Every request is recorded.
    """

    def __init__(self):
        self.requests: list[SaleRequest] = []
        self.result = SaleResult(accepted=True, sale_id="V-0001")
        self.error: BaseException | None = None
        self.delay = 0.0

    async def finalize(self, request: SaleRequest) -> SaleResult:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 14, 20, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture(autouse=True)
def reset_circuit_breaker():
    """The notification circuit breaker is a process singleton."""
    circuit_breaker._event_circuit_breaker = None
    yield
    circuit_breaker._event_circuit_breaker = None


@pytest.fixture(scope="function")
def session_factory():
    """
    Session factory over a fresh in-memory database for each test.
    """
    Base.metadata.create_all(bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seed_tables(db_session):
    """Tables 1..8, all LIBRE. Table id equals its number."""
    # Note: explicit ids keep assertions readable
    tables = [
        Table(id=i, number=i, capacity=4, status=TableState.LIBRE.value)
        for i in range(1, TABLE_COUNT + 1)
    ]
    db_session.add_all(tables)
    db_session.commit()
    return tables


@pytest.fixture
def seed_products(db_session):
    products = [
        Product(id=BURGER, name="Hamburguesa", price_cents=1500, category=PrinterCategory.KITCHEN.value),
        Product(id=BEER, name="Cerveza", price_cents=800, category=PrinterCategory.BAR.value),
        Product(id=FLAN, name="Flan casero", price_cents=700, category=PrinterCategory.DESSERT.value, is_active=False),
    ]
    db_session.add_all(products)
    db_session.commit()
    return products


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def finalizer():
    return FakeFinalizer()


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def notifier():
    return MagicMock(spec=OrderChangeNotifier)


@pytest.fixture
def printer_destinations():
    return [
        PrinterInfo(id=1, name="Cocina", category=PrinterCategory.KITCHEN, priority=1),
        PrinterInfo(id=2, name="Barra", category=PrinterCategory.BAR, priority=2),
        PrinterInfo(id=3, name="Postres", category=PrinterCategory.DESSERT, priority=3),
    ]


@pytest.fixture
def printers(printer_destinations):
    return PrinterRoutingTable(printer_destinations, max_per_context=3)


@pytest.fixture
def locks():
    return TableLockManager()


@pytest.fixture
def registry(session_factory):
    return TableRegistry(session_factory)


@pytest.fixture
def reconciliation(registry, locks, session_factory, notifier):
    return ReconciliationService(
        registry=registry,
        locks=locks,
        session_factory=session_factory,
        notifier=notifier,
        orphan_policy="reattach",
        own_origin="server-test",
    )


@pytest.fixture
def service(seed_tables, reconciliation, registry, catalog, printers, finalizer, notifier, session_factory, locks, clock):
    """Store over the seeded tables, loaded through recovery like at startup."""
    reconciliation.recover()
    return ActiveOrderService(
        registry=registry,
        catalog=catalog,
        printers=printers,
        finalizer=finalizer,
        notifier=notifier,
        session_factory=session_factory,
        locks=locks,
        clock=clock,
        finalize_timeout=0.5,
    )
