"""
External collaborators of the table engine.

Protocols the store depends on, plus the concrete implementations used in
production:
- ProductCatalog -> SqlProductCatalog (product table)
- SaleFinalizer -> HttpSaleFinalizer (POST to the sales service)
- TicketDispatcher -> RedisTicketDispatcher (services.notifications)
"""

from __future__ import annotations

import asyncio
from typing import Optional, Protocol, runtime_checkable

import httpx
import pydantic
from sqlalchemy.orm import Session, sessionmaker

from pos_shared.config.constants import PrinterCategory
from pos_shared.config.logging import get_logger
from pos_shared.config.settings import settings
from pos_shared.infrastructure.db import get_session_factory, session_scope
from pos_shared.utils.exceptions import FinalizationTimeoutError, NotFoundError
from pos_core.models import Product
from pos_core.schemas import ProductInfo, RoutingResult, SaleRequest, SaleResult

logger = get_logger(__name__)


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class ProductCatalog(Protocol):
    def resolve(self, product_id: int) -> ProductInfo:
        """Return name, current price and category; NotFoundError if unknown."""
        ...


@runtime_checkable
class SaleFinalizer(Protocol):
    async def finalize(self, request: SaleRequest) -> SaleResult:
        """
        Turn an active order into a sale.

        Returns SaleResult(accepted=False, reason=...) on a definitive
        rejection. Raises FinalizationTimeoutError when the outcome is unknown.
        """
        ...


@runtime_checkable
class TicketDispatcher(Protocol):
    def dispatch(self, routing: RoutingResult) -> None:
        """Deliver routed tickets to the physical printers."""
        ...


# =============================================================================
# Product catalog
# =============================================================================


class SqlProductCatalog:
    """Resolves products from the product table."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self._session_factory = session_factory or get_session_factory()

    def resolve(self, product_id: int) -> ProductInfo:
        with session_scope(self._session_factory) as db:
            product = db.get(Product, product_id)
            if product is None or not product.is_active:
                raise NotFoundError("Producto", product_id)
            return ProductInfo(
                product_id=product.id,
                name=product.name,
                unit_price_cents=product.price_cents,
                category=PrinterCategory(product.category),
            )


# =============================================================================
# Sale finalization
# =============================================================================


class HttpSaleFinalizer:
    """
    Posts the finalized order to the sales service.

    Reply contract: ``{"accepted": bool, "sale_id": str, "reason": str}``.
    4xx answers are definitive rejections; transport errors and 5xx answers
    leave the outcome unknown.
    """

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url or settings.sale_finalizer_url
        self.timeout = settings.finalize_timeout_seconds if timeout is None else timeout
        # Reusable HTTP client with connection pooling
        self._client = client
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None and not self._client.is_closed:
            return self._client
        async with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.AsyncClient(
                    timeout=self.timeout,
                    limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
                )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client. Call on application shutdown."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def finalize(self, request: SaleRequest) -> SaleResult:
        client = await self._get_client()
        try:
            response = await client.post(self.url, json=request.model_dump(mode="json"))
        except httpx.HTTPError as e:
            raise FinalizationTimeoutError(
                request.table_id,
                reason=f"error de comunicación con el servicio de ventas: {e.__class__.__name__}",
                order_id=request.order_id,
            ) from e

        if response.status_code >= 500:
            raise FinalizationTimeoutError(
                request.table_id,
                reason=f"el servicio de ventas respondió {response.status_code}",
                order_id=request.order_id,
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code >= 400:
            logger.warning(
                "Sale rejected by sales service",
                table_id=request.table_id,
                order_id=request.order_id,
                status_code=response.status_code,
            )
            return SaleResult(
                accepted=False,
                reason=data.get("reason") or response.text or f"HTTP {response.status_code}",
            )

        try:
            return SaleResult.model_validate(data)
        except pydantic.ValidationError as e:
            # A 2xx means the sale may already be recorded
            raise FinalizationTimeoutError(
                request.table_id,
                reason=f"respuesta ilegible del servicio de ventas (HTTP {response.status_code})",
                order_id=request.order_id,
            ) from e
