"""
Pydantic schemas for the table engine.

Outputs returned to the HTTP layer, the persisted snapshot shape, kitchen
tickets and the contracts of the external collaborators.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from pos_shared.config.constants import Limits, PrinterCategory, TableShape, TableState


# =============================================================================
# Active order
# =============================================================================


class LineItemOutput(BaseModel):
    """A line of an active order. Also the persisted snapshot line shape."""
    model_config = ConfigDict(from_attributes=True)

    line_id: int
    product_id: int
    product_name: str
    quantity: int = Field(ge=Limits.MIN_QUANTITY, le=Limits.MAX_QUANTITY)
    unit_price_cents: int = Field(ge=0)
    category: PrinterCategory = PrinterCategory.KITCHEN
    notes: str | None = None
    sent: bool = False
    printer_id: int | None = None
    added_at: datetime


class ActiveOrderOutput(BaseModel):
    """In-progress order of a table ("venta activa")."""
    model_config = ConfigDict(from_attributes=True)

    order_id: str
    table_id: int
    items: List[LineItemOutput]
    subtotal_cents: int
    revision: int
    origin: str | None = None
    waiter: str | None = None
    created_at: datetime
    updated_at: datetime


class OrderSnapshot(BaseModel):
    """Durable form of an active order, one per table."""

    table_id: int
    order_id: str
    revision: int = Field(ge=0)
    line_items: List[LineItemOutput] = Field(default_factory=list)
    subtotal_cents: int = 0
    created_at: datetime
    updated_at: datetime
    origin: str | None = None
    waiter: str | None = None


class TableOutput(BaseModel):
    """Table with its occupancy state."""

    id: int
    number: int
    capacity: int
    shape: TableShape
    pos_x: float
    pos_y: float
    size: float
    sector_id: int | None = None
    is_active: bool
    state: TableState
    state_label: str
    state_color: str
    has_active_order: bool


# =============================================================================
# Kitchen tickets
# =============================================================================


class TicketLine(BaseModel):
    """A line printed on a kitchen ticket."""

    line_id: int
    product_id: int
    product_name: str
    qty: int
    category: PrinterCategory
    notes: str | None = None


class KitchenTicket(BaseModel):
    """Batch of lines for one printer destination."""

    printer_id: int
    printer_name: str
    printer_category: PrinterCategory
    table_id: int
    table_number: int
    items: List[TicketLine]
    created_at: datetime
    degraded_routing: bool = False


class RoutingResult(BaseModel):
    """Output of the ticket router."""

    tickets: dict[int, KitchenTicket] = Field(default_factory=dict)  # printer_id -> ticket
    assignments: dict[int, int] = Field(default_factory=dict)  # line_id -> printer_id
    unrouted: List[TicketLine] = Field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return any(t.degraded_routing for t in self.tickets.values())


# =============================================================================
# Store results
# =============================================================================


class MutationResult(BaseModel):
    """
    Result of a successful mutation.

    ``degraded`` is True when the change was applied in memory but the
    snapshot could not be written; ``warning`` explains why.
    """

    table_id: int
    state: TableState
    order: Optional[ActiveOrderOutput] = None
    revision: int | None = None
    degraded: bool = False
    warning: str | None = None
    routing: Optional[RoutingResult] = None
    sale_id: str | None = None


class TransferResult(BaseModel):
    """Result of moving line items between two tables."""

    source: MutationResult
    target: MutationResult
    moved_line_ids: List[int]


class StoreStats(BaseModel):
    """Operational counters over every table."""

    active_orders: int
    occupied_tables: int
    total_line_items: int
    pending_total_cents: int


# =============================================================================
# Reconciliation
# =============================================================================


class Anomaly(BaseModel):
    """An inconsistency found (and repaired) by reconciliation."""

    kind: str
    table_id: int
    detail: str
    action: str


class ReconciliationReport(BaseModel):
    tables_loaded: int = 0
    orders_restored: int = 0
    anomalies: List[Anomaly] = Field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.anomalies


# =============================================================================
# Collaborator contracts
# =============================================================================


class ProductInfo(BaseModel):
    """Product as resolved by the catalog at the time an item is added."""

    product_id: int
    name: str
    unit_price_cents: int = Field(ge=Limits.MIN_PRICE_CENTS, le=Limits.MAX_PRICE_CENTS)
    category: PrinterCategory


class SaleRequest(BaseModel):
    """Payload handed to the sale finalization collaborator."""

    table_id: int
    table_number: int
    order_id: str
    items: List[LineItemOutput]
    subtotal_cents: int
    origin: str | None = None
    waiter: str | None = None


class SaleResult(BaseModel):
    """Answer of the sale finalization collaborator."""

    accepted: bool
    sale_id: str | None = None
    reason: str | None = None
