"""
Domain Services - table engine.

Structure:
    HTTP layer (out of this package)
        ↓
    ActiveOrderService / ReconciliationService  ← business logic
        ↓
    TableRegistry, PrinterRoutingTable, TicketRouter, state machine
        ↓
    Repositories (data access)

Usage:
    from pos_core.services.domain import ActiveOrderService

    result = service.add_item(table_id=5, product_id=12, quantity=2, expected_revision=0)
"""

from .table_state_machine import transition, can_transition, allowed_events
from .order_aggregate import LineItem, ActiveOrder, TableAggregate
from .table_registry import TableRegistry
from .printer_routing import PrinterInfo, PrinterRoutingTable
from .ticket_router import TicketRouter
from .active_order_service import ActiveOrderService
from .reconciliation_service import ReconciliationService

__all__ = [
    # State machine
    "transition",
    "can_transition",
    "allowed_events",
    # Aggregate
    "LineItem",
    "ActiveOrder",
    "TableAggregate",
    # Registries
    "TableRegistry",
    "PrinterInfo",
    "PrinterRoutingTable",
    # Services
    "TicketRouter",
    "ActiveOrderService",
    "ReconciliationService",
]
