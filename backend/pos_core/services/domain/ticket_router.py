"""
Ticket Router.

Turns a batch of newly sent line items into one kitchen ticket per printer.

Routing rules:
- Per category, the active printer with the lowest priority rank wins.
- A category with no active printer goes to the fallback printer: the
  lowest-rank active printer of any category (ties broken by COCINA, BAR,
  POSTRES and then by id). Its ticket is flagged degraded_routing.
- With no active printer at all, lines are returned as unrouted.

Routing is deterministic and has no side effects; the clock is injected so
the ticket timestamp is reproducible.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timezone

from pos_shared.config.constants import PRINTER_CATEGORY_ORDER, PrinterCategory
from pos_shared.config.logging import kitchen_logger
from pos_core.schemas import KitchenTicket, RoutingResult, TicketLine
from .order_aggregate import LineItem
from .printer_routing import PrinterInfo


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _category_rank(category: PrinterCategory) -> int:
    return PRINTER_CATEGORY_ORDER.index(category)


def select_printer(
    category: PrinterCategory,
    destinations: Sequence[PrinterInfo],
) -> PrinterInfo | None:
    """Lowest-rank active printer of a category, or None."""
    candidates = [p for p in destinations if p.is_active and p.category == category]
    if not candidates:
        return None
    return min(candidates, key=lambda p: (p.priority, p.id))


def select_fallback(destinations: Sequence[PrinterInfo]) -> PrinterInfo | None:
    """Lowest-rank active printer across every category, or None."""
    candidates = [p for p in destinations if p.is_active]
    if not candidates:
        return None
    return min(candidates, key=lambda p: (p.priority, _category_rank(p.category), p.id))


def _ticket_line(line: LineItem) -> TicketLine:
    return TicketLine(
        line_id=line.line_id,
        product_id=line.product_id,
        product_name=line.product_name,
        qty=line.quantity,
        category=line.category,
        notes=line.notes,
    )


class TicketRouter:
    """Routes line items to printer destinations."""

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or _utcnow

    def route(
        self,
        lines: Sequence[LineItem],
        destinations: Sequence[PrinterInfo],
        table_id: int,
        table_number: int,
    ) -> RoutingResult:
        """
        Build one ticket per printer for ``lines``.

        Lines keep their order inside each ticket. The input lines are not
        modified; ``RoutingResult.assignments`` says where each one went.
        """
        created_at = self._clock()
        fallback = select_fallback(destinations)
        result = RoutingResult()

        for line in lines:
            printer = select_printer(line.category, destinations)
            degraded = False
            if printer is None:
                printer = fallback
                degraded = printer is not None

            if printer is None:
                result.unrouted.append(_ticket_line(line))
                continue

            ticket = result.tickets.get(printer.id)
            if ticket is None:
                ticket = KitchenTicket(
                    printer_id=printer.id,
                    printer_name=printer.name,
                    printer_category=printer.category,
                    table_id=table_id,
                    table_number=table_number,
                    items=[],
                    created_at=created_at,
                )
                result.tickets[printer.id] = ticket
            ticket.items.append(_ticket_line(line))
            if degraded:
                ticket.degraded_routing = True
            result.assignments[line.line_id] = printer.id

        if result.unrouted:
            kitchen_logger.warning(
                "No active printer, lines left unrouted",
                table_id=table_id,
                line_ids=[line.line_id for line in result.unrouted],
            )
        for ticket in result.tickets.values():
            if ticket.degraded_routing:
                kitchen_logger.warning(
                    "Degraded routing to fallback printer",
                    table_id=table_id,
                    printer_id=ticket.printer_id,
                )
        return result
