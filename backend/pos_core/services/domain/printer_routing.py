"""
Printer Routing Table.

Ordered printer destinations ("comanderas") per routing context. A context
is a sector id; ``None`` is the house-wide default used by sectors without
printers of their own.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Iterable, Sequence

from sqlalchemy.orm import Session, sessionmaker

from pos_shared.config.constants import PrinterCategory
from pos_shared.config.logging import get_logger
from pos_shared.config.settings import settings
from pos_shared.infrastructure.db import get_session_factory, session_scope
from pos_shared.utils.exceptions import ValidationError
from pos_core.models import PrinterDestination
from pos_core.repositories import PrinterRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class PrinterInfo:
    """Immutable view of a printer destination."""

    id: int
    name: str
    category: PrinterCategory
    priority: int
    is_active: bool = True
    sector_id: int | None = None

    @classmethod
    def from_model(cls, printer: PrinterDestination) -> PrinterInfo:
        return cls(
            id=printer.id,
            name=printer.name,
            category=PrinterCategory(printer.category),
            priority=printer.priority,
            is_active=printer.is_active,
            sector_id=printer.sector_id,
        )


def validate_destinations(
    destinations: Iterable[PrinterInfo],
    max_per_context: int,
) -> dict[int | None, tuple[PrinterInfo, ...]]:
    """
    Group destinations by context, sorted by priority.

    Raises:
        ValidationError: On a duplicate id, a duplicate priority within a
            context, a non-positive priority, or too many printers in a context.
    """
    by_context: dict[int | None, list[PrinterInfo]] = {}
    seen_ids: set[int] = set()

    for printer in destinations:
        if printer.id in seen_ids:
            raise ValidationError(f"Comandera duplicada: {printer.id}", printer_id=printer.id)
        seen_ids.add(printer.id)
        if printer.priority < 1:
            raise ValidationError(
                f"Prioridad inválida para la comandera {printer.id}: {printer.priority}",
                printer_id=printer.id,
            )
        by_context.setdefault(printer.sector_id, []).append(printer)

    grouped: dict[int | None, tuple[PrinterInfo, ...]] = {}
    for context, printers in by_context.items():
        if len(printers) > max_per_context:
            raise ValidationError(
                f"Demasiadas comanderas en el contexto {context}: {len(printers)} > {max_per_context}",
                sector_id=context,
            )
        priorities = [p.priority for p in printers]
        if len(set(priorities)) != len(priorities):
            raise ValidationError(
                f"Prioridades repetidas en el contexto {context}",
                sector_id=context,
                priorities=priorities,
            )
        grouped[context] = tuple(sorted(printers, key=lambda p: (p.priority, p.id)))
    return grouped


class PrinterRoutingTable:
    """
    Validated, totally ordered printer destinations per context.

    Read by the ticket router; replaced wholesale by reload() when the
    printer configuration changes.
    """

    def __init__(
        self,
        destinations: Iterable[PrinterInfo] = (),
        max_per_context: int | None = None,
    ):
        self._max_per_context = max_per_context or settings.max_printers_per_context
        self._contexts = validate_destinations(destinations, self._max_per_context)
        self._lock = threading.Lock()

    @classmethod
    def load(
        cls,
        session_factory: sessionmaker[Session] | None = None,
        max_per_context: int | None = None,
    ) -> PrinterRoutingTable:
        """Build the routing table from the printer_destination rows."""
        with session_scope(session_factory or get_session_factory()) as db:
            printers = [PrinterInfo.from_model(p) for p in PrinterRepository(db).list_all()]
        logger.info("Printer routing table loaded", printers=len(printers))
        return cls(printers, max_per_context=max_per_context)

    def reload(self, destinations: Iterable[PrinterInfo]) -> None:
        """Validate and swap in a new configuration. The old one stays on error."""
        contexts = validate_destinations(destinations, self._max_per_context)
        with self._lock:
            self._contexts = contexts

    def destinations_for(self, sector_id: int | None = None) -> tuple[PrinterInfo, ...]:
        """
        Printers of a sector, falling back to the default context when the
        sector has none configured.
        """
        with self._lock:
            printers = self._contexts.get(sector_id)
            if not printers and sector_id is not None:
                printers = self._contexts.get(None)
            return printers or ()

    def get(self, printer_id: int) -> PrinterInfo | None:
        with self._lock:
            for printers in self._contexts.values():
                for printer in printers:
                    if printer.id == printer_id:
                        return printer
        return None

    @property
    def contexts(self) -> Sequence[int | None]:
        with self._lock:
            return list(self._contexts)
