"""
Centralized constants for the table engine.
Avoid magic strings and repeated constants.

Usage:
    from pos_shared.config.constants import TableState, ORDER_STATES

    if table.state in ORDER_STATES:
        ...
"""

from enum import Enum
from typing import Final


# =============================================================================
# Table occupancy
# =============================================================================


class TableState(str, Enum):
    """Occupancy state of a table ("estado de mesa")."""

    LIBRE = "LIBRE"
    OCUPADA = "OCUPADA"
    ESPERANDO_PEDIDO = "ESPERANDO_PEDIDO"
    CUENTA_PEDIDA = "CUENTA_PEDIDA"
    RESERVADA = "RESERVADA"
    FUERA_DE_SERVICIO = "FUERA_DE_SERVICIO"


class TableEvent(str, Enum):
    """Events that drive the table state machine."""

    OPEN_ORDER = "OPEN_ORDER"  # First item added / party seated
    MODIFY_ORDER = "MODIFY_ORDER"  # Add, update or remove line items
    RESERVE = "RESERVE"
    CANCEL_RESERVATION = "CANCEL_RESERVATION"
    SEND_TO_KITCHEN = "SEND_TO_KITCHEN"
    REQUEST_BILL = "REQUEST_BILL"
    FINALIZE = "FINALIZE"
    CANCEL_ORDER = "CANCEL_ORDER"
    MARK_OUT_OF_SERVICE = "MARK_OUT_OF_SERVICE"
    RESTORE = "RESTORE"


# States in which the table must hold an active order
ORDER_STATES: Final[frozenset[TableState]] = frozenset({
    TableState.OCUPADA,
    TableState.ESPERANDO_PEDIDO,
    TableState.CUENTA_PEDIDA,
})

# States from which a new order can be opened
OPENABLE_STATES: Final[frozenset[TableState]] = frozenset({
    TableState.LIBRE,
    TableState.RESERVADA,
})


class TableShape(str, Enum):
    """Table shape ("forma de mesa")."""

    ROUND = "REDONDA"
    SQUARE = "CUADRADA"
    RECTANGULAR = "RECTANGULAR"
    OVAL = "OVALADA"


# =============================================================================
# Printer routing ("comanderas")
# =============================================================================


class PrinterCategory(str, Enum):
    """Preparation area a printer serves ("tipo de comandera")."""

    KITCHEN = "COCINA"
    BAR = "BAR"
    DESSERT = "POSTRES"


# Tie-break order when choosing a fallback printer across categories
PRINTER_CATEGORY_ORDER: Final[tuple[PrinterCategory, ...]] = (
    PrinterCategory.KITCHEN,
    PrinterCategory.BAR,
    PrinterCategory.DESSERT,
)


class OrphanOrderPolicy:
    """What recovery does with an order whose table is not occupied."""

    REATTACH: Final[str] = "reattach"
    DISCARD: Final[str] = "discard"


class AuditAction:
    """Audit log action constants."""

    ORDER_CANCELED: Final[str] = "ORDER_CANCELED"
    ITEM_OVERRIDE_REMOVED: Final[str] = "ITEM_OVERRIDE_REMOVED"
    ITEM_OVERRIDE_UPDATED: Final[str] = "ITEM_OVERRIDE_UPDATED"
    ITEMS_TRANSFERRED: Final[str] = "ITEMS_TRANSFERRED"
    SALE_FINALIZED: Final[str] = "SALE_FINALIZED"
    RESET_ALL: Final[str] = "RESET_ALL"
    RECOVERY_REPAIR: Final[str] = "RECOVERY_REPAIR"


class AnomalyKind:
    """Inconsistencies detected by reconciliation."""

    STATE_WITHOUT_ORDER: Final[str] = "STATE_WITHOUT_ORDER"
    ORPHAN_ORDER: Final[str] = "ORPHAN_ORDER"
    UNKNOWN_TABLE: Final[str] = "UNKNOWN_TABLE"
    INVALID_STATE: Final[str] = "INVALID_STATE"
    CORRUPT_SNAPSHOT: Final[str] = "CORRUPT_SNAPSHOT"


# =============================================================================
# Validation Constants
# =============================================================================


class Limits:
    """Validation limits."""

    # Quantity limits
    MIN_QUANTITY: Final[int] = 1
    MAX_QUANTITY: Final[int] = 99

    # Price limits (in cents)
    MIN_PRICE_CENTS: Final[int] = 0
    MAX_PRICE_CENTS: Final[int] = 100_000_00

    # String lengths
    MAX_NOTES_LENGTH: Final[int] = 200
    MAX_REASON_LENGTH: Final[int] = 500
    MAX_ORIGIN_LENGTH: Final[int] = 100


# =============================================================================
# Labels (Spanish, shown by the UI)
# =============================================================================


TABLE_STATE_LABELS: Final[dict[TableState, str]] = {
    TableState.LIBRE: "Libre",
    TableState.OCUPADA: "Ocupada",
    TableState.ESPERANDO_PEDIDO: "Esperando Pedido",
    TableState.CUENTA_PEDIDA: "Cuenta Pedida",
    TableState.RESERVADA: "Reservada",
    TableState.FUERA_DE_SERVICIO: "Fuera de Servicio",
}

TABLE_STATE_COLORS: Final[dict[TableState, str]] = {
    TableState.LIBRE: "#4CAF50",
    TableState.OCUPADA: "#F44336",
    TableState.ESPERANDO_PEDIDO: "#2196F3",
    TableState.CUENTA_PEDIDA: "#FF9800",
    TableState.RESERVADA: "#9C27B0",
    TableState.FUERA_DE_SERVICIO: "#9E9E9E",
}


def validate_table_state(state: str) -> bool:
    """Validate that a table state value is known."""
    return state in {s.value for s in TableState}
