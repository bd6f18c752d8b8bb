"""
Redis Channel Naming.
"""

from __future__ import annotations

# Pattern matching every per-table order channel (for PSUBSCRIBE)
TABLE_ORDERS_PATTERN = "table:*:orders"

# Floor-wide broadcast (resets, bulk repairs)
FLOOR_CHANNEL = "floor:tables"


def _validate_positive_id(id_value: int, name: str) -> None:
    """Validate that ID is a positive integer."""
    if not isinstance(id_value, int) or id_value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {id_value}")


def channel_table_orders(table_id: int) -> str:
    """Channel for order revisions of one table (every tab/device on that table)."""
    _validate_positive_id(table_id, "table_id")
    return f"table:{table_id}:orders"


def channel_printer(printer_id: int) -> str:
    """Channel a print agent listens on for routed tickets."""
    _validate_positive_id(printer_id, "printer_id")
    return f"printer:{printer_id}:tickets"
