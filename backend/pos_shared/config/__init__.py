"""
Configuration module: Settings, logging, constants.
"""

from pos_shared.config.settings import settings, get_settings, DATABASE_URL
from pos_shared.config.logging import get_logger, setup_logging
from pos_shared.config.constants import (
    TableState,
    TableEvent,
    TableShape,
    PrinterCategory,
    ORDER_STATES,
    OPENABLE_STATES,
    Limits,
)

__all__ = [
    # settings
    "settings",
    "get_settings",
    "DATABASE_URL",
    # logging
    "get_logger",
    "setup_logging",
    # constants
    "TableState",
    "TableEvent",
    "TableShape",
    "PrinterCategory",
    "ORDER_STATES",
    "OPENABLE_STATES",
    "Limits",
]
