"""
SQLAlchemy ORM Models Package.

- base: Base class and AuditMixin
- table: Table
- printer: PrinterDestination
- active_order: ActiveOrderSnapshot
- audit: AuditLog
- product: Product
"""

from .base import Base, AuditMixin, BigIntId
from .table import Table
from .printer import PrinterDestination
from .active_order import ActiveOrderSnapshot
from .audit import AuditLog
from .product import Product

__all__ = [
    "Base",
    "AuditMixin",
    "BigIntId",
    "Table",
    "PrinterDestination",
    "ActiveOrderSnapshot",
    "AuditLog",
    "Product",
]
