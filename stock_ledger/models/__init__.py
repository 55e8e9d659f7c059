from .base import TimestampMixin
from .product import Product
from .supplier import Supplier
from .user import User
from .transaction import StockTransaction, TransactionType
from .audit import AuditLog

__all__ = [
    "TimestampMixin",
    "Product",
    "Supplier",
    "User",
    "StockTransaction",
    "TransactionType",
    "AuditLog",
]
