"""Database package for order reconciliation."""
from .connection import Database
from .models import Base, Order, PaymentEvent, utcnow

__all__ = [
    "Base",
    "Database",
    "Order",
    "PaymentEvent",
    "utcnow",
]
