"""Core reconciliation types and errors.

Services live in their own modules (``core.order_store``,
``core.reconciliation``, ``core.checkout``, ``core.sweeper``) and are
imported from there.
"""
from .exceptions import (
    AuthError,
    ConfigError,
    DuplicateOrderNumber,
    GatewayError,
    GatewayRejected,
    GatewayUnavailable,
    InvalidSignature,
    MalformedPayload,
    OrderNotFound,
    ReconciliationError,
    TransitionConflict,
    UnknownProvider,
)
from .types import (
    CanonicalStatus,
    EventSource,
    LineItem,
    NewOrder,
    NormalizedEvent,
    OrderSnapshot,
    Payer,
    PaymentInitiation,
    PaymentMethod,
    PaymentStatus,
)

__all__ = [
    "AuthError",
    "CanonicalStatus",
    "ConfigError",
    "DuplicateOrderNumber",
    "EventSource",
    "GatewayError",
    "GatewayRejected",
    "GatewayUnavailable",
    "InvalidSignature",
    "LineItem",
    "MalformedPayload",
    "NewOrder",
    "NormalizedEvent",
    "OrderNotFound",
    "OrderSnapshot",
    "Payer",
    "PaymentInitiation",
    "PaymentMethod",
    "PaymentStatus",
    "ReconciliationError",
    "TransitionConflict",
    "UnknownProvider",
]
