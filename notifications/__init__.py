"""Customer and admin notifications."""
from .dispatcher import (
    DispatchResult,
    FallbackPolicy,
    NotificationDispatcher,
    policies_from_settings,
)
from .models import NotificationKind, NotificationRequest, RecipientChannel
from .transport import HttpFunctionTransport, NotificationTransport, NotificationTransportError

__all__ = [
    "DispatchResult",
    "FallbackPolicy",
    "HttpFunctionTransport",
    "NotificationDispatcher",
    "NotificationKind",
    "NotificationRequest",
    "NotificationTransport",
    "NotificationTransportError",
    "RecipientChannel",
    "policies_from_settings",
]
