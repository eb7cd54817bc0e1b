"""
Error taxonomy for payment reconciliation.

Propagation rules:
- Payment initiation errors reach the customer-facing caller.
- Webhook processing absorbs permanent errors (the provider always gets a
  definitive status) and only lets storage failures through.
- Notification failures never leave the dispatcher.
"""
from typing import Any, Dict, List, Optional


class ReconciliationError(Exception):
    """Base exception for all order/payment reconciliation errors."""

    error_code = "reconciliation_error"
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "type": self.__class__.__name__,
            }
        }


class ConfigError(ReconciliationError):
    """
    Required settings are missing.

    Raised while wiring gateways at startup. Fatal, never retried.
    """

    error_code = "config_error"

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message, missing=missing or [])
        self.missing = missing or []


class AuthError(ReconciliationError):
    """Provider credentials are missing or were rejected."""

    error_code = "gateway_auth_error"


class GatewayError(ReconciliationError):
    """Base class for failed calls to a payment provider."""

    error_code = "gateway_error"

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: Optional[int] = None,
        detail: Any = None,
    ):
        super().__init__(message, provider=provider, status_code=status_code)
        self.provider = provider
        self.status_code = status_code
        self.detail = detail


class GatewayUnavailable(GatewayError):
    """Network failure, timeout or 5xx from the provider. Safe to retry."""

    error_code = "gateway_unavailable"
    retryable = True


class GatewayRejected(GatewayError):
    """The provider refused the request (4xx). Must be shown to the customer."""

    error_code = "gateway_rejected"


class InvalidSignature(ReconciliationError):
    """Webhook signature missing or not matching the shared secret."""

    error_code = "invalid_signature"


class MalformedPayload(ReconciliationError):
    """Webhook or provider payload lacks required fields."""

    error_code = "malformed_payload"


class OrderNotFound(ReconciliationError):
    """No order matches the event, or the event came from another provider."""

    error_code = "order_not_found"


class UnknownProvider(ReconciliationError):
    """The payment method or webhook provider is unknown or not enabled."""

    error_code = "unknown_provider"


class DuplicateOrderNumber(ReconciliationError):
    """The human-readable order number is already taken."""

    error_code = "duplicate_order_number"


class TransitionConflict(ReconciliationError):
    """
    An event reports a terminal status different from the stored one.

    Logged and discarded, never surfaced to a provider.
    """

    error_code = "transition_conflict"

    def __init__(self, order_number: str, stored_status: str, requested_status: str):
        super().__init__(
            f"Order {order_number} is already {stored_status}, "
            f"ignoring requested {requested_status}",
            order_number=order_number,
        )
        self.order_number = order_number
        self.stored_status = stored_status
        self.requested_status = requested_status
