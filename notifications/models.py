"""Notification requests handed to the dispatcher."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from core.types import OrderSnapshot


class NotificationKind(str, Enum):
    """What happened to the order."""

    ORDER_PLACED = "order_placed"
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_PENDING_LONG = "payment_pending_long"
    STATUS_UPDATE = "status_update"


class RecipientChannel(str, Enum):
    """Who the notification is for."""

    ADMIN = "admin"
    CUSTOMER = "customer"


DEFAULT_CHANNELS: Dict[NotificationKind, RecipientChannel] = {
    NotificationKind.ORDER_PLACED: RecipientChannel.ADMIN,
    NotificationKind.PAYMENT_SUCCESS: RecipientChannel.CUSTOMER,
    NotificationKind.PAYMENT_FAILED: RecipientChannel.CUSTOMER,
    NotificationKind.PAYMENT_PENDING_LONG: RecipientChannel.ADMIN,
    NotificationKind.STATUS_UPDATE: RecipientChannel.ADMIN,
}


@dataclass(frozen=True)
class NotificationRequest:
    """
    One notification to send about an order.

    ``order`` is a read-only snapshot taken after the state commit. Never
    persisted.
    """

    order: OrderSnapshot
    kind: NotificationKind
    channel: RecipientChannel
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_order(
        cls, order: OrderSnapshot, kind: NotificationKind, **details: Any
    ) -> "NotificationRequest":
        """Build a request on the default channel for ``kind``."""
        return cls(order=order, kind=kind, channel=DEFAULT_CHANNELS[kind], details=details)

    def to_payload(self) -> Dict[str, Any]:
        """JSON body sent to the transport functions."""
        order = self.order
        return {
            "notificationType": self.kind.value,
            "recipient": self.channel.value,
            "orderNumber": order.order_number,
            "customerName": order.customer_name,
            "customerEmail": order.customer_email,
            "total": order.total,
            "paymentStatus": order.payment_status.value,
            "paymentReference": order.payment_reference,
            "orderData": {
                "orderNumber": order.order_number,
                "customerName": order.customer_name,
                "customerPhone": order.customer_phone,
                "deliveryAddress": order.delivery_address,
                "town": order.town,
                "items": list(order.items),
                "subtotal": order.subtotal,
                "deliveryFee": order.delivery_fee,
                "total": order.total,
                "paymentMethod": order.payment_method.value,
                "paymentReference": order.payment_reference,
                "createdAt": order.created_at.isoformat(),
                "notes": order.notes,
            },
            "details": dict(self.details),
        }
