"""Shared value types for orders, gateways and reconciliation."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class PaymentStatus(str, Enum):
    """Stored payment status of an order."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class CanonicalStatus(str, Enum):
    """The vocabulary every provider status is mapped into."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"

    def as_payment_status(self) -> PaymentStatus:
        return PaymentStatus(self.value)


class PaymentMethod(str, Enum):
    """Payment method chosen at checkout, fixed for the life of the order."""

    MTN_MOMO = "mtn_momo"
    FAPSHI = "fapshi"
    SWYCHR = "swychr"
    OFFLINE = "offline"


class EventSource(str, Enum):
    """Where a provider event came from."""

    WEBHOOK = "webhook"
    POLL = "poll"
    ADMIN = "admin"


@dataclass(frozen=True)
class NormalizedEvent:
    """A provider event after signature checks and status mapping."""

    provider: PaymentMethod
    canonical_status: CanonicalStatus
    order_number: Optional[str] = None
    provider_reference: Optional[str] = None
    amount: Optional[int] = None
    provider_status: Optional[str] = None
    source: EventSource = EventSource.WEBHOOK
    raw_payload: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class LineItem:
    """One line of an order."""

    name: str
    restaurant: str
    quantity: int
    unit_price: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "restaurant": self.restaurant,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
        }


@dataclass(frozen=True)
class OrderSnapshot:
    """
    Read-only copy of an order row.

    Handed to notifications and API responses so nothing outside the
    order store holds a live ORM object.
    """

    id: str
    order_number: str
    customer_name: str
    customer_phone: str
    customer_email: Optional[str]
    delivery_address: str
    town: Optional[str]
    items: List[Dict[str, Any]]
    subtotal: int
    delivery_fee: int
    total: int
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    payment_reference: Optional[str]
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime
    last_reminder_at: Optional[datetime] = None
    reminder_count: int = 0
    last_polled_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "delivery_address": self.delivery_address,
            "town": self.town,
            "items": list(self.items),
            "subtotal": self.subtotal,
            "delivery_fee": self.delivery_fee,
            "total": self.total,
            "payment_method": self.payment_method.value,
            "payment_status": self.payment_status.value,
            "payment_reference": self.payment_reference,
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class NewOrder:
    """Validated checkout payload handed over by the storefront."""

    order_number: str
    customer_name: str
    customer_phone: str
    delivery_address: str
    items: List[LineItem]
    subtotal: int
    delivery_fee: int
    total: int
    payment_method: PaymentMethod
    customer_email: Optional[str] = None
    town: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class PaymentInitiation:
    """What a gateway returns after starting a provider-side transaction."""

    provider_reference: str
    checkout_url: Optional[str] = None
    canonical_status: CanonicalStatus = CanonicalStatus.PENDING
    raw_response: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class Payer:
    """Who is paying, as far as a gateway needs to know."""

    name: str
    phone: str
    email: Optional[str] = None
