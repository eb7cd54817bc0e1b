"""
Pydantic schemas for API request/response models.
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from core.types import LineItem, NewOrder, OrderSnapshot, PaymentMethod


class LineItemSchema(BaseModel):
    """One line of the checkout cart."""

    name: str = Field(..., min_length=1, description="Dish name")
    restaurant: str = Field(..., min_length=1, description="Restaurant the dish comes from")
    quantity: int = Field(..., gt=0, description="Quantity")
    unit_price: int = Field(..., ge=0, description="Unit price in XAF")


class CreateOrderRequest(BaseModel):
    """Checkout payload submitted by the storefront."""

    order_number: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Caller-chosen order number (generated as CT-YYYYMMDD-NNNN if omitted)",
    )
    customer_name: str = Field(..., min_length=1, max_length=255, description="Customer name")
    customer_phone: str = Field(..., min_length=6, max_length=32, description="Customer phone")
    customer_email: Optional[str] = Field(default=None, max_length=255, description="Email")
    delivery_address: str = Field(..., min_length=1, description="Delivery address")
    town: Optional[str] = Field(default=None, max_length=100, description="Delivery town")
    items: List[LineItemSchema] = Field(..., min_length=1, description="Cart lines")
    subtotal: int = Field(..., ge=0, description="Sum of line totals in XAF")
    delivery_fee: int = Field(default=0, ge=0, description="Delivery fee in XAF")
    total: int = Field(..., ge=0, description="Subtotal plus delivery fee in XAF")
    payment_method: PaymentMethod = Field(..., description="mtn_momo, fapshi, swychr or offline")
    notes: Optional[str] = Field(default=None, description="Free-text notes")

    @field_validator("order_number")
    @classmethod
    def validate_order_number(cls, v: Optional[str]) -> Optional[str]:
        """Blank order numbers mean 'generate one'."""
        if v is None:
            return None
        return v.strip() or None

    @model_validator(mode="after")
    def validate_totals(self) -> "CreateOrderRequest":
        """Totals must add up."""
        line_total = sum(item.quantity * item.unit_price for item in self.items)
        if self.subtotal != line_total:
            raise ValueError(f"subtotal {self.subtotal} does not match items ({line_total})")
        if self.total != self.subtotal + self.delivery_fee:
            raise ValueError("total must equal subtotal + delivery_fee")
        return self

    def to_new_order(self) -> NewOrder:
        return NewOrder(
            order_number=self.order_number or "",
            customer_name=self.customer_name,
            customer_phone=self.customer_phone,
            customer_email=self.customer_email,
            delivery_address=self.delivery_address,
            town=self.town,
            items=[
                LineItem(
                    name=item.name,
                    restaurant=item.restaurant,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                )
                for item in self.items
            ],
            subtotal=self.subtotal,
            delivery_fee=self.delivery_fee,
            total=self.total,
            payment_method=self.payment_method,
            notes=self.notes,
        )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_number": "CT-20250101-0001",
                    "customer_name": "Amina Njoya",
                    "customer_phone": "+237 670 00 00 00",
                    "delivery_address": "Rue 1.234, Bonapriso",
                    "town": "Douala",
                    "items": [
                        {
                            "name": "Ndole",
                            "restaurant": "Chez Mama",
                            "quantity": 2,
                            "unit_price": 2500,
                        }
                    ],
                    "subtotal": 5000,
                    "delivery_fee": 1000,
                    "total": 6000,
                    "payment_method": "mtn_momo",
                }
            ]
        }
    }


class OrderResponse(BaseModel):
    """Stored order."""

    id: str = Field(..., description="Internal order ID")
    order_number: str = Field(..., description="Order number")
    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None
    delivery_address: str
    town: Optional[str] = None
    items: List[Dict[str, Any]]
    subtotal: int
    delivery_fee: int
    total: int
    payment_method: str = Field(..., description="Payment method")
    payment_status: str = Field(..., description="pending, paid, failed or refunded")
    payment_reference: Optional[str] = Field(default=None, description="Provider reference")
    notes: Optional[str] = None
    created_at: str = Field(..., description="Creation timestamp (ISO 8601)")
    updated_at: str = Field(..., description="Last update timestamp (ISO 8601)")

    @classmethod
    def from_snapshot(cls, order: OrderSnapshot) -> "OrderResponse":
        return cls(**order.to_dict())


class CreateOrderResponse(BaseModel):
    """Response schema for order submission."""

    order: OrderResponse
    checkout_url: Optional[str] = Field(
        default=None, description="Hosted checkout page to redirect the customer to"
    )


class PaymentStatusResponse(BaseModel):
    """Response schema for a client status poll."""

    order_number: str
    payment_status: str
    payment_reference: Optional[str] = None
    outcome: str = Field(..., description="What the poll did: applied, duplicate, no_op, ...")


class AddNoteRequest(BaseModel):
    """Free-text note appended to an order."""

    text: str = Field(..., min_length=1, max_length=2000, description="Note text")


class WebhookResponse(BaseModel):
    """Acknowledgement returned to payment providers."""

    received: bool = Field(default=True)
    outcome: str = Field(..., description="applied, duplicate, conflict, no_op or order_not_found")
    order_number: Optional[str] = None


class ConfirmOfflineRequest(BaseModel):
    """Administrator settlement of an offline order."""

    status: Literal["paid", "failed"] = Field(default="paid", description="Settled status")
    confirmed_by: Optional[str] = Field(default=None, description="Administrator name")


class ConfirmOfflineResponse(BaseModel):
    """Result of an offline confirmation."""

    order_number: str
    payment_status: str
    outcome: str


class SweepResponse(BaseModel):
    """Result of a manual stale-order sweep."""

    stale_orders: int
    reminded: List[str]
    skipped: List[str]


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str = Field(..., description="Overall health status")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual checks")
    message: Optional[str] = Field(default=None, description="Status message")
