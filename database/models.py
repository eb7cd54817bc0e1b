"""SQLAlchemy database models for order payment reconciliation."""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Order(Base):
    """
    Orders table.

    ``order_number`` is the caller-chosen business key. ``payment_status``
    only ever changes through the conditional update in ``OrderStore``.
    """

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(32), nullable=False)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    delivery_address: Mapped[str] = mapped_column(Text, nullable=False)
    town: Mapped[str | None] = mapped_column(String(100), nullable=True)
    items: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    subtotal: Mapped[int] = mapped_column(Integer, nullable=False)
    delivery_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False)
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", index=True
    )
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_reminder_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    reminder_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_polled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("total >= 0", name="non_negative_total"),
        CheckConstraint(
            "payment_status IN ('pending', 'paid', 'failed', 'refunded')",
            name="valid_payment_status",
        ),
        CheckConstraint(
            "payment_method IN ('mtn_momo', 'fapshi', 'swychr', 'offline')",
            name="valid_payment_method",
        ),
        Index("idx_orders_status_created", "payment_status", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation of Order."""
        return (
            f"<Order(order_number={self.order_number}, method={self.payment_method}, "
            f"status={self.payment_status})>"
        )


class PaymentEvent(Base):
    """
    Payment events audit trail table.

    One row per provider event seen (webhook, poll or admin action),
    including the raw payload and what the state machine did with it.
    Immutable once written.
    """

    __tablename__ = "payment_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    order_number: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    canonical_status: Mapped[str] = mapped_column(String(20), nullable=False)
    outcome: Mapped[str] = mapped_column(String(32), nullable=False)
    raw_payload: Mapped[Dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )

    __table_args__ = (
        Index("idx_payment_events_outcome", "outcome"),
    )

    def __repr__(self) -> str:
        """String representation of PaymentEvent."""
        return (
            f"<PaymentEvent(id={self.id}, order_number={self.order_number}, "
            f"outcome={self.outcome})>"
        )
