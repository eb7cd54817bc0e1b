"""
Order store with atomic, conditional payment-status transitions.

The conditional update in ``conditional_transition`` is the only path
into a terminal payment status. It is a single compare-and-swap statement
(``UPDATE ... WHERE payment_status = 'pending'``), so concurrent webhook
deliveries and polls for the same order race safely with one winner.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, List, Optional

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import DuplicateOrderNumber, OrderNotFound
from core.types import (
    NewOrder,
    NormalizedEvent,
    OrderSnapshot,
    PaymentMethod,
    PaymentStatus,
)
from database.models import Order, PaymentEvent, utcnow

logger = structlog.get_logger(__name__)


def json_safe(value: Any) -> Any:
    """Copy of a decoded payload with non-finite floats as strings (JSONB rejects them)."""
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    if isinstance(value, dict):
        return {key: json_safe(item) for key, item in value.items()}
    if isinstance(value, list):
        return [json_safe(item) for item in value]
    return value


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a conditional transition."""

    applied: bool
    current: OrderSnapshot


def to_snapshot(order: Order) -> OrderSnapshot:
    """Copy an ORM row into an immutable snapshot."""
    return OrderSnapshot(
        id=str(order.id),
        order_number=order.order_number,
        customer_name=order.customer_name,
        customer_phone=order.customer_phone,
        customer_email=order.customer_email,
        delivery_address=order.delivery_address,
        town=order.town,
        items=list(order.items or []),
        subtotal=order.subtotal,
        delivery_fee=order.delivery_fee,
        total=order.total,
        payment_method=PaymentMethod(order.payment_method),
        payment_status=PaymentStatus(order.payment_status),
        payment_reference=order.payment_reference,
        notes=order.notes,
        created_at=order.created_at,
        updated_at=order.updated_at,
        last_reminder_at=order.last_reminder_at,
        reminder_count=order.reminder_count,
        last_polled_at=order.last_polled_at,
    )


class OrderStore:
    """
    Durable order persistence.

    Every public method runs in its own short transaction and commits
    before returning, so callers can fire side effects afterwards.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """
        Initialize order store.

        Args:
            session_factory: Async session factory bound to the orders database
        """
        self.session_factory = session_factory

    async def create(self, new_order: NewOrder) -> OrderSnapshot:
        """
        Insert a new order with ``payment_status = pending``.

        Raises:
            DuplicateOrderNumber: If the order number already exists
        """
        now = utcnow()
        order = Order(
            order_number=new_order.order_number,
            customer_name=new_order.customer_name,
            customer_phone=new_order.customer_phone,
            customer_email=new_order.customer_email,
            delivery_address=new_order.delivery_address,
            town=new_order.town,
            items=[item.to_dict() for item in new_order.items],
            subtotal=new_order.subtotal,
            delivery_fee=new_order.delivery_fee,
            total=new_order.total,
            payment_method=new_order.payment_method.value,
            payment_status=PaymentStatus.PENDING.value,
            notes=new_order.notes,
            created_at=now,
            updated_at=now,
        )

        async with self.session_factory() as db:
            db.add(order)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.warning("duplicate_order_number", order_number=new_order.order_number)
                raise DuplicateOrderNumber(
                    f"Order number {new_order.order_number} already exists",
                    order_number=new_order.order_number,
                )

            logger.info(
                "order_created",
                order_number=order.order_number,
                payment_method=order.payment_method,
                total=order.total,
            )
            return to_snapshot(order)

    async def get(self, order_number: str) -> Optional[OrderSnapshot]:
        """Fetch an order by its order number."""
        async with self.session_factory() as db:
            order = await self._load(db, order_number)
            return to_snapshot(order) if order else None

    async def get_by_reference(self, provider_reference: str) -> Optional[OrderSnapshot]:
        """Fetch an order by the provider-assigned reference."""
        async with self.session_factory() as db:
            stmt = select(Order).where(Order.payment_reference == provider_reference).limit(1)
            result = await db.execute(stmt)
            order = result.scalar_one_or_none()
            return to_snapshot(order) if order else None

    async def conditional_transition(
        self,
        order_number: str,
        new_status: PaymentStatus,
        provider_reference: Optional[str] = None,
        expected_status: PaymentStatus = PaymentStatus.PENDING,
    ) -> TransitionResult:
        """
        Move an order out of ``expected_status`` atomically.

        Args:
            order_number: Order to update
            new_status: Target status
            provider_reference: Reference to store alongside the transition
            expected_status: Status the row must still have

        Returns:
            TransitionResult: ``applied`` is False when the row had already
            left ``expected_status``; ``current`` is the committed row.

        Raises:
            OrderNotFound: If the order does not exist
        """
        values = {"payment_status": new_status.value, "updated_at": utcnow()}
        if provider_reference:
            values["payment_reference"] = provider_reference

        async with self.session_factory() as db:
            stmt = (
                update(Order)
                .where(
                    Order.order_number == order_number,
                    Order.payment_status == expected_status.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            applied = result.rowcount == 1
            await db.commit()

            order = await self._load(db, order_number)
            if order is None:
                raise OrderNotFound(f"Order {order_number} not found", order_number=order_number)

            logger.info(
                "conditional_transition",
                order_number=order_number,
                expected_status=expected_status.value,
                new_status=new_status.value,
                applied=applied,
                current_status=order.payment_status,
            )
            return TransitionResult(applied=applied, current=to_snapshot(order))

    async def assign_reference(self, order_number: str, provider_reference: str) -> bool:
        """
        Record or replace the provider reference of a still-pending order.

        Returns:
            bool: True if the reference was stored
        """
        async with self.session_factory() as db:
            stmt = (
                update(Order)
                .where(
                    Order.order_number == order_number,
                    Order.payment_status == PaymentStatus.PENDING.value,
                )
                .values(payment_reference=provider_reference, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            await db.commit()
            assigned = result.rowcount == 1
            if not assigned:
                logger.warning(
                    "payment_reference_not_assigned",
                    order_number=order_number,
                    reason="order missing or already settled",
                )
            return assigned

    async def append_note(self, order_number: str, text: str) -> OrderSnapshot:
        """
        Append a timestamped line to the order notes.

        Raises:
            OrderNotFound: If the order does not exist
        """
        async with self.session_factory() as db:
            order = await self._load(db, order_number, for_update=True)
            if order is None:
                raise OrderNotFound(f"Order {order_number} not found", order_number=order_number)

            line = f"[{utcnow().isoformat(timespec='seconds')}] {text.strip()}"
            order.notes = f"{order.notes}\n{line}" if order.notes else line
            order.updated_at = utcnow()
            await db.commit()
            return to_snapshot(order)

    async def find_stale_pending(
        self, older_than: timedelta, now: Optional[datetime] = None
    ) -> List[OrderSnapshot]:
        """Read-only scan for pending orders created before ``now - older_than``."""
        cutoff = (now or utcnow()) - older_than
        async with self.session_factory() as db:
            stmt = (
                select(Order)
                .where(
                    Order.payment_status == PaymentStatus.PENDING.value,
                    Order.created_at < cutoff,
                )
                .order_by(Order.created_at)
            )
            result = await db.execute(stmt)
            return [to_snapshot(o) for o in result.scalars().all()]

    async def find_pending_with_reference(self, limit: int = 50) -> List[OrderSnapshot]:
        """
        Pending orders that a provider could be polled for.

        Never-polled orders come first, then the least recently polled,
        so orders the provider keeps reporting as pending rotate out of
        the batch instead of holding it.
        """
        async with self.session_factory() as db:
            stmt = (
                select(Order)
                .where(
                    Order.payment_status == PaymentStatus.PENDING.value,
                    Order.payment_reference.isnot(None),
                    Order.payment_method != PaymentMethod.OFFLINE.value,
                )
                .order_by(Order.last_polled_at.asc().nulls_first(), Order.created_at)
                .limit(limit)
            )
            result = await db.execute(stmt)
            return [to_snapshot(o) for o in result.scalars().all()]

    async def mark_polled(
        self, order_numbers: List[str], now: Optional[datetime] = None
    ) -> None:
        """Stamp ``last_polled_at`` without touching ``updated_at``."""
        if not order_numbers:
            return
        async with self.session_factory() as db:
            stmt = (
                update(Order)
                .where(Order.order_number.in_(order_numbers))
                .values(last_polled_at=now or utcnow(), updated_at=Order.updated_at)
                .execution_options(synchronize_session=False)
            )
            await db.execute(stmt)
            await db.commit()

    async def claim_reminder(
        self, order_number: str, min_interval: timedelta, now: Optional[datetime] = None
    ) -> bool:
        """
        Reserve the right to send one reminder for a pending order.

        Conditional on the previous reminder being older than
        ``min_interval``, so overlapping sweeps remind at most once.
        """
        now = now or utcnow()
        cutoff = now - min_interval
        async with self.session_factory() as db:
            stmt = (
                update(Order)
                .where(
                    Order.order_number == order_number,
                    Order.payment_status == PaymentStatus.PENDING.value,
                    or_(Order.last_reminder_at.is_(None), Order.last_reminder_at <= cutoff),
                )
                .values(last_reminder_at=now, reminder_count=Order.reminder_count + 1)
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            await db.commit()
            return result.rowcount == 1

    async def record_event(
        self, event: NormalizedEvent, outcome: str, order_number: Optional[str] = None
    ) -> None:
        """Write one audit row for a processed provider event."""
        async with self.session_factory() as db:
            db.add(
                PaymentEvent(
                    order_number=order_number or event.order_number,
                    provider=event.provider.value,
                    source=event.source.value,
                    provider_reference=event.provider_reference,
                    provider_status=event.provider_status,
                    canonical_status=event.canonical_status.value,
                    outcome=outcome,
                    raw_payload=json_safe(event.raw_payload) or None,
                    created_at=utcnow(),
                )
            )
            await db.commit()

    async def list_events(self, order_number: str) -> List[PaymentEvent]:
        """Audit rows for an order, oldest first."""
        async with self.session_factory() as db:
            stmt = (
                select(PaymentEvent)
                .where(PaymentEvent.order_number == order_number)
                .order_by(PaymentEvent.id)
            )
            result = await db.execute(stmt)
            return list(result.scalars().all())

    @staticmethod
    async def _load(
        db: AsyncSession, order_number: str, for_update: bool = False
    ) -> Optional[Order]:
        stmt = select(Order).where(Order.order_number == order_number)
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        return result.scalar_one_or_none()
