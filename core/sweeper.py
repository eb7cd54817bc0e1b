"""
Stale-order sweeper.

Finds orders still pending past the stale threshold and asks the admins
to follow up. Never changes a payment status. Each reminder is claimed
with a conditional update on ``last_reminder_at``, so overlapping sweeps
remind an order at most once per reminder interval.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

import structlog

from config import Settings
from core.order_store import OrderStore
from database.models import utcnow
from monitoring.metrics import metrics
from notifications.dispatcher import NotificationDispatcher
from notifications.models import NotificationKind, NotificationRequest

logger = structlog.get_logger(__name__)


@dataclass
class SweepReport:
    """Summary of one sweep."""

    stale_orders: int = 0
    reminded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class StaleOrderSweeper:
    """Requests ``payment_pending_long`` reminders for stuck orders."""

    def __init__(
        self,
        store: OrderStore,
        dispatcher: NotificationDispatcher,
        stale_after: timedelta = timedelta(hours=24),
        reminder_interval: timedelta = timedelta(hours=24),
    ):
        """
        Initialize sweeper.

        Args:
            store: Order store
            dispatcher: Notification dispatcher
            stale_after: Age after which a pending order is stale
            reminder_interval: Minimum gap between reminders for one order
        """
        self.store = store
        self.dispatcher = dispatcher
        self.stale_after = stale_after
        self.reminder_interval = reminder_interval

    @classmethod
    def from_settings(
        cls, settings: Settings, store: OrderStore, dispatcher: NotificationDispatcher
    ) -> "StaleOrderSweeper":
        return cls(
            store=store,
            dispatcher=dispatcher,
            stale_after=timedelta(hours=settings.stale_order_threshold_hours),
            reminder_interval=timedelta(hours=settings.reminder_interval_hours),
        )

    async def run(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Sweep once.

        Args:
            now: Reference time (defaults to current UTC time)

        Returns:
            SweepReport: Orders found and reminded
        """
        now = now or utcnow()
        stale = await self.store.find_stale_pending(self.stale_after, now=now)
        report = SweepReport(stale_orders=len(stale))

        for order in stale:
            claimed = await self.store.claim_reminder(
                order.order_number, self.reminder_interval, now=now
            )
            if not claimed:
                report.skipped.append(order.order_number)
                continue

            self.dispatcher.submit(
                NotificationRequest.for_order(
                    order,
                    NotificationKind.PAYMENT_PENDING_LONG,
                    pending_hours=round((now - order.created_at).total_seconds() / 3600, 1),
                    reminder_number=order.reminder_count + 1,
                )
            )
            report.reminded.append(order.order_number)
            logger.info(
                "stale_order_reminder_requested",
                order_number=order.order_number,
                payment_method=order.payment_method.value,
                created_at=order.created_at.isoformat(),
            )

        metrics.set_sweeper_metrics(len(stale), len(report.reminded))
        logger.info(
            "stale_order_sweep_completed",
            stale_orders=report.stale_orders,
            reminded=len(report.reminded),
            skipped=len(report.skipped),
        )
        return report
