"""
Best-effort notification dispatcher with a declared fallback chain.

Each recipient channel has a ``FallbackPolicy``: one primary sending
function and at most one fallback. ``dispatch`` tries them in order and
never raises; ``submit`` runs ``dispatch`` in a background task so the
reconciliation flow does not wait on delivery.
"""
import asyncio
from dataclasses import dataclass
from typing import Dict, Optional, Set, Tuple

import structlog

from config import Settings
from monitoring.metrics import metrics
from notifications.models import NotificationRequest, RecipientChannel
from notifications.transport import NotificationTransport

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FallbackPolicy:
    """Ordered sending functions for one recipient channel."""

    primary: str
    fallback: Optional[str] = None

    @property
    def chain(self) -> Tuple[str, ...]:
        return (self.primary,) if not self.fallback else (self.primary, self.fallback)


@dataclass(frozen=True)
class DispatchResult:
    """What happened to one request. ``delivered_via`` is None when all failed."""

    delivered_via: Optional[str]
    attempts: int

    @property
    def delivered(self) -> bool:
        return self.delivered_via is not None


def policies_from_settings(settings: Settings) -> Dict[RecipientChannel, FallbackPolicy]:
    """Fallback chains configured per channel."""
    return {
        RecipientChannel.ADMIN: FallbackPolicy(
            primary=settings.admin_notification_primary,
            fallback=settings.admin_notification_fallback,
        ),
        RecipientChannel.CUSTOMER: FallbackPolicy(
            primary=settings.customer_notification_primary,
            fallback=settings.customer_notification_fallback,
        ),
    }


class NotificationDispatcher:
    """
    Sends notification requests through a primary/fallback chain.

    Failures are logged and counted, never propagated.
    """

    def __init__(
        self,
        transport: NotificationTransport,
        policies: Dict[RecipientChannel, FallbackPolicy],
        attempt_timeout: float = 10.0,
    ):
        """
        Initialize dispatcher.

        Args:
            transport: Transport invoking sending functions
            policies: Fallback policy per recipient channel
            attempt_timeout: Upper bound for a single attempt (seconds)
        """
        self.transport = transport
        self.policies = policies
        self.attempt_timeout = attempt_timeout
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: NotificationTransport
    ) -> "NotificationDispatcher":
        return cls(
            transport=transport,
            policies=policies_from_settings(settings),
            attempt_timeout=settings.notification_timeout_seconds,
        )

    async def dispatch(self, request: NotificationRequest) -> DispatchResult:
        """
        Deliver one request, falling back once on any error.

        Returns:
            DispatchResult: Never raises
        """
        policy = self.policies[request.channel]
        payload = request.to_payload()
        order_number = request.order.order_number
        attempts = 0

        for function_name in policy.chain:
            attempts += 1
            try:
                await asyncio.wait_for(
                    self.transport.send(function_name, payload),
                    timeout=self.attempt_timeout,
                )
            except Exception as e:
                event = (
                    "notification_primary_failed"
                    if function_name == policy.primary
                    else "notification_fallback_failed"
                )
                logger.warning(
                    event,
                    order_number=order_number,
                    kind=request.kind.value,
                    function=function_name,
                    error=str(e) or type(e).__name__,
                )
                continue

            result = "primary" if function_name == policy.primary else "fallback"
            metrics.record_notification(request.kind.value, result)
            logger.info(
                "notification_delivered",
                order_number=order_number,
                kind=request.kind.value,
                channel=request.channel.value,
                function=function_name,
            )
            return DispatchResult(delivered_via=function_name, attempts=attempts)

        metrics.record_notification(request.kind.value, "failed")
        logger.error(
            "notification_delivery_failed",
            order_number=order_number,
            kind=request.kind.value,
            channel=request.channel.value,
            attempts=attempts,
        )
        return DispatchResult(delivered_via=None, attempts=attempts)

    def submit(self, request: NotificationRequest) -> asyncio.Task:
        """Dispatch in the background; the caller does not wait for delivery."""
        task = asyncio.create_task(self.dispatch(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for all background dispatches to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Flush in-flight notifications before shutdown."""
        if self._tasks:
            logger.info("notification_dispatcher_draining", pending=len(self._tasks))
        await self.drain()
