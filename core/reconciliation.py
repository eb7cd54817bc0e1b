"""
Payment reconciliation state machine.

Turns provider events (webhook deliveries, poll results, administrator
confirmations) into at most one terminal transition per order:

    pending -> paid     (terminal)
    pending -> failed   (terminal)

All coordination happens in ``OrderStore.conditional_transition``; the
engine itself keeps no state, so any number of webhook handlers, pollers
and sweeps may run it concurrently.
"""
import dataclasses
import time
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

import structlog

from core.exceptions import (
    AuthError,
    GatewayError,
    OrderNotFound,
    TransitionConflict,
    UnknownProvider,
)
from core.order_store import OrderStore
from core.types import (
    CanonicalStatus,
    NormalizedEvent,
    OrderSnapshot,
    PaymentMethod,
    PaymentStatus,
)
from gateways.registry import GatewayRegistry
from monitoring.metrics import metrics
from notifications.dispatcher import NotificationDispatcher
from notifications.models import NotificationKind, NotificationRequest

logger = structlog.get_logger(__name__)


class ReconciliationOutcome(str, Enum):
    """What the state machine did with one event."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    CONFLICT = "conflict"
    NO_OP = "no_op"
    ORDER_NOT_FOUND = "order_not_found"


@dataclass(frozen=True)
class ReconciliationResult:
    """Result of processing one event. ``order`` is the committed state, if any."""

    outcome: ReconciliationOutcome
    order: Optional[OrderSnapshot] = None
    event: Optional[NormalizedEvent] = None

    @property
    def applied(self) -> bool:
        return self.outcome is ReconciliationOutcome.APPLIED


TERMINAL_NOTIFICATIONS = {
    PaymentStatus.PAID: NotificationKind.PAYMENT_SUCCESS,
    PaymentStatus.FAILED: NotificationKind.PAYMENT_FAILED,
}


class ReconciliationEngine:
    """
    Applies provider events to orders exactly once.

    Guarantees:
    - A duplicate terminal event is a no-op with no side effect
    - A conflicting terminal event is logged and discarded
    - One notification per applied transition, fired after the commit
    - Permanent errors (unknown order) never make a provider retry
    """

    def __init__(
        self,
        store: OrderStore,
        gateways: GatewayRegistry,
        dispatcher: NotificationDispatcher,
    ):
        """
        Initialize reconciliation engine.

        Args:
            store: Order store
            gateways: Registry of enabled gateway adapters
            dispatcher: Notification dispatcher
        """
        self.store = store
        self.gateways = gateways
        self.dispatcher = dispatcher

    async def handle_webhook(
        self, provider: str, raw_body: bytes, headers: Mapping[str, str]
    ) -> ReconciliationResult:
        """
        Verify, normalize and apply one webhook delivery.

        Args:
            provider: Provider name from the webhook URL
            raw_body: Raw request body, exactly as received
            headers: Request headers

        Returns:
            ReconciliationResult: Outcome of the delivery

        Raises:
            UnknownProvider: Unknown or disabled provider
            InvalidSignature: Signature missing or wrong
            MalformedPayload: Required fields absent
        """
        start_time = time.time()
        gateway = self.gateways.for_provider(provider)

        try:
            event = gateway.parse_webhook(raw_body, headers)
        except Exception as e:
            metrics.record_webhook_event(provider, "rejected", time.time() - start_time)
            logger.warning(
                "webhook_rejected",
                provider=provider,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise

        result = await self.apply_event(event)
        metrics.record_webhook_event(provider, result.outcome.value, time.time() - start_time)
        return result

    async def apply_event(self, event: NormalizedEvent) -> ReconciliationResult:
        """
        Run the transition algorithm for one normalized event.

        Returns:
            ReconciliationResult: Never raises for permanent conditions;
            storage errors propagate so the caller can answer 5xx.
        """
        log = logger.bind(
            provider=event.provider.value,
            source=event.source.value,
            order_number=event.order_number,
            provider_reference=event.provider_reference,
        )

        try:
            order = await self._resolve_order(event)
        except OrderNotFound as e:
            log.warning("order_not_found_for_event", reason=e.message)
            await self.store.record_event(event, ReconciliationOutcome.ORDER_NOT_FOUND.value)
            return ReconciliationResult(ReconciliationOutcome.ORDER_NOT_FOUND, event=event)

        log = log.bind(order_number=order.order_number)

        if event.canonical_status is CanonicalStatus.PENDING:
            order = await self._maybe_reassign_reference(order, event)
            log.info("pending_event_no_op", provider_status=event.provider_status)
            await self.store.record_event(
                event, ReconciliationOutcome.NO_OP.value, order_number=order.order_number
            )
            return ReconciliationResult(ReconciliationOutcome.NO_OP, order=order, event=event)

        requested = event.canonical_status.as_payment_status()
        transition = await self.store.conditional_transition(
            order.order_number,
            requested,
            provider_reference=event.provider_reference,
        )
        current = transition.current

        if transition.applied:
            log.info(
                "transition_applied",
                new_status=requested.value,
                provider_status=event.provider_status,
            )
            metrics.record_transition(event.provider.value, requested.value, event.source.value)
            self._notify(current, TERMINAL_NOTIFICATIONS[requested], event)
            outcome = ReconciliationOutcome.APPLIED

        elif current.payment_status is requested:
            log.info("duplicate_event_ignored", status=requested.value)
            metrics.record_duplicate(event.provider.value)
            outcome = ReconciliationOutcome.DUPLICATE

        else:
            # Logged and discarded, never surfaced to the provider
            conflict = TransitionConflict(
                order.order_number, current.payment_status.value, requested.value
            )
            log.warning(
                "transition_conflict",
                stored_status=conflict.stored_status,
                requested_status=conflict.requested_status,
                provider_status=event.provider_status,
                error=conflict.message,
            )
            metrics.record_conflict(event.provider.value)
            outcome = ReconciliationOutcome.CONFLICT

        await self.store.record_event(event, outcome.value, order_number=current.order_number)
        return ReconciliationResult(outcome, order=current, event=event)

    async def poll(self, order_number: str) -> ReconciliationResult:
        """
        Ask the provider for the current status and reconcile it.

        Orders already terminal, without a reference, or settled offline
        are returned as stored without calling the provider. Provider
        errors are logged and the stored state is returned.

        Raises:
            OrderNotFound: If the order does not exist
        """
        order = await self.store.get(order_number)
        if order is None:
            raise OrderNotFound(f"Order {order_number} not found", order_number=order_number)

        if (
            order.payment_status.is_terminal
            or not order.payment_reference
            or order.payment_method is PaymentMethod.OFFLINE
            or order.payment_method not in self.gateways
        ):
            return ReconciliationResult(ReconciliationOutcome.NO_OP, order=order)

        gateway = self.gateways.get(order.payment_method)
        try:
            event = await gateway.fetch_status(order.payment_reference)
        except (GatewayError, AuthError) as e:
            logger.warning(
                "status_poll_failed",
                order_number=order_number,
                provider=gateway.provider,
                error_type=type(e).__name__,
                error=e.message,
            )
            return ReconciliationResult(ReconciliationOutcome.NO_OP, order=order)

        # Poll answers do not always echo our order number
        event = dataclasses.replace(event, order_number=order.order_number)
        return await self.apply_event(event)

    async def confirm_offline(
        self,
        order_number: str,
        status: CanonicalStatus = CanonicalStatus.PAID,
        actor: Optional[str] = None,
    ) -> ReconciliationResult:
        """
        Administrator settlement of an offline order.

        Raises:
            OrderNotFound: If the order does not exist or is not offline
        """
        order = await self.store.get(order_number)
        if order is None or order.payment_method is not PaymentMethod.OFFLINE:
            raise OrderNotFound(
                f"No offline order {order_number}", order_number=order_number
            )

        gateway = self.gateways.get(PaymentMethod.OFFLINE)
        event = gateway.confirmation_event(order_number, status, actor=actor)
        result = await self.apply_event(event)
        logger.info(
            "offline_payment_confirmed",
            order_number=order_number,
            requested_status=status.value,
            outcome=result.outcome.value,
            actor=actor,
        )
        return result

    async def _resolve_order(self, event: NormalizedEvent) -> OrderSnapshot:
        order = None
        if event.order_number:
            order = await self.store.get(event.order_number)
        if order is None and event.provider_reference:
            order = await self.store.get_by_reference(event.provider_reference)

        if order is None:
            raise OrderNotFound("No order matches the event")
        if order.payment_method is not event.provider:
            raise OrderNotFound(
                f"Order {order.order_number} is paid with {order.payment_method.value}, "
                f"not {event.provider.value}"
            )
        return order

    async def _maybe_reassign_reference(
        self, order: OrderSnapshot, event: NormalizedEvent
    ) -> OrderSnapshot:
        reference = event.provider_reference
        if not reference or reference == order.payment_reference:
            return order
        if await self.store.assign_reference(order.order_number, reference):
            logger.info(
                "payment_reference_reassigned",
                order_number=order.order_number,
                old_reference=order.payment_reference,
                new_reference=reference,
            )
            return dataclasses.replace(order, payment_reference=reference)
        return order

    def _notify(
        self, order: OrderSnapshot, kind: NotificationKind, event: NormalizedEvent
    ) -> None:
        request = NotificationRequest.for_order(
            order,
            kind,
            provider=event.provider.value,
            provider_status=event.provider_status,
            source=event.source.value,
        )
        self.dispatcher.submit(request)
