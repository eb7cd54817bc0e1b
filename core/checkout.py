"""
Checkout: persist the order, then start payment with its gateway.

Flow:
1. Insert the order as pending (generating an order number if needed)
2. Notify the admins that an order was placed (after the insert commits)
3. Initiate payment, retrying transient gateway errors with backoff
4. Store the provider reference on the still-pending order
"""
import dataclasses
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config import Settings
from core.exceptions import AuthError, DuplicateOrderNumber, GatewayError, GatewayUnavailable
from core.order_store import OrderStore
from core.types import NewOrder, OrderSnapshot, Payer, PaymentInitiation
from gateways.base import PaymentGateway
from gateways.registry import GatewayRegistry
from monitoring.metrics import metrics
from notifications.dispatcher import NotificationDispatcher
from notifications.models import NotificationKind, NotificationRequest

logger = structlog.get_logger(__name__)

ORDER_NUMBER_PREFIX = "CT"
MAX_ORDER_NUMBER_ATTEMPTS = 5


def generate_order_number(now: Optional[datetime] = None, suffix: Optional[int] = None) -> str:
    """
    Human-readable order number: ``CT-YYYYMMDD-NNNN``.

    Args:
        now: Order date (defaults to current UTC time)
        suffix: Four-digit suffix (random when omitted)
    """
    now = now or datetime.now(timezone.utc)
    if suffix is None:
        suffix = random.randint(0, 9999)
    return f"{ORDER_NUMBER_PREFIX}-{now:%Y%m%d}-{suffix:04d}"


@dataclass(frozen=True)
class CheckoutResult:
    """A placed order and where to send the customer to pay, if anywhere."""

    order: OrderSnapshot
    checkout_url: Optional[str] = None


class CheckoutService:
    """Places orders and starts their payment."""

    def __init__(
        self,
        settings: Settings,
        store: OrderStore,
        gateways: GatewayRegistry,
        dispatcher: NotificationDispatcher,
    ):
        """
        Initialize checkout service.

        Args:
            settings: Application settings
            store: Order store
            gateways: Registry of enabled gateway adapters
            dispatcher: Notification dispatcher
        """
        self.settings = settings
        self.store = store
        self.gateways = gateways
        self.dispatcher = dispatcher

    async def place_order(self, new_order: NewOrder) -> CheckoutResult:
        """
        Persist an order and initiate its payment.

        Args:
            new_order: Validated checkout payload; an empty order number
                means one is generated

        Returns:
            CheckoutResult: Stored order and optional checkout URL

        Raises:
            DuplicateOrderNumber: Caller-supplied order number already used
            GatewayRejected: Provider refused the payment
            GatewayUnavailable: Provider unreachable after all retries
            AuthError: Provider rejected our credentials
            UnknownProvider: Payment method not enabled (nothing is stored)
        """
        gateway = self.gateways.get(new_order.payment_method)
        order = await self._create(new_order)

        metrics.record_order_created(order.payment_method.value)
        self.dispatcher.submit(NotificationRequest.for_order(order, NotificationKind.ORDER_PLACED))

        payer = Payer(
            name=order.customer_name,
            phone=order.customer_phone,
            email=order.customer_email,
        )

        try:
            initiation = await self._initiate(gateway, order, payer)
        except (GatewayError, AuthError) as e:
            await self._record_initiation_failure(order, e)
            raise

        if await self.store.assign_reference(order.order_number, initiation.provider_reference):
            order = dataclasses.replace(order, payment_reference=initiation.provider_reference)

        logger.info(
            "checkout_completed",
            order_number=order.order_number,
            payment_method=order.payment_method.value,
            provider_reference=initiation.provider_reference,
            has_checkout_url=initiation.checkout_url is not None,
        )
        return CheckoutResult(order=order, checkout_url=initiation.checkout_url)

    async def _create(self, new_order: NewOrder) -> OrderSnapshot:
        if new_order.order_number:
            return await self.store.create(new_order)

        # Generated numbers only carry four random digits, so collisions happen
        for attempt in range(1, MAX_ORDER_NUMBER_ATTEMPTS + 1):
            candidate = dataclasses.replace(new_order, order_number=generate_order_number())
            try:
                return await self.store.create(candidate)
            except DuplicateOrderNumber:
                if attempt == MAX_ORDER_NUMBER_ATTEMPTS:
                    raise
                logger.info("order_number_collision", order_number=candidate.order_number)

        raise DuplicateOrderNumber("Could not allocate an order number")

    async def _initiate(
        self, gateway: PaymentGateway, order: OrderSnapshot, payer: Payer
    ) -> PaymentInitiation:
        # One correlation id across retries so the provider sees one transaction
        correlation_id = gateway.new_correlation_id(order.order_number)

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(GatewayUnavailable),
            stop=stop_after_attempt(max(self.settings.gateway_retry_max_attempts, 1)),
            wait=wait_exponential(
                multiplier=self.settings.gateway_retry_base_delay,
                max=self.settings.gateway_retry_base_delay * 16,
            ),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "payment_initiation_retry",
                        order_number=order.order_number,
                        attempt=attempt.retry_state.attempt_number,
                    )
                return await gateway.initiate_payment(
                    order.order_number,
                    order.total,
                    self.settings.currency,
                    payer,
                    correlation_id=correlation_id,
                )

        raise GatewayUnavailable("Payment initiation did not run", provider=gateway.provider)

    async def _record_initiation_failure(self, order: OrderSnapshot, error: Exception) -> None:
        """Order stays pending; admins get the details."""
        message = getattr(error, "message", str(error))
        detail = getattr(error, "detail", None)
        logger.error(
            "payment_initiation_failed",
            order_number=order.order_number,
            payment_method=order.payment_method.value,
            error_type=type(error).__name__,
            error=message,
        )

        order = await self.store.append_note(
            order.order_number, f"Payment initiation failed: {type(error).__name__}: {message}"
        )
        self.dispatcher.submit(
            NotificationRequest.for_order(
                order,
                NotificationKind.STATUS_UPDATE,
                stage="payment_initiation",
                error_type=type(error).__name__,
                error_message=message,
                provider_detail=detail,
            )
        )
