"""Offline / manual payment: no provider, settled by an administrator."""
from typing import Mapping, Optional

from core.exceptions import MalformedPayload
from core.types import (
    CanonicalStatus,
    EventSource,
    NormalizedEvent,
    Payer,
    PaymentInitiation,
    PaymentMethod,
)
from gateways.base import PaymentGateway
from gateways.credentials import Credential

REFERENCE_PREFIX = "OFFLINE-"


class OfflineGateway(PaymentGateway):
    """
    Degenerate adapter for cash / bank transfer orders.

    Initiation never calls out; the order waits as pending until the
    admin confirmation endpoint settles it.
    """

    method = PaymentMethod.OFFLINE

    async def _fetch_credential(self) -> Credential:
        return Credential(token="offline")

    async def initiate_payment(
        self,
        order_number: str,
        amount: int,
        currency: str,
        payer: Payer,
        correlation_id: Optional[str] = None,
    ) -> PaymentInitiation:
        return PaymentInitiation(provider_reference=f"{REFERENCE_PREFIX}{order_number}")

    async def fetch_status(self, provider_reference: str) -> NormalizedEvent:
        order_number = None
        if provider_reference.startswith(REFERENCE_PREFIX):
            order_number = provider_reference[len(REFERENCE_PREFIX):]
        return NormalizedEvent(
            provider=self.method,
            canonical_status=CanonicalStatus.PENDING,
            order_number=order_number,
            provider_reference=provider_reference,
            source=EventSource.POLL,
        )

    def parse_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> NormalizedEvent:
        raise MalformedPayload("Offline payments have no webhook")

    def confirmation_event(
        self, order_number: str, status: CanonicalStatus, actor: Optional[str] = None
    ) -> NormalizedEvent:
        """Event produced by an administrator confirming an offline payment."""
        return NormalizedEvent(
            provider=self.method,
            canonical_status=status,
            order_number=order_number,
            provider_reference=f"{REFERENCE_PREFIX}{order_number}",
            provider_status=f"admin_{status.value}",
            source=EventSource.ADMIN,
            raw_payload={"confirmed_by": actor} if actor else {},
        )
