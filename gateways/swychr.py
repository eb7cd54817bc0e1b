"""
Swychr (AccountPe) payment-link adapter.

Email/password token exchange, hosted payment links keyed by our order
number (``transaction_id``), status polling by that same id and unsigned
JSON webhooks (optionally signed through a shared secret).
"""
from typing import Any, Dict, Mapping, Optional

import structlog

from core.exceptions import AuthError, GatewayUnavailable, MalformedPayload
from core.types import (
    CanonicalStatus,
    EventSource,
    NormalizedEvent,
    Payer,
    PaymentInitiation,
    PaymentMethod,
)
from gateways.base import (
    PaymentGateway,
    load_json_object,
    lower_headers,
    parse_amount,
    verify_signature,
)
from gateways.credentials import Credential

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "x-swychr-signature"


def _data(body: Any) -> Dict[str, Any]:
    """Swychr wraps results in ``{"data": {...}}``; tolerate a bare object."""
    if not isinstance(body, dict):
        return {}
    inner = body.get("data")
    return inner if isinstance(inner, dict) else body


class SwychrGateway(PaymentGateway):
    """Swychr payment-link API."""

    method = PaymentMethod.SWYCHR
    status_map = {
        "pending": CanonicalStatus.PENDING,
        "paid": CanonicalStatus.PAID,
        "completed": CanonicalStatus.PAID,
        "failed": CanonicalStatus.FAILED,
        "cancelled": CanonicalStatus.FAILED,
    }
    required_settings = ("swychr_api_email", "swychr_api_password")

    @property
    def base_url(self) -> str:
        return self.settings.swychr_base_url.rstrip("/")

    @staticmethod
    def _status_key(provider_status: str) -> str:
        return str(provider_status).strip().lower()

    async def _fetch_credential(self) -> Credential:
        response = await self._send(
            "POST",
            f"{self.base_url}/admin/auth",
            "authenticate",
            headers={"Content-Type": "application/json"},
            json={
                "email": self.settings.swychr_api_email,
                "password": self.settings.swychr_api_password,
            },
        )
        if response.status_code in (401, 403):
            raise AuthError(
                "Swychr rejected API account credentials",
                provider=self.provider,
                status_code=response.status_code,
            )
        self._raise_for_client_error(response, "authenticate")

        token = _data(self._json(response, self.provider)).get("token")
        if not token:
            raise AuthError("Swychr auth response has no token", provider=self.provider)

        # No expiry is declared, assume the configured lifetime
        return Credential.from_expires_in(token, self.settings.swychr_token_ttl_seconds)

    async def initiate_payment(
        self,
        order_number: str,
        amount: int,
        currency: str,
        payer: Payer,
        correlation_id: Optional[str] = None,
    ) -> PaymentInitiation:
        body: Dict[str, Any] = {
            "country_code": self.settings.swychr_country_code,
            "name": payer.name,
            "email": payer.email or "",
            "mobile": "".join(payer.phone.split()),
            "amount": amount,
            "transaction_id": order_number,
            "description": f"Payment for order {order_number}",
            "pass_digital_charge": self.settings.swychr_pass_digital_charge,
        }

        response = await self._request(
            "POST",
            f"{self.base_url}/create_payment_links",
            "initiate_payment",
            headers={"Content-Type": "application/json"},
            json=body,
        )
        data = self._json(response, self.provider)
        link = _data(data)

        payment_url = link.get("payment_url") or link.get("payment_link")
        if not payment_url:
            raise GatewayUnavailable(
                "Swychr did not return a payment link",
                provider=self.provider,
                status_code=response.status_code,
                detail=data,
            )

        logger.info(
            "payment_initiated",
            provider=self.provider,
            order_number=order_number,
            provider_reference=order_number,
            payment_link_id=link.get("payment_link_id"),
            amount=amount,
        )
        # The status API is keyed by transaction_id, i.e. our order number
        return PaymentInitiation(
            provider_reference=order_number,
            checkout_url=payment_url,
            raw_response=data if isinstance(data, dict) else {},
        )

    async def fetch_status(self, provider_reference: str) -> NormalizedEvent:
        status_url = self.settings.swychr_status_url.rstrip("/")
        response = await self._request(
            "GET", f"{status_url}/{provider_reference}", "query_status"
        )
        data = _data(self._json(response, self.provider))

        return self._event(
            provider_status=data.get("status"),
            order_number=data.get("transaction_id") or data.get("payment_reference"),
            provider_reference=provider_reference,
            amount=parse_amount(data.get("amount")),
            payload=data,
            source=EventSource.POLL,
        )

    def parse_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> NormalizedEvent:
        secret = self.settings.swychr_webhook_secret
        if secret:
            verify_signature(secret, raw_body, lower_headers(headers).get(SIGNATURE_HEADER))

        payload = load_json_object(raw_body)
        transaction_id = payload.get("payment_reference")
        status = payload.get("status")

        if not transaction_id:
            raise MalformedPayload("Swychr webhook has no payment_reference")
        if not status:
            raise MalformedPayload("Swychr webhook has no status")

        return self._event(
            provider_status=str(status),
            order_number=str(transaction_id),
            provider_reference=str(transaction_id),
            amount=parse_amount(payload.get("amount")),
            payload=payload,
            source=EventSource.WEBHOOK,
        )
