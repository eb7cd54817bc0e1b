"""
Fapshi hosted checkout adapter.

The customer pays on a Fapshi-hosted page; we only create the session,
then learn the outcome from a signed webhook or by polling.
"""
from typing import Any, Dict, Mapping, Optional

import structlog

from core.exceptions import GatewayUnavailable, MalformedPayload
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

SIGNATURE_HEADERS = ("x-fapshi-signature", "x-signature")


class FapshiGateway(PaymentGateway):
    """Fapshi checkout-link API."""

    method = PaymentMethod.FAPSHI
    status_map = {
        "created": CanonicalStatus.PENDING,
        "pending": CanonicalStatus.PENDING,
        "initiated": CanonicalStatus.PENDING,
        "successful": CanonicalStatus.PAID,
        "success": CanonicalStatus.PAID,
        "completed": CanonicalStatus.PAID,
        "paid": CanonicalStatus.PAID,
        "failed": CanonicalStatus.FAILED,
        "cancelled": CanonicalStatus.FAILED,
        "expired": CanonicalStatus.FAILED,
    }
    required_settings = ("fapshi_secret_key", "fapshi_public_key")

    @property
    def base_url(self) -> str:
        return self.settings.fapshi_base_url.rstrip("/")

    @staticmethod
    def _status_key(provider_status: str) -> str:
        return str(provider_status).strip().lower()

    async def _fetch_credential(self) -> Credential:
        # Static secret key, no token exchange
        return Credential(token=self.settings.fapshi_secret_key)

    def _redirect_url(self, outcome: str, order_number: str) -> str:
        base = self.settings.app_base_url.rstrip("/")
        return f"{base}/payment/{outcome}?order={order_number}"

    async def initiate_payment(
        self,
        order_number: str,
        amount: int,
        currency: str,
        payer: Payer,
        correlation_id: Optional[str] = None,
    ) -> PaymentInitiation:
        body: Dict[str, Any] = {
            "reference": order_number,
            "amount": amount,
            "currency": currency,
            "customer": {"name": payer.name, "phone": payer.phone, "email": payer.email},
            "description": f"Payment for order {order_number}",
            "success_url": self._redirect_url("success", order_number),
            "cancel_url": self._redirect_url("cancel", order_number),
            "public_key": self.settings.fapshi_public_key,
        }
        if self.settings.fapshi_webhook_url:
            body["webhook_url"] = self.settings.fapshi_webhook_url

        response = await self._request(
            "POST",
            f"{self.base_url}/v1/payments",
            "initiate_payment",
            headers={"Content-Type": "application/json"},
            json=body,
        )
        data = self._json(response, self.provider)
        if not isinstance(data, dict):
            data = {}

        checkout_url = data.get("checkout_url") or data.get("payment_url") or data.get("url")
        if not checkout_url:
            raise GatewayUnavailable(
                "Fapshi did not return a checkout URL",
                provider=self.provider,
                status_code=response.status_code,
                detail=data,
            )
        reference = str(data.get("reference") or data.get("id") or order_number)

        logger.info(
            "payment_initiated",
            provider=self.provider,
            order_number=order_number,
            provider_reference=reference,
            amount=amount,
        )
        return PaymentInitiation(
            provider_reference=reference,
            checkout_url=checkout_url,
            raw_response=data,
        )

    async def fetch_status(self, provider_reference: str) -> NormalizedEvent:
        headers = {"apikey": self.settings.fapshi_secret_key}
        if self.settings.fapshi_api_user:
            headers["apiuser"] = self.settings.fapshi_api_user

        response = await self._request(
            "GET",
            f"{self.base_url}/payment-status/{provider_reference}",
            "query_status",
            headers=headers,
        )
        data = self._json(response, self.provider)
        # The status endpoint answers either an object or a one-element list
        if isinstance(data, list):
            data = data[0] if data else {}
        if not isinstance(data, dict):
            data = {}

        return self._event(
            provider_status=data.get("status"),
            order_number=data.get("reference") or data.get("externalId"),
            provider_reference=provider_reference,
            amount=parse_amount(data.get("amount")),
            payload=data,
            source=EventSource.POLL,
        )

    def parse_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> NormalizedEvent:
        secret = self.settings.fapshi_webhook_secret
        if secret:
            header_map = lower_headers(headers)
            signature = next(
                (header_map[name] for name in SIGNATURE_HEADERS if header_map.get(name)), None
            )
            verify_signature(secret, raw_body, signature)

        payload = load_json_object(raw_body)
        data = payload.get("data") if isinstance(payload.get("data"), dict) else payload

        order_number = data.get("reference") or data.get("externalId")
        status = data.get("status")
        if not order_number:
            raise MalformedPayload("Fapshi webhook has no reference")
        if not status:
            raise MalformedPayload("Fapshi webhook has no status")

        session_id = data.get("transId") or data.get("session_id") or data.get("id")
        return self._event(
            provider_status=str(status),
            order_number=str(order_number),
            provider_reference=str(session_id) if session_id else None,
            amount=parse_amount(data.get("amount")),
            payload=payload,
            source=EventSource.WEBHOOK,
        )
