"""
MTN Mobile Money collection adapter.

Token exchange with Basic auth, request-to-pay keyed by an
``X-Reference-Id`` we generate, status polling by that reference and
unsigned JSON callbacks (optionally signed through a shared secret).
"""
import uuid
from typing import Any, Dict, Mapping, Optional

import httpx
import structlog

from core.exceptions import AuthError, GatewayRejected, MalformedPayload
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

SIGNATURE_HEADER = "x-callback-signature"


def normalize_msisdn(phone: str, country_prefix: str = "237") -> str:
    """
    Format a phone number the way MoMo expects it (``237XXXXXXXXX``).

    Whitespace, dashes and a leading ``+`` are removed, leading zeros are
    dropped and the country prefix is added when missing.
    """
    digits = "".join(phone.split()).replace("-", "")
    if digits.startswith("+"):
        digits = digits[1:]
    if digits.startswith(country_prefix):
        return digits
    return country_prefix + digits.lstrip("0")


class MtnMomoGateway(PaymentGateway):
    """MTN MoMo collection API."""

    method = PaymentMethod.MTN_MOMO
    status_map = {
        "PENDING": CanonicalStatus.PENDING,
        "SUCCESSFUL": CanonicalStatus.PAID,
        "FAILED": CanonicalStatus.FAILED,
        "REJECTED": CanonicalStatus.FAILED,
        "TIMEOUT": CanonicalStatus.FAILED,
    }
    required_settings = (
        "mtn_momo_api_user",
        "mtn_momo_api_key",
        "mtn_momo_subscription_key",
    )

    @property
    def base_url(self) -> str:
        return self.settings.mtn_momo_base_url.rstrip("/")

    def _collection_headers(self) -> Dict[str, str]:
        return {
            "Ocp-Apim-Subscription-Key": self.settings.mtn_momo_subscription_key,
            "X-Target-Environment": self.settings.mtn_momo_environment,
        }

    @staticmethod
    def _status_key(provider_status: str) -> str:
        return str(provider_status).strip().upper()

    async def _fetch_credential(self) -> Credential:
        response = await self._send(
            "POST",
            f"{self.base_url}/collection/token/",
            "authenticate",
            auth=httpx.BasicAuth(self.settings.mtn_momo_api_user, self.settings.mtn_momo_api_key),
            headers={"Ocp-Apim-Subscription-Key": self.settings.mtn_momo_subscription_key},
        )
        if response.status_code in (401, 403):
            raise AuthError(
                "MTN MoMo rejected API user credentials",
                provider=self.provider,
                status_code=response.status_code,
            )
        self._raise_for_client_error(response, "authenticate")

        data = self._json(response, self.provider)
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise AuthError("MTN MoMo token response has no access_token", provider=self.provider)

        return Credential.from_expires_in(token, data.get("expires_in"))

    def new_correlation_id(self, order_number: str) -> Optional[str]:
        return str(uuid.uuid4())

    async def initiate_payment(
        self,
        order_number: str,
        amount: int,
        currency: str,
        payer: Payer,
        correlation_id: Optional[str] = None,
    ) -> PaymentInitiation:
        reference_id = correlation_id or str(uuid.uuid4())
        body = {
            "amount": str(amount),
            "currency": currency,
            "externalId": order_number,
            "payer": {
                "partyIdType": "MSISDN",
                "partyId": normalize_msisdn(payer.phone, self.settings.mtn_momo_phone_prefix),
            },
            "payerMessage": f"Payment for order {order_number}",
            "payeeNote": f"Order {order_number}",
        }
        headers = {
            **self._collection_headers(),
            "X-Reference-Id": reference_id,
            "Content-Type": "application/json",
        }
        if self.settings.mtn_momo_callback_url:
            headers["X-Callback-Url"] = self.settings.mtn_momo_callback_url

        try:
            await self._request(
                "POST",
                f"{self.base_url}/collection/v1_0/requesttopay",
                "initiate_payment",
                headers=headers,
                json=body,
            )
        except GatewayRejected as e:
            # A retry after a lost response: the reference already exists
            if e.status_code != 409:
                raise
            logger.info(
                "momo_request_already_exists",
                order_number=order_number,
                provider_reference=reference_id,
            )

        logger.info(
            "payment_initiated",
            provider=self.provider,
            order_number=order_number,
            provider_reference=reference_id,
            amount=amount,
        )
        return PaymentInitiation(provider_reference=reference_id, raw_response=body)

    async def fetch_status(self, provider_reference: str) -> NormalizedEvent:
        response = await self._request(
            "GET",
            f"{self.base_url}/collection/v1_0/requesttopay/{provider_reference}",
            "query_status",
            headers=self._collection_headers(),
        )
        data = self._json(response, self.provider)
        if not isinstance(data, dict):
            data = {}

        return self._event(
            provider_status=data.get("status"),
            order_number=data.get("externalId"),
            provider_reference=provider_reference,
            amount=parse_amount(data.get("amount")),
            payload=data,
            source=EventSource.POLL,
        )

    def parse_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> NormalizedEvent:
        secret = self.settings.mtn_momo_callback_secret
        if secret:
            verify_signature(secret, raw_body, lower_headers(headers).get(SIGNATURE_HEADER))

        payload: Dict[str, Any] = load_json_object(raw_body)
        reference = payload.get("referenceId")
        order_number = payload.get("externalId")
        status = payload.get("status")

        if not status:
            raise MalformedPayload("MoMo callback has no status")
        if not reference and not order_number:
            raise MalformedPayload("MoMo callback has neither referenceId nor externalId")

        return self._event(
            provider_status=str(status),
            order_number=str(order_number) if order_number else None,
            provider_reference=str(reference) if reference else None,
            amount=parse_amount(payload.get("amount")),
            payload=payload,
            source=EventSource.WEBHOOK,
        )
