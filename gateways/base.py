"""
Payment gateway adapter interface.

Every provider adapter exposes the same capabilities:
- authenticate: obtain or reuse a cached bearer credential
- initiate_payment: start the provider-side transaction
- query_status / fetch_status: map the provider status to the canonical set
- parse_webhook: verify the signature and normalize a callback payload

HTTP calls go through ``_request`` which bounds every call with the
configured timeout, maps transport errors and 5xx to ``GatewayUnavailable``
and 4xx to ``GatewayRejected``, and treats a 401 as an expired credential:
re-authenticate and retry exactly once.
"""
import hashlib
import hmac
import json
import time
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple

import httpx
import structlog

from config import Settings
from core.exceptions import (
    AuthError,
    ConfigError,
    GatewayRejected,
    GatewayUnavailable,
    InvalidSignature,
    MalformedPayload,
)
from core.types import (
    CanonicalStatus,
    EventSource,
    NormalizedEvent,
    Payer,
    PaymentInitiation,
    PaymentMethod,
)
from gateways.credentials import Credential, CredentialCache
from monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

MAX_AMOUNT_DIGITS = 18


def compute_signature(secret: str, raw_body: bytes) -> str:
    """HMAC-SHA256 hex digest of the raw request body."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, raw_body: bytes, signature: Optional[str]) -> None:
    """
    Verify a webhook signature in constant time.

    Raises:
        InvalidSignature: If the signature is absent or does not match
    """
    if not signature:
        raise InvalidSignature("Missing webhook signature")

    provided = signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]

    # Bytes on both sides: compare_digest rejects non-ASCII str arguments
    expected = compute_signature(secret, raw_body).encode("ascii")
    if not hmac.compare_digest(expected, provided.lower().encode("utf-8", "replace")):
        raise InvalidSignature("Webhook signature mismatch")


def lower_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Case-insensitive view of request headers as a plain dict."""
    return {key.lower(): value for key, value in headers.items()}


def load_json_object(raw_body: bytes) -> Dict[str, Any]:
    """
    Decode a webhook body that must be a JSON object.

    Raises:
        MalformedPayload: If the body is not a JSON object
    """
    try:
        payload = json.loads(raw_body or b"")
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedPayload(f"Webhook body is not valid JSON: {e}")
    if not isinstance(payload, dict):
        raise MalformedPayload("Webhook body must be a JSON object")
    return payload


def parse_amount(value: Any) -> Optional[int]:
    """
    Amounts arrive as numbers or numeric strings; anything else is unknown.

    Parsed through ``Decimal`` so large integers stay exact. Infinities,
    NaN and magnitudes beyond any real payment map to unknown.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount.adjusted() >= MAX_AMOUNT_DIGITS:
        return None
    return int(amount)


class PaymentGateway(ABC):
    """
    Base class for payment provider adapters.

    Subclasses declare ``method``, an exhaustive ``status_map`` from the
    provider vocabulary to ``CanonicalStatus`` and the settings they need.
    """

    method: ClassVar[PaymentMethod]
    status_map: ClassVar[Dict[str, CanonicalStatus]] = {}
    required_settings: ClassVar[Tuple[str, ...]] = ()

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        """
        Initialize gateway adapter.

        Args:
            settings: Application settings
            http_client: Shared async HTTP client

        Raises:
            ConfigError: If required secrets are missing
        """
        missing = self.missing_settings(settings)
        if missing:
            raise ConfigError(
                f"{self.method.value} gateway is enabled but not configured",
                missing=missing,
            )
        self.settings = settings
        self.http = http_client
        self.credentials = CredentialCache(self.provider, self._fetch_credential)

    @classmethod
    def missing_settings(cls, settings: Settings) -> List[str]:
        """Names of required settings that are empty."""
        return [name for name in cls.required_settings if not getattr(settings, name, None)]

    @property
    def provider(self) -> str:
        return self.method.value

    @property
    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.settings.gateway_timeout_seconds)

    async def authenticate(self) -> Credential:
        """
        Obtain a bearer credential, reusing the cached one until it expires.

        Raises:
            AuthError: If credentials are missing or rejected
        """
        return await self.credentials.get()

    @abstractmethod
    async def _fetch_credential(self) -> Credential:
        """Perform the provider authentication call."""

    @abstractmethod
    async def initiate_payment(
        self,
        order_number: str,
        amount: int,
        currency: str,
        payer: Payer,
        correlation_id: Optional[str] = None,
    ) -> PaymentInitiation:
        """
        Start a provider-side transaction.

        ``correlation_id`` is reused by retries of the same initiation so
        the provider sees one transaction.

        Raises:
            GatewayUnavailable: Network error, timeout or 5xx
            GatewayRejected: The provider refused the request
            AuthError: Credentials rejected
        """

    @abstractmethod
    async def fetch_status(self, provider_reference: str) -> NormalizedEvent:
        """Query the provider and return the result as a poll event."""

    async def query_status(self, provider_reference: str) -> CanonicalStatus:
        """Current canonical status of a provider transaction."""
        event = await self.fetch_status(provider_reference)
        return event.canonical_status

    @abstractmethod
    def parse_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> NormalizedEvent:
        """
        Verify and normalize a webhook delivery.

        Raises:
            InvalidSignature: Signature missing or wrong
            MalformedPayload: Required fields absent
        """

    def new_correlation_id(self, order_number: str) -> Optional[str]:
        """Correlation id to reuse across retries, if the provider uses one."""
        return None

    def map_status(
        self, provider_status: Optional[str], provider_reference: Optional[str] = None
    ) -> CanonicalStatus:
        """
        Map a provider status to the canonical set.

        Anything absent from ``status_map`` is pending.
        """
        key = self._status_key(provider_status) if provider_status is not None else None
        status = self.status_map.get(key) if key else None
        if status is None:
            logger.warning(
                "unmapped_provider_status",
                provider=self.provider,
                provider_status=provider_status,
                provider_reference=provider_reference,
            )
            return CanonicalStatus.PENDING
        return status

    @staticmethod
    def _status_key(provider_status: str) -> str:
        return str(provider_status).strip()

    def _event(
        self,
        provider_status: Optional[str],
        order_number: Optional[str],
        provider_reference: Optional[str],
        amount: Optional[int],
        payload: Dict[str, Any],
        source: EventSource,
    ) -> NormalizedEvent:
        return NormalizedEvent(
            provider=self.method,
            canonical_status=self.map_status(provider_status, provider_reference),
            order_number=order_number,
            provider_reference=provider_reference,
            amount=amount,
            provider_status=provider_status,
            source=source,
            raw_payload=payload,
        )

    def _auth_headers(self, credential: Credential) -> Dict[str, str]:
        return {"Authorization": f"Bearer {credential.token}"}

    async def _send(
        self, method: str, url: str, operation: str, **kwargs: Any
    ) -> httpx.Response:
        """
        One bounded HTTP call with transport errors and 5xx mapped.

        Raises:
            GatewayUnavailable: Timeout, connection error or 5xx
        """
        start_time = time.time()
        try:
            response = await self.http.request(method, url, timeout=self.timeout, **kwargs)
        except httpx.TimeoutException as e:
            elapsed = time.time() - start_time
            metrics.record_gateway_call(self.provider, operation, "timeout", elapsed)
            metrics.record_gateway_error(self.provider, "unavailable")
            logger.warning("gateway_timeout", provider=self.provider, operation=operation)
            raise GatewayUnavailable(
                f"{self.provider} {operation} timed out", provider=self.provider
            ) from e
        except httpx.TransportError as e:
            metrics.record_gateway_call(self.provider, operation, "error", time.time() - start_time)
            metrics.record_gateway_error(self.provider, "unavailable")
            logger.warning(
                "gateway_transport_error",
                provider=self.provider,
                operation=operation,
                error=str(e),
            )
            raise GatewayUnavailable(
                f"{self.provider} {operation} failed: {e}", provider=self.provider
            ) from e

        metrics.record_gateway_call(
            self.provider, operation, str(response.status_code), time.time() - start_time
        )

        if response.status_code >= 500:
            metrics.record_gateway_error(self.provider, "unavailable")
            logger.warning(
                "gateway_server_error",
                provider=self.provider,
                operation=operation,
                status_code=response.status_code,
            )
            raise GatewayUnavailable(
                f"{self.provider} {operation} returned {response.status_code}",
                provider=self.provider,
                status_code=response.status_code,
                detail=self._error_detail(response),
            )
        return response

    async def _request(
        self, method: str, url: str, operation: str, **kwargs: Any
    ) -> httpx.Response:
        """
        Authenticated call with one re-authentication on 401.

        Raises:
            GatewayUnavailable: Timeout, connection error or 5xx
            GatewayRejected: Any other 4xx
            AuthError: Credential rejected twice
        """
        extra_headers = kwargs.pop("headers", None) or {}

        for attempt in (1, 2):
            credential = await self.authenticate()
            headers = {**extra_headers, **self._auth_headers(credential)}
            response = await self._send(method, url, operation, headers=headers, **kwargs)

            if response.status_code == 401:
                self.credentials.invalidate(credential)
                if attempt == 1:
                    logger.info(
                        "gateway_credential_rejected",
                        provider=self.provider,
                        operation=operation,
                    )
                    continue
                metrics.record_gateway_error(self.provider, "auth")
                raise AuthError(
                    f"{self.provider} rejected fresh credentials",
                    provider=self.provider,
                )

            self._raise_for_client_error(response, operation)
            return response

        # Unreachable: the second 401 raises above
        raise AuthError(f"{self.provider} authentication failed", provider=self.provider)

    def _raise_for_client_error(self, response: httpx.Response, operation: str) -> None:
        if 400 <= response.status_code < 500:
            detail = self._error_detail(response)
            metrics.record_gateway_error(self.provider, "rejected")
            logger.warning(
                "gateway_request_rejected",
                provider=self.provider,
                operation=operation,
                status_code=response.status_code,
                detail=detail,
            )
            raise GatewayRejected(
                f"{self.provider} {operation} rejected with {response.status_code}",
                provider=self.provider,
                status_code=response.status_code,
                detail=detail,
            )

    @staticmethod
    def _error_detail(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text[:500]

    @staticmethod
    def _json(response: httpx.Response, provider: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise GatewayUnavailable(
                f"{provider} returned a non-JSON response",
                provider=provider,
                status_code=response.status_code,
                detail=response.text[:500],
            ) from e
