"""
Notification transport: invokes a named sending function over HTTP.

Rendering and delivery (email, SMS, push) happen behind the function;
here it is a black box that succeeds or raises.
"""
from typing import Any, Dict, Optional, Protocol

import httpx
import structlog

from config import Settings

logger = structlog.get_logger(__name__)


class NotificationTransportError(Exception):
    """Raised when a sending function did not accept the request."""

    def __init__(self, function_name: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{function_name}: {message}")
        self.function_name = function_name
        self.status_code = status_code


class NotificationTransport(Protocol):
    """Anything that can invoke a sending function by name."""

    async def send(self, function_name: str, payload: Dict[str, Any]) -> None:
        ...


class HttpFunctionTransport:
    """POSTs the payload to ``{notification_base_url}/{function_name}``."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        """
        Initialize HTTP transport.

        Args:
            settings: Application settings
            http_client: Shared async HTTP client
        """
        self.base_url = settings.notification_base_url.rstrip("/")
        self.api_key = settings.notification_api_key
        self.timeout = httpx.Timeout(settings.notification_timeout_seconds)
        self.http = http_client

    async def send(self, function_name: str, payload: Dict[str, Any]) -> None:
        """
        Invoke one sending function.

        Raises:
            NotificationTransportError: Non-2xx answer or network failure
        """
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = await self.http.post(
                f"{self.base_url}/{function_name}",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise NotificationTransportError(function_name, str(e)) from e

        if response.is_error:
            raise NotificationTransportError(
                function_name,
                f"returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        logger.debug("notification_function_invoked", function=function_name)
