"""
In-memory bearer credential cache with single-flight refresh.

Concurrent callers that find the credential missing or expired wait on
one shared refresh instead of each authenticating on their own.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog

from monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

# Refresh slightly before the provider-declared expiry
DEFAULT_LEEWAY_SECONDS = 30.0


@dataclass(frozen=True)
class Credential:
    """A bearer token and the monotonic time it stops being usable."""

    token: str
    expires_at: Optional[float] = None  # None = never expires

    @classmethod
    def from_expires_in(
        cls,
        token: str,
        expires_in: Optional[float],
        leeway: float = DEFAULT_LEEWAY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> "Credential":
        if expires_in is None:
            return cls(token=token)
        return cls(token=token, expires_at=clock() + max(float(expires_in) - leeway, 0.0))

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class CredentialCache:
    """
    Holds one credential per gateway instance.

    ``invalidate`` is called when the provider answers 401, so the next
    ``get`` re-authenticates. Only the rejected credential is dropped: if
    another caller already refreshed it, the fresh one is kept.
    """

    def __init__(
        self,
        provider: str,
        fetch: Callable[[], Awaitable[Credential]],
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize credential cache.

        Args:
            provider: Provider name for logs and metrics
            fetch: Coroutine function performing the actual authentication
            clock: Monotonic clock (tests)
        """
        self.provider = provider
        self._fetch = fetch
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._lock = asyncio.Lock()

    def _usable(self) -> Optional[Credential]:
        credential = self._credential
        if credential is not None and not credential.is_expired(self._clock()):
            return credential
        return None

    async def get(self) -> Credential:
        """Return a valid credential, refreshing it at most once at a time."""
        credential = self._usable()
        if credential is not None:
            return credential

        async with self._lock:
            # Another caller may have refreshed while we waited
            credential = self._usable()
            if credential is not None:
                return credential

            logger.info("gateway_credential_refresh", provider=self.provider)
            credential = await self._fetch()
            self._credential = credential
            metrics.record_token_refresh(self.provider)
            return credential

    def invalidate(self, credential: Optional[Credential] = None) -> None:
        """Drop the cached credential (only if it is ``credential``, when given)."""
        if credential is None or self._credential is credential:
            self._credential = None
