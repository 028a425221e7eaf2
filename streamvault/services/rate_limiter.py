"""
Fixed-window rate limiter.

Counts requests per ``(namespace, window start, identifier)``. The preferred
backend is a distributed counter store reached over an Upstash-compatible
REST API; when it is unconfigured or failing, counting continues in process
so the protected endpoints stay available.
"""
import logging
import threading
import time
from typing import Callable, Optional, Protocol

import httpx
from pydantic import BaseModel

from streamvault.config import get_settings

logger = logging.getLogger(__name__)


class CounterBackendError(Exception):
    """Raised when a counter backend cannot produce a count."""


class CounterBackend(Protocol):
    name: str

    async def incr(self, key: str, ttl_seconds: int) -> int:
        """Atomically increment ``key`` and return the new count."""
        ...


class RateLimitResult(BaseModel):
    allowed: bool
    count: int
    limit: int
    retry_after_seconds: int
    provider: str


class MemoryCounterBackend:
    """In-process counters, pruned of expired windows as the map grows."""

    name = "memory"
    PRUNE_THRESHOLD = 2048

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def _prune(self, now: float):
        if len(self._entries) < self.PRUNE_THRESHOLD:
            return
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]

    async def incr(self, key: str, ttl_seconds: int) -> int:
        now = self._clock()
        with self._lock:
            self._prune(now)
            count, expires_at = self._entries.get(key, (0, now + ttl_seconds))
            if expires_at <= now:
                count, expires_at = 0, now + ttl_seconds
            count += 1
            self._entries[key] = (count, expires_at)
            return count


class RestCounterBackend:
    """Counter store spoken to over the Upstash REST protocol."""

    name = "rest"
    # Keys outlive their window slightly so a late INCR cannot resurrect a count
    EXPIRE_BUFFER_SECONDS = 5

    def __init__(
        self,
        url: str,
        token: str,
        timeout: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._url = url.strip().rstrip("/")
        self._token = token.strip()
        self._timeout = timeout
        self._transport = transport

    async def _pipeline(self, client: httpx.AsyncClient, *commands: list) -> list:
        """Send ``commands`` in one round trip and return the per-command replies."""
        response = await client.post(
            f"{self._url}/pipeline",
            headers={"Authorization": f"Bearer {self._token}"},
            json=[list(command) for command in commands],
        )
        if not response.is_success:
            raise CounterBackendError(f"Counter store answered HTTP {response.status_code}")
        try:
            body = response.json()
        except ValueError:
            raise CounterBackendError("Counter store returned a non-JSON body")
        if not isinstance(body, list) or len(body) != len(commands) or not all(isinstance(r, dict) for r in body):
            raise CounterBackendError("Counter store returned a malformed pipeline reply")
        return body

    async def incr(self, key: str, ttl_seconds: int) -> int:
        # EXPIRE NX leaves an existing TTL untouched
        ttl = ttl_seconds + self.EXPIRE_BUFFER_SECONDS
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                incr_reply, expire_reply = await self._pipeline(
                    client,
                    ["INCR", key],
                    ["EXPIRE", key, ttl, "NX"],
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise CounterBackendError(f"Counter store request failed: {type(e).__name__}") from e

        if "result" not in incr_reply:
            raise CounterBackendError(f"Counter store rejected INCR: {incr_reply.get('error')!r}")
        try:
            count = int(incr_reply["result"])
        except (TypeError, ValueError):
            raise CounterBackendError(f"Counter store returned non-integer count {incr_reply['result']!r}")
        if "error" in expire_reply:
            logger.warning(f"Counter store rejected EXPIRE for {key}: {expire_reply['error']}")
        return count


class FixedWindowRateLimiter:
    """
    Two-tier fixed-window limiter.

    The primary backend is consulted when present and healthy; any backend
    failure answers the current call from the fallback and benches the
    primary for ``cooldown_seconds``.
    """

    def __init__(
        self,
        primary: Optional[CounterBackend] = None,
        fallback: Optional[MemoryCounterBackend] = None,
        clock: Callable[[], float] = time.time,
        cooldown_seconds: float = 30.0,
    ):
        self._primary = primary
        self._clock = clock
        self._fallback = fallback or MemoryCounterBackend(clock=clock)
        self._cooldown = cooldown_seconds
        self._primary_benched_until = 0.0

    @property
    def primary_configured(self) -> bool:
        return self._primary is not None

    def _primary_available(self, now: float) -> bool:
        return self._primary is not None and now >= self._primary_benched_until

    async def check(self, namespace: str, identifier: str, limit: int, window_seconds: int) -> RateLimitResult:
        """Count one request and report whether it is within ``limit``."""
        window_seconds = max(1, int(window_seconds))
        now = self._clock()
        now_sec = int(now)
        window_start = (now_sec // window_seconds) * window_seconds
        retry_after = max(1, window_start + window_seconds - now_sec)
        key = f"{namespace}:{window_start}:{identifier}"

        backend: CounterBackend = self._fallback
        count: Optional[int] = None
        if self._primary_available(now):
            try:
                count = await self._primary.incr(key, retry_after)
                backend = self._primary
            except CounterBackendError as e:
                self._primary_benched_until = now + self._cooldown
                logger.warning(f"Rate limit store failed ({e}); using in-process counters")

        if count is None:
            count = await self._fallback.incr(key, retry_after)

        return RateLimitResult(
            allowed=count <= limit,
            count=count,
            limit=limit,
            retry_after_seconds=retry_after,
            provider=backend.name,
        )


# Singleton
_rate_limiter: Optional[FixedWindowRateLimiter] = None


def get_rate_limiter() -> FixedWindowRateLimiter:
    """Get or create the rate limiter singleton."""
    global _rate_limiter
    if _rate_limiter is None:
        settings = get_settings()
        primary = None
        if settings.kv_configured:
            primary = RestCounterBackend(
                settings.kv_rest_url,
                settings.kv_rest_token,
                timeout=settings.kv_timeout_seconds,
            )
        else:
            logger.info("No distributed counter store configured; rate limiting in process")
        _rate_limiter = FixedWindowRateLimiter(primary=primary)
    return _rate_limiter
