"""
Shared FastAPI dependencies: client identification, rate limiting,
playback surface switches and the mobile API gate.
"""
import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from streamvault.config import Settings, get_settings
from streamvault.services.api_auth import MobileApiGate, get_mobile_gate
from streamvault.services.player_settings import PlayerSettingsSource, Surface, get_player_settings
from streamvault.services.rate_limiter import FixedWindowRateLimiter, RateLimitResult, get_rate_limiter

logger = logging.getLogger(__name__)

NO_STORE = {"Cache-Control": "no-store"}
PLAYBACK_UNAVAILABLE = "Playback is currently unavailable"


def client_identifier(request: Request) -> str:
    """Client IP as seen through the edge: first X-Forwarded-For hop, then X-Real-IP, then CF-Connecting-IP."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header, "").strip()
        if value:
            return value
    return get_remote_address(request) or "unknown"


# Per-process limiter for browse endpoints
limiter = Limiter(key_func=client_identifier)


def browse_rate_limit() -> str:
    return f"{get_settings().rate_limit_per_minute}/minute"


def rate_limit(namespace: str, limit_for: Callable[[Settings], int], window_seconds: int = 60):
    """Build a dependency that counts the request in a fixed window and rejects with 429."""

    async def check_rate_limit(
        request: Request,
        rate_limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
        settings: Settings = Depends(get_settings),
    ) -> RateLimitResult:
        identifier = client_identifier(request)
        result = await rate_limiter.check(namespace, identifier, limit_for(settings), window_seconds)
        if not result.allowed:
            logger.info(f"Rate limited {namespace} ({result.provider}): {result.count}/{result.limit}")
            raise HTTPException(
                status_code=429,
                detail="Too many requests",
                headers={**NO_STORE, "Retry-After": str(result.retry_after_seconds)},
            )
        return result

    return check_rate_limit


def require_playback_enabled(surface: Surface):
    """Build a dependency that answers 503 while playback is switched off for ``surface``."""

    def check_playback_enabled(player_settings: PlayerSettingsSource = Depends(get_player_settings)):
        if not player_settings.is_playback_enabled(surface):
            raise HTTPException(status_code=503, detail=PLAYBACK_UNAVAILABLE, headers=NO_STORE)

    return check_playback_enabled


async def require_mobile_api_key(request: Request, gate: MobileApiGate = Depends(get_mobile_gate)):
    rejection = gate.authorize(request.headers)
    if rejection is not None:
        raise rejection
