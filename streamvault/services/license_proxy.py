"""
DRM license proxy service.

Redeems license tokens minted by the playback resolver. ClearKey licenses are
synthesized locally; Widevine challenges are forwarded once to the upstream
license server with the secret headers attached.
"""
import logging
from typing import Optional

import httpx
from fastapi import HTTPException
from fastapi.responses import Response

from streamvault.models.playback import ClearKeyLicenseGrant, WidevineLicenseGrant
from streamvault.services.clearkey import build_clearkey_license
from streamvault.services.playback_tokens import PlaybackTokenCodec, get_token_codec

logger = logging.getLogger(__name__)

NO_STORE = {"Cache-Control": "no-store"}


def license_error(status_code: int, detail: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail=detail, headers=NO_STORE)


class LicenseProxyService:
    """Service to broker DRM license requests without exposing license servers."""

    CONNECT_TIMEOUT = 15.0
    READ_TIMEOUT = 30.0

    def __init__(self, tokens: PlaybackTokenCodec, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._tokens = tokens
        self._transport = transport

    async def redeem(
        self,
        token: Optional[str],
        method: str = "GET",
        body: Optional[bytes] = None,
        content_type: Optional[str] = None,
    ) -> Response:
        """Redeem a license token. The caller has already checked the surface flag."""
        token = (token or "").strip()
        if not token:
            raise license_error(400, "Missing playback token")

        grant = self._tokens.verify(token)
        if grant is None:
            raise license_error(403, "Invalid or expired playback token")

        if isinstance(grant, ClearKeyLicenseGrant):
            license_json = build_clearkey_license((pair.key_id, pair.key) for pair in grant.keys)
            if license_json is None:
                raise license_error(422, "Invalid clearkey payload")
            return Response(content=license_json, media_type="application/json", headers=NO_STORE)

        if isinstance(grant, WidevineLicenseGrant):
            return await self._forward(grant, method, body, content_type)

        raise license_error(422, "Unsupported token type for license endpoint")

    async def _forward(
        self,
        grant: WidevineLicenseGrant,
        method: str,
        body: Optional[bytes],
        content_type: Optional[str],
    ) -> Response:
        headers = {**grant.license_headers, "Accept": "*/*"}
        if method == "POST":
            headers["Content-Type"] = content_type or "application/octet-stream"

        # License servers meter requests: a single attempt, never retried
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.CONNECT_TIMEOUT, read=self.READ_TIMEOUT),
                transport=self._transport,
            ) as client:
                upstream = await client.request(
                    method,
                    grant.license_url,
                    headers=headers,
                    content=body if method == "POST" else None,
                )
        except httpx.HTTPError as e:
            logger.warning(f"License upstream request failed: {type(e).__name__}")
            raise license_error(502, f"License proxy error: {type(e).__name__}")

        if not upstream.is_success:
            logger.info(f"License upstream answered {upstream.status_code}")

        return Response(
            content=upstream.content,
            status_code=upstream.status_code,
            media_type=upstream.headers.get("content-type", "application/octet-stream"),
            headers=NO_STORE,
        )


# Singleton
_license_proxy: Optional[LicenseProxyService] = None


def get_license_proxy() -> LicenseProxyService:
    """Get or create the license proxy singleton."""
    global _license_proxy
    if _license_proxy is None:
        _license_proxy = LicenseProxyService(get_token_codec())
    return _license_proxy
