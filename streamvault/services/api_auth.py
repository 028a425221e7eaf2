"""
Shared-secret gate for the mobile API surface.
"""
import hmac
import logging
from typing import Mapping, Optional

from fastapi import HTTPException

from streamvault.config import get_settings

logger = logging.getLogger(__name__)

MOBILE_API_HEADER = "X-Mobile-Api-Key"
NO_STORE = {"Cache-Control": "no-store"}


class MobileApiGate:
    """Compares a request header against the configured mobile API key."""

    def __init__(self, expected_key: Optional[str], header_name: str = MOBILE_API_HEADER):
        self._expected = (expected_key or "").strip()
        self.header_name = header_name

    def authorize(self, headers: Mapping[str, str]) -> Optional[HTTPException]:
        """Return None when authorized, otherwise the rejection to raise."""
        if not self._expected:
            logger.error("Mobile API request rejected: mobile API key is not configured")
            return HTTPException(status_code=503, detail="Mobile API key is not configured", headers=NO_STORE)

        provided = (headers.get(self.header_name) or "").strip()
        if not provided or not hmac.compare_digest(provided.encode(), self._expected.encode()):
            return HTTPException(status_code=401, detail="Unauthorized mobile API access", headers=NO_STORE)
        return None


def get_mobile_gate() -> MobileApiGate:
    return MobileApiGate(get_settings().mobile_api_key)
