"""
Encrypted, self-contained playback tokens.

A token is the unpadded base64url form of a Fernet token (AES-128-CBC with
an HMAC-SHA256 tag) whose plaintext is the JSON of the grant plus an
absolute ``exp`` timestamp. The Fernet key is derived from the server
secret. Nothing is stored server side and the payload is unreadable to the
client; verification is a pure function of the token and the secret.
"""
import base64
import binascii
import hashlib
import json
import logging
import secrets
import time
from typing import Callable, Optional

from cryptography.fernet import Fernet, InvalidToken
from pydantic import TypeAdapter, ValidationError

from streamvault.config import get_settings
from streamvault.models.playback import PlaybackGrant

logger = logging.getLogger(__name__)

_grant_adapter: TypeAdapter = TypeAdapter(PlaybackGrant)


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode((data + padding).encode("ascii"))


def derive_fernet_key(secret: str) -> bytes:
    """Fernet key for a server secret of any length."""
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


class PlaybackTokenCodec:
    """Issues and verifies playback grants."""

    def __init__(self, secret: str, clock: Callable[[], float] = time.time):
        if not secret:
            raise ValueError("Playback token secret must not be empty")
        self._fernet = Fernet(derive_fernet_key(secret))
        self._clock = clock

    def issue(self, grant: PlaybackGrant, ttl_seconds: int) -> str:
        """Mint a token for ``grant`` expiring ``ttl_seconds`` from now."""
        now = int(self._clock())
        payload = grant.model_dump(mode="json", by_alias=True)
        payload["exp"] = now + int(ttl_seconds)
        plaintext = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
        fernet_token = self._fernet.encrypt_at_time(plaintext, now)
        return _b64url_encode(base64.urlsafe_b64decode(fernet_token))

    def verify(self, token: str) -> Optional[PlaybackGrant]:
        """Return the grant carried by ``token``, or None if it is not valid now."""
        if not token or not token.isascii():
            return None
        try:
            raw = _b64url_decode(token)
        except (binascii.Error, ValueError):
            return None
        # Only the canonical encoding is accepted so unused pad bits cannot be altered
        if _b64url_encode(raw) != token:
            return None

        try:
            plaintext = self._fernet.decrypt(base64.urlsafe_b64encode(raw))
        except InvalidToken:
            return None

        try:
            payload = json.loads(plaintext)
        except (ValueError, UnicodeError):
            return None
        if not isinstance(payload, dict):
            return None

        exp = payload.pop("exp", None)
        if not isinstance(exp, int) or exp <= self._clock():
            return None

        try:
            return _grant_adapter.validate_python(payload)
        except ValidationError:
            logger.warning(f"Rejected token with unrecognized payload kind {payload.get('kind')!r}")
            return None

    def verify_kind(self, token: str, *kinds: str) -> Optional[PlaybackGrant]:
        """Verify ``token`` and additionally require one of ``kinds``."""
        grant = self.verify(token)
        if grant is None or grant.kind not in kinds:
            return None
        return grant


# Singleton
_token_codec: Optional[PlaybackTokenCodec] = None


def get_token_codec() -> PlaybackTokenCodec:
    """Get or create the token codec singleton."""
    global _token_codec
    if _token_codec is None:
        secret = get_settings().playback_token_secret.strip()
        if not secret:
            logger.warning(
                "STREAMVAULT_PLAYBACK_TOKEN_SECRET is not set; using a per-process secret. "
                "Tokens will not verify across instances or restarts."
            )
            secret = secrets.token_urlsafe(32)
        _token_codec = PlaybackTokenCodec(secret)
    return _token_codec
