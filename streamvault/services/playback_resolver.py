"""
Playback resolution: turns a full (public + private) record into a
client-safe playback descriptor.

DRM classification is an explicit table over the record's free-text stream
kind and its license field:

    license field   stream kind tokens        result
    -------------   -----------------------   --------
    empty           anything                  none
    present         contains clearkey / ck    clearkey
    key material    anything else             clearkey
    present         contains widevine / wv    widevine
    present         anything else / unknown   widevine
"""
import logging
import re
from typing import Iterable, Optional
from urllib.parse import urlencode, urlparse

from streamvault.config import get_settings
from streamvault.models.channel import ChannelRecord
from streamvault.models.playback import (
    ClearKeyLicenseGrant,
    ClearKeyPair,
    DrmInfo,
    DrmType,
    PlaybackDescriptor,
    StreamProxyGrant,
    WidevineLicenseGrant,
)
from streamvault.services.clearkey import looks_like_clearkey_material, parse_clearkey_material
from streamvault.services.header_blob import headers_from_blob
from streamvault.services.playback_tokens import PlaybackTokenCodec, get_token_codec
from streamvault.services.stream_proxy import build_proxy_url

logger = logging.getLogger(__name__)

WEB_PROXY_PATH = "/api/proxy"
WEB_LICENSE_PATH = "/api/v1/playback/license"

CLEARKEY_HINTS = frozenset({"clearkey", "ck"})


def _hint_tokens(stream_kind: str) -> set[str]:
    return {token for token in re.split(r"[^a-z0-9]+", (stream_kind or "").lower()) if token}


def classify_drm(stream_kind: str, license_url: str) -> DrmType:
    """Classify the DRM scheme of a record (see module docstring)."""
    license_value = (license_url or "").strip()
    if not license_value:
        return DrmType.NONE

    tokens = _hint_tokens(stream_kind)
    if tokens & CLEARKEY_HINTS:
        return DrmType.CLEARKEY
    if looks_like_clearkey_material(license_value):
        return DrmType.CLEARKEY
    return DrmType.WIDEVINE


class PlaybackResolver:
    """Builds playback descriptors and mints the grants they reference."""

    def __init__(
        self,
        tokens: PlaybackTokenCodec,
        force_proxy_domains: Iterable[str] = (),
        license_ttl_seconds: int = 300,
        proxy_ttl_seconds: int = 6 * 60 * 60,
    ):
        self._tokens = tokens
        self._force_proxy_domains = [d.strip().lower() for d in force_proxy_domains if d.strip()]
        self._license_ttl = license_ttl_seconds
        self._proxy_ttl = proxy_ttl_seconds

    def _is_force_proxy_host(self, url: str) -> bool:
        hostname = (urlparse(url).hostname or "").lower()
        if not hostname:
            return False
        return any(hostname == d or hostname.endswith(f".{d}") for d in self._force_proxy_domains)

    def _license_proxy_url(self, license_path: str, grant) -> str:
        token = self._tokens.issue(grant, self._license_ttl)
        return f"{license_path}?{urlencode({'token': token})}"

    def _clearkey_grant(self, record: ChannelRecord) -> ClearKeyLicenseGrant:
        pairs = parse_clearkey_material(record.license_url)
        if not pairs:
            # The license proxy answers 422 for this grant
            logger.warning(f"Record {record.id} has unusable clearkey material")
        return ClearKeyLicenseGrant(keys=tuple(ClearKeyPair(key_id=key_id, key=key) for key_id, key in pairs))

    def resolve(
        self,
        record: ChannelRecord,
        proxy_path: str = WEB_PROXY_PATH,
        license_path: str = WEB_LICENSE_PATH,
    ) -> PlaybackDescriptor:
        """
        Resolve a record with a non-empty stream URL into a descriptor.

        The descriptor never carries the license URL, custom headers or key
        material; those travel inside signed tokens only.
        """
        stream_url = record.stream_url.strip()
        stream_headers = headers_from_blob(record.stream_headers)

        should_proxy = stream_url.lower().startswith(("http://", "https://")) and (
            bool(stream_headers) or self._is_force_proxy_host(stream_url)
        )
        if should_proxy:
            grant = StreamProxyGrant(
                headers=stream_headers,
                allowed_hosts=((urlparse(stream_url).hostname or "").lower().rstrip("."),),
            )
            proxy_token = self._tokens.issue(grant, self._proxy_ttl)
            stream_url = build_proxy_url(proxy_path, stream_url, proxy_token)

        drm_type = classify_drm(record.stream_kind, record.license_url)
        license_proxy_url: Optional[str] = None
        if drm_type == DrmType.WIDEVINE:
            grant = WidevineLicenseGrant(
                license_url=record.license_url.strip(),
                license_headers=headers_from_blob(record.license_headers),
            )
            license_proxy_url = self._license_proxy_url(license_path, grant)
        elif drm_type == DrmType.CLEARKEY:
            license_proxy_url = self._license_proxy_url(license_path, self._clearkey_grant(record))

        logger.info(f"Resolved playback for {record.id}: proxy={should_proxy} drm={drm_type.value}")
        return PlaybackDescriptor(
            stream_url=stream_url,
            should_proxy=should_proxy,
            proxy_token=None,
            drm=DrmInfo(type=drm_type, license_proxy_url=license_proxy_url),
        )


# Singleton
_resolver: Optional[PlaybackResolver] = None


def get_playback_resolver() -> PlaybackResolver:
    """Get or create the playback resolver singleton."""
    global _resolver
    if _resolver is None:
        settings = get_settings()
        _resolver = PlaybackResolver(
            get_token_codec(),
            force_proxy_domains=settings.force_proxy_domains,
            license_ttl_seconds=settings.license_token_ttl_seconds,
            proxy_ttl_seconds=settings.proxy_token_ttl_seconds,
        )
    return _resolver
