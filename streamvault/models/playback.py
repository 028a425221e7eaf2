"""
Playback descriptor and playback grant (token payload) models.
"""
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class DrmType(str, Enum):
    NONE = "none"
    WIDEVINE = "widevine"
    CLEARKEY = "clearkey"


class DrmInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: DrmType = DrmType.NONE
    license_proxy_url: Optional[str] = Field(default=None, alias="licenseProxyUrl")


class PlaybackDescriptor(BaseModel):
    """Client-safe playback instructions produced by the resolver."""
    model_config = ConfigDict(populate_by_name=True)

    stream_url: str = Field(alias="streamUrl")
    should_proxy: bool = Field(alias="shouldProxy")
    proxy_token: Optional[str] = Field(default=None, alias="proxyToken")
    drm: DrmInfo = Field(default_factory=DrmInfo)


class PlaybackResolveResponse(PlaybackDescriptor):
    channel_id: str = Field(alias="channelId")


# ==================== PLAYBACK GRANTS ====================

class ClearKeyPair(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    key_id: str = Field(alias="keyId")
    key: str


class ClearKeyLicenseGrant(BaseModel):
    """Symmetric key material for a locally synthesized license, one pair per KID."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: Literal["clearkey-license"] = "clearkey-license"
    keys: tuple[ClearKeyPair, ...] = ()


class WidevineLicenseGrant(BaseModel):
    """Upstream license server and the headers it expects."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: Literal["widevine-license"] = "widevine-license"
    license_url: str = Field(alias="licenseUrl")
    license_headers: dict[str, str] = Field(default_factory=dict, alias="licenseHeaders")


class StreamProxyGrant(BaseModel):
    """
    Custom request headers the stream proxy injects upstream, and the upstream
    hosts they may be sent to.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: Literal["stream-proxy"] = "stream-proxy"
    headers: dict[str, str] = Field(default_factory=dict)
    allowed_hosts: tuple[str, ...] = Field(default=(), alias="allowedHosts")

    def allows(self, hostname: str) -> bool:
        return (hostname or "").lower().rstrip(".") in self.allowed_hosts


PlaybackGrant = Annotated[
    Union[ClearKeyLicenseGrant, WidevineLicenseGrant, StreamProxyGrant],
    Field(discriminator="kind"),
]

LICENSE_GRANT_KINDS = ("clearkey-license", "widevine-license")
