"""
Mobile API endpoints.

Same playback flow as the web surface, gated by the mobile API key and the
mobile playback switch. URLs handed to the app are absolute.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from streamvault.dependencies import (
    NO_STORE,
    browse_rate_limit,
    limiter,
    rate_limit,
    require_mobile_api_key,
    require_playback_enabled,
)
from streamvault.models.channel import ChannelListResponse
from streamvault.models.playback import DrmType, PlaybackResolveResponse
from streamvault.routers.playback import forward_stream, load_playable_record, redeem_license
from streamvault.services.catalog import Catalog, get_catalog
from streamvault.services.license_proxy import LicenseProxyService, get_license_proxy
from streamvault.services.playback_resolver import PlaybackResolver, get_playback_resolver
from streamvault.services.sanitizer import sanitize_many
from streamvault.services.stream_proxy import StreamProxyService, get_proxy_service

MOBILE_PREFIX = "/api/mobile/v1"
MOBILE_PROXY_PATH = f"{MOBILE_PREFIX}/proxy"
MOBILE_LICENSE_PATH = f"{MOBILE_PREFIX}/playback/license"

router = APIRouter(
    prefix=MOBILE_PREFIX,
    tags=["mobile"],
    dependencies=[Depends(require_mobile_api_key)],
)

mobile_playback_enabled = Depends(require_playback_enabled("mobile"))


def to_absolute_url(request: Request, value: Optional[str]) -> str:
    normalized = (value or "").strip()
    if not normalized:
        return ""
    if normalized.startswith("/"):
        return f"{str(request.base_url).rstrip('/')}{normalized}"
    return normalized


def mobile_stream_kind(stream_kind: str, stream_url: str, drm_type: DrmType) -> str:
    """Suffix the stream kind with its DRM scheme, e.g. ``dash-widevine`` or ``hls-clearkey``."""
    base = (stream_kind or "").strip().lower() or "unknown"
    if drm_type == DrmType.NONE:
        return base
    if "dash" in base or ".mpd" in stream_url.lower():
        return f"dash-{drm_type.value}"
    return f"{base}-{drm_type.value}"


@router.get("/playback/resolve", dependencies=[mobile_playback_enabled])
async def resolve_playback(
    request: Request,
    id: Optional[str] = Query(None),
    catalog: Catalog = Depends(get_catalog),
    resolver: PlaybackResolver = Depends(get_playback_resolver),
):
    record = await load_playable_record(id, catalog)
    descriptor = resolver.resolve(record, proxy_path=MOBILE_PROXY_PATH, license_path=MOBILE_LICENSE_PATH)
    descriptor.stream_url = to_absolute_url(request, descriptor.stream_url)
    if descriptor.drm.license_proxy_url:
        descriptor.drm.license_proxy_url = to_absolute_url(request, descriptor.drm.license_proxy_url)
    payload = PlaybackResolveResponse(channel_id=record.id, **descriptor.model_dump())
    return JSONResponse(content=payload.model_dump(mode="json", by_alias=True), headers=NO_STORE)


@router.get("/playback", dependencies=[mobile_playback_enabled])
async def channel_playback(
    request: Request,
    id: Optional[str] = Query(None),
    catalog: Catalog = Depends(get_catalog),
    resolver: PlaybackResolver = Depends(get_playback_resolver),
):
    """Playback in the app's channel shape, with client-safe URLs in place of the raw ones."""
    record = await load_playable_record(id, catalog)
    descriptor = resolver.resolve(record, proxy_path=MOBILE_PROXY_PATH, license_path=MOBILE_LICENSE_PATH)

    is_event = record.is_live_event
    channel = {
        "id": record.id,
        "name": record.name,
        "image": record.image,
        "stream_url": to_absolute_url(request, descriptor.stream_url),
        "stream_kind": mobile_stream_kind(record.stream_kind, record.stream_url, descriptor.drm.type),
        "tagline": record.tagline,
        "subtitle": record.subtitle,
        "country_name": "Events" if is_event else record.country_name,
        "country_code": "EV" if is_event else record.country_code,
        "license_url": to_absolute_url(request, descriptor.drm.license_proxy_url),
        "proxy_token": None,
    }
    return JSONResponse(content={"channel": channel}, headers=NO_STORE)


@router.api_route("/playback/license", methods=["GET", "POST"], dependencies=[
    mobile_playback_enabled,
    Depends(rate_limit("api:mobile:v1:playback:license", lambda s: s.license_rate_limit_per_minute)),
])
async def playback_license(
    request: Request,
    token: Optional[str] = Query(None),
    license_proxy: LicenseProxyService = Depends(get_license_proxy),
):
    return await redeem_license(request, token, license_proxy)


@router.api_route("/proxy", methods=["GET", "HEAD", "POST"], dependencies=[mobile_playback_enabled])
async def stream_proxy(
    request: Request,
    target: Optional[str] = Query(None),
    token: Optional[str] = Query(None),
    proxy: StreamProxyService = Depends(get_proxy_service),
):
    return await forward_stream(request, target, token, proxy, proxy_base=MOBILE_PROXY_PATH)


@router.get("/channels", response_model=ChannelListResponse)
@limiter.limit(browse_rate_limit)
async def list_channels(request: Request, catalog: Catalog = Depends(get_catalog)):
    """Sanitized channel list for the app."""
    channels = sanitize_many(await catalog.list_channels())
    return ChannelListResponse(channels=channels, total=len(channels))
