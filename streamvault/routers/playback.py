"""
Web playback API endpoints: resolve, license redemption and stream proxy.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response

from streamvault.dependencies import NO_STORE, rate_limit, require_playback_enabled
from streamvault.models.channel import ChannelRecord
from streamvault.models.playback import PlaybackResolveResponse
from streamvault.services.catalog import Catalog, get_catalog
from streamvault.services.license_proxy import LicenseProxyService, get_license_proxy
from streamvault.services.playback_resolver import (
    WEB_LICENSE_PATH,
    WEB_PROXY_PATH,
    PlaybackResolver,
    get_playback_resolver,
)
from streamvault.services.stream_proxy import StreamProxyService, get_proxy_service

router = APIRouter(tags=["playback"])


async def load_playable_record(record_id: Optional[str], catalog: Catalog) -> ChannelRecord:
    """Look up a record for playback; 400 without an id, 404 if absent, 422 without a stream."""
    key = (record_id or "").strip()
    if not key:
        raise HTTPException(status_code=400, detail="Missing channel id", headers=NO_STORE)
    record = await catalog.get_record(key)
    if record is None:
        raise HTTPException(status_code=404, detail="Channel not found", headers=NO_STORE)
    if not record.stream_url.strip():
        raise HTTPException(status_code=422, detail="Stream source unavailable", headers=NO_STORE)
    return record


async def redeem_license(request: Request, token: Optional[str], license_proxy: LicenseProxyService) -> Response:
    body = await request.body() if request.method == "POST" else None
    return await license_proxy.redeem(
        token,
        method=request.method,
        body=body,
        content_type=request.headers.get("content-type"),
    )


async def forward_stream(
    request: Request,
    target: Optional[str],
    token: Optional[str],
    proxy: StreamProxyService,
    proxy_base: str,
) -> Response:
    body = await request.body() if request.method == "POST" else None
    return await proxy.proxy(
        request.method,
        target,
        token,
        proxy_base,
        body=body,
        content_type=request.headers.get("content-type"),
        client_headers=dict(request.headers),
    )


@router.get(
    "/api/v1/playback/resolve",
    response_model=PlaybackResolveResponse,
    dependencies=[
        Depends(require_playback_enabled("web")),
        Depends(rate_limit("api:v1:playback:resolve", lambda s: s.playback_rate_limit_per_minute)),
    ],
)
async def resolve_playback(
    id: Optional[str] = Query(None, description="Channel, movie or live event id"),
    catalog: Catalog = Depends(get_catalog),
    resolver: PlaybackResolver = Depends(get_playback_resolver),
):
    """
    Resolve a record into client-safe playback instructions.

    Raw stream URLs, license servers and custom headers never appear in the
    response; they are carried inside short-lived signed tokens.
    """
    record = await load_playable_record(id, catalog)
    descriptor = resolver.resolve(record, proxy_path=WEB_PROXY_PATH, license_path=WEB_LICENSE_PATH)
    payload = PlaybackResolveResponse(channel_id=record.id, **descriptor.model_dump())
    return JSONResponse(content=payload.model_dump(mode="json", by_alias=True), headers=NO_STORE)


@router.api_route(
    "/api/v1/playback/license",
    methods=["GET", "POST"],
    dependencies=[
        Depends(require_playback_enabled("web")),
        Depends(rate_limit("api:v1:playback:license", lambda s: s.license_rate_limit_per_minute)),
    ],
)
async def playback_license(
    request: Request,
    token: Optional[str] = Query(None),
    license_proxy: LicenseProxyService = Depends(get_license_proxy),
):
    """Redeem a license token: ClearKey is answered locally, Widevine is forwarded."""
    return await redeem_license(request, token, license_proxy)


@router.api_route(
    "/api/proxy",
    methods=["GET", "HEAD", "POST"],
    dependencies=[Depends(require_playback_enabled("web"))],
)
async def stream_proxy(
    request: Request,
    target: Optional[str] = Query(None, description="URL-safe base64 upstream URL"),
    token: Optional[str] = Query(None),
    proxy: StreamProxyService = Depends(get_proxy_service),
):
    """Fetch a manifest or segment with the headers carried by the proxy token."""
    return await forward_stream(request, target, token, proxy, proxy_base=WEB_PROXY_PATH)
