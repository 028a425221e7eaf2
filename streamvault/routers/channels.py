"""
Channel and live event browse API endpoints.
Every record leaving these endpoints is sanitized.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from streamvault.dependencies import browse_rate_limit, limiter, rate_limit
from streamvault.models.channel import ChannelListResponse, ChannelRecord, LiveEvent
from streamvault.services.catalog import Catalog, get_catalog
from streamvault.services.sanitizer import sanitize, sanitize_live_event, sanitize_live_events, sanitize_many

router = APIRouter(prefix="/api", tags=["channels"])

PUBLIC_CACHE_HEADERS = {"Cache-Control": "public, s-maxage=30, stale-while-revalidate=120"}


@router.get("/channels", response_model=ChannelListResponse)
@limiter.limit(browse_rate_limit)
async def list_channels(
    request: Request,
    category: Optional[str] = Query(None, description="Filter by category"),
    country: Optional[str] = Query(None, description="Filter by country code (e.g., ID, US)"),
    include_movies: bool = Query(False, description="Append movies to the list"),
    catalog: Catalog = Depends(get_catalog),
):
    """
    List channels with private delivery fields stripped.

    - **category**: Category name, case-insensitive
    - **country**: ISO 3166-1 alpha-2 country code
    - **include_movies**: Also list movies
    """
    records = await catalog.list_channels()
    if include_movies:
        records += await catalog.list_movies()
    if category:
        records = [r for r in records if r.category.lower() == category.lower()]
    if country:
        records = [r for r in records if r.country_code.upper() == country.upper()]

    channels = sanitize_many(records)
    return ChannelListResponse(channels=channels, total=len(channels))


@router.get("/channels/{channel_id}", response_model=ChannelRecord)
@limiter.limit(browse_rate_limit)
async def get_channel(request: Request, channel_id: str, catalog: Catalog = Depends(get_catalog)):
    """Get the public view of a channel, movie or live event."""
    record = await catalog.get_record(channel_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    return sanitize(record)


@router.get(
    "/v1/live-events",
    response_model=list[LiveEvent],
    dependencies=[Depends(rate_limit("api:v1:live-events:get", lambda s: s.live_events_rate_limit_per_minute))],
)
async def list_live_events(
    active: bool = Query(False, description="Only events that are live now"),
    catalog: Catalog = Depends(get_catalog),
):
    events = sanitize_live_events(await catalog.list_live_events(active_only=active))
    return JSONResponse(
        content=[event.model_dump(mode="json") for event in events],
        headers=PUBLIC_CACHE_HEADERS,
    )


@router.get("/v1/live-events/{event_id}", response_model=LiveEvent)
async def get_live_event(event_id: str, catalog: Catalog = Depends(get_catalog)):
    event = await catalog.find_live_event(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return sanitize_live_event(event)
