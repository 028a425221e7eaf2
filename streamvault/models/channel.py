"""
Channel and live event data models.

A record carries public display metadata plus private delivery fields.
Private fields live only in server memory; clients get the sanitized
projection (see services/sanitizer.py).
"""
import json
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

LIVE_EVENT_PREFIX = "le-"

PRIVATE_FIELDS = ("stream_url", "license_url", "stream_headers", "license_headers")


def is_live_event_id(record_id: str) -> bool:
    return record_id.startswith(LIVE_EVENT_PREFIX)


def to_live_event_watch_id(event_id: str) -> str:
    """Add the reserved prefix to a live event id (idempotent)."""
    normalized = event_id.strip()
    if not normalized:
        return LIVE_EVENT_PREFIX
    return normalized if is_live_event_id(normalized) else f"{LIVE_EVENT_PREFIX}{normalized}"


def to_live_event_source_id(watch_id: str) -> str:
    return watch_id[len(LIVE_EVENT_PREFIX):] if is_live_event_id(watch_id) else watch_id


def _header_blob(value: Any) -> str:
    """Header fields may arrive as a dict or as a JSON blob; store the blob."""
    if value is None:
        return ""
    if isinstance(value, dict):
        return json.dumps(value) if value else ""
    return str(value)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # Private delivery fields
    stream_url: str = ""
    license_url: str = ""
    stream_headers: str = ""
    license_headers: str = ""

    @field_validator("stream_headers", "license_headers", mode="before")
    @classmethod
    def _coerce_headers(cls, value: Any) -> str:
        return _header_blob(value)

    @field_validator("stream_url", "license_url", mode="before")
    @classmethod
    def _coerce_private_text(cls, value: Any) -> str:
        return _text(value)


class ChannelRecord(_Record):
    """Linear channel, movie or live event in its playback shape."""
    id: str = ""
    name: str = ""
    image: str = ""
    country_code: str = ""
    country_name: str = ""
    tagline: str = ""
    category: str = ""
    subtitle: str = ""
    premium: bool = False
    is_live: bool = False
    is_movie: bool = False
    start_stamp: str = ""
    end_stamp: str = ""
    stream_kind: str = ""

    @field_validator(
        "id", "name", "image", "country_code", "country_name", "tagline",
        "category", "subtitle", "start_stamp", "end_stamp", "stream_kind",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _text(value)

    @field_validator("premium", "is_live", "is_movie", mode="before")
    @classmethod
    def _coerce_flag(cls, value: Any) -> bool:
        # Catalog files use "t"/"f" as often as real booleans
        if isinstance(value, str):
            return value.strip().lower() in ("t", "true", "1", "yes")
        return bool(value)

    @property
    def is_live_event(self) -> bool:
        return is_live_event_id(self.id)


class LiveEvent(_Record):
    """Scheduled sports event as stored in live_events.json."""
    id: str = ""
    title: str = ""
    sport: str = ""
    category: str = "Events"
    competition: str = ""
    thumbnail: str = ""
    stream_kind: str = ""
    is_live: bool = False
    start_stamp: str = ""
    end_stamp: str = ""

    @field_validator(
        "id", "title", "sport", "category", "competition", "thumbnail",
        "stream_kind", "start_stamp", "end_stamp",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _text(value)

    @field_validator("is_live", mode="before")
    @classmethod
    def _coerce_flag(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ("t", "true", "1", "yes")
        return bool(value)

    def to_channel(self) -> ChannelRecord:
        """Map the event onto the shared channel shape with a prefixed id."""
        return ChannelRecord(
            id=to_live_event_watch_id(self.id),
            name=self.title,
            image=self.thumbnail,
            country_code="EV",
            country_name="Live Sports",
            tagline=self.competition,
            category=self.sport or self.category,
            is_live=self.is_live,
            start_stamp=self.start_stamp or "none",
            end_stamp=self.end_stamp or "none",
            stream_kind=self.stream_kind,
            stream_url=self.stream_url,
            license_url=self.license_url,
            stream_headers=self.stream_headers,
            license_headers=self.license_headers,
        )


class ChannelListResponse(BaseModel):
    """Sanitized channel list response."""
    channels: list[ChannelRecord]
    total: int
