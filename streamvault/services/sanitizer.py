"""
Public projection of catalog records.

Everything that leaves the service through a list or browse endpoint goes
through here first.
"""
from typing import Any, Iterable, Union

from streamvault.models.channel import PRIVATE_FIELDS, ChannelRecord, LiveEvent

_BLANK = {field: "" for field in PRIVATE_FIELDS}


def sanitize(record: Union[ChannelRecord, LiveEvent, dict[str, Any]]) -> ChannelRecord:
    """Return the public projection of a channel record."""
    if isinstance(record, LiveEvent):
        record = record.to_channel()
    elif not isinstance(record, ChannelRecord):
        record = ChannelRecord.model_validate(record or {})
    return record.model_copy(update=_BLANK)


def sanitize_many(records: Iterable[Union[ChannelRecord, LiveEvent, dict[str, Any]]]) -> list[ChannelRecord]:
    return [sanitize(record) for record in records]


def sanitize_live_event(event: Union[LiveEvent, dict[str, Any]]) -> LiveEvent:
    """Return the public projection of a live event in its catalog shape."""
    if not isinstance(event, LiveEvent):
        event = LiveEvent.model_validate(event or {})
    return event.model_copy(update=_BLANK)


def sanitize_live_events(events: Iterable[Union[LiveEvent, dict[str, Any]]]) -> list[LiveEvent]:
    return [sanitize_live_event(event) for event in events]
