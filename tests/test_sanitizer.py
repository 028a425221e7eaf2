"""
Tests for the public projection of catalog records.
"""
import pytest

from streamvault.models.channel import PRIVATE_FIELDS, ChannelRecord, LiveEvent
from streamvault.services.sanitizer import sanitize, sanitize_live_events, sanitize_many


RECORDS = [
    {},
    {"id": "a", "name": "A"},
    {
        "id": "b",
        "name": "B",
        "stream_url": "https://cdn.example.com/b.m3u8",
        "license_url": "https://lic.example.com/b",
        "stream_headers": {"Referer": "https://site.example/"},
        "license_headers": "{\"X-Token\": \"secret\"}",
    },
    {"id": "c", "stream_url": None, "license_url": 12345, "premium": "t"},
]


class TestSanitize:
    """Private fields never survive the projection."""

    @pytest.mark.parametrize("raw", RECORDS)
    def test_private_fields_are_blank(self, raw):
        result = sanitize(raw)
        for field in PRIVATE_FIELDS:
            assert getattr(result, field) == ""

    @pytest.mark.parametrize("raw", RECORDS)
    def test_idempotent(self, raw):
        once = sanitize(raw)
        assert sanitize(once) == once

    def test_public_fields_unchanged(self):
        record = ChannelRecord(
            id="b",
            name="B",
            image="https://img.example.com/b.png",
            country_code="ID",
            is_live=True,
            stream_kind="dash",
            stream_url="https://cdn.example.com/b.mpd",
        )
        result = sanitize(record)
        assert result.name == "B"
        assert result.image == "https://img.example.com/b.png"
        assert result.country_code == "ID"
        assert result.is_live is True
        assert result.stream_kind == "dash"

    def test_missing_fields_default_to_empty(self):
        result = sanitize({"id": "only-id"})
        assert result.name == ""
        assert result.tagline == ""
        assert result.premium is False

    def test_input_record_is_not_mutated(self):
        record = ChannelRecord(id="x", stream_url="https://cdn.example.com/x.m3u8")
        sanitize(record)
        assert record.stream_url == "https://cdn.example.com/x.m3u8"

    def test_many_and_serialized_output(self):
        results = sanitize_many(RECORDS)
        assert len(results) == len(RECORDS)
        dumped = str([r.model_dump() for r in results])
        assert "cdn.example.com" not in dumped
        assert "secret" not in dumped

    def test_live_event_becomes_prefixed_channel(self):
        event = LiveEvent(
            id="77",
            title="Derby",
            sport="Football",
            stream_url="https://cdn.example.com/derby.m3u8",
        )
        result = sanitize(event)
        assert result.id == "le-77"
        assert result.name == "Derby"
        assert result.country_code == "EV"
        assert result.stream_url == ""


class TestSanitizeLiveEvents:

    def test_live_event_shape_is_kept(self):
        events = sanitize_live_events([
            {"id": "le-1", "title": "Final", "license_url": "k:v", "stream_headers": {"Referer": "x"}},
        ])
        assert events[0].title == "Final"
        assert events[0].id == "le-1"
        assert events[0].license_url == ""
        assert events[0].stream_headers == ""
