"""
Pytest configuration and fixtures for streamvault backend tests.
"""
import asyncio
import json

import pytest

from streamvault.services.catalog import Catalog
from streamvault.services.playback_tokens import PlaybackTokenCodec
from streamvault.services.secret_store import SecretStore

FIXED_NOW = 1_700_000_010.0
TOKEN_SECRET = "test-playback-secret"


class FakeClock:
    """Controllable replacement for time.time."""

    def __init__(self, now: float = FIXED_NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token_codec(clock):
    return PlaybackTokenCodec(TOKEN_SECRET, clock=clock)


@pytest.fixture
def sample_channels():
    """Channel catalog entries covering each playback path."""
    return [
        {
            "id": "plain",
            "name": "Plain HLS",
            "image": "https://img.example.com/plain.png",
            "country_code": "ID",
            "country_name": "Indonesia",
            "category": "News",
            "is_live": "t",
            "stream_kind": "hls",
            "stream_url": "https://cdn.example.com/plain/index.m3u8",
        },
        {
            "id": "headers",
            "name": "Header Protected",
            "country_code": "ID",
            "category": "Sports",
            "stream_kind": "hls",
            "stream_url": "https://edge.example.com/live/master.m3u8",
            "stream_headers": "{\"Referer\": \"https://site.example/watch\"}",
        },
        {
            "id": "wv",
            "name": "Widevine DASH",
            "country_code": "US",
            "category": "Movies",
            "stream_kind": "dash",
            "stream_url": "https://cdn.example.com/wv/manifest.mpd",
            "license_url": "http://lic/x",
            "license_headers": {"X-Custom": "abc"},
        },
        {
            "id": "ck",
            "name": "ClearKey DASH",
            "country_code": "US",
            "category": "Movies",
            "stream_kind": "dash-clearkey",
            "stream_url": "https://cdn.example.com/ck/manifest.mpd",
            "license_url": "k1:v1",
        },
        {
            "id": "nostream",
            "name": "Off Air",
            "country_code": "ID",
            "category": "News",
        },
        {
            "id": "vaulted",
            "name": "Secrets In Store",
            "country_code": "ID",
            "category": "News",
            "stream_kind": "hls",
        },
    ]


@pytest.fixture
def sample_live_events():
    return [
        {
            "id": "le-1001",
            "title": "Derby Day",
            "sport": "Football",
            "competition": "League Cup",
            "thumbnail": "https://img.example.com/derby.png",
            "stream_kind": "hls",
            "is_live": "t",
            "stream_url": "https://cdn.example.com/events/derby.m3u8",
        },
        {
            "id": "2002",
            "title": "Final Round",
            "sport": "Badminton",
            "stream_kind": "hls",
            "is_live": "f",
            "stream_url": "https://cdn.example.com/events/final.m3u8",
        },
    ]


@pytest.fixture
def catalog_dir(tmp_path, sample_channels, sample_live_events):
    """Temporary data directory holding the three catalog files."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "channels.json").write_text(json.dumps(sample_channels))
    (data_dir / "movies.json").write_text(json.dumps({
        "info": [
            {
                "id": "movie-1",
                "name": "Feature Film",
                "stream_kind": "mp4",
                "stream_url": "https://cdn.example.com/movies/feature.mp4",
            }
        ]
    }))
    (data_dir / "live_events.json").write_text(json.dumps(sample_live_events))
    return data_dir


@pytest.fixture
def secret_store(tmp_path):
    """Temporary aiosqlite secret store, initialized and seeded."""
    store = SecretStore(str(tmp_path / "private" / "secrets.db"))

    async def seed():
        await store.initialize()
        await store.upsert_secret(
            "channels",
            "vaulted",
            stream_url="https://vault.example.com/live/index.m3u8",
        )

    asyncio.run(seed())
    return store


@pytest.fixture
def catalog(catalog_dir, secret_store):
    return Catalog(str(catalog_dir), secret_store=secret_store)
