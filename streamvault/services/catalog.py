"""
Catalog lookup over the JSON catalog files.

Public record fields come from channels.json, movies.json and
live_events.json in the data directory; private delivery fields are merged
in from the secret store only when a full record is requested for playback.
"""
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional, TypeVar

from pydantic import ValidationError

from streamvault.config import get_settings
from streamvault.models.channel import (
    ChannelRecord,
    LiveEvent,
    is_live_event_id,
    to_live_event_source_id,
)
from streamvault.services.secret_store import SecretStore, get_secret_store

logger = logging.getLogger(__name__)

CHANNELS_FILE = "channels.json"
MOVIES_FILE = "movies.json"
LIVE_EVENTS_FILE = "live_events.json"

RecordT = TypeVar("RecordT", ChannelRecord, LiveEvent)


class Catalog:
    """Read-only view over the catalog files."""

    def __init__(self, data_dir: Optional[str] = None, secret_store: Optional[SecretStore] = None):
        self.data_dir = Path(data_dir or get_settings().data_dir)
        self._secret_store = secret_store
        # filename -> ((mtime_ns, size), records)
        self._loaded: dict[str, tuple[tuple[int, int], list]] = {}

    def _read_entries(self, path: Path) -> list[dict[str, Any]]:
        """Read a catalog file. Unreadable or malformed files read as empty."""
        try:
            raw = path.read_text(encoding="utf-8").lstrip("\ufeff")
        except FileNotFoundError:
            return []
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read catalog file {path.name}: {e}")
            return []

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Malformed catalog file {path.name}: {e}")
            return []

        # movies.json wraps its list as {"info": [...]}
        if isinstance(data, dict):
            data = data.get("info", [])
        if not isinstance(data, list):
            logger.error(f"Catalog file {path.name} does not hold a list")
            return []
        return [entry for entry in data if isinstance(entry, dict)]

    def _parse(self, path: Path, model: type[RecordT]) -> list[RecordT]:
        records = []
        for entry in self._read_entries(path):
            try:
                records.append(model.model_validate(entry))
            except ValidationError as e:
                logger.warning(f"Skipping malformed entry in {path.name}: {e.error_count()} errors")
        return records

    async def _load(self, filename: str, model: type[RecordT]) -> list[RecordT]:
        """Records of a catalog file, re-parsed only when the file changes."""
        path = self.data_dir / filename
        try:
            stat = await asyncio.to_thread(path.stat)
        except FileNotFoundError:
            self._loaded.pop(filename, None)
            return []
        except OSError as e:
            logger.error(f"Failed to stat catalog file {filename}: {e}")
            return []

        stamp = (stat.st_mtime_ns, stat.st_size)
        cached = self._loaded.get(filename)
        if cached is None or cached[0] != stamp:
            records = await asyncio.to_thread(self._parse, path, model)
            cached = (stamp, records)
            self._loaded[filename] = cached
        return list(cached[1])

    async def list_channels(self) -> list[ChannelRecord]:
        return await self._load(CHANNELS_FILE, ChannelRecord)

    async def list_movies(self) -> list[ChannelRecord]:
        movies = await self._load(MOVIES_FILE, ChannelRecord)
        return [movie.model_copy(update={"is_movie": True}) for movie in movies]

    async def list_live_events(self, active_only: bool = False) -> list[LiveEvent]:
        events = await self._load(LIVE_EVENTS_FILE, LiveEvent)
        if active_only:
            events = [event for event in events if event.is_live]
        return events

    async def find_live_event(self, event_id: str) -> Optional[LiveEvent]:
        """Find an event by its stored id or by its prefixed watch id."""
        key = event_id.strip()
        if not key:
            return None
        source_id = to_live_event_source_id(key)
        for event in await self.list_live_events():
            if event.id == key or event.id == source_id:
                return event
        return None

    async def _secrets(self) -> SecretStore:
        if self._secret_store is None:
            self._secret_store = await get_secret_store()
        return self._secret_store

    async def _with_secrets(self, scope: str, record_id: str, record: RecordT) -> RecordT:
        store = await self._secrets()
        secret = await store.get_secret(scope, record_id)
        if secret is None:
            return record
        patch = {
            field: value
            for field, value in secret.model_dump(exclude={"updated_at"}).items()
            if value is not None
        }
        return record.model_validate({**record.model_dump(), **patch})

    async def get_record(self, record_id: str) -> Optional[ChannelRecord]:
        """
        Return the full record (public and private fields) for playback.

        Channels are searched first, then movies, then live events. Ids with
        the reserved live event prefix only match live events.
        """
        key = record_id.strip()
        if not key:
            return None

        if not is_live_event_id(key):
            for channel in await self.list_channels():
                if channel.id == key:
                    return await self._with_secrets("channels", channel.id, channel)
            for movie in await self.list_movies():
                if movie.id == key:
                    return await self._with_secrets("movies", movie.id, movie)

        event = await self.find_live_event(key)
        if event is None:
            return None
        event = await self._with_secrets("live_events", event.id, event)
        return event.to_channel()


# Singleton
_catalog: Optional[Catalog] = None


def get_catalog() -> Catalog:
    """Get or create the catalog singleton."""
    global _catalog
    if _catalog is None:
        _catalog = Catalog()
    return _catalog
