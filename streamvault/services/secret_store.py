"""
SQLite-backed store for private stream fields.
Keeps raw stream URLs, license URLs and custom headers apart from the
publicly servable catalog files.
"""
import aiosqlite
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from pydantic import BaseModel
from streamvault.config import get_settings

SCOPES = ("channels", "movies", "live_events")

SECRET_COLUMNS = ("stream_url", "license_url", "stream_headers", "license_headers")


class StreamSecret(BaseModel):
    """Private fields for one catalog record."""
    stream_url: Optional[str] = None
    license_url: Optional[str] = None
    stream_headers: Optional[str] = None
    license_headers: Optional[str] = None
    updated_at: Optional[str] = None

    def has_any_secret(self) -> bool:
        return any((getattr(self, column) or "").strip() for column in SECRET_COLUMNS)


def _check_scope(scope: str):
    if scope not in SCOPES:
        raise ValueError(f"Unknown secret scope: {scope}")


class SecretStore:
    """Async SQLite store for per-record stream secrets."""

    def __init__(self, db_path: Optional[str] = None):
        settings = get_settings()
        self.db_path = db_path or settings.database_path
        self._ensure_directory()

    def _ensure_directory(self):
        """Create data directory if it doesn't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    async def initialize(self):
        """Create database tables if they don't exist."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS stream_secrets (
                    scope TEXT NOT NULL,
                    id TEXT NOT NULL,
                    stream_url TEXT,
                    license_url TEXT,
                    stream_headers TEXT,
                    license_headers TEXT,
                    updated_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (scope, id)
                )
            """)
            await db.commit()

    async def get_secret(self, scope: str, record_id: str) -> Optional[StreamSecret]:
        """Get the secrets for a record, or None if nothing is stored."""
        _check_scope(scope)
        key = record_id.strip()
        if not key:
            return None

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """SELECT stream_url, license_url, stream_headers, license_headers, updated_at
                   FROM stream_secrets WHERE scope = ? AND id = ?""",
                (scope, key)
            )
            row = await cursor.fetchone()
            if row:
                return StreamSecret(**dict(row))
            return None

    async def upsert_secret(self, scope: str, record_id: str, **patch: Optional[str]) -> Optional[StreamSecret]:
        """
        Merge ``patch`` into the stored secrets for a record.

        Fields left out of the patch keep their stored value. When every
        secret ends up empty the row is removed and None is returned.
        """
        _check_scope(scope)
        unknown = set(patch) - set(SECRET_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown secret fields: {sorted(unknown)}")
        key = record_id.strip()
        if not key:
            return None

        current = await self.get_secret(scope, key) or StreamSecret()
        merged = current.model_copy(update={
            **{column: value for column, value in patch.items() if value is not None},
            "updated_at": datetime.now(timezone.utc).isoformat(),
        })

        if not merged.has_any_secret():
            await self.delete_secret(scope, key)
            return None

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """INSERT OR REPLACE INTO stream_secrets
                   (scope, id, stream_url, license_url, stream_headers, license_headers, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    scope,
                    key,
                    merged.stream_url,
                    merged.license_url,
                    merged.stream_headers,
                    merged.license_headers,
                    merged.updated_at,
                )
            )
            await db.commit()
        return merged

    async def delete_secret(self, scope: str, record_id: str) -> bool:
        """Remove a record's secrets. Returns True if a row was deleted."""
        _check_scope(scope)
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM stream_secrets WHERE scope = ? AND id = ?",
                (scope, record_id.strip())
            )
            await db.commit()
            return cursor.rowcount > 0

    async def count_secrets(self, scope: Optional[str] = None) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            if scope:
                _check_scope(scope)
                cursor = await db.execute("SELECT COUNT(*) FROM stream_secrets WHERE scope = ?", (scope,))
            else:
                cursor = await db.execute("SELECT COUNT(*) FROM stream_secrets")
            return (await cursor.fetchone())[0]


# Singleton instance
_secret_store: Optional[SecretStore] = None


async def get_secret_store() -> SecretStore:
    """Get or create the secret store singleton."""
    global _secret_store
    if _secret_store is None:
        _secret_store = SecretStore()
        await _secret_store.initialize()
    return _secret_store
