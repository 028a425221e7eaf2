"""
Player settings source.

Holds the per-surface playback switches. Settings are read from a JSON file,
then from a JSON (or base64 JSON) value in the environment, then defaults.
"""
import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel

from streamvault.config import get_settings

logger = logging.getLogger(__name__)

Surface = Literal["web", "mobile"]


class PlayerSettings(BaseModel):
    playback_enabled_web: bool = True
    playback_enabled_mobile: bool = True
    updated_at: str = ""

    def is_playback_enabled(self, surface: Surface) -> bool:
        if surface == "mobile":
            return self.playback_enabled_mobile
        return self.playback_enabled_web


def _flag(data: dict[str, Any], *names: str) -> Optional[bool]:
    for name in names:
        value = data.get(name)
        if isinstance(value, bool):
            return value
    return None


def normalize_settings(data: dict[str, Any]) -> PlayerSettings:
    """
    Build settings from a parsed document.

    Accepts snake_case or camelCase keys. The legacy single
    ``playback_enabled`` flag seeds any surface flag that is absent; only an
    explicit ``false`` disables.
    """
    legacy = _flag(data, "playback_enabled", "playbackEnabled") is not False
    web = _flag(data, "playback_enabled_web", "playbackEnabledWeb")
    mobile = _flag(data, "playback_enabled_mobile", "playbackEnabledMobile")
    return PlayerSettings(
        playback_enabled_web=legacy if web is None else web,
        playback_enabled_mobile=legacy if mobile is None else mobile,
        updated_at=str(data.get("updated_at") or data.get("updatedAt") or ""),
    )


def parse_settings(raw: str) -> Optional[PlayerSettings]:
    text = raw.lstrip("\ufeff").strip()
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    return normalize_settings(data)


def _parse_env_value(raw: str) -> Optional[PlayerSettings]:
    parsed = parse_settings(raw)
    if parsed is not None:
        return parsed
    try:
        decoded = base64.b64decode(raw.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    return parse_settings(decoded)


class PlayerSettingsSource:
    """Reads player settings fresh on every call so file edits apply without restart."""

    def __init__(self, path: Optional[str] = None, env_value: Optional[str] = None):
        settings = get_settings()
        self.path = Path(path if path is not None else settings.player_settings_path)
        self.env_value = env_value if env_value is not None else settings.player_settings_json

    def read(self) -> PlayerSettings:
        try:
            from_file = parse_settings(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            from_file = None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read player settings file: {e}")
            from_file = None
        if from_file is not None:
            return from_file

        if self.env_value.strip():
            from_env = _parse_env_value(self.env_value)
            if from_env is not None:
                return from_env
            logger.warning("Ignoring malformed player settings from environment")

        return PlayerSettings()

    def is_playback_enabled(self, surface: Surface) -> bool:
        return self.read().is_playback_enabled(surface)


# Singleton
_source: Optional[PlayerSettingsSource] = None


def get_player_settings() -> PlayerSettingsSource:
    """Get or create the player settings source singleton."""
    global _source
    if _source is None:
        _source = PlayerSettingsSource()
    return _source
