"""
ClearKey key material handling.

Catalog records store ClearKey material in the license field, either as a
``kid:key`` hex pair or as a JWK-style ``{"keys": [...]}`` document (raw or
base64). The license proxy answers EME ClearKey requests with a JSON license
built from that material.
"""
import base64
import binascii
import json
import re
from typing import Iterable, Optional

HEX_PAIR_RE = re.compile(r"^[0-9a-f]{32}:[0-9a-f]{32}$", re.IGNORECASE)
HEX_KEY_RE = re.compile(r"^[0-9a-f]{32}$", re.IGNORECASE)
BASE64URL_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def _json_keys_document(raw: str) -> Optional[dict]:
    """Decode a ``{"keys": [...]}`` document given raw or base64 text."""
    candidates = [raw]
    if not raw.startswith("{"):
        try:
            candidates.append(base64.b64decode(raw, validate=False).decode("utf-8"))
        except (binascii.Error, ValueError):
            pass

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict) and isinstance(parsed.get("keys"), list):
            return parsed
    return None


def looks_like_clearkey_material(raw: str) -> bool:
    """True when the value is literal key material rather than a URL."""
    value = (raw or "").strip()
    if not value:
        return False
    return bool(HEX_PAIR_RE.match(value)) or _json_keys_document(value) is not None


def parse_clearkey_material(raw: str) -> list[tuple[str, str]]:
    """Extract every ``(key_id, key)`` pair from stored material. Empty if unusable."""
    value = (raw or "").strip()
    if not value:
        return []

    document = _json_keys_document(value)
    if document is not None:
        pairs = []
        for entry in document["keys"]:
            if not isinstance(entry, dict):
                continue
            key_id = str(entry.get("kid") or "").strip()
            key = str(entry.get("k") or "").strip()
            if key_id and key:
                pairs.append((key_id, key))
        return pairs

    if ":" in value and not value.lower().startswith(("http://", "https://")):
        key_id, key = (part.strip() for part in value.split(":", 1))
        if key_id and key:
            return [(key_id, key)]
    return []


def _hex_to_base64url(value: str) -> str:
    return base64.urlsafe_b64encode(bytes.fromhex(value)).rstrip(b"=").decode("ascii")


def _to_base64url(value: str) -> Optional[str]:
    if HEX_KEY_RE.match(value):
        return _hex_to_base64url(value)
    normalized = value.strip().replace("+", "-").replace("/", "_").rstrip("=")
    return normalized if BASE64URL_RE.match(normalized) else None


def _license_keys(key_id: str, key: str) -> list[dict[str, str]]:
    kid = _to_base64url(key_id or "")
    k = _to_base64url(key or "")
    if not kid or not k:
        return []

    keys = [{"kty": "oct", "kid": kid, "k": k}]
    # Some providers publish "key:kid"; offer the reversed pair so the CDM can match either
    if HEX_KEY_RE.match(key_id) and HEX_KEY_RE.match(key) and key_id.lower() != key.lower():
        keys.append({"kty": "oct", "kid": k, "k": kid})
    return keys


def build_clearkey_license(pairs: Iterable[tuple[str, str]]) -> Optional[str]:
    """
    Build the EME ClearKey license JSON holding every usable pair.

    Malformed pairs are skipped; None if no pair is usable.
    """
    keys = []
    for key_id, key in pairs:
        for entry in _license_keys(key_id, key):
            if entry not in keys:
                keys.append(entry)
    if not keys:
        return None
    return json.dumps({"keys": keys, "type": "temporary"})
