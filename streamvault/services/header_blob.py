"""
Parsing of free-text custom header blobs stored on catalog records.

Catalog editors paste headers as JSON, sometimes with escaped quotes or
surrounding text, so parsing is forgiving and never raises.
"""
import json
from typing import Optional
from urllib.parse import urlparse


def _parse_header_object(raw: str) -> Optional[dict[str, str]]:
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None
    return {str(key): "" if value is None else str(value) for key, value in parsed.items()}


def _extract_first_json_object(raw: str) -> Optional[str]:
    """Return the first balanced ``{...}`` span, honoring string literals."""
    start = raw.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(raw)):
        ch = raw[index]
        if escaped:
            escaped = False
            continue
        if ch == "\\":
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return raw[start:index + 1]
    return None


def parse_header_blob(raw: str) -> dict[str, str]:
    """Parse a header blob into a clean ``{name: value}`` mapping."""
    if not raw or not raw.strip():
        return {}

    parsed = None
    for candidate in (raw, raw.replace('\\"', '"')):
        parsed = _parse_header_object(candidate)
        if parsed is not None:
            break
        embedded = _extract_first_json_object(candidate)
        if embedded:
            parsed = _parse_header_object(embedded)
            if parsed is not None:
                break

    if not parsed:
        return {}

    headers = {}
    for key, value in parsed.items():
        name = key.strip()
        clean = value.strip()
        if not name or not clean or clean.lower() == "none":
            continue
        headers[name] = clean
    return headers


def normalize_proxy_headers(headers: dict[str, str]) -> dict[str, str]:
    """Add an Origin derived from Referer when the blob only sets Referer."""
    result = dict(headers)
    lowered = {key.lower(): key for key in result}
    if "referer" in lowered and "origin" not in lowered:
        parsed = urlparse(result[lowered["referer"]])
        if parsed.scheme and parsed.netloc:
            result["Origin"] = f"{parsed.scheme}://{parsed.netloc}"
    return result


def headers_from_blob(raw: str) -> dict[str, str]:
    return normalize_proxy_headers(parse_header_blob(raw))
