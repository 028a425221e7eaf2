"""
Secure stream proxy service.
Proxies manifests and segments for streams whose upstream needs custom
headers, so the headers never reach the client.
"""
import asyncio
import base64
import binascii
import ipaddress
import logging
import re
import socket
import time
from typing import Awaitable, Callable, Optional
from urllib.parse import urlencode, urljoin, urlparse

import httpx
from fastapi import HTTPException
from fastapi.responses import Response

from streamvault.config import get_settings
from streamvault.models.playback import StreamProxyGrant
from streamvault.services.playback_tokens import PlaybackTokenCodec, get_token_codec

logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, POST, OPTIONS",
    "Cache-Control": "no-store",
}

BLOCKED_HOSTNAMES = {
    "localhost",
    "metadata",
    "metadata.google.internal",
    "kubernetes.default",
    "kubernetes.default.svc",
}
BLOCKED_HOSTNAME_SUFFIXES = (".localhost", ".local", ".internal", ".localdomain", ".home.arpa")

# Client headers never forwarded upstream on POST
BLOCKED_FORWARD_HEADERS = {
    "host", "connection", "content-length", "accept-encoding", "cookie",
    "origin", "referer", "user-agent", "priority", "transfer-encoding",
    "x-mobile-api-key",
}

# Credentials a redirect to another host must not carry
CROSS_HOST_STRIPPED_HEADERS = {"authorization", "cookie", "proxy-authorization"}

URI_ATTRIBUTE_RE = re.compile(r'URI="([^"]+)"')


def encode_target(url: str) -> str:
    return base64.urlsafe_b64encode(url.encode()).decode()


def decode_target(encoded: str) -> Optional[str]:
    try:
        padding = "=" * (-len(encoded) % 4)
        return base64.urlsafe_b64decode((encoded + padding).encode("ascii")).decode("utf-8")
    except (binascii.Error, ValueError):
        return None


def build_proxy_url(proxy_path: str, target_url: str, token: str) -> str:
    return f"{proxy_path}?{urlencode({'target': encode_target(target_url), 'token': token})}"


def is_private_address(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return True
    # Carrier-grade NAT (100.64.0.0/10) is not flagged private by ipaddress
    if ip.version == 4 and ip in ipaddress.ip_network("100.64.0.0/10"):
        return True
    return (
        ip.is_private or ip.is_loopback or ip.is_link_local
        or ip.is_reserved or ip.is_multicast or ip.is_unspecified
    )


def _hostname(url: str) -> str:
    return (urlparse(url).hostname or "").lower().rstrip(".")


def is_blocked_hostname(hostname: str) -> bool:
    return hostname in BLOCKED_HOSTNAMES or hostname.endswith(BLOCKED_HOSTNAME_SUFFIXES)


async def _resolve_host(hostname: str) -> list[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


def apply_host_rewrite(url: str, headers: dict[str, str]) -> tuple[str, dict[str, str]]:
    """
    Move a custom Host header into the URL when the stream is addressed by IP.

    httpx derives Host from the URL, so an IP-addressed stream whose virtual
    host lives in the header blob would otherwise be rejected upstream.
    """
    host_key = next((key for key in headers if key.lower() == "host"), None)
    if host_key is None:
        return url, headers

    cleaned = {key: value for key, value in headers.items() if key != host_key}
    virtual_host = headers[host_key].strip()
    parsed = urlparse(url)
    if not virtual_host or not re.fullmatch(r"\d{1,3}(\.\d{1,3}){3}", parsed.hostname or ""):
        return url, cleaned

    name, _, port = virtual_host.partition(":")
    if not name:
        return url, cleaned
    if not port.isdigit():
        port = str(parsed.port) if parsed.port else ""
    netloc = f"{name}:{port}" if port else name
    return parsed._replace(netloc=netloc).geturl(), cleaned


class StreamProxyService:
    """Service to securely proxy HLS/DASH streams with secret headers."""

    # Timeout for stream requests
    CONNECT_TIMEOUT = 15.0
    READ_TIMEOUT = 30.0
    HOST_CACHE_TTL = 300.0
    MAX_REDIRECTS = 5

    def __init__(
        self,
        tokens: PlaybackTokenCodec,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        resolve_host: Callable[[str], Awaitable[list[str]]] = _resolve_host,
        token_ttl_seconds: int = 6 * 60 * 60,
    ):
        self._tokens = tokens
        self._token_ttl = token_ttl_seconds
        self._transport = transport
        self._resolve_host = resolve_host
        self._host_cache: dict[str, tuple[bool, float]] = {}

    # ==================== TARGET VALIDATION ====================

    async def _is_public_hostname(self, hostname: str) -> bool:
        now = time.monotonic()
        cached = self._host_cache.get(hostname)
        if cached and cached[1] > now:
            return cached[0]

        if is_blocked_hostname(hostname):
            safe = False
        else:
            try:
                addresses = await self._resolve_host(hostname)
                safe = bool(addresses) and not any(is_private_address(a) for a in addresses)
            except OSError:
                safe = False

        self._host_cache[hostname] = (safe, now + self.HOST_CACHE_TTL)
        return safe

    async def validate_target(self, url: str) -> str:
        """Ensure ``url`` is an http(s) URL on a public host."""
        parsed = urlparse(url.strip())
        if parsed.scheme not in ("http", "https"):
            raise HTTPException(status_code=400, detail="Only http/https targets are allowed")

        hostname = (parsed.hostname or "").lower().rstrip(".")
        if not hostname:
            raise HTTPException(status_code=400, detail="Invalid target hostname")

        try:
            ipaddress.ip_address(hostname)
            is_ip = True
        except ValueError:
            is_ip = False

        if is_ip:
            if is_private_address(hostname):
                raise HTTPException(status_code=403, detail="Blocked private target host")
        elif not await self._is_public_hostname(hostname):
            raise HTTPException(status_code=403, detail="Blocked non-public target host")
        return parsed.geturl()

    def _grant_for(self, token: Optional[str]) -> StreamProxyGrant:
        grant = self._tokens.verify_kind((token or "").strip(), "stream-proxy")
        if grant is None:
            raise HTTPException(
                status_code=403,
                detail="Invalid or expired proxy token. Refresh playback to get a new token.",
            )
        return grant

    def _token_for_manifest(self, grant: StreamProxyGrant, token: str, hosts: set[str]) -> str:
        """
        Token for the URLs of a rewritten manifest.

        A manifest fetched under a grant may point at further hosts (CDN
        edges, key servers); those join the grant's allowed hosts in a fresh
        token. The original token is reused when nothing new is referenced.
        """
        new_hosts = sorted(host for host in hosts if host and not grant.allows(host))
        if not new_hosts:
            return token
        widened = grant.model_copy(update={"allowed_hosts": grant.allowed_hosts + tuple(new_hosts)})
        return self._tokens.issue(widened, self._token_ttl)

    # ==================== MANIFEST REWRITING ====================

    def _proxied(self, url: str, proxy_base: str, token: str) -> str:
        return build_proxy_url(proxy_base, url, token)

    def _rewrite_uri_attribute(self, line: str, url_base: str, proxy_base: str, token: str) -> str:
        """Rewrite URI attributes in HLS tags (keys, init maps, renditions)."""
        def replace(match: re.Match) -> str:
            uri = match.group(1)
            if uri.startswith(("data:", "skd:")):
                return match.group(0)
            return f'URI="{self._proxied(urljoin(url_base, uri), proxy_base, token)}"'

        return URI_ATTRIBUTE_RE.sub(replace, line)

    @staticmethod
    def _manifest_hosts(content: str, original_url: str) -> set[str]:
        """Hostnames of every URL a manifest references."""
        url_base = original_url[: original_url.rfind("/") + 1]
        uris = []
        for raw_line in content.splitlines():
            line = raw_line.strip()
            if not line:
                continue
            if line.startswith("#"):
                uris.extend(uri for uri in URI_ATTRIBUTE_RE.findall(line) if not uri.startswith(("data:", "skd:")))
            else:
                uris.append(line)
        return {_hostname(urljoin(url_base, uri)) for uri in uris}

    def _rewrite_manifest(self, content: str, original_url: str, proxy_base: str, token: str) -> str:
        """Rewrite every playlist, segment and key URL to go through the proxy."""
        url_base = original_url[: original_url.rfind("/") + 1]

        rewritten_lines = []
        for raw_line in content.splitlines():
            line = raw_line.strip()
            if not line:
                rewritten_lines.append(line)
            elif line.startswith("#"):
                if 'URI="' in line:
                    line = self._rewrite_uri_attribute(line, url_base, proxy_base, token)
                rewritten_lines.append(line)
            else:
                rewritten_lines.append(self._proxied(urljoin(url_base, line), proxy_base, token))

        return "\n".join(rewritten_lines)

    @staticmethod
    def _inject_dash_base_url(content: str, original_url: str) -> str:
        if "<BaseURL>" in content:
            return content
        base_url = original_url[: original_url.rfind("/") + 1]
        return re.sub(
            r"(<MPD[^>]*>)",
            lambda match: f"{match.group(1)}\n  <BaseURL>{base_url}</BaseURL>",
            content,
            count=1,
        )

    # ==================== PROXYING ====================

    def _build_forward_headers(
        self,
        grant_headers: dict[str, str],
        client_headers: Optional[dict[str, str]] = None,
        content_type: Optional[str] = None,
    ) -> dict[str, str]:
        headers = {}
        for key, value in (client_headers or {}).items():
            lower = key.lower()
            if lower in BLOCKED_FORWARD_HEADERS or lower.startswith("sec-"):
                continue
            headers[key] = value
        headers.update(grant_headers)
        headers["Accept"] = "*/*"
        if content_type is not None:
            headers["Content-Type"] = content_type or "application/octet-stream"
        else:
            headers["Cache-Control"] = "no-cache"
            headers["Pragma"] = "no-cache"
        return headers

    async def _fetch(
        self,
        method: str,
        target: str,
        headers: dict[str, str],
        body: Optional[bytes],
    ) -> httpx.Response:
        """Request ``target``, following redirects only to validated public hosts."""
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.CONNECT_TIMEOUT, read=self.READ_TIMEOUT),
            transport=self._transport,
        ) as client:
            for _ in range(self.MAX_REDIRECTS + 1):
                upstream = await client.request(
                    method,
                    target,
                    headers=headers,
                    content=body if method == "POST" else None,
                    follow_redirects=False,
                )
                location = upstream.headers.get("location")
                if not upstream.is_redirect or not location:
                    return upstream

                next_target = await self.validate_target(urljoin(target, location))
                if _hostname(next_target) != _hostname(target):
                    headers = {
                        key: value for key, value in headers.items()
                        if key.lower() not in CROSS_HOST_STRIPPED_HEADERS
                    }
                if upstream.status_code == 303 or (upstream.status_code in (301, 302) and method == "POST"):
                    method, body = "GET", None
                    headers = {key: value for key, value in headers.items() if key.lower() != "content-type"}
                target = next_target

        logger.warning(f"Stream proxy gave up after {self.MAX_REDIRECTS} redirects")
        raise HTTPException(status_code=502, detail="Too many upstream redirects", headers=NO_STORE_HEADERS)

    async def proxy(
        self,
        method: str,
        encoded_target: Optional[str],
        token: Optional[str],
        proxy_base: str,
        body: Optional[bytes] = None,
        content_type: Optional[str] = None,
        client_headers: Optional[dict[str, str]] = None,
    ) -> Response:
        """Fetch a proxied resource and return it with manifests rewritten."""
        if not encoded_target:
            raise HTTPException(status_code=400, detail="Missing target param")
        token = (token or "").strip()
        grant = self._grant_for(token)

        target = decode_target(encoded_target)
        if not target:
            raise HTTPException(status_code=400, detail="Invalid target param")
        target = await self.validate_target(target)
        if not grant.allows(_hostname(target)):
            logger.warning(f"Stream proxy token presented for unbound host {_hostname(target)}")
            raise HTTPException(status_code=403, detail="Proxy token is not valid for this target host")

        target, grant_headers = apply_host_rewrite(target, grant.headers)
        target = await self.validate_target(target)

        if method == "POST":
            headers = self._build_forward_headers(grant_headers, client_headers, content_type)
        else:
            headers = self._build_forward_headers(grant_headers)

        try:
            upstream = await self._fetch("GET" if method == "HEAD" else method, target, headers, body)
        except httpx.TimeoutException:
            raise HTTPException(status_code=504, detail="Upstream stream timed out", headers=NO_STORE_HEADERS)
        except httpx.HTTPError as e:
            logger.warning(f"Stream proxy upstream error: {type(e).__name__}")
            raise HTTPException(status_code=502, detail="Proxy upstream error", headers=NO_STORE_HEADERS)

        final_url = str(upstream.url)
        content_type_upstream = upstream.headers.get("content-type", "application/octet-stream")
        lower_type = content_type_upstream.lower()
        is_mpd = "dash+xml" in lower_type or ".mpd" in final_url.lower()
        is_m3u8 = "mpegurl" in lower_type or re.search(r"\.m3u8(?:$|\?)", final_url, re.IGNORECASE) is not None

        if is_mpd:
            media_type = "application/dash+xml"
        elif is_m3u8:
            media_type = "application/vnd.apple.mpegurl"
        else:
            media_type = content_type_upstream

        if method == "HEAD":
            return Response(status_code=upstream.status_code, media_type=media_type, headers=NO_STORE_HEADERS)

        if method == "GET" and upstream.is_success and is_m3u8:
            text = upstream.text
            hosts = self._manifest_hosts(text, final_url) | {_hostname(final_url)}
            manifest_token = self._token_for_manifest(grant, token, hosts)
            content = self._rewrite_manifest(text, final_url, proxy_base, manifest_token)
            return Response(content=content, status_code=upstream.status_code, media_type=media_type, headers=NO_STORE_HEADERS)

        if method == "GET" and upstream.is_success and is_mpd:
            text = upstream.text
            if not re.match(r"\s*(<\?xml|<MPD[\s>])", text, re.IGNORECASE):
                raise HTTPException(status_code=502, detail="Upstream returned non-MPD payload", headers=NO_STORE_HEADERS)
            content = self._inject_dash_base_url(text, final_url)
            return Response(content=content, status_code=upstream.status_code, media_type=media_type, headers=NO_STORE_HEADERS)

        return Response(
            content=upstream.content,
            status_code=upstream.status_code,
            media_type=media_type if upstream.is_success else content_type_upstream,
            headers=NO_STORE_HEADERS,
        )


# Singleton
_proxy_service: Optional[StreamProxyService] = None


def get_proxy_service() -> StreamProxyService:
    """Get or create proxy service singleton."""
    global _proxy_service
    if _proxy_service is None:
        _proxy_service = StreamProxyService(
            get_token_codec(),
            token_ttl_seconds=get_settings().proxy_token_ttl_seconds,
        )
    return _proxy_service
