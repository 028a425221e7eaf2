"""
Tests for DRM classification and playback descriptor resolution.
"""
import base64
import json
from urllib.parse import parse_qs, urlparse

import pytest

from streamvault.models.channel import ChannelRecord
from streamvault.models.playback import ClearKeyLicenseGrant, ClearKeyPair, DrmType, StreamProxyGrant, WidevineLicenseGrant
from streamvault.services.playback_resolver import PlaybackResolver, classify_drm
from streamvault.services.stream_proxy import decode_target

KEY_ID = "0123456789abcdef0123456789abcdef"
KEY = "fedcba9876543210fedcba9876543210"


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


class TestClassifyDrm:
    """The classification table, row by row."""

    @pytest.mark.parametrize("stream_kind", ["", "hls", "dash", "dash-clearkey", "widevine", "mystery"])
    def test_no_license_is_never_drm(self, stream_kind):
        assert classify_drm(stream_kind, "") == DrmType.NONE
        assert classify_drm(stream_kind, "   ") == DrmType.NONE

    @pytest.mark.parametrize("stream_kind", ["clearkey", "dash-clearkey", "CK", "hls_ck", "ClearKey DASH"])
    def test_clearkey_hints(self, stream_kind):
        assert classify_drm(stream_kind, "https://lic.example.com/ck") == DrmType.CLEARKEY

    @pytest.mark.parametrize("stream_kind", ["widevine", "dash-widevine", "WV", "dash_wv"])
    def test_widevine_hints(self, stream_kind):
        assert classify_drm(stream_kind, "https://lic.example.com/wv") == DrmType.WIDEVINE

    @pytest.mark.parametrize("license_value", [
        f"{KEY_ID}:{KEY}",
        json.dumps({"keys": [{"kty": "oct", "kid": "a2lk", "k": "a2V5"}]}),
        base64.b64encode(json.dumps({"keys": [{"kid": "a2lk", "k": "a2V5"}]}).encode()).decode(),
    ])
    def test_literal_key_material_is_clearkey(self, license_value):
        assert classify_drm("dash", license_value) == DrmType.CLEARKEY
        assert classify_drm("", license_value) == DrmType.CLEARKEY

    @pytest.mark.parametrize("stream_kind", ["", "hls", "dash", "mp4", "unknown-format"])
    def test_other_license_values_default_to_widevine(self, stream_kind):
        assert classify_drm(stream_kind, "https://lic.example.com/acquire") == DrmType.WIDEVINE

    def test_hint_words_inside_other_words_do_not_match(self):
        # "check" contains "ck" but is not a clearkey hint token
        assert classify_drm("check", "https://lic.example.com/acquire") == DrmType.WIDEVINE


class TestResolve:

    @pytest.fixture
    def resolver(self, token_codec):
        return PlaybackResolver(token_codec, force_proxy_domains=["cloudfront.net"])

    def test_plain_stream_has_no_drm(self, resolver):
        record = ChannelRecord(id="p", stream_url="https://cdn.example.com/p.m3u8", stream_kind="hls")
        descriptor = resolver.resolve(record)
        assert descriptor.stream_url == "https://cdn.example.com/p.m3u8"
        assert descriptor.should_proxy is False
        assert descriptor.proxy_token is None
        assert descriptor.drm.type == DrmType.NONE
        assert descriptor.drm.license_proxy_url is None

    def test_headers_force_proxy(self, resolver, token_codec):
        record = ChannelRecord(
            id="h",
            stream_url="https://edge.example.com/live.m3u8",
            stream_headers={"Referer": "https://site.example/watch"},
            license_url="https://lic.example.com/wv",
        )
        descriptor = resolver.resolve(record, proxy_path="/api/proxy")
        assert descriptor.should_proxy is True
        assert descriptor.stream_url != record.stream_url
        assert descriptor.stream_url.startswith("/api/proxy?")

        params = _query(descriptor.stream_url)
        assert decode_target(params["target"]) == "https://edge.example.com/live.m3u8"
        grant = token_codec.verify(params["token"])
        assert grant == StreamProxyGrant(
            headers={"Referer": "https://site.example/watch", "Origin": "https://site.example"},
            allowed_hosts=("edge.example.com",),
        )

    def test_force_proxy_domain(self, resolver):
        record = ChannelRecord(id="cf", stream_url="https://d111.cloudfront.net/live/index.m3u8")
        assert resolver.resolve(record).should_proxy is True

    def test_non_http_stream_is_never_proxied(self, resolver):
        record = ChannelRecord(id="r", stream_url="rtmp://media.example.com/live", stream_headers={"Referer": "x"})
        assert resolver.resolve(record).should_proxy is False

    def test_widevine_license_goes_into_token(self, resolver, token_codec):
        record = ChannelRecord(
            id="c1",
            stream_url="http://cdn/x.m3u8",
            license_url="http://lic/x",
            license_headers={"X-Custom": "abc"},
        )
        descriptor = resolver.resolve(record, license_path="/api/v1/playback/license")
        assert descriptor.should_proxy is False
        assert descriptor.drm.type == DrmType.WIDEVINE

        license_url = descriptor.drm.license_proxy_url
        assert license_url.startswith("/api/v1/playback/license?token=")
        dumped = descriptor.model_dump_json(by_alias=True)
        assert "http://lic/x" not in dumped
        assert "X-Custom" not in dumped

        grant = token_codec.verify(_query(license_url)["token"])
        assert grant == WidevineLicenseGrant(license_url="http://lic/x", license_headers={"X-Custom": "abc"})

    def test_clearkey_material_goes_into_token(self, resolver, token_codec):
        record = ChannelRecord(
            id="ck",
            stream_url="https://cdn.example.com/ck.mpd",
            stream_kind="dash-clearkey",
            license_url=f"{KEY_ID}:{KEY}",
        )
        descriptor = resolver.resolve(record)
        assert descriptor.drm.type == DrmType.CLEARKEY
        assert KEY not in descriptor.model_dump_json(by_alias=True)
        grant = token_codec.verify(_query(descriptor.drm.license_proxy_url)["token"])
        assert grant == ClearKeyLicenseGrant(keys=(ClearKeyPair(key_id=KEY_ID, key=KEY),))

    def test_unusable_clearkey_material_still_resolves(self, resolver, token_codec):
        record = ChannelRecord(
            id="bad",
            stream_url="https://cdn.example.com/ck.mpd",
            stream_kind="clearkey",
            license_url="https://not-key-material.example.com",
        )
        descriptor = resolver.resolve(record)
        assert descriptor.drm.type == DrmType.CLEARKEY
        grant = token_codec.verify(_query(descriptor.drm.license_proxy_url)["token"])
        assert grant == ClearKeyLicenseGrant()

    def test_every_key_of_a_document_is_kept(self, resolver, token_codec):
        document = {"keys": [
            {"kty": "oct", "kid": "dmlkZW9raWQ", "k": "dmlkZW9rZXk"},
            {"kty": "oct", "kid": "YXVkaW9raWQ", "k": "YXVkaW9rZXk"},
        ]}
        record = ChannelRecord(
            id="multi",
            stream_url="https://cdn.example.com/multi.mpd",
            stream_kind="dash",
            license_url=base64.b64encode(json.dumps(document).encode()).decode(),
        )
        descriptor = resolver.resolve(record)
        assert descriptor.drm.type == DrmType.CLEARKEY
        grant = token_codec.verify(_query(descriptor.drm.license_proxy_url)["token"])
        assert grant.keys == (
            ClearKeyPair(key_id="dmlkZW9raWQ", key="dmlkZW9rZXk"),
            ClearKeyPair(key_id="YXVkaW9raWQ", key="YXVkaW9rZXk"),
        )

    def test_serialized_with_camel_case(self, resolver):
        record = ChannelRecord(id="p", stream_url="https://cdn.example.com/p.m3u8")
        body = resolver.resolve(record).model_dump(by_alias=True, mode="json")
        assert set(body) == {"streamUrl", "shouldProxy", "proxyToken", "drm"}
        assert body["drm"] == {"type": "none", "licenseProxyUrl": None}
