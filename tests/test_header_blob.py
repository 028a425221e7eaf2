"""
Tests for custom header blob parsing.
"""
import pytest

from streamvault.services.header_blob import headers_from_blob, parse_header_blob


class TestParseHeaderBlob:

    def test_plain_json(self):
        assert parse_header_blob('{"Referer": "https://site.example/", "User-Agent": "Player/1.0"}') == {
            "Referer": "https://site.example/",
            "User-Agent": "Player/1.0",
        }

    def test_escaped_quotes(self):
        raw = '{\\"Referer\\": \\"https://site.example/\\"}'
        assert parse_header_blob(raw) == {"Referer": "https://site.example/"}

    def test_json_embedded_in_text(self):
        raw = 'headers: {"X-Token": "abc {not} closed"} trailing'
        assert parse_header_blob(raw) == {"X-Token": "abc {not} closed"}

    def test_empty_and_none_values_are_dropped(self):
        raw = '{"Referer": "none", "Origin": "", " ": "x", "X-Id": 7, "X-Null": null}'
        assert parse_header_blob(raw) == {"X-Id": "7"}

    @pytest.mark.parametrize("raw", ["", "   ", "none", "[1, 2]", "{broken", "not json at all"])
    def test_unusable_blobs(self, raw):
        assert parse_header_blob(raw) == {}


class TestHeadersFromBlob:

    def test_origin_derived_from_referer(self):
        assert headers_from_blob('{"referer": "https://site.example/watch/1"}') == {
            "referer": "https://site.example/watch/1",
            "Origin": "https://site.example",
        }

    def test_existing_origin_is_kept(self):
        headers = headers_from_blob('{"Referer": "https://a.example/", "Origin": "https://b.example"}')
        assert headers["Origin"] == "https://b.example"

    def test_relative_referer_adds_nothing(self):
        assert headers_from_blob('{"Referer": "/watch"}') == {"Referer": "/watch"}
