"""Unit tests for stream key resolution."""

import pytest

from livecast.ingest.resolver import KeyResolver, is_valid_identity, key_from_stream_path


class TestIdentityValidation:
    """Test is_valid_identity."""

    @pytest.mark.parametrize("value", ["abc123", "my-stream_01", "a"])
    def test_plain_segments_are_valid(self, value):
        assert is_valid_identity(value)

    @pytest.mark.parametrize("value", ["", ".", "..", "a/b", "a\\b", "bad\x00key", None, 123])
    def test_unusable_names_are_rejected(self, value):
        assert not is_valid_identity(value)


class TestStreamPath:
    """Test key extraction from stream paths."""

    @pytest.mark.parametrize("path,expected", [
        ("/live/abc123", "abc123"),
        ("live/abc123", "abc123"),
        ("/live/abc123/", "abc123"),
        ("/a/b/c/deep", "deep"),
        ("//", None),
        ("", None),
        (None, None),
    ])
    def test_last_segment(self, path, expected):
        assert key_from_stream_path(path) == expected


class TestKeyResolver:
    """Test KeyResolver source order and fallbacks."""

    @pytest.fixture
    def resolver(self):
        return KeyResolver()

    def test_path_wins_over_other_sources(self, resolver):
        key, source = resolver.resolve_with_source(
            "/live/frompath",
            {"token": "rtmp://host/live/fromargs"},
            {"streamName": "frommeta"},
        )
        assert key == "frompath"
        assert source == "path"

    def test_args_live_url(self, resolver):
        """A /live/<token> value in the args resolves when there is no path."""
        key, source = resolver.resolve_with_source(None, {"foo": "rtmp://host/live/xyz123ab"}, None)
        assert key == "xyz123ab"
        assert source == "args"

    def test_args_live_url_beats_length_fallback(self, resolver):
        key = resolver.resolve(None, {"a": "somevalue", "b": "rtmp://h/live/tok123"}, None)
        assert key == "tok123"

    def test_args_length_fallback(self, resolver):
        assert resolver.resolve(None, {"token": "abcdef"}, None) == "abcdef"

    def test_args_short_values_ignored(self, resolver):
        assert resolver.resolve(None, {"x": "short", "n": 1234567}, None) is None

    def test_args_values_with_slashes_are_not_keys(self, resolver):
        assert resolver.resolve(None, {"tcurl": "rtmp://host/app"}, None) is None

    def test_args_live_token_too_short(self, resolver):
        assert resolver.resolve(None, {"u": "rtmp://host/live/ab"}, None) is None

    @pytest.mark.parametrize("metadata,expected", [
        ({"streamPath": "/live/meta01"}, "meta01"),
        ({"streamName": "meta02"}, "meta02"),
        ({"stream": "meta03"}, "meta03"),
        ({"rtmp": {"streamName": "meta04"}}, "meta04"),
    ])
    def test_metadata_fields(self, resolver, metadata, expected):
        key, source = resolver.resolve_with_source(None, {}, metadata)
        assert key == expected
        assert source == "metadata"

    def test_nothing_resolvable(self, resolver):
        assert resolver.resolve_with_source(None, None, None) == (None, None)
        assert resolver.resolve("", {}, {}) is None

    def test_unsafe_candidate_is_skipped(self, resolver):
        """A path yielding '..' falls through to the next source."""
        key, source = resolver.resolve_with_source("/live/..", None, {"streamName": "safe01"})
        assert key == "safe01"
        assert source == "metadata"

    def test_unsafe_metadata_value_is_not_returned(self, resolver):
        assert resolver.resolve(None, None, {"streamName": "../etc"}) is None
