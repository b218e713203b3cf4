"""Unit tests for the master playlist composer."""

from livecast.transcode.config import RenditionSpec, default_ladder, passthrough_ladder
from livecast.transcode.playlist import PASSTHROUGH_BANDWIDTH, PlaylistComposer


def _variants(text):
    """(STREAM-INF line, URI line) pairs of a master playlist."""
    lines = text.splitlines()
    return [(line, lines[i + 1]) for i, line in enumerate(lines) if line.startswith("#EXT-X-STREAM-INF:")]


def _bandwidth(stream_inf):
    attributes = dict(item.split("=", 1) for item in stream_inf.split(":", 1)[1].split(","))
    return int(attributes["BANDWIDTH"])


class TestPlaylistComposer:
    """Test PlaylistComposer."""

    def test_three_rung_master(self):
        text = PlaylistComposer().compose_master("abc123", default_ladder(), "http://host:8100/media")

        assert text.startswith("#EXTM3U\n#EXT-X-VERSION:3\n")
        assert text.endswith("\n")
        variants = _variants(text)
        assert len(variants) == 3
        bandwidths = [_bandwidth(info) for info, _ in variants]
        assert bandwidths == sorted(bandwidths)
        assert [uri for _, uri in variants] == [
            "http://host:8100/media/abc123/480.m3u8",
            "http://host:8100/media/abc123/720.m3u8",
            "http://host:8100/media/abc123/1080.m3u8",
        ]
        assert "RESOLUTION=1280x720" in variants[1][0]

    def test_ladder_order_does_not_matter(self):
        ladder = list(reversed(default_ladder()))
        variants = _variants(PlaylistComposer().compose_master("abc123", ladder, "http://h/media"))
        assert [uri.rsplit("/", 1)[1] for _, uri in variants] == ["480.m3u8", "720.m3u8", "1080.m3u8"]

    def test_bandwidth_from_peak_rate(self):
        composer = PlaylistComposer()
        rung = RenditionSpec("720", 1280, 720, video_bitrate=2500, maxrate=3000, audio_bitrate=128)
        assert composer.get_bandwidth(rung) == 3128000

    def test_bandwidth_without_maxrate(self):
        rung = RenditionSpec("360", 640, 360, video_bitrate=800, audio_bitrate=None)
        assert PlaylistComposer().get_bandwidth(rung) == 928000

    def test_explicit_bandwidth(self):
        rung = RenditionSpec("720", 1280, 720, video_bitrate=2500, bandwidth=2800000)
        assert PlaylistComposer().get_bandwidth(rung) == 2800000

    def test_passthrough_master(self):
        text = PlaylistComposer().compose_master("abc123", passthrough_ladder(), "http://host:8100/media/")
        variants = _variants(text)
        assert variants == [(
            f"#EXT-X-STREAM-INF:BANDWIDTH={PASSTHROUGH_BANDWIDTH}",
            "http://host:8100/media/abc123/index.m3u8",
        )]

    def test_version_tag(self):
        text = PlaylistComposer(version=6).compose_master("abc123", default_ladder(), "http://h/media")
        assert "#EXT-X-VERSION:6" in text.splitlines()
