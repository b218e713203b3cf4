"""HTTP tests for the ingest hooks and the live stream API."""

import os

import pytest

from livecast.ingest.hooks import session_from_payload
from webserver import create_app

from tests.fakes import FakeRunner


@pytest.fixture
def app(tmp_path, monkeypatch):
    for name in ("LIVECAST_MEDIA_ROOT", "LIVECAST_HTTP_PORT", "LIVECAST_RTMP_PORT"):
        monkeypatch.delenv(name, raising=False)
    app = create_app({"live": {"media_root": str(tmp_path / "media")}})
    app.config["TESTING"] = True
    app.extensions["livecast"]["supervisor"].runner = FakeRunner()
    yield app
    app.extensions["livecast"]["supervisor"].shutdown(timeout=1)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def supervisor(app):
    return app.extensions["livecast"]["supervisor"]


class TestSessionFromPayload:
    """Test callback payload translation."""

    def test_nginx_rtmp_form(self):
        session = session_from_payload({
            "call": "publish", "app": "live", "name": "abc123",
            "addr": "10.0.0.5", "clientid": "17", "tcurl": "rtmp://host/live",
        })
        assert session.session_id == "17"
        assert session.stream_path == "/live/abc123"
        assert session.args == {}
        assert session.metadata["streamName"] == "abc123"
        assert session.metadata["tcUrl"] == "rtmp://host/live"

    def test_srs_json(self):
        session = session_from_payload({
            "action": "on_publish", "client_id": "9x", "app": "live",
            "stream": "srs001", "stream_url": "/live/srs001", "param": "?token=secret&sign=xyz",
        })
        assert session.stream_path == "/live/srs001"
        assert session.args == {"token": "secret", "sign": "xyz"}

    def test_extra_fields_become_args(self):
        session = session_from_payload({"app": "live", "key": "rtmp://host/live/xyz123ab"})
        assert session.stream_path is None
        assert session.args == {"key": "rtmp://host/live/xyz123ab"}


class TestIngestHooks:
    """Test the on_publish / on_publish_done routes."""

    def test_nginx_publish_and_done(self, client, supervisor):
        response = client.post("/hooks/on_publish", data={"app": "live", "name": "abc123", "clientid": "1"})
        assert response.status_code == 200
        assert response.get_data(as_text=True) == "0"
        assert supervisor.is_running("abc123")

        response = client.post("/hooks/on_publish_done", data={"app": "live", "name": "abc123"})
        assert response.status_code == 200
        assert not supervisor.is_running("abc123")

    def test_srs_publish_and_unpublish(self, client, supervisor):
        payload = {"action": "on_publish", "client_id": "x1", "app": "live",
                   "stream": "srs001", "stream_url": "/live/srs001"}
        assert client.post("/hooks/on_publish", json=payload).status_code == 200
        assert supervisor.is_running("srs001")

        payload["action"] = "on_unpublish"
        assert client.post("/hooks/on_unpublish", json=payload).status_code == 200
        assert not supervisor.is_running("srs001")

    def test_duplicate_publish_spawns_once(self, client, supervisor):
        client.post("/hooks/on_publish", data={"app": "live", "name": "abc123"})
        client.post("/hooks/on_publish", data={"app": "live", "name": "abc123"})
        assert supervisor.runner.spawn_count("abc123") == 1

    def test_unresolvable_publish_is_acknowledged(self, client, supervisor):
        response = client.post("/hooks/on_publish", data={"foo": "x"})
        assert response.status_code == 200
        assert supervisor.identities() == []

    def test_spawn_failure_is_acknowledged(self, client, supervisor):
        supervisor.runner.fail.add("abc123")
        response = client.post("/hooks/on_publish", data={"app": "live", "name": "abc123"})
        assert response.status_code == 200
        assert not supervisor.is_running("abc123")


class TestLiveApi:
    """Test playlist, media and status routes."""

    def test_master_playlist(self, client):
        response = client.get("/stream/abc123/master.m3u8")

        assert response.status_code == 200
        assert response.mimetype == "application/vnd.apple.mpegurl"
        assert "no-cache" in response.headers["Cache-Control"]
        lines = response.get_data(as_text=True).splitlines()
        assert lines[0] == "#EXTM3U"
        assert sum(line.startswith("#EXT-X-STREAM-INF:") for line in lines) == 3
        assert "http://localhost/media/abc123/480.m3u8" in lines

    def test_master_playlist_public_base_url(self, app, client):
        app.extensions["livecast"]["config"].public_base_url = "https://cdn.example.com/live/"
        lines = client.get("/stream/abc123/master.m3u8").get_data(as_text=True).splitlines()
        assert "https://cdn.example.com/live/abc123/1080.m3u8" in lines

    def test_master_playlist_invalid_key(self, client):
        assert client.get("/stream/../master.m3u8").status_code == 404

    def test_media_files(self, app, client):
        media_root = app.extensions["livecast"]["config"].media_root
        os.makedirs(os.path.join(media_root, "abc123"))
        with open(os.path.join(media_root, "abc123", "480.m3u8"), "w") as f:
            f.write("#EXTM3U\n")
        with open(os.path.join(media_root, "abc123", "480_0.ts"), "wb") as f:
            f.write(b"\x47" * 188)

        playlist = client.get("/media/abc123/480.m3u8")
        assert playlist.status_code == 200
        assert playlist.mimetype == "application/vnd.apple.mpegurl"
        assert "no-cache" in playlist.headers["Cache-Control"]
        playlist.close()

        segment = client.get("/media/abc123/480_0.ts")
        assert segment.status_code == 200
        assert segment.mimetype == "video/mp2t"
        segment.close()

        assert client.get("/media/abc123/missing.m3u8").status_code == 404

    def test_streams_listing(self, client):
        client.post("/hooks/on_publish", data={"app": "live", "name": "abc123"})

        streams = client.get("/api/streams").get_json()
        assert [stream["key"] for stream in streams] == ["abc123"]
        assert streams[0]["active"] is True
        assert streams[0]["urls"]["720"] == "http://localhost/media/abc123/720.m3u8"
        assert streams[0]["job"]["status"] == "running"

        client.post("/hooks/on_publish_done", data={"app": "live", "name": "abc123"})

        streams = client.get("/api/streams").get_json()
        assert streams[0]["key"] == "abc123"
        assert streams[0]["active"] is False

    def test_stream_detail(self, client):
        assert client.get("/api/streams/nope12").status_code == 404

        client.post("/hooks/on_publish", data={"app": "live", "name": "abc123"})
        detail = client.get("/api/streams/abc123").get_json()
        assert detail["active"] is True
        assert "stderr_tail" in detail["job"]

    def test_manual_stop(self, client, supervisor):
        assert client.post("/api/streams/abc123/stop").status_code == 404

        client.post("/hooks/on_publish", data={"app": "live", "name": "abc123"})
        response = client.post("/api/streams/abc123/stop")
        assert response.status_code == 200
        assert response.get_json()["success"] is True
        assert not supervisor.is_running("abc123")

    def test_generate_key(self, client):
        data = client.get("/api/generate").get_json()
        assert len(data["streamKey"]) == 12
        assert data["rtmpUrl"] == f"rtmp://localhost:1935/live/{data['streamKey']}"

    def test_status(self, client):
        client.post("/hooks/on_publish", data={"app": "live", "name": "abc123"})
        status = client.get("/api/status").get_json()
        assert status["active_jobs"] == 1
        assert status["identities"] == ["abc123"]
        assert status["config"]["gop_size"] == 60

    def test_home(self, client):
        assert "livecast" in client.get("/").get_json()["message"]
