"""
Tests for the HTTP surface.
"""
import pytest
from fastapi.testclient import TestClient

from epg_now.main import create_app


@pytest.fixture
def manager(make_manager, sample_document):
    return make_manager({"src": sample_document})


@pytest.fixture
def client(settings, manager):
    app = create_app(settings, manager)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def loaded_client(client):
    response = client.post("/epg/initialize", json={"source": "src"})
    assert response.status_code == 200
    return client


class TestServiceEndpoints:

    def test_root(self, client):
        data = client.get("/").json()
        assert data["service"] == "EPG Now"
        assert data["next_scheduled_update"] is None

    def test_health_before_load(self, client):
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["epg_available"] is False
        assert data["needs_update"] is True

    def test_health_after_load(self, loaded_client):
        data = loaded_client.get("/health").json()
        assert data["epg_available"] is True
        assert data["needs_update"] is False

    def test_status_uses_camel_case(self, loaded_client):
        data = loaded_client.get("/epg/status").json()
        assert data == {
            "isUpdating": False,
            "lastUpdate": "09:30",
            "channelsCount": 1,
            "iconsCount": 1,
            "programsCount": 2,
            "timezone": "+1:00",
        }


class TestUpdateEndpoints:

    def test_initialize_installs_schedule(self, loaded_client, manager, fake_scheduler):
        assert manager.last_source == "src"
        assert fake_scheduler.start_calls == 1

    def test_refresh_requires_source(self, client):
        assert client.post("/epg/refresh").status_code == 409

    def test_refresh(self, loaded_client, manager):
        response = loaded_client.post("/epg/refresh")
        assert response.json()["status"] == "completed"
        assert manager.downloader.fetched == ["src", "src"]

    def test_initialize_requires_source(self, client):
        assert client.post("/epg/initialize", json={}).status_code == 422


class TestProgramEndpoints:

    def test_current(self, loaded_client):
        data = loaded_client.get("/epg/RAI1.it/current").json()
        assert data == {
            "title": "Morning Show",
            "description": "Wake up",
            "category": "Talk",
            "start": "09:00",
            "stop": "10:00",
            "channelName": "Rai 1",
            "channelIcon": "http://logo.example/rai1.png",
        }

    def test_current_unknown_channel(self, loaded_client):
        response = loaded_client.get("/epg/nobody/current")
        assert response.status_code == 200
        assert response.json() is None

    def test_upcoming(self, loaded_client):
        data = loaded_client.get("/epg/rai1.it/upcoming").json()
        assert [(p["title"], p["start"], p["stop"]) for p in data] == [("News", "10:00", "11:00")]

    @pytest.mark.parametrize("limit", [-1, 51])
    def test_upcoming_rejects_bad_limit(self, loaded_client, limit):
        assert loaded_client.get(f"/epg/rai1.it/upcoming?limit={limit}").status_code == 422

    def test_icon(self, loaded_client):
        data = loaded_client.get("/epg/rai1.it/icon").json()
        assert data == {"channel_id": "rai1.it", "icon": "http://logo.example/rai1.png"}

    def test_blank_channel_id_is_bad_request(self, loaded_client):
        response = loaded_client.get("/epg/%20/current")
        assert response.status_code == 400
        assert response.json()["detail"] == "channel_id is required"

    def test_missing_channels(self, loaded_client):
        payload = {
            "channels": [
                {"tvg_id": "RAI1.it", "name": "Rai 1"},
                {"tvg_id": "bbc.uk", "name": "BBC", "group": "UK"},
                {"name": "No id"},
            ]
        }

        data = loaded_client.post("/epg/missing-channels", json=payload).json()

        assert data["count"] == 1
        assert data["channels"] == [{"tvg_id": "bbc.uk", "name": "BBC", "group": "UK"}]
