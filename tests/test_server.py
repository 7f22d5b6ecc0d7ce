"""
Tests for the FastAPI surface.
"""

import pytest
from fastapi.testclient import TestClient

from backend.admin_analytics.configuration import AnalyticsConfig
from backend.admin_analytics.repository import DataSourceError, InMemoryDataSource
from backend.admin_analytics.server import create_app

from conftest import platform_rows


class BrokenSource(InMemoryDataSource):
    def fetch_all_events(self):
        raise DataSourceError("events table locked")


@pytest.fixture
def client(local_source):
    app = create_app(
        config=AnalyticsConfig(),
        data_source=InMemoryDataSource(**platform_rows()),
        local_source=local_source,
    )
    with TestClient(app) as test_client:
        yield test_client


def _sign_in(client):
    response = client.put("/session", json={"isAuthenticated": True, "userId": "admin", "email": "admin@example.com"})
    assert response.status_code == 200
    return response.json()


class TestReadEndpoints:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_initial_status(self, client):
        status = client.get("/status").json()
        assert status["isRefreshing"] is False
        assert status["refreshStatus"] == "idle"
        assert status["lastRefreshTimestamp"] is None
        assert status["refreshErrors"] == []

    def test_no_snapshot_before_first_refresh(self, client):
        assert client.get("/analytics").status_code == 404
        assert client.get("/export").status_code == 404


class TestRefreshFlow:
    def test_signed_out_refresh_is_local(self, client):
        body = client.post("/refresh").json()
        assert body["succeeded"] is True
        assert body["status"]["refreshStatus"] == "success"

        analytics = client.get("/analytics").json()
        assert analytics["mode"] == "local"
        assert analytics["userCount"] == 1

    def test_session_switches_to_platform(self, client):
        client.post("/refresh")
        session = _sign_in(client)
        assert session == {"mode": "local", "targetMode": "platform"}

        client.post("/refresh")
        analytics = client.get("/analytics").json()
        assert analytics["mode"] == "platform"
        assert analytics["userCount"] == 4
        assert len(analytics["metrics"]) == 8

    def test_time_range_query_is_per_request(self, client):
        client.post("/refresh")

        week = client.get("/analytics", params={"timeRange": "7d"}).json()
        assert week["timeRange"] == "7d"
        assert len(week["growth"]) == 8

        shared = client.get("/analytics").json()
        assert shared["timeRange"] == "30d"
        assert len(shared["growth"]) == 31
        assert client.get("/analytics", params={"timeRange": "1y"}).status_code == 422

    def test_time_range_update_changes_the_shared_view(self, client):
        client.post("/refresh")

        assert client.put("/time-range", json={"timeRange": "90d"}).json() == {"timeRange": "90d"}
        shared = client.get("/analytics").json()
        assert shared["timeRange"] == "90d"
        assert len(shared["growth"]) == 91
        assert client.put("/time-range", json={"timeRange": "1y"}).status_code == 422

    def test_export_download(self, client):
        _sign_in(client)
        client.post("/refresh")

        response = client.get("/export")

        assert response.status_code == 200
        assert "admin-analytics-export-" in response.headers["content-disposition"]
        document = response.json()
        assert document["analyticsSource"] == "Cross-user database"
        assert document["refreshMetadata"]["refreshStatus"] == "success"


class TestErrorsAndAutoRefresh:
    def test_failed_refresh_and_error_reset(self, local_source):
        app = create_app(config=AnalyticsConfig(), data_source=BrokenSource(), local_source=local_source)
        with TestClient(app) as client:
            _sign_in(client)
            body = client.post("/refresh").json()
            assert body["succeeded"] is False
            assert body["error"] == "DataSourceError: events table locked"
            assert client.get("/status").json()["refreshErrors"] == ["DataSourceError: events table locked"]

            cleared = client.delete("/refresh/errors").json()
            assert cleared["refreshErrors"] == []
            assert cleared["refreshStatus"] == "error"

    def test_auto_refresh_toggle(self, client):
        enabled = client.put("/auto-refresh", json={"enabled": True, "intervalSeconds": 60}).json()
        assert enabled["autoRefreshEnabled"] is True
        assert enabled["autoRefreshIntervalSeconds"] == 60

        disabled = client.put("/auto-refresh", json={"enabled": False}).json()
        assert disabled["autoRefreshEnabled"] is False
        assert client.get("/status").json()["autoRefreshEnabled"] is False

    @pytest.mark.parametrize("interval", [0, -10])
    def test_auto_refresh_rejects_non_positive_interval(self, client, interval):
        response = client.put("/auto-refresh", json={"enabled": True, "intervalSeconds": interval})
        assert response.status_code == 422
