"""Liveness and readiness probes."""

from fastapi.testclient import TestClient


class TestHealthEndpoint:
    """Tests for GET /health"""

    def test_health_returns_ok_envelope(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"data": {"status": "ok"}}
        assert response.headers["content-type"] == "application/json"

    def test_health_ignores_session_cookie(self, client: TestClient, identity_provider):
        """A bogus cookie is never sent to the identity provider."""
        client.cookies.set("session", "not-a-session")

        response = client.get("/health")

        assert response.status_code == 200
        assert identity_provider.sessions == {}


class TestReadinessEndpoint:
    def test_ready_when_database_answers(self, client: TestClient):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["data"] == {
            "status": "ok",
            "database": "ok",
            "job_transport": "qstash",
        }

    def test_not_ready_when_database_fails(self, client: TestClient, monkeypatch):
        monkeypatch.setattr("quizmint.api.routes.health.ping", lambda db: False)

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "E_DATABASE_UNAVAILABLE"
