"""
Unit Tests for request id and error handling middleware
"""

import pytest
from fastapi.testclient import TestClient

from bookhive.application.app import create_app
from bookhive.core.exceptions import BookHiveError, QueueError


@pytest.fixture
def app(degraded_settings):
    app = create_app(degraded_settings)

    @app.get("/boom")
    async def boom():
        raise RuntimeError("database exploded")

    @app.get("/domain-error")
    async def domain_error():
        raise QueueError("Failed to enqueue job", details={"queue": "email"})

    return app


@pytest.mark.unit
class TestRequestIdMiddleware:
    def test_incoming_request_id_is_echoed(self, app):
        with TestClient(app) as client:
            response = client.get("/", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_generated_when_missing(self, app):
        with TestClient(app) as client:
            response = client.get("/")

        assert len(response.headers["X-Request-ID"]) == 36


@pytest.mark.unit
class TestErrorHandling:
    def test_unhandled_exception_is_json_500(self, app):
        with TestClient(app) as client:
            response = client.get("/boom", headers={"X-Request-ID": "req-500"})

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "internal_server_error"
        assert data["error_type"] == "RuntimeError"
        assert data["request_id"] == "req-500"
        assert "database exploded" not in response.text
        assert "traceback" not in data

    def test_traceback_only_in_development(self, degraded_settings):
        settings = degraded_settings.model_copy(update={"ENVIRONMENT": "development"})
        app = create_app(settings)

        @app.get("/boom")
        async def boom():
            raise RuntimeError("database exploded")

        with TestClient(app) as client:
            data = client.get("/boom").json()

        assert data["detail"] == "database exploded"
        assert "RuntimeError" in data["traceback"]

    def test_domain_error_uses_exception_handler(self, app):
        with TestClient(app) as client:
            response = client.get("/domain-error", headers={"X-Request-ID": "req-q"})

        assert response.status_code == 500
        assert response.headers["X-Request-ID"] == "req-q"
        assert response.json() == {
            "error_type": "QueueError",
            "message": "Failed to enqueue job",
            "request_id": None,
            "details": {"queue": "email"},
        }
        assert isinstance(QueueError("x"), BookHiveError)
