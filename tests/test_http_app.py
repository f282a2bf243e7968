# tests/test_http_app.py
"""Tests for buildnotify/transport/http_app.py: routes, CORS and error envelopes."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from buildnotify.config import HandlerProfile
from buildnotify.core.errors import DeliveryFailed
from buildnotify.transport.http_app import build_dispatcher, create_app
from buildnotify.transport.telegram_sender import TelegramSender
from tests.fakes import ADMIN_TOKEN, WORKER_TOKEN

CORS_ORIGIN = "Access-Control-Allow-Origin"
CORS_ALLOW_HEADERS = "Access-Control-Allow-Headers"


@pytest.fixture
def client(settings, make_dispatcher):
    app = create_app(settings, make_dispatcher())
    return TestClient(app, raise_server_exceptions=False)


def _auth(token: str = ADMIN_TOKEN) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ============================================================================
# Preflight
# ============================================================================

class TestPreflight:
    def test_options_returns_204_with_cors(self, client):
        resp = client.options("/")
        assert resp.status_code == 204
        assert resp.content == b""
        assert resp.headers[CORS_ORIGIN] == "*"
        assert resp.headers[CORS_ALLOW_HEADERS] == "authorization, x-client-info, apikey, content-type"

    def test_options_skips_authentication(self, client, backend):
        client.options("/")
        assert backend.user_calls == []


# ============================================================================
# POST /
# ============================================================================

class TestSendNotification:
    def test_success(self, client, sender):
        resp = client.post("/", json={
            "action": "attendance_reminder",
            "data": {"workerName": "Ivan", "projectName": "Site A", "time": "09:00"},
        }, headers=_auth())

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message_id": 4242, "notification_logged": True}
        assert resp.headers[CORS_ORIGIN] == "*"
        assert "Ivan" in sender.sent[0][1]

    def test_missing_authorization(self, client, backend):
        resp = client.post("/", json={"action": "daily_report", "data": {}})

        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}
        assert resp.headers[CORS_ORIGIN] == "*"
        assert backend.user_calls == []

    def test_forbidden(self, client, sender):
        resp = client.post("/", json={"action": "daily_report", "data": {}}, headers=_auth(WORKER_TOKEN))

        assert resp.status_code == 403
        assert resp.json() == {"error": "Insufficient permissions"}
        assert sender.sent == []

    def test_unknown_action(self, client):
        resp = client.post("/", json={"action": "unknown_action", "data": {}}, headers=_auth())

        assert resp.status_code == 400
        assert resp.json() == {"error": "Unknown action: unknown_action"}

    def test_invalid_json_body(self, client):
        resp = client.post(
            "/",
            content=b"{not json",
            headers={**_auth(), "Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid request body: expected a JSON object"}

    def test_delivery_failure_is_500_with_detail(self, client, sender, backend):
        sender.error = DeliveryFailed(400, 400, "Bad Request: chat not found")

        resp = client.post("/", json={"action": "daily_report", "data": {}}, headers=_auth())

        assert resp.status_code == 500
        assert resp.json() == {"error": "Telegram API error: Bad Request: chat not found"}
        assert backend.inserted[0][1]["status"] == "failed"

    def test_unexpected_error_is_500_envelope(self, client, sender, backend):
        sender.error = RuntimeError("socket exploded")

        resp = client.post("/", json={"action": "daily_report", "data": {}}, headers=_auth())

        assert resp.status_code == 500
        body = resp.json()
        assert body["error"] == "socket exploded"
        assert "request_id" in body
        assert resp.headers[CORS_ORIGIN] == "*"
        assert backend.inserted[0][1]["status"] == "failed"

    def test_unexpected_error_sanitized_in_prod(self, settings, make_dispatcher, sender):
        prod = settings.model_copy(update={"app_env": "prod"})
        client = TestClient(create_app(prod, make_dispatcher()), raise_server_exceptions=False)
        sender.error = RuntimeError("socket exploded")

        resp = client.post("/", json={"action": "daily_report", "data": {}}, headers=_auth())

        assert resp.status_code == 500
        assert resp.json()["error"] == "An error occurred"

    def test_request_metadata_recorded(self, client, backend):
        client.post(
            "/",
            json={"action": "daily_report", "data": {}},
            headers={**_auth(), "User-Agent": "site-app/2.1", "X-Forwarded-For": "203.0.113.9"},
        )
        metadata = backend.inserted[0][1]["metadata"]
        assert metadata["user_agent"] == "site-app/2.1"
        # Proxy headers are ignored unless trusted
        assert metadata["ip_address"] == "testclient"

    def test_trusted_proxy_ip(self, settings, make_dispatcher, backend):
        trusted = settings.model_copy(update={"trust_proxy_headers": True})
        client = TestClient(create_app(trusted, make_dispatcher()))

        client.post(
            "/",
            json={"action": "daily_report", "data": {}},
            headers={**_auth(), "X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
        )
        assert backend.inserted[0][1]["metadata"]["ip_address"] == "203.0.113.9"

    def test_open_profile(self, settings, make_dispatcher, backend):
        open_dispatcher = make_dispatcher(HandlerProfile(require_admin=False, record_caller_identity=False))
        client = TestClient(create_app(settings, open_dispatcher))

        resp = client.post("/", json={"action": "daily_report", "data": {}}, headers=_auth(WORKER_TOKEN))

        assert resp.status_code == 200
        assert backend.role_calls == []

    def test_request_id_header(self, client):
        resp = client.post("/", json={}, headers={**_auth(), "X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"


# ============================================================================
# Health / metrics
# ============================================================================

class TestOperationalEndpoints:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy"}

    def test_metrics_open_without_token(self, client):
        client.post("/", json={"action": "daily_report", "data": {}})
        resp = client.get("/metrics")

        assert resp.status_code == 200
        counters = resp.json()["counters"]
        assert counters["auth_rejections_total{reason=missing_credential}"] == 1

    def test_metrics_token_required(self, settings, make_dispatcher):
        secured = settings.model_copy(update={"metrics_token": "s3cret"})
        client = TestClient(create_app(secured, make_dispatcher()))

        assert client.get("/metrics").status_code == 401
        assert client.get("/metrics", headers={"Authorization": "Bearer wrong"}).status_code == 401
        resp = client.get("/metrics", headers={"Authorization": "Bearer s3cret"})
        assert resp.status_code == 200

    def test_metrics_disabled(self, settings, make_dispatcher):
        disabled = settings.model_copy(update={"enable_metrics": False})
        client = TestClient(create_app(disabled, make_dispatcher()))
        assert client.get("/metrics").status_code == 404


# ============================================================================
# Wiring
# ============================================================================

class TestBuildDispatcher:
    def test_sender_built_from_token(self, settings):
        dispatcher = build_dispatcher(settings)
        assert isinstance(dispatcher._sender, TelegramSender)
        assert dispatcher.profile == HandlerProfile(require_admin=True, record_caller_identity=True)

    def test_no_token_no_sender(self, settings):
        dispatcher = build_dispatcher(settings.model_copy(update={"telegram_bot_token": None}))
        assert dispatcher._sender is None

    def test_profile_from_settings(self, settings):
        dispatcher = build_dispatcher(
            settings.model_copy(update={"require_admin": False, "record_caller_identity": False})
        )
        assert dispatcher.profile == HandlerProfile(require_admin=False, record_caller_identity=False)

    def test_missing_token_yields_500(self, settings, make_dispatcher):
        client = TestClient(create_app(settings, make_dispatcher(with_sender=False)))

        resp = client.post("/", json={"action": "daily_report", "data": {}}, headers=_auth())

        assert resp.status_code == 500
        assert resp.json() == {"error": "Telegram bot token not configured"}
