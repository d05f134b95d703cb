"""
API tests for the save endpoint and health routes.

Tests full request/response cycles through the FastAPI app using TestClient.
The relay dependency is overridden with one wired to an httpx.MockTransport,
so no real SFMC calls are made.

Coverage:
  - POST success / validation / malformed body / auth / upsert / config errors
  - OPTIONS preflight (bare and browser CORS) and 405 for other methods
  - development-mode traceback in error details, driven by the relay settings
  - /health and /health/config
"""

import json
from datetime import datetime, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from de_relay.clients import get_relay
from de_relay.config import RelaySettings
from de_relay.main import app
from de_relay.services.token_cache import TokenCache
from de_relay.services.upsert_relay import UpsertRelay


ENDPOINT = "/api/save-to-de"
AUTH_HOST = "mc-test.auth.marketingcloudapis.com"
FIXED_NOW = datetime(2026, 1, 5, 8, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fake platform + app fixture
# ---------------------------------------------------------------------------

class PlatformStub:
    """Records outbound calls and answers with configurable status codes."""

    def __init__(self):
        self.auth_status = 200
        self.upsert_status = 200
        self.calls = []

    @property
    def upsert_calls(self):
        return [c for c in self.calls if c.url.host != AUTH_HOST]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if request.url.host == AUTH_HOST:
            if self.auth_status != 200:
                return httpx.Response(self.auth_status, text="invalid client credentials")
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 1080})
        if self.upsert_status >= 300:
            return httpx.Response(self.upsert_status, text="Data Extension not found")
        return httpx.Response(200, json={})


def _make_settings(**overrides) -> RelaySettings:
    values = {
        "client_id": "client-abc",
        "client_secret": "secret-xyz",
        "subdomain": "mc-test",
        "de_external_key": "TranslationDataExtension",
    }
    values.update(overrides)
    return RelaySettings(**values)


@pytest.fixture()
def platform():
    return PlatformStub()


@pytest.fixture()
def make_client(platform):
    """Return a factory building a TestClient whose relay talks to ``platform``."""

    def _factory(**settings_overrides) -> TestClient:
        settings = _make_settings(**settings_overrides)
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(platform.handler))
        relay = UpsertRelay(
            settings, TokenCache(settings, http_client), http_client, now=lambda: FIXED_NOW
        )
        app.dependency_overrides[get_relay] = lambda: relay
        return TestClient(app)

    yield _factory
    app.dependency_overrides.clear()


@pytest.fixture()
def client(make_client):
    return make_client()


def _body(email_name="Welcome Email", fields=None) -> dict:
    if fields is None:
        fields = [{"name": "subject", "value": "Hi"}]
    return {"emailName": email_name, "fields": fields}


# ---------------------------------------------------------------------------
# POST
# ---------------------------------------------------------------------------

class TestSaveEndpoint:
    """Test POST /api/save-to-de."""

    def test_successful_save(self, client, platform):
        """A valid request returns 200 with the row count."""
        response = client.post(ENDPOINT, json=_body())

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["rowsInserted"] == 1
        assert data["message"] == "Successfully saved 1 row(s) to Data Extension"
        assert len(platform.upsert_calls) == 1

    def test_upsert_payload_matches_rowset_contract(self, client, platform):
        """The upstream body pairs composite keys with full values."""
        client.post(ENDPOINT, json=_body())

        sent = json.loads(platform.upsert_calls[0].content)
        assert sent == [
            {
                "keys": {"emailName": "Welcome Email", "fieldName": "subject"},
                "values": {
                    "emailName": "Welcome Email",
                    "fieldName": "subject",
                    "fieldValue": "Hi",
                    "entryTimestamp": "2026-01-05T08:00:00.000Z",
                },
            }
        ]

    def test_duplicate_field_returns_400_without_network(self, client, platform):
        """Duplicate names are a 400 naming the rule; nothing is sent upstream."""
        response = client.post(ENDPOINT, json=_body(fields=[
            {"name": "subject", "value": "Hi"},
            {"name": "subject", "value": "Hi2"},
        ]))

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["kind"] == "validation_error"
        assert data["details"]["rule"] == "duplicate_field_name"
        assert platform.calls == []

    def test_empty_fields_returns_400(self, client):
        """An empty fields list is a 400."""
        response = client.post(ENDPOINT, json=_body(fields=[]))

        assert response.status_code == 400
        assert response.json()["details"]["rule"] == "fields_required"

    def test_missing_email_name_returns_400(self, client):
        """A missing emailName is a 400."""
        response = client.post(ENDPOINT, json={"fields": [{"name": "subject", "value": "Hi"}]})

        assert response.status_code == 400
        assert response.json()["details"]["rule"] == "email_name_required"

    def test_non_json_body_returns_400(self, client, platform):
        """An unparseable body is a 400, not a 422."""
        response = client.post(
            ENDPOINT, content="not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error"] == "Invalid request body. Expected: { emailName, fields }"
        assert platform.calls == []

    def test_fields_not_a_list_returns_400(self, client):
        """fields must be an array of {name, value} objects."""
        response = client.post(ENDPOINT, json={"emailName": "Welcome Email", "fields": "subject"})

        assert response.status_code == 400
        assert response.json()["details"]["rule"] == "invalid_body"

    def test_auth_failure_returns_500_with_upstream_details(self, client, platform):
        """A failed token exchange is a 500 carrying upstream status and body."""
        platform.auth_status = 401

        response = client.post(ENDPOINT, json=_body())

        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert data["kind"] == "auth_error"
        assert data["details"]["status"] == 401
        assert data["details"]["body"] == "invalid client credentials"
        assert platform.upsert_calls == []

    def test_upsert_failure_returns_500(self, client, platform):
        """A failed rowset upsert is a 500 with kind upsert_error."""
        platform.upsert_status = 404

        response = client.post(ENDPOINT, json=_body())

        assert response.status_code == 500
        data = response.json()
        assert data["kind"] == "upsert_error"
        assert data["details"]["status"] == 404
        assert "Data Extension not found" in data["error"]

    def test_missing_config_returns_500(self, make_client, platform):
        """Missing configuration is a 500 listing variable names only."""
        client = make_client(client_id=None, subdomain=None)

        response = client.post(ENDPOINT, json=_body())

        assert response.status_code == 500
        data = response.json()
        assert data["kind"] == "config_error"
        assert data["details"]["missing"] == ["SFMC_CLIENT_ID", "SFMC_SUBDOMAIN"]
        assert platform.calls == []

    def test_development_mode_adds_traceback(self, make_client, platform, monkeypatch):
        """A relay configured for development includes a traceback in error details."""
        monkeypatch.delenv("RELAY_ENV", raising=False)
        client = make_client(environment="development")
        platform.upsert_status = 500

        response = client.post(ENDPOINT, json=_body())

        assert "traceback" in response.json()["details"]

    def test_production_mode_hides_traceback(self, client, platform, monkeypatch):
        """Outside development no traceback is returned."""
        monkeypatch.delenv("RELAY_ENV", raising=False)
        platform.upsert_status = 500

        response = client.post(ENDPOINT, json=_body())

        assert "traceback" not in response.json()["details"]

    def test_process_env_does_not_override_relay_settings(self, client, platform, monkeypatch):
        """RELAY_ENV set after the relay was built does not leak tracebacks."""
        monkeypatch.setenv("RELAY_ENV", "development")
        platform.upsert_status = 500

        response = client.post(ENDPOINT, json=_body())

        assert response.status_code == 500
        assert "traceback" not in response.json()["details"]


# ---------------------------------------------------------------------------
# OPTIONS / other methods
# ---------------------------------------------------------------------------

class TestMethodsAndCors:
    """Test preflight handling and method restrictions."""

    def test_bare_options_returns_200_with_cors_headers(self, client):
        """OPTIONS without CORS request headers still gets permissive headers."""
        response = client.options(ENDPOINT)

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["access-control-allow-methods"] == "POST, OPTIONS"
        assert response.headers["access-control-allow-headers"] == "Content-Type"

    def test_browser_preflight_is_allowed(self, client):
        """A browser preflight from another origin is accepted."""
        response = client.options(
            ENDPOINT,
            headers={
                "Origin": "https://mc.s50.exacttarget.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert "POST" in response.headers["access-control-allow-methods"]

    def test_cross_origin_post_gets_allow_origin(self, client):
        """A cross-origin POST response carries Access-Control-Allow-Origin."""
        response = client.post(
            ENDPOINT, json=_body(), headers={"Origin": "https://mc.s50.exacttarget.com"}
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"

    @pytest.mark.parametrize("method", ["GET", "PUT", "PATCH", "DELETE", "TRACE"])
    def test_other_methods_return_405(self, client, platform, method):
        """Anything but POST/OPTIONS is a 405 in the relay's error shape."""
        response = client.request(method, ENDPOINT)

        assert response.status_code == 405
        assert response.json() == {"success": False, "error": "Method not allowed"}
        assert platform.calls == []


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

class TestHealth:
    """Test root and health routes."""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["message"] == "Data Extension Save Relay"

    def test_health(self, client):
        response = client.get("/health")

        assert response.json() == {"status": "ok"}

    def test_health_config_ok(self, client):
        """Complete config reports ok and the target table."""
        response = client.get("/health/config")

        assert response.status_code == 200
        assert response.json()["table"] == "TranslationDataExtension"

    def test_health_config_missing_returns_503(self, make_client):
        """Incomplete config is a 503 naming the missing variables, not values."""
        client = make_client(client_secret=None)

        response = client.get("/health/config")

        assert response.status_code == 503
        assert response.json() == {"status": "error", "missing": ["SFMC_CLIENT_SECRET"]}
        assert "secret-xyz" not in response.text
