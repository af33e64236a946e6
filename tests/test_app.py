"""End-to-end tests for the assembled gateway app."""

import logging
import time

import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from todo_gateway.app import create_app
from todo_gateway.markers import InMemoryMarkerStore
from todo_gateway.middleware import get_auth_context
from todo_gateway.models import GatewayConfig, SessionConfig

TOKEN = "/oauth/token"
USERINFO = "/oauth/userinfo"


async def protocol_endpoint(request: Request) -> JSONResponse:
    context = get_auth_context(request)
    return JSONResponse({"subject": context.subject if context else None})


@pytest.fixture
def protocol_app():
    """Stand-in for the MCP app: answers on /mcp with the caller's subject."""
    return Starlette(routes=[Route("/mcp", protocol_endpoint, methods=["GET", "POST"])])


@pytest.fixture
def app(gateway_config, fake_auth_server, protocol_app):
    return create_app(
        gateway_config,
        protocol_app=protocol_app,
        transport=fake_auth_server.transport,
    )


@pytest.fixture
def client(app):
    return TestClient(app)


def _cookie_attributes(response) -> list[str]:
    return [part.strip().lower() for part in response.headers["set-cookie"].split(";")]


class TestHealth:
    """Tests for the health endpoint."""

    def test_health_is_public(self, client):
        """The health check should not need credentials."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestCallback:
    """Tests for POST /api/auth/callback."""

    def test_exchange_sets_session_cookie(self, client, fake_auth_server):
        """A successful exchange should return tokens and set the cookie."""
        fake_auth_server.on(
            "POST",
            TOKEN,
            json={"access_token": "at-1", "id_token": "idt-1", "expires_in": 3600},
        )

        response = client.post("/api/auth/callback", json={"code": "abc123"})

        assert response.status_code == 200
        assert response.json() == {
            "accessToken": "at-1",
            "idToken": "idt-1",
            "expiresIn": 3600,
        }
        attributes = _cookie_attributes(response)
        assert attributes[0] == "todo_session=at-1"
        assert "httponly" in attributes
        assert "samesite=lax" in attributes
        assert "path=/" in attributes
        assert "max-age=3600" in attributes
        assert "secure" not in attributes

    def test_replayed_code_rejected(self, client, fake_auth_server):
        """The second callback with the same code should be refused."""
        fake_auth_server.on("POST", TOKEN, json={"access_token": "at-1"})

        first = client.post("/api/auth/callback", json={"code": "abc123"})
        second = client.post("/api/auth/callback", json={"code": "abc123"})

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json() == {"error": "Authorization code already used"}
        assert "set-cookie" not in second.headers
        assert len(fake_auth_server.calls("POST", TOKEN)) == 1

    def test_redirect_uri_derived_from_origin(self, client, fake_auth_server):
        """The redirect URI sent upstream should be origin + redirect path."""
        fake_auth_server.on("POST", TOKEN, json={"access_token": "at-1"})

        client.post("/api/auth/callback", json={"code": "abc123"})

        [request] = fake_auth_server.calls("POST", TOKEN)
        assert b"redirect_uri=http%3A%2F%2Ftestserver%2Fauthenticate" in request.content

    def test_custom_redirect_path(self, auth_server_config, fake_auth_server):
        """A configured redirect path should be used."""
        config = GatewayConfig(
            auth_server=auth_server_config,
            session=SessionConfig(redirect_path="/login/done"),
        )
        fake_auth_server.on("POST", TOKEN, json={"access_token": "at-1"})
        client = TestClient(create_app(config, transport=fake_auth_server.transport))

        client.post("/api/auth/callback", json={"code": "abc123"})

        [request] = fake_auth_server.calls("POST", TOKEN)
        assert b"redirect_uri=http%3A%2F%2Ftestserver%2Flogin%2Fdone" in request.content

    def test_secure_cookie_on_https(self, app, fake_auth_server):
        """The cookie should be Secure when the request came over https."""
        fake_auth_server.on("POST", TOKEN, json={"access_token": "at-1"})
        client = TestClient(app, base_url="https://todo.example.com")

        response = client.post("/api/auth/callback", json={"code": "abc123"})

        assert response.status_code == 200
        assert "secure" in _cookie_attributes(response)

    def test_default_cookie_lifetime(self, client, fake_auth_server):
        """Without expires_in the cookie should last the session max age."""
        fake_auth_server.on("POST", TOKEN, json={"access_token": "at-1"})

        response = client.post("/api/auth/callback", json={"code": "abc123"})

        assert response.json()["expiresIn"] is None
        assert f"max-age={7 * 24 * 60 * 60}" in _cookie_attributes(response)

    def test_session_id_stored_in_cookie(self, client, fake_auth_server):
        """A session id in the response should become the cookie value."""
        fake_auth_server.on(
            "POST", TOKEN, json={"session_id": "ses_123", "access_token": "at-1"}
        )

        response = client.post("/api/auth/callback", json={"code": "abc123"})

        assert response.json()["accessToken"] == "ses_123"
        assert _cookie_attributes(response)[0] == "todo_session=ses_123"

    def test_missing_code(self, client, fake_auth_server):
        """A body without a code should be a 400."""
        response = client.post("/api/auth/callback", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "Authorization code is required"}
        assert fake_auth_server.requests == []

    def test_non_string_code(self, client):
        """A non-string code should be treated as missing."""
        response = client.post("/api/auth/callback", json={"code": 123})

        assert response.status_code == 400
        assert response.json() == {"error": "Authorization code is required"}

    def test_invalid_body(self, client):
        """A body that is not JSON should be a 400."""
        response = client.post(
            "/api/auth/callback",
            content=b"code=abc123",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid request body"}

    def test_upstream_rejection(self, client, fake_auth_server):
        """An authorization server error should be a 400 with its reason."""
        fake_auth_server.on(
            "POST",
            TOKEN,
            status_code=400,
            json={"error": "invalid_grant", "error_description": "Code expired"},
        )

        response = client.post("/api/auth/callback", json={"code": "abc123"})

        assert response.status_code == 400
        assert response.json() == {"error": "Token exchange failed: Code expired"}

    def test_upstream_status_logged(self, client, fake_auth_server, caplog):
        """The authorization server's status should be logged on failure."""
        fake_auth_server.on("POST", TOKEN, status_code=503, text="Unavailable")

        with caplog.at_level(logging.ERROR, logger="todo_gateway.routes"):
            client.post("/api/auth/callback", json={"code": "abc123"})

        assert "upstream status=503" in caplog.text
        assert "abc123" not in caplog.text

    def test_shared_marker_store(self, gateway_config, fake_auth_server):
        """Apps sharing a marker store should refuse each other's codes."""
        fake_auth_server.on("POST", TOKEN, json={"access_token": "at-1"})
        markers = InMemoryMarkerStore()
        first = TestClient(
            create_app(
                gateway_config, marker_store=markers, transport=fake_auth_server.transport
            )
        )
        second = TestClient(
            create_app(
                gateway_config, marker_store=markers, transport=fake_auth_server.transport
            )
        )

        assert first.post("/api/auth/callback", json={"code": "abc"}).status_code == 200
        assert second.post("/api/auth/callback", json={"code": "abc"}).status_code == 400


class TestLogout:
    """Tests for POST /api/auth/logout."""

    def test_logout_clears_cookie(self, client):
        """Logout should expire the session cookie, even without a session."""
        response = client.post("/api/auth/logout")

        assert response.status_code == 200
        assert response.json() == {"success": True}
        attributes = _cookie_attributes(response)
        assert attributes[0] == 'todo_session=""'
        assert "max-age=0" in attributes
        assert "path=/" in attributes


class TestValidate:
    """Tests for GET /api/auth/validate."""

    def test_without_cookie(self, client):
        """No session should be a 401 without a challenge."""
        response = client.get("/api/auth/validate")

        assert response.status_code == 401
        assert "www-authenticate" not in response.headers

    def test_after_login(self, client, fake_auth_server, valid_jwt):
        """The cookie set by the callback should validate."""
        fake_auth_server.on("POST", TOKEN, json={"access_token": valid_jwt})

        client.post("/api/auth/callback", json={"code": "abc123"})
        response = client.get("/api/auth/validate")

        assert response.status_code == 200
        assert response.json() == {"valid": True, "userId": "user-1"}

    def test_opaque_cookie_resolved_via_userinfo(self, app, fake_auth_server):
        """An opaque session credential should be checked with user-info."""
        fake_auth_server.on("GET", USERINFO, json={"sub": "user-7"})
        client = TestClient(app, cookies={"todo_session": "opaque-token"})

        response = client.get("/api/auth/validate")

        assert response.status_code == 200
        assert response.json()["userId"] == "user-7"

    def test_expired_cookie(self, app, jwt_factory):
        """An expired JWT cookie should be a 401."""
        token = jwt_factory({"sub": "user-1", "exp": int(time.time()) - 60})
        client = TestClient(app, cookies={"todo_session": token})

        assert client.get("/api/auth/validate").status_code == 401

    def test_after_logout(self, client, fake_auth_server, valid_jwt):
        """Logging out should end the session."""
        fake_auth_server.on("POST", TOKEN, json={"access_token": valid_jwt})

        client.post("/api/auth/callback", json={"code": "abc123"})
        client.post("/api/auth/logout")

        assert client.get("/api/auth/validate").status_code == 401


class TestProtocolEndpoint:
    """Tests for the mounted MCP app behind bearer auth."""

    def test_requires_bearer(self, client):
        """The MCP endpoint should challenge unauthenticated clients."""
        response = client.post("/mcp")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == (
            'Bearer error="Unauthorized", error_description="Unauthorized", '
            'resource_metadata="http://testserver/.well-known/oauth-protected-resource"'
        )

    def test_session_cookie_not_enough(self, client, fake_auth_server, valid_jwt):
        """A browser session should not open the MCP endpoint."""
        fake_auth_server.on("POST", TOKEN, json={"access_token": valid_jwt})
        client.post("/api/auth/callback", json={"code": "abc123"})

        assert client.post("/mcp").status_code == 401

    def test_valid_bearer_reaches_protocol_app(self, client, valid_jwt):
        """A valid bearer token should reach the app with its identity."""
        response = client.post("/mcp", headers={"Authorization": f"Bearer {valid_jwt}"})

        assert response.status_code == 200
        assert response.json() == {"subject": "user-1"}

    def test_session_id_bearer(self, client, fake_auth_server):
        """Session ids should be accepted as bearer tokens."""
        fake_auth_server.on(
            "POST", "/api/v1/sessions/verify", json={"user": {"id": "user-9"}}
        )

        response = client.post("/mcp", headers={"Authorization": "Bearer ses_12345"})

        assert response.status_code == 200
        assert response.json() == {"subject": "user-9"}

    def test_discovery_reachable_without_auth(self, client):
        """Discovery routes should win over the protocol mount."""
        response = client.get("/.well-known/oauth-protected-resource/mcp")

        assert response.status_code == 200
        assert response.json()["resource"] == "http://testserver"

    def test_app_state(self, app, gateway_config):
        """Collaborators should be reachable from app.state."""
        assert app.state.config is gateway_config
        assert app.state.exchanger.marker_ttl == 300
        assert app.state.validator.auth_server is gateway_config.auth_server

    def test_injected_marker_store_kept(self, gateway_config):
        """An empty marker store passed in should be the one used."""
        markers = InMemoryMarkerStore()

        app = create_app(gateway_config, marker_store=markers)

        assert app.state.exchanger.markers is markers

    def test_non_ascii_bearer(self, client):
        """A bearer token with non-ASCII bytes should be challenged, not crash."""
        response = client.post("/mcp", headers={"Authorization": b"Bearer tok\xe9n"})

        assert response.status_code == 401
        assert "resource_metadata=" in response.headers["www-authenticate"]

    def test_sse_transport_gated(self, client):
        """The SSE stream and its message endpoint should need a bearer token."""
        assert client.get("/sse").status_code == 401
        assert client.post("/messages/?session_id=abc").status_code == 401


class TestNonAsciiSession:
    """Tests for session cookies that cannot be forwarded as headers."""

    def test_non_ascii_cookie(self, client, fake_auth_server):
        """A cookie with non-ASCII bytes should be a plain 401."""
        response = client.get(
            "/api/auth/validate", headers={"Cookie": b"todo_session=caf\xe9"}
        )

        assert response.status_code == 401
        assert "www-authenticate" not in response.headers
        assert fake_auth_server.requests == []


class TestCORS:
    """Tests for cross-origin access from browser MCP clients."""

    def test_preflight_to_protocol_endpoint(self, client):
        """A preflight should be answered before bearer auth runs."""
        response = client.options(
            "/mcp",
            headers={
                "Origin": "https://inspector.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "authorization, content-type",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert "POST" in response.headers["access-control-allow-methods"]
        assert "authorization" in response.headers["access-control-allow-headers"]

    def test_cross_origin_discovery(self, client):
        """Discovery metadata should be readable from another origin."""
        response = client.get(
            "/.well-known/oauth-protected-resource/mcp",
            headers={"Origin": "https://inspector.example.com"},
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"

    def test_challenge_exposed(self, client):
        """The WWW-Authenticate header should be readable cross-origin."""
        response = client.post(
            "/mcp", headers={"Origin": "https://inspector.example.com"}
        )

        assert response.status_code == 401
        assert response.headers["access-control-allow-origin"] == "*"
        assert "WWW-Authenticate" in response.headers["access-control-expose-headers"]

    def test_configured_origins(self, auth_server_config):
        """Only configured origins should be allowed when set."""
        config = GatewayConfig(
            auth_server=auth_server_config,
            cors_origins=["https://todo.example.com"],
        )
        client = TestClient(create_app(config))

        allowed = client.get("/health", headers={"Origin": "https://todo.example.com"})
        other = client.get("/health", headers={"Origin": "https://evil.example.com"})

        assert allowed.headers["access-control-allow-origin"] == "https://todo.example.com"
        assert "access-control-allow-origin" not in other.headers
