"""Pytest fixtures for gateway tests."""

import time
from typing import Any

import httpx
import jwt
import pytest

from todo_gateway.exceptions import ValidationFailed
from todo_gateway.models import AuthServerConfig, GatewayConfig
from todo_gateway.validator import IdentityClaims

AUTH_SERVER_URL = "https://auth.example.com"
SIGNING_KEY = "test-signing-key-that-is-long-enough-for-hs256"


class FakeAuthServer:
    """Stands in for the authorization server behind an httpx.MockTransport.

    Responses are registered per (method, path); every request is recorded.
    Unregistered routes answer 404.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], Any] = {}

    def on(
        self,
        method: str,
        path: str,
        status_code: int = 200,
        json: Any = None,
        text: str | None = None,
        exc: Exception | None = None,
    ) -> None:
        if exc is not None:
            self._routes[(method, path)] = exc
        elif text is not None:
            self._routes[(method, path)] = httpx.Response(status_code, text=text)
        else:
            self._routes[(method, path)] = httpx.Response(status_code, json=json)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self._routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": "not_found"})
        if isinstance(route, Exception):
            raise route
        return httpx.Response(
            route.status_code,
            content=route.content,
            headers=route.headers,
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r for r in self.requests if r.method == method and r.url.path == path
        ]


class StubValidator:
    """Validator double that accepts a fixed set of credentials."""

    def __init__(self, accepted: dict[str, str] | None = None):
        self.accepted = accepted or {}
        self.seen: list[str] = []

    async def validate(self, credential: str | None) -> IdentityClaims:
        self.seen.append(credential)
        if credential in self.accepted:
            subject = self.accepted[credential]
            return IdentityClaims.from_data(subject, {"email": f"{subject}@example.com"})
        raise ValidationFailed("Unknown credential", stage="stub")


def make_jwt(payload: dict[str, Any]) -> str:
    """Encode a signed JWT. The gateway never verifies the signature."""
    return jwt.encode(payload, SIGNING_KEY, algorithm="HS256")


@pytest.fixture
def auth_server_config():
    """Authorization server settings pointing at the fake server."""
    return AuthServerConfig(
        url=AUTH_SERVER_URL,
        client_id="todo-client",
        client_secret="todo-secret",
    )


@pytest.fixture
def gateway_config(auth_server_config):
    """Gateway configuration with default paths."""
    return GatewayConfig(auth_server=auth_server_config)


@pytest.fixture
def fake_auth_server():
    """A fresh fake authorization server."""
    return FakeAuthServer()


@pytest.fixture
def valid_jwt():
    """A JWT for user-1 that expires in an hour."""
    return make_jwt(
        {
            "sub": "user-1",
            "email": "user-1@example.com",
            "iss": AUTH_SERVER_URL,
            "exp": int(time.time()) + 3600,
        }
    )


@pytest.fixture
def sample_config_yaml(tmp_path):
    """Write a sample gateway config file."""
    config_file = tmp_path / "gateway.yaml"
    config_file.write_text(
        "auth_server:\n"
        f"  url: {AUTH_SERVER_URL}\n"
        "  client_id: todo-client\n"
        "  client_secret: todo-secret\n"
        "session:\n"
        "  cookie_name: todo_session\n"
    )
    return config_file


@pytest.fixture
def jwt_factory():
    """Build JWTs from claim dictionaries."""
    return make_jwt


@pytest.fixture
def stub_validator():
    """Validator accepting 'good-token' (user-1) and 'other-token' (user-2)."""
    return StubValidator({"good-token": "user-1", "other-token": "user-2"})
