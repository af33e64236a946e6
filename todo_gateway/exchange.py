"""One-time authorization code exchange with replay protection.

The replay guard is check-then-set: the processed-code marker is read, then
written before the exchange runs. Two requests carrying the same code that
arrive together can both pass the read before either write lands. Both then
attempt the exchange and the authorization server, which only honours a code
once, rejects the second. Sequential replays are always stopped locally.
"""

from __future__ import annotations

import logging
import urllib.parse
from dataclasses import dataclass
from typing import Any

import httpx

from todo_gateway.exceptions import AlreadyUsed, ExchangeFailed
from todo_gateway.markers import PROCESSED, MarkerStore
from todo_gateway.models import DEFAULT_CODE_MARKER_TTL, AuthServerConfig
from todo_gateway.utils import json_object, mask_credential

logger = logging.getLogger("todo_gateway.exchange")

DISCOVERY_PATH = "/.well-known/oauth-authorization-server"
DEFAULT_TOKEN_PATH = "/oauth/token"

# Response fields that can carry the session credential, strongest first
SESSION_TOKEN_FIELDS = ("session_id", "session_token", "access_token", "id_token")

_DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass
class TokenSet:
    """Result of a successful code exchange.

    ``access_token`` holds the strongest credential the authorization server
    returned and is the value persisted as the session cookie.
    """

    access_token: str
    id_token: str | None = None
    expires_in: int | None = None
    token_type: str = "Bearer"
    refresh_token: str | None = None
    scope: str | None = None
    session_id: str | None = None


def select_session_token(token_data: dict[str, Any]) -> str | None:
    """Pick the strongest credential from a token endpoint response."""
    for name in SESSION_TOKEN_FIELDS:
        value = token_data.get(name)
        if value and isinstance(value, str):
            return value
    return None


def normalize_redirect_uri(redirect_uri: str) -> str:
    """Canonical string form of a redirect URI.

    Lower-cases scheme and host, drops default ports and gives an empty path
    a single ``/``. The result must match the registered URI exactly.
    """
    parts = urllib.parse.urlsplit(redirect_uri.strip())
    scheme = parts.scheme.lower()
    if not scheme or not parts.hostname:
        raise ExchangeFailed(f"Invalid redirect URI: {redirect_uri}")

    try:
        port = parts.port
    except ValueError as e:
        raise ExchangeFailed(f"Invalid redirect URI: {redirect_uri}") from e

    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        host = f"{host}:{port}"

    return urllib.parse.urlunsplit(
        (scheme, host, parts.path or "/", parts.query, parts.fragment)
    )


def _error_message(response: httpx.Response) -> str:
    """Extract a human-readable reason from a failed token response."""
    text = response.text
    body = json_object(response) or {"error": text}
    return body.get("error_description") or body.get("error") or "Token exchange failed"


def _expires_in(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value) if value > 0 else None


@dataclass
class CodeExchanger:
    """Exchanges authorization codes at the authorization server's token endpoint.

    Usage:
        exchanger = CodeExchanger(
            auth_server=config.auth_server,
            markers=InMemoryMarkerStore(),
        )
        tokens = await exchanger.exchange(code, "https://app.example.com/authenticate")
    """

    auth_server: AuthServerConfig
    markers: MarkerStore
    marker_ttl: float = DEFAULT_CODE_MARKER_TTL
    transport: httpx.AsyncBaseTransport | None = None

    @staticmethod
    def marker_key(code: str) -> str:
        return f"code_{code}"

    async def resolve_token_endpoint(self) -> str:
        """Token endpoint from discovery, or the conventional path."""
        discovery_url = f"{self.auth_server.base_url}{DISCOVERY_PATH}"
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.get(discovery_url)
            if response.is_success:
                token_endpoint = json_object(response).get("token_endpoint")
                if token_endpoint and isinstance(token_endpoint, str):
                    logger.debug(
                        "[EXCHANGE] Token endpoint from discovery: %s", token_endpoint
                    )
                    return token_endpoint
        except httpx.HTTPError as e:
            logger.warning("[EXCHANGE] Could not fetch discovery document: %s", e)

        default_endpoint = f"{self.auth_server.base_url}{DEFAULT_TOKEN_PATH}"
        logger.debug("[EXCHANGE] Using default token endpoint: %s", default_endpoint)
        return default_endpoint

    async def exchange(self, code: str, redirect_uri: str) -> TokenSet:
        """Exchange a one-time authorization code for tokens.

        Raises:
            AlreadyUsed: The code was exchanged within the marker TTL.
            ExchangeFailed: The authorization server rejected the exchange,
                could not be reached, or returned no usable token.
        """
        key = self.marker_key(code)
        if await self.markers.get(key) is not None:
            logger.warning(
                "[EXCHANGE] Authorization code already used: %s", mask_credential(code)
            )
            raise AlreadyUsed()

        await self.markers.put(key, PROCESSED, self.marker_ttl)

        token_endpoint = await self.resolve_token_endpoint()
        normalized_redirect_uri = normalize_redirect_uri(redirect_uri)

        logger.info(
            "[EXCHANGE] Exchanging code %s at %s (redirect_uri=%s)",
            mask_credential(code),
            token_endpoint,
            normalized_redirect_uri,
        )

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    token_endpoint,
                    data={
                        "grant_type": "authorization_code",
                        "code": code,
                        "redirect_uri": normalized_redirect_uri,
                        "client_id": self.auth_server.client_id,
                        "client_secret": self.auth_server.client_secret,
                    },
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.error("[EXCHANGE] Token request to %s failed: %s", token_endpoint, e)
            raise ExchangeFailed(str(e) or type(e).__name__) from e

        if not response.is_success:
            message = _error_message(response)
            logger.error(
                "[EXCHANGE] Token endpoint %s returned %s: %s",
                token_endpoint,
                response.status_code,
                message,
            )
            raise ExchangeFailed(message, status_code=response.status_code)

        token_data = json_object(response)
        session_token = select_session_token(token_data)
        if not session_token:
            logger.error(
                "[EXCHANGE] Token response has no usable token (fields: %s)",
                sorted(token_data),
            )
            raise ExchangeFailed("No token or session ID in response")

        logger.info(
            "[EXCHANGE] Token exchange successful (session_id=%s, session_token=%s, "
            "access_token=%s, id_token=%s)",
            *(bool(token_data.get(name)) for name in SESSION_TOKEN_FIELDS),
        )

        return TokenSet(
            access_token=session_token,
            id_token=token_data.get("id_token"),
            expires_in=_expires_in(token_data.get("expires_in")),
            token_type=token_data.get("token_type") or "Bearer",
            refresh_token=token_data.get("refresh_token"),
            scope=token_data.get("scope"),
            session_id=token_data.get("session_id"),
        )
