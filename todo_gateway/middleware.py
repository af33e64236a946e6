"""Authentication middleware for the web API and the MCP endpoint.

- **SessionAuthMiddleware** gates the browser-facing API with the session
  cookie set by the code exchange callback.
- **BearerAuthMiddleware** gates the MCP endpoint with ``Authorization:
  Bearer`` tokens and answers failures with a challenge pointing at the
  protected-resource metadata, so MCP clients can discover how to log in.

Both resolve credentials through the same TokenValidator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from todo_gateway.discovery import resource_metadata_url
from todo_gateway.exceptions import AuthenticationError
from todo_gateway.utils import mask_credential, request_origin
from todo_gateway.validator import IdentityClaims, TokenValidator

if TYPE_CHECKING:
    from starlette.types import ASGIApp

logger = logging.getLogger("todo_gateway.middleware")


@dataclass
class AuthContext:
    """Authentication context of a bearer-authenticated request."""

    claims: IdentityClaims
    access_token: str

    @property
    def subject(self) -> str:
        return self.claims.subject


def get_auth_context(request: Request) -> AuthContext | None:
    """Return the AuthContext attached by BearerAuthMiddleware, if any."""
    return getattr(request.state, "auth_context", None)


def get_user_id(request: Request) -> str | None:
    """Return the subject attached by SessionAuthMiddleware, if any."""
    return getattr(request.state, "user_id", None)


def extract_bearer_token(request: Request) -> str | None:
    """Extract token from the Authorization header. Returns None if absent."""
    auth_header = request.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None
    return None


def is_protected(path: str, prefixes: list[str]) -> bool:
    """Whether path equals one of the prefixes or lies beneath it."""
    for prefix in prefixes:
        prefix = prefix.rstrip("/")
        if path == prefix or path.startswith(f"{prefix}/"):
            return True
    return False


def _unauthenticated(headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        {"error": "unauthorized", "message": "Unauthenticated"},
        status_code=401,
        headers=headers,
    )


class SessionAuthMiddleware(BaseHTTPMiddleware):
    """Validates the session cookie on the configured path prefixes."""

    def __init__(
        self,
        app: ASGIApp,
        validator: TokenValidator,
        cookie_name: str = "todo_session",
        protected_paths: list[str] | None = None,
    ):
        super().__init__(app)
        self.validator = validator
        self.cookie_name = cookie_name
        self.protected_paths = protected_paths or ["/api"]

    async def dispatch(self, request: Request, call_next):
        """Validate the session cookie before passing the request on."""
        if not is_protected(request.url.path, self.protected_paths):
            return await call_next(request)

        session_cookie = request.cookies.get(self.cookie_name)
        if not session_cookie:
            logger.info("[SESSION] No session cookie on %s", request.url.path)
            return _unauthenticated()

        try:
            identity = await self.validator.validate(session_cookie)
        except AuthenticationError as e:
            logger.warning(
                "[SESSION] Session validation failed for %s (stage=%s): %s",
                mask_credential(session_cookie),
                getattr(e, "stage", None),
                e,
            )
            return _unauthenticated()

        request.state.user_id = identity.subject
        return await call_next(request)


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Validates bearer tokens on the configured MCP path prefixes."""

    def __init__(
        self,
        app: ASGIApp,
        validator: TokenValidator,
        protected_paths: list[str] | None = None,
    ):
        super().__init__(app)
        self.validator = validator
        self.protected_paths = protected_paths or ["/mcp"]

    def _www_authenticate_header(self, request: Request) -> str:
        """Build the RFC 9728 challenge for this request's origin."""
        metadata_url = resource_metadata_url(request_origin(request))
        return (
            'Bearer error="Unauthorized", error_description="Unauthorized", '
            f'resource_metadata="{metadata_url}"'
        )

    def _challenge(self, request: Request) -> JSONResponse:
        return _unauthenticated(
            headers={"WWW-Authenticate": self._www_authenticate_header(request)}
        )

    async def dispatch(self, request: Request, call_next):
        """Validate the bearer token before passing the request on."""
        if not is_protected(request.url.path, self.protected_paths):
            return await call_next(request)

        token = extract_bearer_token(request)
        if not token:
            logger.info("[AUTH] Missing bearer token on %s", request.url.path)
            return self._challenge(request)

        try:
            identity = await self.validator.validate(token)
        except AuthenticationError as e:
            logger.warning(
                "[AUTH] Bearer validation failed for %s (stage=%s): %s",
                mask_credential(token),
                getattr(e, "stage", None),
                e,
            )
            return self._challenge(request)

        request.state.auth_context = AuthContext(claims=identity, access_token=token)
        return await call_next(request)
