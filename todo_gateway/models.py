"""Configuration models for the TODO MCP gateway."""

from pydantic import BaseModel, ConfigDict

DEFAULT_SESSION_MAX_AGE = 60 * 60 * 24 * 7  # 7 days
DEFAULT_CODE_MARKER_TTL = 300  # 5 minutes

DEFAULT_SERVER_SCOPES = [
    "openid",
    "email",
    "profile",
    "mcp:tools:*",
    "mcp:resources:*",
]


class AuthServerConfig(BaseModel):
    """Connection details for the external OAuth 2.1 authorization server.

    ``resource_server`` is the value advertised in ``authorization_servers``
    of the protected-resource metadata. Some authorization servers register
    the protected resource under its own URL; when unset the base ``url`` is
    advertised.
    """

    url: str
    client_id: str
    client_secret: str
    resource_server: str | None = None
    scopes_supported: list[str] = DEFAULT_SERVER_SCOPES

    @property
    def base_url(self) -> str:
        return self.url.rstrip("/")


class SessionConfig(BaseModel):
    """Configuration for the session cookie issued after code exchange."""

    cookie_name: str = "todo_session"
    max_age: int = DEFAULT_SESSION_MAX_AGE
    redirect_path: str = "/authenticate"


class GatewayConfig(BaseModel):
    """Root configuration for the gateway."""

    model_config = ConfigDict(extra="forbid")

    auth_server: AuthServerConfig
    session: SessionConfig = SessionConfig()
    docs_path: str = "/docs"
    code_marker_ttl: int = DEFAULT_CODE_MARKER_TTL
    # /sse and /messages serve the SSE transport
    protocol_paths: list[str] = ["/mcp", "/sse", "/messages"]
    session_paths: list[str] = ["/api/auth/validate", "/api/todos"]
    cors_origins: list[str] = ["*"]
