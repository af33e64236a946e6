"""TODO MCP Gateway - session and bearer authentication in front of an MCP server."""

from todo_gateway.app import create_app
from todo_gateway.exceptions import (
    AlreadyUsed,
    AuthenticationError,
    CodeExchangeError,
    ExchangeFailed,
    GatewayError,
    TokenExpired,
    Unauthenticated,
    ValidationFailed,
)
from todo_gateway.exchange import CodeExchanger, TokenSet
from todo_gateway.markers import InMemoryMarkerStore, MarkerStore
from todo_gateway.middleware import (
    AuthContext,
    BearerAuthMiddleware,
    SessionAuthMiddleware,
    get_auth_context,
)
from todo_gateway.models import GatewayConfig
from todo_gateway.validator import IdentityClaims, TokenValidator

__all__ = [
    "AlreadyUsed",
    "AuthContext",
    "AuthenticationError",
    "BearerAuthMiddleware",
    "CodeExchangeError",
    "CodeExchanger",
    "ExchangeFailed",
    "GatewayConfig",
    "GatewayError",
    "IdentityClaims",
    "InMemoryMarkerStore",
    "MarkerStore",
    "SessionAuthMiddleware",
    "TokenExpired",
    "TokenSet",
    "TokenValidator",
    "Unauthenticated",
    "ValidationFailed",
    "create_app",
    "get_auth_context",
]
