"""OAuth discovery metadata for MCP clients.

Clients follow one of two revisions of MCP authorization:

- **2025-06-18**: clients read OAuth 2.0 Protected Resource Metadata
  (RFC 9728), usually from the ``resource_metadata`` parameter of a
  ``WWW-Authenticate`` challenge. Some clients guess the location instead and
  append the transport name (``/mcp``, ``/sse``), so every suffix is served.
- **2025-03-26**: clients expect OAuth 2.0 Authorization Server Metadata
  (RFC 8414) on the resource server itself.

Both documents are built from configuration and the request's origin.
"""

from __future__ import annotations

import logging
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from todo_gateway.models import GatewayConfig
from todo_gateway.utils import request_origin

logger = logging.getLogger("todo_gateway.discovery")

PROTECTED_RESOURCE_PATH = "/.well-known/oauth-protected-resource"
AUTHORIZATION_SERVER_PATH = "/.well-known/oauth-authorization-server"


def resource_metadata_url(origin: str) -> str:
    """URL of the protected-resource metadata document for an origin."""
    return f"{origin.rstrip('/')}{PROTECTED_RESOURCE_PATH}"


def protected_resource_metadata(config: GatewayConfig, origin: str) -> dict[str, Any]:
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
    origin = origin.rstrip("/")
    auth = config.auth_server
    return {
        "resource": origin,
        "resource_documentation": f"{origin}{config.docs_path}",
        "authorization_servers": [auth.resource_server or auth.base_url],
        "bearer_methods_supported": ["header"],
        "scopes_supported": [],
    }


def authorization_server_metadata(config: GatewayConfig) -> dict[str, Any]:
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    base_url = config.auth_server.base_url
    return {
        "issuer": base_url,
        "authorization_endpoint": f"{base_url}/oauth/authorize",
        "token_endpoint": f"{base_url}/oauth/token",
        "registration_endpoint": f"{base_url}/oauth/register",
        "scopes_supported": list(config.auth_server.scopes_supported),
        "response_types_supported": ["code"],
        "response_modes_supported": ["query"],
        "grant_types_supported": [
            "authorization_code",
            "refresh_token",
            "client_credentials",
        ],
        "token_endpoint_auth_methods_supported": ["client_secret_basic", "none"],
        "code_challenge_methods_supported": ["S256"],
    }


def create_discovery_routes(config: GatewayConfig) -> list[Route]:
    """Create the well-known discovery routes."""

    async def oauth_protected_resource(request: Request) -> JSONResponse:
        """Serve Protected Resource Metadata, with or without a transport suffix."""
        transport = request.path_params.get("transport")
        if transport:
            logger.debug("[DISCOVERY] Protected resource requested for /%s", transport)
        return JSONResponse(
            protected_resource_metadata(config, request_origin(request))
        )

    async def oauth_authorization_server(request: Request) -> JSONResponse:
        """Serve Authorization Server Metadata for older clients."""
        return JSONResponse(authorization_server_metadata(config))

    return [
        Route(PROTECTED_RESOURCE_PATH, oauth_protected_resource, methods=["GET"]),
        Route(
            f"{PROTECTED_RESOURCE_PATH}/{{transport}}",
            oauth_protected_resource,
            methods=["GET"],
        ),
        Route(AUTHORIZATION_SERVER_PATH, oauth_authorization_server, methods=["GET"]),
    ]
