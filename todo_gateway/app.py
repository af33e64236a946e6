"""ASGI application assembly for the TODO MCP gateway."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import httpx
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route

from todo_gateway.discovery import create_discovery_routes
from todo_gateway.exchange import CodeExchanger
from todo_gateway.markers import InMemoryMarkerStore, MarkerStore
from todo_gateway.middleware import BearerAuthMiddleware, SessionAuthMiddleware
from todo_gateway.models import GatewayConfig
from todo_gateway.routes import create_auth_routes
from todo_gateway.validator import TokenValidator

if TYPE_CHECKING:
    from starlette.types import ASGIApp

# Browser MCP clients must read the challenge and the streamable HTTP session id
CORS_EXPOSE_HEADERS = ["WWW-Authenticate", "Mcp-Session-Id"]


def _protocol_lifespan(protocol_app: ASGIApp):
    """Run the mounted protocol app's lifespan inside the gateway's."""
    router = getattr(protocol_app, "router", None)
    if router is None:
        return None

    @asynccontextmanager
    async def lifespan(app: Starlette):
        async with router.lifespan_context(protocol_app):
            yield

    return lifespan


def create_app(
    config: GatewayConfig,
    protocol_app: ASGIApp | None = None,
    marker_store: MarkerStore | None = None,
    validator: TokenValidator | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Starlette:
    """Create the gateway ASGI app.

    Args:
        config: Gateway configuration
        protocol_app: MCP application mounted at the root, reached only through
            the bearer-gated ``config.protocol_paths``
        marker_store: Processed-code marker store (in-memory by default)
        validator: Token validator (built from config by default)
        transport: httpx transport for outbound calls to the authorization server

    Returns:
        Starlette ASGI application with routes:
        - /health - Health check endpoint
        - /.well-known/oauth-protected-resource[/{transport}]
        - /.well-known/oauth-authorization-server
        - /api/auth/callback, /api/auth/logout, /api/auth/validate
        - the protocol app's routes
    """
    if validator is None:
        validator = TokenValidator(auth_server=config.auth_server, transport=transport)
    exchanger = CodeExchanger(
        auth_server=config.auth_server,
        markers=marker_store if marker_store is not None else InMemoryMarkerStore(),
        marker_ttl=config.code_marker_ttl,
        transport=transport,
    )

    routes: list[Route | Mount] = []

    async def health_check(request: Request) -> JSONResponse:
        return JSONResponse({"status": "healthy"})

    routes.append(Route("/health", health_check, methods=["GET"]))
    routes.extend(create_discovery_routes(config))
    routes.extend(create_auth_routes(config, exchanger))

    lifespan = None
    if protocol_app is not None:
        # Mount last: it catches everything the routes above do not
        routes.append(Mount("/", app=protocol_app))
        lifespan = _protocol_lifespan(protocol_app)

    middleware = [
        # Outermost, so preflights and 401s carry CORS headers too
        Middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=CORS_EXPOSE_HEADERS,
        ),
        Middleware(
            SessionAuthMiddleware,
            validator=validator,
            cookie_name=config.session.cookie_name,
            protected_paths=config.session_paths,
        ),
        Middleware(
            BearerAuthMiddleware,
            validator=validator,
            protected_paths=config.protocol_paths,
        ),
    ]

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.config = config
    app.state.validator = validator
    app.state.exchanger = exchanger
    return app
