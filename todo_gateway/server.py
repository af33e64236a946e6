"""MCP endpoint served behind the bearer middleware.

The TODO tools themselves live elsewhere; this server exposes the
authenticated identity so MCP clients can confirm their login worked.
"""

from __future__ import annotations

from typing import Any

import fastmcp
from fastmcp import FastMCP
from fastmcp.server.dependencies import get_http_request
from starlette.applications import Starlette
from starlette.routing import Mount, Route

from todo_gateway.middleware import AuthContext, get_auth_context


def describe_identity(context: AuthContext | None) -> dict[str, Any]:
    """Summarize an AuthContext for tool output. Never includes the token."""
    if context is None:
        return {"authenticated": False}
    claims = context.claims
    return {
        "authenticated": True,
        "subject": claims.subject,
        "email": claims.get("email"),
        "scope": claims.get("scope"),
        "client_id": claims.get("client_id"),
        "expires_at": claims.expires_at,
    }


def create_protocol_server(name: str = "TODO MCP") -> FastMCP:
    """Create the FastMCP server mounted behind the gateway."""
    mcp = FastMCP(name)

    @mcp.tool(
        name="whoami",
        description="Report the user the current access token belongs to",
    )
    async def whoami() -> dict[str, Any]:
        return describe_identity(get_auth_context(get_http_request()))

    return mcp


def create_protocol_app(
    mcp: FastMCP | None = None,
    path: str = "/mcp",
    sse_path: str | None = "/sse",
) -> Starlette:
    """HTTP app serving the MCP server over streamable HTTP and SSE.

    Args:
        mcp: Server to expose (the ``whoami`` server by default)
        path: Streamable HTTP endpoint
        sse_path: SSE stream endpoint, or None to serve streamable HTTP only

    The SSE transport also receives client messages on
    ``fastmcp.settings.message_path`` (``/messages/`` by default).
    """
    mcp = mcp or create_protocol_server()
    http_app = mcp.http_app(path=path)
    if not sse_path:
        return http_app

    sse_app = mcp.http_app(path=sse_path, transport="sse")
    return Starlette(
        routes=[
            Route(sse_path, sse_app, methods=["GET"]),
            Route(fastmcp.settings.message_path, sse_app, methods=["POST"]),
            Mount("/", app=http_app),
        ],
        # The streamable HTTP lifespan runs the server lifespan for both
        lifespan=http_app.router.lifespan_context,
    )
