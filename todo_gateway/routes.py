"""Session endpoints used by the web frontend.

- ``POST /api/auth/callback``: exchange an authorization code, set the cookie
- ``POST /api/auth/logout``: clear the cookie
- ``GET /api/auth/validate``: report the signed-in user (session-gated)
"""

from __future__ import annotations

import logging

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from todo_gateway.exceptions import AlreadyUsed, ExchangeFailed
from todo_gateway.exchange import CodeExchanger
from todo_gateway.middleware import get_user_id
from todo_gateway.models import GatewayConfig
from todo_gateway.utils import mask_credential, request_origin

logger = logging.getLogger("todo_gateway.routes")


def create_auth_routes(config: GatewayConfig, exchanger: CodeExchanger) -> list[Route]:
    """Create the session endpoints."""
    session = config.session

    async def callback(request: Request) -> JSONResponse:
        """Exchange the authorization code and start a session."""
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse({"error": "Invalid request body"}, status_code=400)

        code = body.get("code") if isinstance(body, dict) else None
        if not code or not isinstance(code, str):
            return JSONResponse(
                {"error": "Authorization code is required"}, status_code=400
            )

        redirect_uri = f"{request_origin(request)}{session.redirect_path}"

        try:
            tokens = await exchanger.exchange(code, redirect_uri)
        except AlreadyUsed as e:
            logger.warning(
                "[EXCHANGE] Callback replayed code %s", mask_credential(code)
            )
            return JSONResponse({"error": str(e)}, status_code=400)
        except ExchangeFailed as e:
            logger.error(
                "[EXCHANGE] Callback failed for code %s (upstream status=%s): %s",
                mask_credential(code),
                e.status_code,
                e,
            )
            return JSONResponse({"error": str(e)}, status_code=400)

        response = JSONResponse(
            {
                "accessToken": tokens.access_token,
                "idToken": tokens.id_token,
                "expiresIn": tokens.expires_in,
            }
        )
        response.set_cookie(
            session.cookie_name,
            tokens.access_token,
            max_age=tokens.expires_in or session.max_age,
            path="/",
            httponly=True,
            secure=request.url.scheme == "https",
            samesite="lax",
        )
        return response

    async def logout(request: Request) -> JSONResponse:
        """Log out by clearing the session cookie."""
        response = JSONResponse({"success": True})
        response.delete_cookie(session.cookie_name, path="/")
        return response

    async def validate(request: Request) -> JSONResponse:
        """Report the user resolved by the session middleware."""
        user_id = get_user_id(request)
        if user_id is None:
            return JSONResponse(
                {"error": "unauthorized", "message": "Unauthenticated"},
                status_code=401,
            )
        return JSONResponse({"valid": True, "userId": user_id})

    return [
        Route("/api/auth/callback", callback, methods=["POST"]),
        Route("/api/auth/logout", logout, methods=["POST"]),
        Route("/api/auth/validate", validate, methods=["GET"]),
    ]
