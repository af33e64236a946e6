"""Small helpers shared by the gateway modules."""

from typing import Any

import httpx
from starlette.requests import Request


def mask_credential(value: str | None) -> str:
    """Return a log-safe preview of a credential: a short prefix and its length."""
    if not value:
        return "<none>"
    visible = 8 if len(value) > 16 else 3
    return f"{value[:visible]}...({len(value)} chars)"


def json_object(response: httpx.Response) -> dict[str, Any]:
    """Parse a response body as a JSON object, returning {} for anything else."""
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def request_origin(request: Request) -> str:
    """Scheme and authority the request was addressed to, e.g. https://host:8443."""
    return f"{request.url.scheme}://{request.url.netloc}"
