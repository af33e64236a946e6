"""Configuration loading for the TODO MCP gateway."""

import os
import re
from pathlib import Path

import yaml

from todo_gateway.models import AuthServerConfig, GatewayConfig

AUTH_SERVER_URL_VAR = "AUTH_SERVER_URL"
AUTH_CLIENT_ID_VAR = "AUTH_CLIENT_ID"
AUTH_CLIENT_SECRET_VAR = "AUTH_CLIENT_SECRET"
AUTH_RESOURCE_SERVER_VAR = "AUTH_RESOURCE_SERVER"


def _substitute_env_vars(obj):
    """Recursively substitute ${VAR} with environment variables."""
    if isinstance(obj, str):
        pattern = r"\$\{([^}]+)\}"
        return re.sub(pattern, lambda m: os.environ.get(m.group(1), m.group(0)), obj)
    elif isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_substitute_env_vars(item) for item in obj]
    return obj


def load_config(path: str | Path) -> GatewayConfig:
    """Load configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    data = _substitute_env_vars(data)
    return GatewayConfig(**data)


def config_from_env() -> GatewayConfig:
    """Build configuration from AUTH_* environment variables.

    Raises:
        KeyError: If one of the required variables is not set.
    """
    missing = [
        var
        for var in (AUTH_SERVER_URL_VAR, AUTH_CLIENT_ID_VAR, AUTH_CLIENT_SECRET_VAR)
        if not os.environ.get(var)
    ]
    if missing:
        raise KeyError(f"Missing environment variables: {', '.join(missing)}")

    return GatewayConfig(
        auth_server=AuthServerConfig(
            url=os.environ[AUTH_SERVER_URL_VAR],
            client_id=os.environ[AUTH_CLIENT_ID_VAR],
            client_secret=os.environ[AUTH_CLIENT_SECRET_VAR],
            resource_server=os.environ.get(AUTH_RESOURCE_SERVER_VAR) or None,
        )
    )


def validate_config(config: GatewayConfig) -> list[str]:
    """Validate configuration and return list of errors."""
    errors = []

    auth = config.auth_server
    if not auth.url.startswith(("http://", "https://")):
        errors.append(f"auth_server.url must be an http(s) URL, got '{auth.url}'")
    if "${" in auth.url:
        errors.append(f"auth_server.url has an unresolved variable: {auth.url}")
    if not auth.client_id or "${" in auth.client_id:
        errors.append("auth_server.client_id is empty or unresolved")
    if not auth.client_secret or "${" in auth.client_secret:
        errors.append("auth_server.client_secret is empty or unresolved")

    for name, value in (
        ("session.redirect_path", config.session.redirect_path),
        ("docs_path", config.docs_path),
    ):
        if not value.startswith("/"):
            errors.append(f"{name} must start with '/', got '{value}'")

    for name in ("protocol_paths", "session_paths"):
        for prefix in getattr(config, name):
            if not prefix.startswith("/"):
                errors.append(f"{name} entry must start with '/', got '{prefix}'")

    if config.code_marker_ttl <= 0:
        errors.append("code_marker_ttl must be positive")
    if config.session.max_age <= 0:
        errors.append("session.max_age must be positive")

    return errors
