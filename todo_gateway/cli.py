"""CLI commands for todo-gateway."""

import asyncio
import json

import click
from pydantic import ValidationError

from todo_gateway.config import config_from_env, load_config, validate_config
from todo_gateway.debug import configure_logging, enable_debug
from todo_gateway.discovery import (
    authorization_server_metadata,
    protected_resource_metadata,
)
from todo_gateway.exceptions import AuthenticationError
from todo_gateway.models import GatewayConfig


def run_async(coro):
    """Run an async coroutine from sync CLI code."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


def get_config(config: str | None) -> GatewayConfig:
    """Load config from a YAML file, or from AUTH_* variables when none is given."""
    try:
        if config:
            return load_config(config)
        return config_from_env()
    except (FileNotFoundError, KeyError, ValidationError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


def config_option():
    """Decorator for --config option."""
    return click.option(
        "--config", "-c",
        default=None,
        type=click.Path(exists=False),
        help="Config file path (default: read AUTH_* environment variables)"
    )


@click.group()
def main():
    """TODO MCP authentication gateway CLI."""
    pass


@main.command()
@config_option()
@click.option("--host", "-h", default="0.0.0.0", help="Bind address")
@click.option("--port", "-p", default=8000, type=int, help="Port to listen on")
@click.option("--env-file", "-e", default=".env", type=click.Path(), help="Path to .env file (default: .env)")
@click.option("--debug", is_flag=True, help="Enable debug logging")
def serve(config: str | None, host: str, port: int, env_file: str, debug: bool):  # pragma: no cover
    """Start the gateway with the MCP endpoint mounted behind it."""
    import uvicorn
    from dotenv import load_dotenv

    from todo_gateway.app import create_app
    from todo_gateway.server import create_protocol_app

    # Load environment variables from .env file
    load_dotenv(env_file)
    if debug:
        enable_debug()
    configure_logging()

    cfg = get_config(config)
    errors = validate_config(cfg)
    if errors:
        for error in errors:
            click.echo(f"Error: {error}", err=True)
        raise SystemExit(1)

    app = create_app(cfg, protocol_app=create_protocol_app())
    uvicorn.run(app, host=host, port=port)


@main.command()
@config_option()
def check(config: str | None):
    """Validate configuration."""
    cfg = get_config(config)
    errors = validate_config(cfg)
    if errors:
        for error in errors:
            click.echo(f"Error: {error}", err=True)
        raise SystemExit(1)
    click.echo("Configuration is valid.")
    click.echo(f"Authorization server: {cfg.auth_server.base_url}")
    click.echo(f"Client ID: {cfg.auth_server.client_id}")


@main.command()
@click.argument("origin")
@config_option()
@click.option(
    "--kind", "-k",
    default="resource",
    type=click.Choice(["resource", "server"]),
    help="Protected-resource or authorization-server metadata",
)
def metadata(origin: str, config: str | None, kind: str):
    """Print the discovery document served for ORIGIN."""
    cfg = get_config(config)
    if kind == "resource":
        document = protected_resource_metadata(cfg, origin)
    else:
        document = authorization_server_metadata(cfg)
    click.echo(json.dumps(document, indent=2))


@main.command("validate-token")
@click.argument("token")
@config_option()
@click.option("--json", "as_json", is_flag=True, help="Output all claims as JSON")
def validate_token(token: str, config: str | None, as_json: bool):
    """Resolve TOKEN (session id, JWT or opaque token) to a user."""
    from todo_gateway.validator import TokenValidator

    cfg = get_config(config)
    validator = TokenValidator(auth_server=cfg.auth_server)

    try:
        identity = run_async(validator.validate(token))
    except AuthenticationError as e:
        click.echo(f"Invalid token: {e}", err=True)
        raise SystemExit(1)

    if as_json:
        click.echo(json.dumps(identity.claims, indent=2, default=str))
    else:
        click.echo(f"Subject: {identity.subject}")
