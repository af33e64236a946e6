"""Logging setup for the TODO MCP gateway.

Every module logs to a ``todo_gateway.*`` logger. Enable verbose output via
the TODO_GATEWAY_DEBUG=1 environment variable, enable_debug(), or the CLI's
``--debug`` flag.
"""

import logging
import os

LOGGER_NAME = "todo_gateway"

# Module-level debug state
_debug_enabled = False


def is_debug_enabled() -> bool:
    """Check if debug logging is enabled.

    Returns True if either:
    - enable_debug() was called
    - TODO_GATEWAY_DEBUG env var is set to "1", "true", or "yes"
    """
    if _debug_enabled:
        return True
    env_val = os.environ.get("TODO_GATEWAY_DEBUG", "").lower()
    return env_val in ("1", "true", "yes")


def enable_debug() -> None:
    """Enable debug logging programmatically."""
    global _debug_enabled
    _debug_enabled = True


def disable_debug() -> None:
    """Disable debug logging programmatically."""
    global _debug_enabled
    _debug_enabled = False


def configure_logging(level: int | None = None) -> logging.Logger:
    """Configure the gateway's logger.

    Args:
        level: Logging level; DEBUG when debug is enabled, INFO otherwise

    Returns:
        The configured ``todo_gateway`` logger
    """
    if level is None:
        level = logging.DEBUG if is_debug_enabled() else logging.INFO

    gateway_logger = logging.getLogger(LOGGER_NAME)
    gateway_logger.setLevel(level)

    if not gateway_logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        )
        handler.setFormatter(formatter)
        gateway_logger.addHandler(handler)

    for handler in gateway_logger.handlers:
        handler.setLevel(level)

    return gateway_logger
