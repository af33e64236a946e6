"""Exception hierarchy for the TODO MCP gateway.

Validator failures (``AuthenticationError`` and subclasses) surface as
HTTP 401 at the middleware boundary. Code exchange failures
(``CodeExchangeError`` and subclasses) surface as HTTP 400 with their message.
"""


class GatewayError(Exception):
    """Base class for all gateway errors."""

    pass


class AuthenticationError(GatewayError):
    """A credential could not be turned into an identity."""

    pass


class Unauthenticated(AuthenticationError):
    """No credential was presented."""

    def __init__(self, message: str = "Unauthenticated"):
        super().__init__(message)


class TokenExpired(AuthenticationError):
    """A JWT carried an ``exp`` claim in the past."""

    def __init__(self, message: str = "Token has expired"):
        super().__init__(message)


class ValidationFailed(AuthenticationError):
    """A credential was presented but no strategy resolved it to a subject."""

    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message)
        self.stage = stage


class CodeExchangeError(GatewayError):
    """An authorization code could not be exchanged for a session."""

    pass


class AlreadyUsed(CodeExchangeError):
    """The authorization code was already exchanged."""

    def __init__(self, message: str = "Authorization code already used"):
        super().__init__(message)


class ExchangeFailed(CodeExchangeError):
    """The authorization server rejected or errored on the token exchange."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(f"Token exchange failed: {message}")
        self.status_code = status_code
