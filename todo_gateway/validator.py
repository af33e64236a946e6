"""Credential validation against the external authorization server.

The authorization server hands out identity in three shapes depending on the
flow and client that produced it, so a credential is resolved by an ordered
cascade of strategies:

1. **SessionIdStrategy**: ``ses_<digits>`` session ids, verified server to
   server with the gateway's client secret. Terminal: once a credential looks
   like a session id its verification result is final.
2. **JWTStrategy**: three-segment tokens, decoded locally *without* signature
   verification. An expired token stops the cascade with ``TokenExpired``;
   any other failure falls through.
3. **UserInfoStrategy**: anything else, resolved through the user-info
   endpoint with the credential as bearer.

The first strategy that produces a subject wins.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, Sequence

import httpx
from jwt.utils import base64url_decode

from todo_gateway.exceptions import TokenExpired, Unauthenticated, ValidationFailed
from todo_gateway.models import AuthServerConfig
from todo_gateway.utils import json_object, mask_credential

logger = logging.getLogger("todo_gateway.validator")

SESSION_ID_PATTERN = re.compile(r"ses_[0-9]+")

SESSION_VERIFY_PATH = "/api/v1/sessions/verify"
USERINFO_PATH = "/oauth/userinfo"

# Where each response shape keeps the user identifier, in priority order
SESSION_SUBJECT_PATHS = (
    ("user_id",),
    ("user", "id"),
    ("sub",),
    ("userId",),
    ("session", "user_id"),
)
JWT_SUBJECT_PATHS = (("sub",), ("user_id",), ("userId",), ("email",))
USERINFO_SUBJECT_PATHS = (("sub",), ("user_id",), ("id",), ("email",))


def extract_subject(
    data: dict[str, Any], paths: Sequence[tuple[str, ...]]
) -> str | None:
    """Return the first non-empty value found along the given key paths."""
    for path in paths:
        value: Any = data
        for key in path:
            if not isinstance(value, dict):
                value = None
                break
            value = value.get(key)
        if value:
            return str(value)
    return None


@dataclass
class IdentityClaims:
    """Verified identity for a credential.

    ``claims`` holds everything the resolving strategy returned (issuer,
    audience, scope, email, ...) with ``sub`` set to the resolved subject.
    """

    subject: str
    claims: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_data(cls, subject: str, data: dict[str, Any]) -> IdentityClaims:
        return cls(subject=subject, claims={**data, "sub": subject})

    @property
    def expires_at(self) -> float | None:
        exp = self.claims.get("exp")
        if isinstance(exp, (int, float)) and not isinstance(exp, bool):
            return float(exp)
        return None

    def get(self, key: str, default: Any = None) -> Any:
        return self.claims.get(key, default)


def decode_jwt_payload(token: str) -> dict[str, Any]:
    """Decode the claims segment of a JWT. The header and signature are ignored.

    Raises:
        ValidationFailed: The payload is not a base64url-encoded JSON object.
    """
    try:
        payload = json.loads(base64url_decode(token.split(".")[1]))
    except (IndexError, ValueError) as e:
        raise ValidationFailed(f"JWT decode failed: {e}", stage="jwt") from e
    if not isinstance(payload, dict):
        raise ValidationFailed("JWT decode failed: payload is not an object", stage="jwt")
    return payload


class ValidationStrategy(Protocol):
    """One way of turning a credential into identity claims."""

    name: str
    terminal: bool

    def matches(self, credential: str) -> bool:
        """Whether the credential has the shape this strategy handles."""
        ...

    async def resolve(self, credential: str) -> IdentityClaims:
        """Resolve the credential, raising ValidationFailed or TokenExpired."""
        ...


async def run_cascade(
    strategies: Sequence[ValidationStrategy], credential: str
) -> IdentityClaims:
    """Try each matching strategy in order and return the first success.

    ``TokenExpired`` is raised immediately. A failure in a terminal strategy is
    raised immediately. Otherwise the last failure is raised once every
    strategy has been tried.
    """
    last_error: ValidationFailed | None = None

    for strategy in strategies:
        if not strategy.matches(credential):
            continue
        try:
            identity = await strategy.resolve(credential)
        except TokenExpired:
            logger.info(
                "[AUTH] Expired token rejected by %s: %s",
                strategy.name,
                mask_credential(credential),
            )
            raise
        except ValidationFailed as e:
            logger.info(
                "[AUTH] %s strategy failed for %s: %s",
                strategy.name,
                mask_credential(credential),
                e,
            )
            if strategy.terminal:
                raise
            last_error = e
            continue

        logger.debug(
            "[AUTH] %s resolved to subject %s via %s",
            mask_credential(credential),
            identity.subject,
            strategy.name,
        )
        return identity

    if last_error is not None:
        raise last_error
    raise ValidationFailed(
        "Could not validate token: no validation strategy accepted it",
        stage="cascade",
    )


@dataclass
class SessionIdStrategy:
    """Verifies ``ses_<digits>`` session ids with the authorization server."""

    auth_server: AuthServerConfig
    transport: httpx.AsyncBaseTransport | None = None
    name: str = "session"
    terminal: bool = True

    def matches(self, credential: str) -> bool:
        return SESSION_ID_PATTERN.fullmatch(credential) is not None

    async def resolve(self, credential: str) -> IdentityClaims:
        verify_url = f"{self.auth_server.base_url}{SESSION_VERIFY_PATH}"
        logger.debug("[AUTH] Verifying session id %s", mask_credential(credential))

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    verify_url,
                    json={"session_id": credential},
                    headers={
                        "Authorization": f"Bearer {self.auth_server.client_secret}"
                    },
                )
        except httpx.HTTPError as e:
            raise ValidationFailed(
                f"Session verification request failed: {e}", stage=self.name
            ) from e

        if not response.is_success:
            raise ValidationFailed(
                f"Session validation failed: {response.status_code} {response.text}",
                stage=self.name,
            )

        data = json_object(response)
        subject = extract_subject(data, SESSION_SUBJECT_PATHS)
        if not subject:
            raise ValidationFailed(
                "Session validation succeeded but no user ID found in response",
                stage=self.name,
            )
        return IdentityClaims.from_data(subject, data)


@dataclass
class JWTStrategy:
    """Reads claims from a JWT payload.

    The signature is NOT verified: the token is trusted to come from the
    authorization server unmodified. Expiry is still enforced.
    """

    clock: Callable[[], float] = time.time
    name: str = "jwt"
    terminal: bool = False

    def matches(self, credential: str) -> bool:
        return len(credential.split(".")) == 3

    async def resolve(self, credential: str) -> IdentityClaims:
        payload = decode_jwt_payload(credential)

        exp = payload.get("exp")
        if (
            isinstance(exp, (int, float))
            and not isinstance(exp, bool)
            and exp < self.clock()
        ):
            raise TokenExpired()

        subject = extract_subject(payload, JWT_SUBJECT_PATHS)
        if not subject:
            raise ValidationFailed(
                "JWT token does not contain user identifier", stage=self.name
            )
        return IdentityClaims.from_data(subject, payload)


@dataclass
class UserInfoStrategy:
    """Resolves an opaque bearer token through the user-info endpoint."""

    auth_server: AuthServerConfig
    transport: httpx.AsyncBaseTransport | None = None
    name: str = "userinfo"
    terminal: bool = True

    def matches(self, credential: str) -> bool:
        return True

    async def resolve(self, credential: str) -> IdentityClaims:
        # Outbound header values must be ASCII
        if not credential.isascii():
            raise ValidationFailed(
                "Token validation failed: token contains non-ASCII characters",
                stage=self.name,
            )

        userinfo_url = f"{self.auth_server.base_url}{USERINFO_PATH}"

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.get(
                    userinfo_url, headers={"Authorization": f"Bearer {credential}"}
                )
        except httpx.HTTPError as e:
            raise ValidationFailed(
                f"Token validation failed: user-info request failed: {e}",
                stage=self.name,
            ) from e

        if not response.is_success:
            raise ValidationFailed(
                "Token validation failed: token is neither a session ID, "
                f"a valid JWT, nor accepted by user-info ({response.status_code})",
                stage=self.name,
            )

        data = json_object(response)
        subject = extract_subject(data, USERINFO_SUBJECT_PATHS)
        if not subject:
            raise ValidationFailed(
                "Token validation failed: user-info response has no user identifier",
                stage=self.name,
            )
        return IdentityClaims.from_data(subject, data)


@dataclass
class TokenValidator:
    """Resolves session cookies and bearer tokens to identity claims.

    Usage:
        validator = TokenValidator(auth_server=config.auth_server)
        identity = await validator.validate(token)
        identity.subject
    """

    auth_server: AuthServerConfig
    transport: httpx.AsyncBaseTransport | None = None
    clock: Callable[[], float] = time.time
    strategies: list[ValidationStrategy] = field(default_factory=list)

    def __post_init__(self):
        if not self.strategies:
            self.strategies = [
                SessionIdStrategy(self.auth_server, transport=self.transport),
                JWTStrategy(clock=self.clock),
                UserInfoStrategy(self.auth_server, transport=self.transport),
            ]

    async def validate(self, credential: str | None) -> IdentityClaims:
        """Validate a credential. Raises an AuthenticationError subclass."""
        if not credential:
            raise Unauthenticated()
        return await run_cascade(self.strategies, credential)
