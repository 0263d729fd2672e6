"""
Authentication Strategies for the Circle Gateway.

Implements Strategy pattern for pluggable authentication. Two credential
shapes are accepted on the same endpoint:

- mock_jwt_token_<name>: development bypass resolved against a fixed directory
- a signed HS256 JWT carrying ``id`` or ``userId`` (and optionally ``login``)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from types import MappingProxyType
from typing import Final, TYPE_CHECKING

from fastapi import HTTPException

from circle_gateway.components.core.constants import WSCloseCode
from circle_gateway.components.core.context import UserIdentity
from circle_gateway.components.core.exceptions import AuthenticationError
from shared.config.logging import get_logger

if TYPE_CHECKING:
    from fastapi import WebSocket


logger = get_logger(__name__)


MOCK_TOKEN_PREFIX: Final[str] = "mock_jwt_token_"

# Fixed development directory: login -> user id
MOCK_USER_DIRECTORY: Final[MappingProxyType[str, int]] = MappingProxyType({
    "alice": 1001,
    "bob": 1002,
    "charlie": 1003,
    "diana": 1004,
    "eve": 1005,
})


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True, slots=True)
class AuthResult:
    """
    Result of authentication attempt.

    Attributes:
        success: Whether authentication succeeded.
        identity: Resolved user identity if successful.
        scheme: Which strategy produced the result ("mock" or "jwt").
        error_message: Human-readable error message if failed.
        close_code: WebSocket close code to use if failed.
        audit_reason: Short reason code for audit logging.
    """

    success: bool
    identity: UserIdentity | None = None
    scheme: str | None = None
    error_message: str | None = None
    close_code: int = WSCloseCode.AUTH_FAILED
    audit_reason: str | None = None

    @classmethod
    def ok(cls, identity: UserIdentity, scheme: str) -> "AuthResult":
        """Create successful authentication result."""
        return cls(success=True, identity=identity, scheme=scheme)

    @classmethod
    def fail(
        cls,
        message: str,
        close_code: int = WSCloseCode.AUTH_FAILED,
        audit_reason: str = "auth_failed",
    ) -> "AuthResult":
        """Create failed authentication result."""
        return cls(
            success=False,
            error_message=message,
            close_code=close_code,
            audit_reason=audit_reason,
        )

    @classmethod
    def forbidden(cls, message: str, audit_reason: str = "forbidden") -> "AuthResult":
        """Create forbidden (access denied) result."""
        return cls(
            success=False,
            error_message=message,
            close_code=WSCloseCode.FORBIDDEN,
            audit_reason=audit_reason,
        )


# =============================================================================
# Strategy Interface
# =============================================================================


class AuthStrategy(ABC):
    """
    Abstract base class for authentication strategies.

    Subclasses implement ``resolve`` and raise AuthenticationError on any
    bad credential; ``authenticate`` turns that into an AuthResult.

    Implementations:
    - MockTokenAuthStrategy: development directory lookup
    - JWTAuthStrategy: signed token verification
    - CompositeAuthStrategy: picks one of the above by credential shape
    """

    scheme: str = "unknown"

    def handles(self, token: str) -> bool:
        """Whether this strategy understands the credential's shape."""
        return True

    async def authenticate(self, token: str) -> AuthResult:
        """
        Resolve a credential to a user identity.

        Args:
            token: Credential from the connection handshake.

        Returns:
            AuthResult indicating success/failure with identity or error.
        """
        try:
            identity = await self.resolve(token)
        except AuthenticationError as e:
            logger.warning(e.message, scheme=self.scheme, **e.context)
            return AuthResult.fail("Authentication failed", audit_reason=e.audit_reason)
        return AuthResult.ok(identity, self.scheme)

    @abstractmethod
    async def resolve(self, token: str) -> UserIdentity:
        """
        Raises:
            AuthenticationError: If the credential is not acceptable.
        """


# =============================================================================
# Mock Token Strategy
# =============================================================================


class MockTokenAuthStrategy(AuthStrategy):
    """
    Development bypass: ``mock_jwt_token_<login>``.

    The login is looked up in a fixed five-entry directory. Unknown logins
    are rejected.
    """

    scheme = "mock"

    def __init__(self, directory: MappingProxyType[str, int] = MOCK_USER_DIRECTORY) -> None:
        self._directory = directory

    def handles(self, token: str) -> bool:
        return token.startswith(MOCK_TOKEN_PREFIX)

    async def resolve(self, token: str) -> UserIdentity:
        login = token[len(MOCK_TOKEN_PREFIX):]
        user_id = self._directory.get(login)
        if user_id is None:
            raise AuthenticationError("Unknown test user", audit_reason="unknown_mock_user", login=login)

        logger.debug("Test user authenticated", login=login)
        return UserIdentity(user_id=str(user_id), username=login)


# =============================================================================
# JWT Authentication Strategy
# =============================================================================


class JWTAuthStrategy(AuthStrategy):
    """
    Signed token strategy.

    Signature and expiry are verified against the shared secret; the
    payload must carry ``id`` or ``userId``.
    """

    scheme = "jwt"

    async def resolve(self, token: str) -> UserIdentity:
        from shared.security.auth import extract_user_identity, verify_jwt

        try:
            claims = verify_jwt(token)
        except HTTPException as e:
            raise AuthenticationError(
                "JWT validation failed",
                audit_reason="jwt_validation_failed",
                error=str(e.detail),
            ) from e

        user_id, username = extract_user_identity(claims)
        return UserIdentity(user_id=user_id, username=username)


# =============================================================================
# Composite Strategy
# =============================================================================


class CompositeAuthStrategy(AuthStrategy):
    """
    Picks the first strategy whose ``handles`` accepts the credential.

    Origin validation runs once, before any strategy is consulted.

    Usage:
        composite = CompositeAuthStrategy([MockTokenAuthStrategy(), JWTAuthStrategy()])
        result = await composite.authenticate_connection(websocket, token)
    """

    def __init__(self, strategies: list[AuthStrategy]) -> None:
        if not strategies:
            raise ValueError("At least one strategy required")
        self._strategies = strategies

    async def authenticate(self, token: str) -> AuthResult:
        try:
            strategy = self._select(token)
        except AuthenticationError as e:
            logger.warning(e.message, **e.context)
            return AuthResult.fail("Authentication failed", audit_reason=e.audit_reason)
        return await strategy.authenticate(token)

    async def resolve(self, token: str) -> UserIdentity:
        return await self._select(token).resolve(token)

    def _select(self, token: str) -> AuthStrategy:
        if not token:
            raise AuthenticationError("No token provided", audit_reason="missing_token")
        for strategy in self._strategies:
            if strategy.handles(token):
                return strategy
        raise AuthenticationError("Unsupported credential", audit_reason="unsupported_credential")

    async def authenticate_connection(self, websocket: "WebSocket", token: str) -> AuthResult:
        """Validate the Origin header, then authenticate the credential."""
        from shared.config.settings import settings
        from circle_gateway.components.core.constants import validate_websocket_origin

        origin = websocket.headers.get("origin")
        if not validate_websocket_origin(origin, settings):
            return AuthResult.forbidden("Origin not allowed", audit_reason="invalid_origin")

        return await self.authenticate(token)


# =============================================================================
# Factory Functions
# =============================================================================


def create_circle_auth_strategy(allow_mock_tokens: bool | None = None) -> CompositeAuthStrategy:
    """
    Create the auth strategy for the circle endpoint.

    When mock tokens are disabled, a ``mock_jwt_token_`` credential falls
    through to JWT verification and is rejected there.
    """
    if allow_mock_tokens is None:
        from shared.config.settings import settings
        allow_mock_tokens = settings.allow_mock_tokens

    strategies: list[AuthStrategy] = []
    if allow_mock_tokens:
        strategies.append(MockTokenAuthStrategy())
    strategies.append(JWTAuthStrategy())
    return CompositeAuthStrategy(strategies)
