"""
Authentication components.

Mock-token and JWT authentication strategies.
"""

from circle_gateway.components.auth.strategies import (
    AuthStrategy,
    AuthResult,
    MockTokenAuthStrategy,
    JWTAuthStrategy,
    CompositeAuthStrategy,
    create_circle_auth_strategy,
    MOCK_TOKEN_PREFIX,
    MOCK_USER_DIRECTORY,
)

__all__ = [
    "AuthStrategy",
    "AuthResult",
    "MockTokenAuthStrategy",
    "JWTAuthStrategy",
    "CompositeAuthStrategy",
    "create_circle_auth_strategy",
    "MOCK_TOKEN_PREFIX",
    "MOCK_USER_DIRECTORY",
]
