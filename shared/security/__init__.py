"""
Security module: JWT verification for WebSocket authentication.
"""

from shared.security.auth import sign_jwt, verify_jwt, extract_user_identity

__all__ = [
    "sign_jwt",
    "verify_jwt",
    "extract_user_identity",
]
