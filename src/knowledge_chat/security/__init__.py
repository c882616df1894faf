"""Security module for Knowledge Chat: caller authentication."""

from .auth import AuthContext, decode_access_token, get_auth_context

__all__ = [
    "AuthContext",
    "decode_access_token",
    "get_auth_context",
]
