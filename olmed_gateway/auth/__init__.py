"""Shared Olmed API token handling."""

from olmed_gateway.auth.olmed_auth import AuthResult, OlmedAuthClient
from olmed_gateway.auth.token_store import TokenFreshness, TokenInfo, TokenStore

__all__ = [
    "AuthResult",
    "OlmedAuthClient",
    "TokenFreshness",
    "TokenInfo",
    "TokenStore",
]
