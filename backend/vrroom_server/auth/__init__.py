"""
Authentication for VRroom Server - credentials, sessions and bearer tokens.

This module handles:
- Argon2id password hashing with explicit salts
- Two signed token schemes (interactive session, long-lived API)
- Account lifecycle, sessions, game tokens and join tokens

Invariants:
    - Token validation never raises; failures become "Unauthorized"
    - Password hashing never runs under the store lock

How to change safely:
    - Keep both token schemes validating against the same secret
"""

from .accounts import (
    AccountService,
    LoginResult,
    normalize_email,
    notification_to_dict,
    profile_to_dict,
    session_to_dict,
)
from .passwords import PasswordHasher, generate_secret
from .tokens import Identity, IssuedToken, TokenIssuer, TokenScheme, bearer_token

__all__ = [
    "AccountService",
    "LoginResult",
    "normalize_email",
    "notification_to_dict",
    "profile_to_dict",
    "session_to_dict",
    "PasswordHasher",
    "generate_secret",
    "TokenIssuer",
    "TokenScheme",
    "Identity",
    "IssuedToken",
    "bearer_token",
]
