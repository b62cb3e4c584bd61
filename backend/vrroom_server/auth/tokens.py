"""
Bearer token issuing and validation.

Two signed token schemes share one HMAC secret:

    session  short-lived interactive tokens used by the flat REST surface
    api      long-lived tokens used by the /v1 resource surface; these also
             carry issuer and audience claims

Validation never raises: any failure (bad signature, expiry, malformed
token, wrong scheme) yields None, and the caller turns that into the
uniform "Unauthorized" response.

Invariants:
    - Every token carries sub, name, jti, rank and scheme claims
    - A token of one scheme never validates as the other scheme
    - Tokens are stateless; persisted sessions are bookkeeping only and
      deleting one does not revoke an issued token before it expires

How to change safely:
    - Rotating AUTH_SECRET invalidates every outstanding token
    - New claims must be optional on the validation side
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

import jwt

from ..config import AuthConfig
from ..store.records import Account, new_id

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


class TokenScheme(str, Enum):
    SESSION = "session"
    API = "api"


@dataclass(frozen=True)
class Identity:
    """Caller identity extracted from a valid token."""

    account_id: str
    handle: str
    rank: str
    token_id: str
    scheme: TokenScheme
    expires_at: int


@dataclass(frozen=True)
class IssuedToken:
    token: str
    token_id: str
    scheme: TokenScheme
    expires_at: int


def bearer_token(header: str | None) -> str | None:
    """Extract the token from an Authorization header value.

    Accepts both "Bearer <token>" and a bare token.
    """
    if not header:
        return None
    scheme, _, value = header.strip().partition(" ")
    if scheme.lower() == "bearer":
        return value.strip() or None
    return header.strip() or None


class TokenIssuer:
    """Issues and validates signed bearer tokens for both surfaces."""

    def __init__(self, config: AuthConfig) -> None:
        self.config = config

    def _issue(self, account: Account, scheme: TokenScheme, lifetime_s: int) -> IssuedToken:
        now = int(time.time())
        token_id = new_id()
        claims = {
            "sub": account.id,
            "name": account.handle,
            "jti": token_id,
            "rank": account.rank,
            "scheme": scheme.value,
            "iat": now,
            "exp": now + lifetime_s,
        }
        if scheme == TokenScheme.API:
            claims["iss"] = self.config.issuer
            claims["aud"] = self.config.audience
        token = jwt.encode(claims, self.config.secret, algorithm=ALGORITHM)
        return IssuedToken(
            token=token,
            token_id=token_id,
            scheme=scheme,
            expires_at=(now + lifetime_s) * 1000,
        )

    def issue_session_token(self, account: Account) -> IssuedToken:
        return self._issue(account, TokenScheme.SESSION, self.config.session_token_hours * 3600)

    def issue_api_token(self, account: Account) -> IssuedToken:
        return self._issue(account, TokenScheme.API, self.config.api_token_days * 86400)

    def issue(self, account: Account, scheme: TokenScheme) -> IssuedToken:
        if scheme == TokenScheme.API:
            return self.issue_api_token(account)
        return self.issue_session_token(account)

    @staticmethod
    def _identity(claims: dict, scheme: TokenScheme) -> Identity | None:
        if claims.get("scheme") != scheme.value:
            return None
        sub = claims.get("sub")
        if not isinstance(sub, str) or not sub:
            return None
        return Identity(
            account_id=sub,
            handle=str(claims.get("name", "")),
            rank=str(claims.get("rank", "")),
            token_id=str(claims.get("jti", "")),
            scheme=scheme,
            expires_at=int(claims["exp"]) * 1000,
        )

    def validate_session_token(self, token: str | None) -> Identity | None:
        """Validate an interactive session token."""
        if not token:
            return None
        try:
            claims = jwt.decode(
                token,
                self.config.secret,
                algorithms=[ALGORITHM],
                options={"require": ["exp", "sub", "jti"], "verify_aud": False},
            )
        except jwt.InvalidTokenError as e:
            logger.debug("Rejected session token", extra={"reason": type(e).__name__})
            return None
        return self._identity(claims, TokenScheme.SESSION)

    def validate_api_token(self, token: str | None) -> Identity | None:
        """Validate a long-lived API token, including issuer and audience."""
        if not token:
            return None
        try:
            claims = jwt.decode(
                token,
                self.config.secret,
                algorithms=[ALGORITHM],
                audience=self.config.audience,
                issuer=self.config.issuer,
                options={"require": ["exp", "sub", "jti", "iss", "aud"]},
            )
        except jwt.InvalidTokenError as e:
            logger.debug("Rejected api token", extra={"reason": type(e).__name__})
            return None
        return self._identity(claims, TokenScheme.API)

    def validate(
        self,
        token: str | None,
        schemes: Iterable[TokenScheme] = (TokenScheme.SESSION, TokenScheme.API),
    ) -> Identity | None:
        """Validate a token against each allowed scheme in order."""
        for scheme in schemes:
            if scheme == TokenScheme.SESSION:
                identity = self.validate_session_token(token)
            else:
                identity = self.validate_api_token(token)
            if identity is not None:
                return identity
        return None
