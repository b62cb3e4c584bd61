"""
Unit tests for bearer tokens and password hashing.

Tests cover:
- Session and API token issuance
- Independent validation per scheme
- Expiry, bad signatures and malformed tokens
- Argon2id hashing and verification
"""

import time

import jwt
import pytest

from backend.vrroom_server.auth.passwords import PasswordHasher, generate_secret
from backend.vrroom_server.auth.tokens import (
    ALGORITHM,
    TokenIssuer,
    TokenScheme,
    bearer_token,
)
from backend.vrroom_server.config import AuthConfig, PasswordConfig
from backend.vrroom_server.store.records import Account, new_id


@pytest.fixture
def issuer():
    return TokenIssuer(AuthConfig(secret="test-secret-0123456789abcdef"))


@pytest.fixture
def account():
    return Account(id=new_id(), handle="alice", email="alice@example.com")


class TestTokenIssuer:
    """Tests for TokenIssuer."""

    def test_session_token_roundtrip(self, issuer, account):
        """A session token validates as the session scheme."""
        issued = issuer.issue_session_token(account)

        identity = issuer.validate_session_token(issued.token)

        assert identity is not None
        assert identity.account_id == account.id
        assert identity.handle == "alice"
        assert identity.token_id == issued.token_id
        assert identity.scheme == TokenScheme.SESSION

    def test_session_token_claims(self, issuer, account):
        issued = issuer.issue_session_token(account)

        claims = jwt.decode(issued.token, options={"verify_signature": False})

        assert claims["sub"] == account.id
        assert claims["name"] == "alice"
        assert claims["scheme"] == "session"
        assert claims["exp"] - claims["iat"] == 24 * 3600
        assert "aud" not in claims

    def test_api_token_carries_issuer_and_audience(self, issuer, account):
        issued = issuer.issue_api_token(account)

        claims = jwt.decode(issued.token, options={"verify_signature": False})

        assert claims["iss"] == "vrroom"
        assert claims["aud"] == "vrroom-clients"
        assert claims["exp"] - claims["iat"] == 30 * 86400
        assert issuer.validate_api_token(issued.token).scheme == TokenScheme.API

    def test_schemes_are_not_interchangeable(self, issuer, account):
        """Each validation path rejects the other scheme's tokens."""
        session = issuer.issue_session_token(account)
        api = issuer.issue_api_token(account)

        assert issuer.validate_api_token(session.token) is None
        assert issuer.validate_session_token(api.token) is None

    def test_validate_tries_allowed_schemes(self, issuer, account):
        api = issuer.issue_api_token(account)

        assert issuer.validate(api.token, (TokenScheme.SESSION,)) is None
        identity = issuer.validate(api.token, (TokenScheme.SESSION, TokenScheme.API))
        assert identity.scheme == TokenScheme.API

    def test_expired_token_rejected(self, issuer, account):
        now = int(time.time())
        token = jwt.encode(
            {
                "sub": account.id,
                "jti": new_id(),
                "scheme": "session",
                "iat": now - 100,
                "exp": now - 10,
            },
            issuer.config.secret,
            algorithm=ALGORITHM,
        )

        assert issuer.validate_session_token(token) is None

    def test_wrong_secret_rejected(self, account):
        other = TokenIssuer(AuthConfig(secret="another-secret-0123456789"))
        issued = other.issue_session_token(account)

        issuer = TokenIssuer(AuthConfig(secret="test-secret-0123456789abcdef"))
        assert issuer.validate_session_token(issued.token) is None

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
    def test_malformed_tokens_rejected(self, issuer, token):
        """Validation never raises."""
        assert issuer.validate(token) is None


class TestBearerToken:
    def test_bearer_prefix(self):
        assert bearer_token("Bearer abc") == "abc"
        assert bearer_token("bearer  abc ") == "abc"

    def test_raw_token(self):
        assert bearer_token("abc") == "abc"

    def test_empty(self):
        assert bearer_token(None) is None
        assert bearer_token("Bearer ") is None
        assert bearer_token("  bearer   ") is None


class TestPasswordHasher:
    """Tests for Argon2id hashing."""

    @pytest.fixture
    def hasher(self):
        return PasswordHasher(PasswordConfig(time_cost=1, memory_cost_kib=8, parallelism=1))

    def test_hash_and_verify(self, hasher):
        digest, salt = hasher.hash("correct-horse-battery")

        assert hasher.verify("correct-horse-battery", digest, salt)
        assert not hasher.verify("wrong-password", digest, salt)

    def test_fresh_salt_per_hash(self, hasher):
        first = hasher.hash("correct-horse-battery")
        second = hasher.hash("correct-horse-battery")

        assert first[1] != second[1]
        assert first[0] != second[0]

    def test_garbage_stored_values_fail(self, hasher):
        assert not hasher.verify("password", "zz", "zz")

    def test_generate_secret_is_unique(self):
        assert generate_secret() != generate_secret()
