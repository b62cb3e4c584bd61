"""
Account and session management for VRroom.

AccountService owns the credential side of the platform: registration,
login, bearer authentication, verification codes, profile edits, persisted
sessions, game tokens, join tokens, notifications and full account deletion.

Invariants:
    - Handles and e-mail addresses are unique across all accounts
    - Every account has a profile with the same id
    - Password hashing runs outside the store lock; operations that need a
      hash read in one closure and write in a second one
    - At most one live join token exists per account

How to change safely:
    - Keep authentication failures uniform ("Unauthorized", "Invalid credentials")
    - New per-account collections must be added to the delete cascade
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from email_validator import EmailNotValidError, validate_email

from ..config import AuthConfig
from ..errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from ..engine.content import UploadedFile
from ..engine.updates import ProfileUpdate
from ..store.database import Store, Transaction
from ..store.records import (
    Account,
    JoinToken,
    Notification,
    Profile,
    Session,
    is_valid_id,
    new_id,
    now_ms,
)
from .passwords import PasswordHasher, generate_secret
from .tokens import IssuedToken, TokenIssuer, TokenScheme, bearer_token

logger = logging.getLogger(__name__)

MIN_HANDLE_LENGTH = 3
MIN_PASSWORD_LENGTH = 8


def profile_thumbnail_file_id(account_id: str) -> str:
    return f"{account_id}-thumbnail"


def profile_banner_file_id(account_id: str) -> str:
    return f"{account_id}-banner"


@dataclass(frozen=True)
class LoginResult:
    account: Account
    session: Session
    token: IssuedToken


def session_to_dict(session: Session) -> dict[str, Any]:
    return {
        "sessionId": session.id,
        "deviceInfo": session.device_info,
        "scheme": session.scheme,
        "createdAt": session.created_at,
        "lastUsedAt": session.last_used_at,
        "expiresAt": session.expires_at,
    }


def notification_to_dict(notification: Notification) -> dict[str, Any]:
    return {
        "id": notification.id,
        "senderType": notification.sender_type,
        "senderId": notification.sender_id,
        "title": notification.title,
        "description": notification.description,
        "createdAt": notification.created_at,
    }


def profile_to_dict(profile: Profile) -> dict[str, Any]:
    return {
        "id": profile.id,
        "handle": profile.handle,
        "displayName": profile.display_name,
        "bio": profile.bio,
        "status": profile.status,
        "createdAt": profile.created_at,
        "lastActiveAt": profile.last_activity,
    }


def validate_handle(handle: object) -> str:
    if not isinstance(handle, str) or len(handle.strip()) < MIN_HANDLE_LENGTH:
        raise ValidationError("Invalid handle")
    return handle.strip()


def validate_password(password: object) -> str:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("Invalid password")
    return password


def normalize_email(email: object) -> str:
    """Validate an e-mail address syntactically and return its normal form."""
    if not isinstance(email, str):
        raise ValidationError("Invalid email")
    try:
        return validate_email(email, check_deliverability=False).normalized
    except EmailNotValidError:
        raise ValidationError("Invalid email")


class AccountService:
    """Credential store and session issuer.

    Example:
        >>> accounts = AccountService(store, PasswordHasher(), TokenIssuer(auth_config))
        >>> await accounts.register("alice", "alice@example.com", "hunter2hunter2")
        >>> result = await accounts.login("alice", "hunter2hunter2", "pc")
    """

    def __init__(
        self,
        store: Store,
        hasher: PasswordHasher,
        tokens: TokenIssuer,
        config: AuthConfig | None = None,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.tokens = tokens
        self.config = config or tokens.config

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    async def register(self, handle: str, email: str, password: str) -> Account:
        """Create an account and its profile.

        Args:
            handle: Unique public handle (at least 3 characters)
            email: Unique e-mail address
            password: Plaintext password (at least 8 characters)

        Returns:
            The created account

        Raises:
            ValidationError: If any field is invalid
            ConflictError: If the handle or e-mail is already in use
        """
        handle = validate_handle(handle)
        email = normalize_email(email)
        password = validate_password(password)
        password_hash, password_salt = await asyncio.to_thread(self.hasher.hash, password)

        def create(txn: Transaction) -> Account:
            if txn.accounts.exists(handle=handle):
                raise ConflictError("Handle already taken")
            if txn.accounts.exists(email=email):
                raise ConflictError("Email already registered")

            now = now_ms()
            account = Account(
                id=new_id(),
                handle=handle,
                email=email,
                password_hash=password_hash,
                password_salt=password_salt,
                verification_code=generate_secret(),
                game_token=generate_secret(),
                created_at=now,
                updated_at=now,
            )
            txn.accounts.insert(account)
            txn.profiles.insert(
                Profile(
                    id=account.id,
                    handle=handle,
                    display_name=handle,
                    created_at=now,
                    updated_at=now,
                    last_activity=now,
                )
            )
            return account

        account = await self.store.execute(create)
        logger.info("Registered account", extra={"account_id": account.id})
        return account

    async def login(
        self,
        identifier: str,
        password: str,
        device_info: str = "",
        scheme: TokenScheme = TokenScheme.SESSION,
    ) -> LoginResult:
        """Check credentials, persist a session and issue a token.

        Args:
            identifier: Handle, or e-mail address when it contains "@"
            password: Plaintext password
            device_info: Free-form device descriptor stored on the session
            scheme: Which token scheme to issue

        Raises:
            AuthenticationError: "Invalid credentials" for any mismatch
        """
        if not identifier or not password:
            raise AuthenticationError("Invalid credentials")

        def lookup(txn: Transaction) -> Account | None:
            if "@" in identifier:
                try:
                    return txn.accounts.find_one(email=normalize_email(identifier))
                except ValidationError:
                    return None
            return txn.accounts.find_one(handle=identifier)

        account = await self.store.execute(lookup)
        if account is None or not await asyncio.to_thread(
            self.hasher.verify, password, account.password_hash, account.password_salt
        ):
            logger.info("Rejected login", extra={"reason": "invalid_credentials"})
            raise AuthenticationError("Invalid credentials")

        issued = self.tokens.issue(account, scheme)

        def record_session(txn: Transaction) -> Session:
            if txn.accounts.get(account.id) is None:
                raise AuthenticationError("Invalid credentials")
            now = now_ms()
            session = Session(
                id=new_id(),
                account_id=account.id,
                device_info=device_info or "",
                token_id=issued.token_id,
                scheme=issued.scheme.value,
                expires_at=issued.expires_at,
                created_at=now,
                last_used_at=now,
            )
            txn.sessions.insert(session)
            profile = txn.profiles.get(account.id)
            if profile is not None:
                profile.last_activity = now
                txn.profiles.update(profile)
            return session

        session = await self.store.execute(record_session)
        logger.info(
            "Logged in",
            extra={"account_id": account.id, "session_id": session.id, "scheme": scheme.value},
        )
        return LoginResult(account=account, session=session, token=issued)

    async def authenticate(
        self,
        header: str | None,
        schemes: Iterable[TokenScheme] = (TokenScheme.SESSION,),
    ) -> Account:
        """Resolve an Authorization header to the calling account.

        Raises:
            AuthenticationError: Uniform "Unauthorized" for every failure
        """
        identity = self.tokens.validate(bearer_token(header), tuple(schemes))
        if identity is None:
            raise AuthenticationError()

        def load(txn: Transaction) -> Account | None:
            account = txn.accounts.get(identity.account_id)
            if account is None:
                return None
            session = txn.sessions.find_one(token_id=identity.token_id)
            if session is not None:
                session.last_used_at = now_ms()
                txn.sessions.update(session)
            return account

        account = await self.store.execute(load)
        if account is None:
            raise AuthenticationError()
        return account

    # ------------------------------------------------------------------
    # Verification and account fields
    # ------------------------------------------------------------------

    async def verify_account(self, code: str) -> bool:
        """Mark the account holding this verification code as verified."""
        if not code:
            raise ValidationError("Missing required fields")

        def verify(txn: Transaction) -> bool:
            account = txn.accounts.find_one(verification_code=code)
            if account is None:
                return False
            account.is_verified = True
            account.verification_code = None
            account.updated_at = now_ms()
            txn.accounts.update(account)
            return True

        return await self.store.execute(verify)

    async def resend_verification(self, account_id: str) -> bool:
        """Rotate the verification code of an unverified account."""

        def resend(txn: Transaction) -> bool:
            account = txn.accounts.get(account_id)
            if account is None or account.is_verified:
                return False
            account.verification_code = generate_secret()
            account.updated_at = now_ms()
            txn.accounts.update(account)
            return True

        return await self.store.execute(resend)

    async def update_handle(self, account_id: str, handle: str) -> None:
        handle = validate_handle(handle)

        def update(txn: Transaction) -> None:
            if txn.accounts.exists(lambda a: a.id != account_id, handle=handle):
                raise ConflictError("Handle already taken")
            account = txn.accounts.get(account_id)
            profile = txn.profiles.get(account_id)
            if account is None or profile is None:
                raise NotFoundError("Account not found")
            now = now_ms()
            account.handle = handle
            account.updated_at = now
            txn.accounts.update(account)
            profile.handle = handle
            profile.updated_at = now
            txn.profiles.update(profile)

        await self.store.execute(update)

    async def update_email(self, account_id: str, email: str) -> None:
        """Change the e-mail address; the account becomes unverified again."""
        email = normalize_email(email)

        def update(txn: Transaction) -> None:
            if txn.accounts.exists(lambda a: a.id != account_id, email=email):
                raise ConflictError("Email already registered")
            account = txn.accounts.get(account_id)
            if account is None:
                raise NotFoundError("Account not found")
            account.email = email
            account.is_verified = False
            account.verification_code = generate_secret()
            account.updated_at = now_ms()
            txn.accounts.update(account)

        await self.store.execute(update)

    async def update_password(self, account_id: str, password: str) -> None:
        password = validate_password(password)
        password_hash, password_salt = await asyncio.to_thread(self.hasher.hash, password)

        def update(txn: Transaction) -> None:
            account = txn.accounts.get(account_id)
            if account is None:
                raise NotFoundError("Account not found")
            account.password_hash = password_hash
            account.password_salt = password_salt
            account.updated_at = now_ms()
            txn.accounts.update(account)

        await self.store.execute(update)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def get_profile(self, profile_id: str) -> Profile:
        if not is_valid_id(profile_id):
            raise ValidationError("Invalid profile id")
        profile = await self.store.execute(lambda txn: txn.profiles.get(profile_id))
        if profile is None:
            raise NotFoundError("Profile not found")
        return profile

    async def update_profile(self, account_id: str, update: ProfileUpdate) -> Profile:
        def apply(txn: Transaction) -> Profile:
            profile = txn.profiles.get(account_id)
            if profile is None:
                raise NotFoundError("Profile not found")
            update.apply(profile)
            profile.updated_at = now_ms()
            txn.profiles.update(profile)
            return profile

        return await self.store.execute(apply)

    async def store_profile_images(
        self,
        account_id: str,
        thumbnail: UploadedFile | None = None,
        banner: UploadedFile | None = None,
    ) -> None:
        """Save profile images in the store's file area."""

        def save(txn: Transaction) -> None:
            if thumbnail is not None:
                txn.files.upload(
                    profile_thumbnail_file_id(account_id), thumbnail.filename, thumbnail.data
                )
            if banner is not None:
                txn.files.upload(profile_banner_file_id(account_id), banner.filename, banner.data)

        await self.store.execute(save)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def list_sessions(self, account_id: str) -> list[Session]:
        return await self.store.execute(lambda txn: txn.sessions.find(account_id=account_id))

    async def delete_session(self, account_id: str, session_id: str) -> bool:
        """Delete one of the caller's sessions.

        Issued tokens stay valid until they expire.
        """
        if not is_valid_id(session_id):
            raise ValidationError("Invalid session ID")

        def delete(txn: Transaction) -> bool:
            session = txn.sessions.get(session_id)
            if session is None or session.account_id != account_id:
                return False
            return txn.sessions.delete(session_id)

        return await self.store.execute(delete)

    async def delete_all_sessions(self, account_id: str) -> int:
        return await self.store.execute(
            lambda txn: txn.sessions.delete_many(account_id=account_id)
        )

    # ------------------------------------------------------------------
    # Game and join tokens
    # ------------------------------------------------------------------

    async def get_game_token(self, account_id: str) -> str:
        account = await self.store.execute(lambda txn: txn.accounts.get(account_id))
        if account is None:
            raise NotFoundError("Account not found")
        return account.game_token

    async def regenerate_game_token(self, account_id: str) -> str:
        def regenerate(txn: Transaction) -> str:
            account = txn.accounts.get(account_id)
            if account is None:
                raise NotFoundError("Account not found")
            account.game_token = generate_secret()
            account.updated_at = now_ms()
            txn.accounts.update(account)
            return account.game_token

        return await self.store.execute(regenerate)

    async def issue_join_token(self, account_id: str) -> JoinToken:
        """Issue a short-lived join token, replacing any existing one."""
        lifetime_ms = self.config.join_token_minutes * 60 * 1000

        def issue(txn: Transaction) -> JoinToken:
            txn.join_tokens.delete_many(account_id=account_id)
            token = JoinToken(
                id=new_id(),
                account_id=account_id,
                token=generate_secret(),
                expires_at=now_ms() + lifetime_ms,
            )
            txn.join_tokens.insert(token)
            return token

        return await self.store.execute(issue)

    async def verify_join_token(self, handle: str, token: str) -> bool:
        if not handle or not token:
            raise ValidationError("Missing required fields")

        def verify(txn: Transaction) -> bool:
            account = txn.accounts.find_one(handle=handle)
            if account is None:
                return False
            return txn.join_tokens.exists(
                lambda t: t.expires_at > now_ms(), account_id=account.id, token=token
            )

        return await self.store.execute(verify)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def list_notifications(self, account_id: str) -> list[Notification]:
        """Return the account's notifications, newest first."""
        notifications = await self.store.execute(
            lambda txn: txn.notifications.find(recipient_id=account_id)
        )
        return sorted(notifications, key=lambda n: n.created_at, reverse=True)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_account(self, account_id: str, handle: str, password: str) -> bool:
        """Delete an account after re-checking its handle and password.

        Cascades to the profile, sessions, join tokens, friend requests,
        friendships, blocks and notifications, and removes the account from
        share-group member lists and direct-share lists. Content owned by
        the account is kept.

        Returns:
            False when the handle or password does not match
        """
        if not handle or not password:
            raise ValidationError("Missing required fields")

        account = await self.store.execute(lambda txn: txn.accounts.get(account_id))
        if (
            account is None
            or account.handle != handle
            or not await asyncio.to_thread(
                self.hasher.verify, password, account.password_hash, account.password_salt
            )
        ):
            return False

        def cascade(txn: Transaction) -> bool:
            current = txn.accounts.get(account_id)
            if current is None or current.password_hash != account.password_hash:
                return False

            txn.accounts.delete(account_id)
            txn.profiles.delete(account_id)
            txn.sessions.delete_many(account_id=account_id)
            txn.join_tokens.delete_many(account_id=account_id)
            txn.friend_requests.delete_many(
                lambda r: account_id in (r.from_id, r.to_id)
            )
            txn.friendships.delete_many(
                lambda f: account_id in (f.user1_id, f.user2_id)
            )
            txn.blocks.delete_many(lambda b: account_id in (b.user_id, b.blocked_id))
            txn.notifications.delete_many(recipient_id=account_id)

            for group in txn.share_groups.find(lambda g: account_id in g.member_ids):
                group.member_ids = [m for m in group.member_ids if m != account_id]
                txn.share_groups.update(group)
            for content in txn.contents.find(lambda c: account_id in c.shared_with_user_ids):
                content.shared_with_user_ids = [
                    u for u in content.shared_with_user_ids if u != account_id
                ]
                txn.contents.update(content)
            return True

        deleted = await self.store.execute(cascade)
        if deleted:
            logger.info("Deleted account", extra={"account_id": account_id})
        return deleted
