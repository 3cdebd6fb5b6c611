"""
ProjectSync Identity Provider — credential and SSO sign-in feeding an AuthSession.

LocalIdentityProvider keeps accounts in the ``user_accounts`` table with
bcrypt password hashes and hands out opaque session tokens held in a
SessionTokenStore (Redis when available). Every successful sign-in, sign-up
or restore moves the injected AuthSession to READY(user); sign-out and a
failed restore move it to READY(None).
"""

from __future__ import annotations

import logging
import secrets
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import bcrypt
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from projectsync.db.models import UserAccount
from projectsync.db.session import session_scope
from projectsync.engine.cache import SessionTokenStore
from projectsync.engine.errors import SessionError, TransportError, ValidationError
from projectsync.engine.logging import log, log_session_event
from projectsync.identity.session import AuthSession, SessionUser

logger = logging.getLogger("projectsync.identity.provider")

SUPPORTED_PROVIDERS = ("google",)


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its bcrypt hash."""
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def _to_user(account: UserAccount) -> SessionUser:
    return SessionUser(uid=account.uid, email=account.email, display_name=account.display_name)


class IdentityProvider(ABC):
    """Identity provider boundary. Implementations drive an AuthSession."""

    def __init__(self, auth_session: AuthSession):
        self.auth_session = auth_session

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> SessionUser:
        ...

    @abstractmethod
    async def sign_up(self, email: str, password: str, confirm_password: str) -> SessionUser:
        ...

    @abstractmethod
    async def sign_in_with_provider(self, provider: str, profile: Dict[str, Any]) -> SessionUser:
        """Third-party single sign-on with an already verified profile."""

    @abstractmethod
    async def sign_out(self) -> None:
        ...

    @abstractmethod
    async def get_user(self, uid: str) -> Optional[SessionUser]:
        ...

    @abstractmethod
    async def restore(self, token: Optional[str]) -> Optional[SessionUser]:
        """Resolve a saved session token; always leaves the session READY."""


class LocalIdentityProvider(IdentityProvider):
    """
    Usage:
        auth = AuthSession()
        provider = LocalIdentityProvider(factory, auth, SessionTokenStore())
        await provider.sign_up("a@example.com", "secret1", "secret1")
        auth.uid  # -> generated uid
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        auth_session: AuthSession,
        token_store: Optional[SessionTokenStore] = None,
        password_min_length: int = 6,
        bcrypt_rounds: int = 12,
    ):
        super().__init__(auth_session)
        self._factory = session_factory
        self._tokens = token_store or SessionTokenStore()
        self._password_min_length = password_min_length
        self._bcrypt_rounds = bcrypt_rounds

    # -------------------------------------------------------------------
    # Credential flows
    # -------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> SessionUser:
        email = (email or "").strip().lower()
        try:
            with session_scope(self._factory) as session:
                account = session.execute(
                    select(UserAccount).where(UserAccount.email == email)
                ).scalar_one_or_none()
                if (
                    account is None
                    or not account.password_hash
                    or not verify_password(password or "", account.password_hash)
                ):
                    log(log_session_event("sign_in", provider="password", success=False,
                                          reason="invalid_credentials"))
                    raise SessionError(
                        "Failed to login. Please check your credentials.",
                        operation="sign_in",
                    )
                account.last_login = datetime.now(timezone.utc)
                user = _to_user(account)
        except SQLAlchemyError as e:
            raise TransportError(f"Sign-in failed: {e}", backend="identity") from e

        logger.info(f"User '{user.uid}' signed in")
        return self._open_session(user, "password")

    async def sign_up(self, email: str, password: str, confirm_password: str) -> SessionUser:
        email = (email or "").strip().lower()
        field_errors: Dict[str, str] = {}
        if "@" not in email or email.startswith("@") or email.endswith("@"):
            field_errors["email"] = "Please enter a valid email address."
        if len(password or "") < self._password_min_length:
            field_errors["password"] = (
                f"Password must be at least {self._password_min_length} characters."
            )
        if password != confirm_password:
            field_errors["confirmPassword"] = "Passwords do not match."
        if field_errors:
            message = field_errors.get("confirmPassword") or next(iter(field_errors.values()))
            raise ValidationError(message, operation="sign_up", field_errors=field_errors)

        user = SessionUser(uid=uuid.uuid4().hex, email=email)
        try:
            with session_scope(self._factory) as session:
                session.add(UserAccount(
                    uid=user.uid,
                    email=email,
                    password_hash=hash_password(password, rounds=self._bcrypt_rounds),
                    provider="password",
                    last_login=datetime.now(timezone.utc),
                ))
        except IntegrityError as e:
            log(log_session_event("sign_up", provider="password", success=False, reason="email_in_use"))
            raise ValidationError(
                "Failed to create account. That email is already in use.",
                operation="sign_up",
                field_errors={"email": "Email already in use."},
            ) from e
        except SQLAlchemyError as e:
            raise TransportError(f"Sign-up failed: {e}", backend="identity") from e

        logger.info(f"User '{user.uid}' signed up")
        return self._open_session(user, "password", event="sign_up")

    async def sign_in_with_provider(self, provider: str, profile: Dict[str, Any]) -> SessionUser:
        if provider not in SUPPORTED_PROVIDERS:
            raise ValidationError(
                f"Unsupported sign-in provider '{provider}'",
                operation="sign_in_with_provider",
                field_errors={"provider": f"Supported: {', '.join(SUPPORTED_PROVIDERS)}"},
            )
        subject = profile.get("sub") or profile.get("uid")
        if not subject:
            raise SessionError(f"Failed to sign in with {provider.capitalize()}.",
                               operation="sign_in_with_provider")

        uid = f"{provider}:{subject}"
        email = (profile.get("email") or "").strip().lower() or None
        try:
            with session_scope(self._factory) as session:
                account = session.execute(
                    select(UserAccount).where(UserAccount.uid == uid)
                ).scalar_one_or_none()
                if account is None:
                    account = UserAccount(
                        uid=uid,
                        email=email,
                        provider=provider,
                        display_name=profile.get("name"),
                    )
                    session.add(account)
                    logger.info(f"Created {provider} account '{uid}'")
                account.last_login = datetime.now(timezone.utc)
                user = _to_user(account)
        except SQLAlchemyError as e:
            raise TransportError(f"Sign-in with {provider} failed: {e}", backend="identity") from e

        return self._open_session(user, provider)

    async def sign_out(self) -> None:
        uid = self.auth_session.uid
        if self.auth_session.token:
            self._tokens.revoke(self.auth_session.token)
        self.auth_session.set_user(None)
        log(log_session_event("sign_out", user_id=uid))
        logger.info(f"User '{uid}' signed out")

    # -------------------------------------------------------------------
    # Lookup / restore
    # -------------------------------------------------------------------

    async def get_user(self, uid: str) -> Optional[SessionUser]:
        try:
            with session_scope(self._factory) as session:
                account = session.execute(
                    select(UserAccount).where(UserAccount.uid == uid)
                ).scalar_one_or_none()
                return _to_user(account) if account is not None else None
        except SQLAlchemyError as e:
            raise TransportError(f"User lookup failed: {e}", backend="identity") from e

    async def restore(self, token: Optional[str]) -> Optional[SessionUser]:
        uid = self._tokens.resolve(token) if token else None
        user = await self.get_user(uid) if uid else None
        if user is None:
            self.auth_session.set_user(None)
            return None
        self.auth_session.set_user(user, token=token)
        log(log_session_event("restore", user_id=user.uid))
        return user

    def _open_session(self, user: SessionUser, provider: str, event: str = "sign_in") -> SessionUser:
        token = secrets.token_urlsafe(32)
        self._tokens.put(token, user.uid)
        self.auth_session.set_user(user, token=token)
        log(log_session_event(event, user_id=user.uid, provider=provider))
        return user
