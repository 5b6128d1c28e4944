"""Email/password accounts and opaque session tokens."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import re
import secrets

import bcrypt
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from listenlog.config import SecurityConfig
from listenlog.db import session_scope
from listenlog.errors import AuthenticationRequiredError, ValidationAppError
from listenlog.logging import get_logger
from listenlog.logging_events import log_event
from listenlog.models import AuthSession, User
from listenlog.utils.time import utcnow

SessionFactory = Callable[[], AbstractContextManager[Session]]

logger = get_logger(__name__)

# bcrypt only looks at the first 72 bytes of a password.
MAX_PASSWORD_BYTES = 72
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
INVALID_CREDENTIALS = "Invalid email or password"


def hash_password(password: str, *, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode("ascii")


def verify_password(password: str, encoded: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), encoded.encode("ascii"))
    except ValueError:
        return False


def _normalise_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass(slots=True, frozen=True)
class AuthenticatedUser:
    id: int
    email: str
    created_at: datetime


@dataclass(slots=True, frozen=True)
class IssuedSession:
    token: str
    expires_at: datetime
    user: AuthenticatedUser


def _to_user(record: User) -> AuthenticatedUser:
    return AuthenticatedUser(id=record.id, email=record.email, created_at=record.created_at)


@dataclass(slots=True)
class AuthService:
    security: SecurityConfig
    session_factory: SessionFactory = field(default=session_scope, repr=False)

    def signup(self, *, email: str, password: str) -> AuthenticatedUser:
        normalised = _normalise_email(email)
        if not _EMAIL_PATTERN.match(normalised):
            raise ValidationAppError("A valid email address is required", meta={"field": "email"})
        if len(password or "") < self.security.password_min_length:
            raise ValidationAppError(
                f"Password must be at least {self.security.password_min_length} characters",
                meta={"field": "password"},
            )
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationAppError(
                f"Password must be at most {MAX_PASSWORD_BYTES} bytes",
                meta={"field": "password"},
            )
        try:
            with self.session_factory() as session:
                existing = session.execute(
                    select(User.id).where(User.email == normalised)
                ).scalar_one_or_none()
                if existing is not None:
                    raise ValidationAppError("Email is already registered", status_code=409)
                record = User(
                    email=normalised,
                    password_hash=hash_password(
                        password, rounds=self.security.password_hash_rounds
                    ),
                    created_at=utcnow(),
                )
                session.add(record)
                session.flush()
                user = _to_user(record)
        except IntegrityError as exc:
            raise ValidationAppError("Email is already registered", status_code=409) from exc

        log_event(
            logger,
            "service.call",
            component="service.auth",
            operation="signup",
            status="ok",
            entity_id=str(user.id),
        )
        return user

    def signin(self, *, email: str, password: str) -> IssuedSession:
        normalised = _normalise_email(email)
        with self.session_factory() as session:
            record = session.execute(
                select(User).where(User.email == normalised)
            ).scalar_one_or_none()
            if record is None or not verify_password(password or "", record.password_hash):
                log_event(
                    logger,
                    "service.call",
                    component="service.auth",
                    operation="signin",
                    status="error",
                    error="invalid_credentials",
                )
                raise AuthenticationRequiredError(INVALID_CREDENTIALS)

            now = utcnow()
            token = secrets.token_urlsafe(32)
            expires_at = now + timedelta(hours=self.security.session_ttl_hours)
            session.add(
                AuthSession(token=token, user_id=record.id, created_at=now, expires_at=expires_at)
            )
            session.execute(
                delete(AuthSession).where(
                    AuthSession.user_id == record.id, AuthSession.expires_at <= now
                )
            )
            user = _to_user(record)

        log_event(
            logger,
            "service.call",
            component="service.auth",
            operation="signin",
            status="ok",
            entity_id=str(user.id),
        )
        return IssuedSession(token=token, expires_at=expires_at, user=user)

    def signout(self, token: str) -> bool:
        with self.session_factory() as session:
            result = session.execute(delete(AuthSession).where(AuthSession.token == token))
            return bool(result.rowcount)

    def resolve_token(self, token: str | None) -> AuthenticatedUser:
        """Return the user owning ``token`` or raise a 401."""

        if not token:
            raise AuthenticationRequiredError()
        with self.session_factory() as session:
            row = session.execute(
                select(AuthSession, User)
                .join(User, User.id == AuthSession.user_id)
                .where(AuthSession.token == token)
            ).one_or_none()
            if row is None:
                raise AuthenticationRequiredError("Invalid or expired session")
            auth_session, user = row
            if auth_session.expires_at > utcnow():
                return _to_user(user)
            session.delete(auth_session)
        raise AuthenticationRequiredError("Invalid or expired session")


__all__ = [
    "AuthService",
    "AuthenticatedUser",
    "INVALID_CREDENTIALS",
    "IssuedSession",
    "MAX_PASSWORD_BYTES",
    "hash_password",
    "verify_password",
]
