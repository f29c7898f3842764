"""
services/auth_service.py — Identity provider business logic.

Responsibilities:
  - Password account registration and credential validation
  - Anonymous sessions (an identity with no email, used by invitees who
    only hold an invitation credential)
  - JWT access token creation (HS256)
  - Refresh token lifecycle (creation, validation, revocation)
  - Profile read / display-name update

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, or HTTP status codes beyond AppError
  - current_app.config is used ONLY to read JWT settings and bcrypt cost

Token design:
  - Access token: JWT, HS256, sub = user_id (str), plus `email` and `anon`
    claims that the middleware copies into the CallerContext.
  - Refresh token: cryptographically random hex string, stored in DB as
    SHA-256 hash (never the raw value). Revoked on logout.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timezone

import bcrypt
import jwt
from flask import current_app
from sqlalchemy import select
from sqlalchemy.orm import Session

from offrecord.app.errors import AppError, ErrorCode
from offrecord.app.models.refresh_token import RefreshToken
from offrecord.app.models.user import Role, User

ANONYMOUS_DISPLAY_NAME = "Guest"


# ── Private helpers ────────────────────────────────────────────────────────

def _hash_token(raw_token: str) -> str:
    """SHA-256 hex digest of a raw token string. Used for refresh token storage."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def _as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_email(email: str | None) -> str:
    """Trims and lowercases an email address. None becomes ''."""
    return str(email or "").strip().lower()


def _create_access_token(user: User) -> str:
    """
    Creates a signed JWT access token.
    Payload: sub, email, anon, iat, exp, jti.
    """
    now = datetime.now(timezone.utc)
    expiry = now + current_app.config["JWT_ACCESS_TOKEN_EXPIRES"]
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "anon": bool(user.is_anonymous),
        "iat": now,
        "exp": expiry,
        # Guarantees each issued token is unique even if generated in the same second.
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(
        payload,
        current_app.config["JWT_SECRET_KEY"],
        algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"),
    )


def _create_refresh_token(user_id: int, session: Session) -> str:
    """
    Creates a new refresh token, stores its SHA-256 hash in the DB,
    and returns the raw token to be sent to the client once.
    """
    raw_token = secrets.token_hex(32)
    expires_at = datetime.now(timezone.utc) + current_app.config["JWT_REFRESH_TOKEN_EXPIRES"]

    refresh_token = RefreshToken(
        user_id=user_id,
        token_hash=_hash_token(raw_token),
        expires_at=expires_at,
    )
    session.add(refresh_token)
    # flush so the row exists before we return; commit is the route's job
    session.flush()

    return raw_token


def _build_token_pair(user: User, session: Session) -> dict:
    """Returns a dict with both access_token and refresh_token for a user."""
    return {
        "access_token": _create_access_token(user),
        "refresh_token": _create_refresh_token(user.id, session),
    }


def _build_user_dict(user: User) -> dict:
    """Serialises a User to a plain dict. No business logic."""
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "role": user.role,
        "is_anonymous": bool(user.is_anonymous),
        "created_at": user.created_at.isoformat(),
    }


def _get_user_or_404(user_id: int, session: Session) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404,
        )
    return user


# ── Public service functions ───────────────────────────────────────────────

def register_user(
        email: str,
        password: str,
        display_name: str,
        role: str,
        session: Session,
) -> dict:
    """
    Creates a password account and issues an access + refresh token pair.

    Raises:
      AppError(INVALID_ROLE, 400)    — role is not host/member
      AppError(DUPLICATE_EMAIL, 409) — email already registered

    Returns: {"user": {...}, "access_token": "...", "refresh_token": "..."}
    """
    if role not in Role.ALL:
        raise AppError(
            ErrorCode.INVALID_ROLE,
            f"role must be one of: {', '.join(Role.ALL)}.",
            400,
            field="role",
        )

    email_lower = normalize_email(email)
    existing = session.execute(
        select(User).where(User.email == email_lower)
    ).scalar_one_or_none()
    if existing is not None:
        raise AppError(
            ErrorCode.DUPLICATE_EMAIL,
            f"The email address '{email_lower}' is already registered.",
            409,
            field="email",
        )

    rounds = current_app.config.get("BCRYPT_LOG_ROUNDS", 12)
    password_hash = bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")

    user = User(
        email=email_lower,
        display_name=display_name.strip(),
        role=role,
        password_hash=password_hash,
        is_anonymous=False,
    )
    session.add(user)
    session.flush()  # populate user.id before creating refresh token

    return {
        "user": _build_user_dict(user),
        **_build_token_pair(user, session),
    }


def login_user(
        email: str,
        password: str,
        session: Session,
) -> dict:
    """
    Validates credentials and issues a new access + refresh token pair.

    Raises:
      AppError(INVALID_CREDENTIALS, 401) — email not found or password wrong.
      Uses the same error for both to avoid account enumeration.
    """
    user = session.execute(
        select(User).where(User.email == normalize_email(email))
    ).scalar_one_or_none()

    # bcrypt.checkpw compares in constant time.
    if user is None or user.password_hash is None or not bcrypt.checkpw(
            password.encode("utf-8"),
            user.password_hash.encode("utf-8"),
    ):
        raise AppError(
            ErrorCode.INVALID_CREDENTIALS,
            "Sign-in failed. Check your details and try again.",
            401,
        )

    return {
        "user": _build_user_dict(user),
        **_build_token_pair(user, session),
    }


def sign_in_anonymously(display_name: str | None, session: Session) -> dict:
    """
    Creates an anonymous identity and issues a token pair.

    Invitees use this before redeeming their invitation; the identity gains
    group access only through that redemption.
    """
    user = User(
        email=None,
        display_name=(display_name or "").strip() or ANONYMOUS_DISPLAY_NAME,
        role=Role.MEMBER,
        password_hash=None,
        is_anonymous=True,
    )
    session.add(user)
    session.flush()

    return {
        "user": _build_user_dict(user),
        **_build_token_pair(user, session),
    }


def refresh_access_token(
        raw_refresh_token: str,
        session: Session,
) -> dict:
    """
    Validates a refresh token and issues a new access token.

    The refresh token itself is NOT rotated on use; it remains valid until it
    expires or is revoked via logout.

    Raises:
      AppError(REFRESH_TOKEN_INVALID, 401) — not found, revoked, or expired.
    """
    now = datetime.now(timezone.utc)

    record = session.execute(
        select(RefreshToken).where(RefreshToken.token_hash == _hash_token(raw_refresh_token))
    ).scalar_one_or_none()

    if record is None or record.revoked or _as_utc(record.expires_at) <= now:
        raise AppError(
            ErrorCode.REFRESH_TOKEN_INVALID,
            "The refresh token is invalid, expired, or has been revoked.",
            401,
        )

    user = _get_user_or_404(record.user_id, session)
    return {
        "access_token": _create_access_token(user),
    }


def logout_user(
        raw_refresh_token: str,
        session: Session,
) -> None:
    """
    Revokes a refresh token (sign-out).

    Raises:
      AppError(REFRESH_TOKEN_INVALID, 401) — token not found or already revoked.
    """
    record = session.execute(
        select(RefreshToken).where(RefreshToken.token_hash == _hash_token(raw_refresh_token))
    ).scalar_one_or_none()

    if record is None or record.revoked:
        raise AppError(
            ErrorCode.REFRESH_TOKEN_INVALID,
            "The refresh token is invalid or has already been revoked.",
            401,
        )

    record.revoked = True
    session.flush()


def get_current_user(user_id: int, session: Session) -> dict:
    """
    Returns the profile of the currently authenticated user.

    Raises:
      AppError(USER_NOT_FOUND, 404) — user deleted between token issue and request.
    """
    return _build_user_dict(_get_user_or_404(user_id, session))


def update_profile(user_id: int, display_name: str, session: Session) -> dict:
    """Updates the caller's display name and returns the new profile."""
    user = _get_user_or_404(user_id, session)
    user.display_name = display_name.strip()
    session.flush()
    return _build_user_dict(user)
