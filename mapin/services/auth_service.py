from __future__ import annotations

from datetime import UTC, datetime, timedelta
import logging

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from mapin.core.errors import APIError
from mapin.core.security import (
    create_access_token,
    generate_refresh_token,
    hash_password,
    hash_refresh_token,
    verify_password,
)
from mapin.core.settings import get_settings
from mapin.models import AuthSession, User
from mapin.schemas.auth import LoginRequest, RegisterRequest, TokenPair
from mapin.schemas.users import UserProfileUpdateRequest

logger = logging.getLogger(__name__)


def _invalid_refresh_token() -> APIError:
    return APIError(status_code=401, code="invalid_refresh_token", message="Refresh token is invalid or expired")


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timezone-aware columns back naive.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _open_session(db: Session, user: User) -> tuple[str, AuthSession]:
    settings = get_settings()
    now = datetime.now(UTC)
    raw_token = generate_refresh_token()
    session_row = AuthSession(
        user_id=user.id,
        token_hash=hash_refresh_token(raw_token),
        created_at=now,
        expires_at=now + timedelta(days=settings.refresh_token_expire_days),
    )
    db.add(session_row)
    db.flush()
    return raw_token, session_row


def _token_pair(user: User, refresh_token: str) -> TokenPair:
    settings = get_settings()
    return TokenPair(
        access_token=create_access_token(subject=user.id),
        refresh_token=refresh_token,
        expires_in=settings.access_token_expire_minutes * 60,
    )


def register_user(db: Session, payload: RegisterRequest) -> tuple[User, TokenPair]:
    existing_user = db.scalar(select(User).where(User.username == payload.username))
    if existing_user is not None:
        logger.warning("Registration rejected, username taken username=%s", payload.username)
        raise APIError(status_code=409, code="username_taken", message="Username is already in use")

    user = User(
        username=payload.username,
        display_name=payload.display_name or payload.username,
        profile_picture_url=payload.profile_picture_url,
        password_hash=hash_password(payload.password),
    )
    db.add(user)
    db.flush()
    refresh_token, _ = _open_session(db, user)
    db.commit()
    db.refresh(user)
    logger.info("User registered user_id=%s", user.id)
    return user, _token_pair(user, refresh_token)


def authenticate_user(db: Session, payload: LoginRequest) -> tuple[User, TokenPair]:
    user = db.scalar(select(User).where(User.username == payload.username))
    if user is None or not verify_password(payload.password, user.password_hash):
        logger.warning("Login failed username=%s", payload.username)
        raise APIError(status_code=401, code="invalid_credentials", message="Invalid username or password")
    refresh_token, _ = _open_session(db, user)
    db.commit()
    return user, _token_pair(user, refresh_token)


def rotate_refresh_token(db: Session, raw_token: str) -> tuple[User, TokenPair]:
    """Swap a live refresh token for a new pair.

    Presenting a token that was already rotated away revokes every open
    session of its user, since one of the two holders is not the owner.
    """
    current = db.scalar(select(AuthSession).where(AuthSession.token_hash == hash_refresh_token(raw_token)))
    if current is None:
        raise _invalid_refresh_token()

    now = datetime.now(UTC)
    if current.revoked_at is not None:
        if current.replaced_by_id is not None:
            revoked = db.execute(
                update(AuthSession)
                .where(AuthSession.user_id == current.user_id, AuthSession.revoked_at.is_(None))
                .values(revoked_at=now)
            ).rowcount
            db.commit()
            logger.warning("Refresh token reuse detected user_id=%s revoked_sessions=%s", current.user_id, revoked)
        raise _invalid_refresh_token()
    if _as_utc(current.expires_at) <= now:
        raise _invalid_refresh_token()

    user = db.get(User, current.user_id)
    if user is None:
        raise _invalid_refresh_token()

    refresh_token, replacement = _open_session(db, user)
    current.revoked_at = now
    current.replaced_by_id = replacement.id
    db.commit()
    logger.info("Refresh token rotated user_id=%s session_id=%s", user.id, replacement.id)
    return user, _token_pair(user, refresh_token)


def revoke_refresh_token(db: Session, raw_token: str) -> None:
    session_row = db.scalar(select(AuthSession).where(AuthSession.token_hash == hash_refresh_token(raw_token)))
    if session_row is None or session_row.revoked_at is not None:
        return
    session_row.revoked_at = datetime.now(UTC)
    db.commit()
    logger.info("Session revoked user_id=%s session_id=%s", session_row.user_id, session_row.id)


def update_profile(db: Session, user: User, payload: UserProfileUpdateRequest) -> User:
    if payload.display_name is not None:
        user.display_name = payload.display_name
    if "profile_picture_url" in payload.model_fields_set:
        user.profile_picture_url = payload.profile_picture_url
    db.commit()
    db.refresh(user)
    logger.info("Profile updated user_id=%s", user.id)
    return user


def search_users(db: Session, *, query: str, exclude_user_id: str, limit: int) -> list[User]:
    pattern = f"%{query.lower()}%"
    rows = db.scalars(
        select(User)
        .where(
            User.id != exclude_user_id,
            or_(
                func.lower(User.username).like(pattern),
                func.lower(User.display_name).like(pattern),
            ),
        )
        .order_by(User.username.asc())
        .limit(limit)
    ).all()
    return list(rows)
