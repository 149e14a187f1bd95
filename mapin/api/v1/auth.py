from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from mapin.core.errors import success_response
from mapin.db.session import get_db
from mapin.models import User
from mapin.schemas.auth import AuthResponse, LoginRequest, RefreshTokenRequest, RegisterRequest, TokenPair
from mapin.schemas.users import UserPublic
from mapin.services import auth_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


def _auth_body(user: User, tokens: TokenPair) -> dict[str, object]:
    return AuthResponse(user=UserPublic.model_validate(user), tokens=tokens).model_dump(mode="json")


@router.post("/register")
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    logger.info("Auth register endpoint hit username=%s", payload.username)
    user, tokens = auth_service.register_user(db, payload)
    return success_response(_auth_body(user, tokens), status_code=status.HTTP_201_CREATED)


@router.post("/login")
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    logger.info("Auth login endpoint hit username=%s", payload.username)
    user, tokens = auth_service.authenticate_user(db, payload)
    return success_response(_auth_body(user, tokens))


@router.post("/refresh")
def refresh(payload: RefreshTokenRequest, db: Session = Depends(get_db)):
    user, tokens = auth_service.rotate_refresh_token(db, payload.refresh_token)
    return success_response(_auth_body(user, tokens))


@router.post("/logout")
def logout(payload: RefreshTokenRequest, db: Session = Depends(get_db)):
    auth_service.revoke_refresh_token(db, payload.refresh_token)
    return success_response({"ok": True})
