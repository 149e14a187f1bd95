from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from mapin.api.deps import get_current_user
from mapin.core.errors import success_response
from mapin.db.session import get_db
from mapin.models import User
from mapin.schemas.users import UserProfileUpdateRequest, UserPublic
from mapin.services import auth_service

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    return success_response(UserPublic.model_validate(current_user).model_dump(mode="json"))


@router.patch("/me")
def update_me(
    payload: UserProfileUpdateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    user = auth_service.update_profile(db, current_user, payload)
    return success_response(UserPublic.model_validate(user).model_dump(mode="json"))


@router.get("/search")
def search_users(
    query: str = Query(min_length=1, max_length=64),
    limit: int = Query(default=20, ge=1, le=50),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rows = auth_service.search_users(db, query=query, exclude_user_id=current_user.id, limit=limit)
    users = [UserPublic.model_validate(row).model_dump(mode="json") for row in rows]
    return success_response({"users": users})
