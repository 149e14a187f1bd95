from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, UploadFile, status

from mapin.api.deps import get_current_user
from mapin.core.errors import success_response
from mapin.models import User
from mapin.services import media_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/media", tags=["media"])


@router.post("/events")
async def upload_event_media(
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
):
    logger.info("Event media upload user_id=%s content_type=%s", current_user.id, file.content_type)
    content = await file.read()
    path = media_service.store_event_media(
        user_id=current_user.id,
        mime_type=file.content_type,
        content=content,
    )
    return success_response({"path": path}, status_code=status.HTTP_201_CREATED)
