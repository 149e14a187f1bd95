from __future__ import annotations

from fastapi import APIRouter, Query

from mapin.core.errors import success_response
from mapin.navigation.deep_links import resolve_deep_link

router = APIRouter(prefix="/deep-links", tags=["deep-links"])


@router.get("/resolve")
def resolve(url: str = Query(min_length=1, max_length=2048)):
    target = resolve_deep_link(url)
    return success_response({"route": target.route, "metadata": target.metadata, "recognized": target.recognized})
