from __future__ import annotations

from fastapi import APIRouter

from mapin.core.errors import success_response
from mapin.map.pins import get_event_pin_info
from mapin.map.route_info import RouteInfo
from mapin.schemas.map import PinInfoRequest, PinInfoResponse, RouteInfoRequest, RouteInfoResponse

router = APIRouter(prefix="/map", tags=["map"])


@router.post("/pin-info")
def pin_info(payload: PinInfoRequest):
    info = get_event_pin_info(payload.tags, payload.capacity, payload.participant_count)
    body = PinInfoResponse(pin_type=info.pin_type.name.lower(), capacity_state=info.capacity_state.value, icon=info.icon)
    return success_response(body.model_dump(mode="json"))


@router.post("/route-info")
def route_info(payload: RouteInfoRequest):
    route = RouteInfo(distance=payload.distance, duration=payload.duration)
    body = RouteInfoResponse(distance=route.format_distance(), duration=route.format_duration())
    return success_response(body.model_dump(mode="json"))
