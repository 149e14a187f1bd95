from __future__ import annotations

from pydantic import BaseModel, Field


class PinInfoRequest(BaseModel):
    tags: list[str] = Field(default_factory=list, max_length=64)
    capacity: int | None = None
    participant_count: int = Field(default=0, ge=0)


class PinInfoResponse(BaseModel):
    pin_type: str
    capacity_state: str
    icon: str


class RouteInfoRequest(BaseModel):
    distance: float = Field(ge=0)
    duration: float = Field(ge=0)


class RouteInfoResponse(BaseModel):
    distance: str
    duration: str
