from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable


class CapacityState(str, Enum):
    AVAILABLE = "available"
    LIMITED = "limited"
    FULL = "full"

    @property
    def color(self) -> str:
        return _CAPACITY_COLORS[self]


_CAPACITY_COLORS = {
    CapacityState.AVAILABLE: "green",
    CapacityState.LIMITED: "orange",
    CapacityState.FULL: "red",
}


class EventPinType(Enum):
    MUSIC = ("music", ("music", "concert", "festival", "band", "dj", "live", "song", "sing"))
    SPORTS = (
        "sports",
        (
            "sport",
            "basketball",
            "football",
            "soccer",
            "volleyball",
            "running",
            "tennis",
            "swimming",
            "fitness",
            "yoga",
            "gym",
            "cycling",
            "hiking",
            "wellness",
            "run",
            "bike",
            "swim",
        ),
    )
    FOOD = (
        "food",
        ("food", "restaurant", "cooking", "cuisine", "dinner", "lunch", "breakfast", "market", "farmer", "eat", "meal"),
    )
    SCIENCE = (
        "science",
        (
            "science",
            "technology",
            "tech",
            "robotic",
            "physics",
            "chemistry",
            "biology",
            "engineering",
            "coding",
            "programming",
            "conference",
            "workshop",
            "exhibition",
            "expo",
            "code",
            "lab",
        ),
    )
    DEFAULT = ("map_marker", ())

    def __init__(self, icon_prefix: str, keywords: tuple[str, ...]) -> None:
        self.icon_prefix = icon_prefix
        self.keywords = keywords

    def icon_for(self, state: CapacityState) -> str:
        return f"ic_{self.icon_prefix}_{state.color}"

    @classmethod
    def from_tags(cls, tags: Iterable[str]) -> EventPinType:
        """First tag that contains a keyword of some type decides; types are tried in declaration order."""
        for tag in tags:
            lowered = tag.lower()
            for pin_type in cls:
                if pin_type is cls.DEFAULT:
                    continue
                if any(keyword in lowered for keyword in pin_type.keywords):
                    return pin_type
        return cls.DEFAULT


def calculate_capacity_state(capacity: int | None, participant_count: int) -> CapacityState:
    if capacity is None or capacity <= 0:
        return CapacityState.AVAILABLE

    remaining_ratio = (capacity - participant_count) / capacity
    if remaining_ratio > 0.5:
        return CapacityState.AVAILABLE
    if remaining_ratio > 0.1:
        return CapacityState.LIMITED
    return CapacityState.FULL


@dataclass(frozen=True, slots=True)
class EventPinInfo:
    pin_type: EventPinType
    capacity_state: CapacityState
    icon: str


def get_event_pin_info(tags: Iterable[str], capacity: int | None, participant_count: int) -> EventPinInfo:
    pin_type = EventPinType.from_tags(tags)
    state = calculate_capacity_state(capacity, participant_count)
    return EventPinInfo(pin_type=pin_type, capacity_state=state, icon=pin_type.icon_for(state))
