from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import ClassVar

_ONE_DECIMAL = Decimal("0.1")
_WHOLE = Decimal("1")


def _round_half_up(value: float, step: Decimal) -> Decimal:
    # Format-string rounding sends ties to even; displayed distances round ties up.
    return Decimal(str(value)).quantize(step, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class RouteInfo:
    """Route summary: ``distance`` in meters, ``duration`` in seconds."""

    distance: float
    duration: float

    ZERO: ClassVar[RouteInfo]

    def format_distance(self) -> str:
        if self.distance >= 1000:
            return f"{_round_half_up(self.distance / 1000, _ONE_DECIMAL)} km"
        return f"{_round_half_up(self.distance, _WHOLE)} m"

    def format_duration(self) -> str:
        total_minutes = int(self.duration / 60)
        if total_minutes < 60:
            return f"{total_minutes} min"
        hours, minutes = divmod(total_minutes, 60)
        if minutes:
            return f"{hours} h {minutes} min"
        return f"{hours} h"


RouteInfo.ZERO = RouteInfo(distance=0.0, duration=0.0)
