from __future__ import annotations

from datetime import UTC, datetime


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds, the store's timestamp unit."""
    return int(datetime.now(UTC).timestamp() * 1000)
