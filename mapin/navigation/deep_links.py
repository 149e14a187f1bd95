from __future__ import annotations

from dataclasses import dataclass, field
import logging
from urllib.parse import parse_qsl, quote, urlsplit

from mapin.core.settings import get_settings

logger = logging.getLogger(__name__)

# Host -> metadata key for the first path segment.
_ID_KEYS = {
    "friendRequests": "requestId",
    "friendAccept": "requestId",
    "profile": "userId",
    "events": "eventId",
    "messages": "conversationId",
}


@dataclass(frozen=True, slots=True)
class DeepLinkTarget:
    route: str
    metadata: dict[str, str] = field(default_factory=dict)
    recognized: bool = True


def _path_segments(path: str) -> list[str]:
    return [segment for segment in path.split("/") if segment]


def _route_for(host: str, first_segment: str | None) -> str | None:
    if host == "friendRequests":
        return "friends?tab=REQUESTS"
    if host == "friendAccept":
        return "friends?tab=FRIENDS"
    if host == "profile":
        return f"profile/{quote(first_segment, safe='')}" if first_segment else "profile"
    if host == "messages":
        return f"conversation/{quote(first_segment, safe='')}" if first_segment else "chat"
    if host in ("events", "map"):
        return "map"
    return None


def extract_metadata(deep_link: str) -> dict[str, str]:
    try:
        parts = urlsplit(deep_link)
    except ValueError:
        logger.warning("Deep link metadata extraction failed deep_link=%s", deep_link)
        return {}

    metadata: dict[str, str] = {}
    segments = _path_segments(parts.path)
    key = _ID_KEYS.get(parts.netloc)
    if segments and key is not None:
        metadata[key] = segments[0]
    for name, value in parse_qsl(parts.query, keep_blank_values=False):
        metadata[name] = value
    return metadata


def resolve_deep_link(deep_link: str) -> DeepLinkTarget:
    """Map a notification deep link to an app route, falling back to the default screen."""
    settings = get_settings()
    default = DeepLinkTarget(route=settings.deep_link_default_route, recognized=False)

    try:
        parts = urlsplit(deep_link)
    except ValueError:
        logger.warning("Deep link parse error deep_link=%s", deep_link)
        return default

    if parts.scheme != settings.deep_link_scheme:
        logger.warning("Deep link has unsupported scheme scheme=%s", parts.scheme)
        return default

    segments = _path_segments(parts.path)
    route = _route_for(parts.netloc, segments[0] if segments else None)
    if route is None:
        logger.warning("Deep link has unknown host host=%s", parts.netloc)
        return default

    target = DeepLinkTarget(route=route, metadata=extract_metadata(deep_link))
    logger.debug("Deep link resolved deep_link=%s route=%s", deep_link, target.route)
    return target
