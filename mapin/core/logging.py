from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Loggers that stay at WARNING unless debug is on. The dispatcher polls the
# outbox every few milliseconds and the feed logs each listener change.
_CHATTY_LOGGERS = (
    "sqlalchemy.engine",
    "mapin.realtime.dispatcher",
    "mapin.realtime.feed",
    "mapin.realtime.live_query",
    "multipart",
)


def configure_logging(*, debug: bool) -> None:
    root_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=root_level, format=LOG_FORMAT, force=True)

    for name in ("uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(root_level)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)

    logging.getLogger(__name__).info("Logging configured debug=%s", debug)
