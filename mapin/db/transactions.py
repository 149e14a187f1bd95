from __future__ import annotations

import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from mapin.core.errors import APIError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_in_transaction(
    session_factory: Callable[[], Session],
    work: Callable[[Session], T],
    *,
    max_attempts: int,
    label: str = "transaction",
) -> T:
    """Run ``work`` in a fresh session and commit it, retrying on write conflicts.

    Conversations carry a version column, so a concurrent writer that touched the
    same row makes the flush fail with ``StaleDataError``. A concurrent insert of
    the same primary key surfaces as ``IntegrityError``. Both are retried against
    a fresh read. Any other error rolls back and propagates.
    """
    attempt = 0
    while True:
        attempt += 1
        with session_factory() as db:
            try:
                result = work(db)
                db.commit()
                if attempt > 1:
                    logger.info("%s committed after retry attempts=%s", label, attempt)
                return result
            except (StaleDataError, IntegrityError) as exc:
                db.rollback()
                logger.warning("%s conflict attempt=%s error=%s", label, attempt, exc.__class__.__name__)
                if attempt >= max_attempts:
                    raise APIError(
                        status_code=409,
                        code="transaction_conflict",
                        message="The resource was modified concurrently, please retry",
                    ) from exc
            except Exception:
                db.rollback()
                raise
