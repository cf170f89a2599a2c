from __future__ import annotations

import logging
import time
from typing import Callable, Sequence, TypeVar

from .config import DEFAULT_POLL_SCHEDULE_SEC

log = logging.getLogger(__name__)

T = TypeVar("T")


def poll_until_non_empty(
    read_fn: Callable[[], T],
    schedule: Sequence[float] = DEFAULT_POLL_SCHEDULE_SEC,
    sleep: Callable[[float], None] = time.sleep,
    what: str = "result",
) -> T:
    """
    Call read_fn until it returns something non-empty.

    schedule[i] is the wait before attempt i, so the default (0, 2, 5, 10, 20)
    reads immediately and gives up after five reads and 37s of waiting,
    returning the last (empty) result. Exceptions from read_fn are not retried.
    """
    result = None
    attempts = len(schedule) or 1
    for attempt, wait in enumerate(schedule or (0,), start=1):
        if wait > 0:
            log.info(f"No {what} yet, waiting {wait:g}s (attempt {attempt}/{attempts})")
            sleep(wait)
        result = read_fn()
        if result:
            return result
    log.warning(f"No {what} after {attempts} attempt(s)")
    return result
