from __future__ import annotations

import logging
import random
import threading
from typing import Callable, TypeVar

from google.api_core import exceptions as gexc

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Errors Firestore documents as safe to retry for idempotent writes (set/delete/batch).
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    gexc.Aborted,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
    gexc.ResourceExhausted,
    gexc.ServiceUnavailable,
    gexc.TooManyRequests,
)

# Backoff waits on this event so shutdown (or a test) can cut them short.
_STOP_EVENT = threading.Event()


def is_transient(e: BaseException) -> bool:
    return isinstance(e, RETRYABLE_ERRORS)


def backoff_delay_s(attempt: int, *, base_delay_s: float, max_delay_s: float) -> float:
    """Full-jitter exponential backoff: uniform in [0, min(max, base * 2**attempt)]."""
    return random.uniform(0.0, min(max_delay_s, base_delay_s * (2**attempt)))


def with_firestore_retry(
    fn: Callable[[], T],
    *,
    max_attempts: int = 6,
    base_delay_s: float = 0.2,
    max_delay_s: float = 5.0,
) -> T:
    """
    Call `fn`, retrying transient Google API errors up to `max_attempts` times in total.

    Anything non-transient, and the final transient failure, propagates unchanged.
    """
    for attempt in range(max(1, max_attempts)):
        try:
            return fn()
        except RETRYABLE_ERRORS as e:
            if attempt + 1 >= max_attempts:
                raise
            if _STOP_EVENT.is_set():
                raise InterruptedError("shutdown requested during firestore retry") from e
            delay = backoff_delay_s(attempt, base_delay_s=base_delay_s, max_delay_s=max_delay_s)
            logger.info("store.firestore.retry attempt=%d delay_s=%.3f error=%s", attempt + 1, delay, type(e).__name__)
            _STOP_EVENT.wait(timeout=delay)
    raise AssertionError("unreachable")
