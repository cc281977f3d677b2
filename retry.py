"""
Bounded retry with exponential backoff for single-document saves.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

from psycopg2 import errorcodes
from psycopg2.extensions import TransactionRollbackError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Serialization failure is the write-conflict code; deadlocks resolve the same way.
TRANSIENT_PGCODES = frozenset({
    errorcodes.SERIALIZATION_FAILURE,
    errorcodes.DEADLOCK_DETECTED,
})


def is_transient_error(exc: BaseException) -> bool:
    """
    Returns True when the error is worth retrying as-is.
    """
    if isinstance(exc, TransactionRollbackError):
        return True
    return getattr(exc, "pgcode", None) in TRANSIENT_PGCODES


def backoff_delay(attempt: int, base_delay: float = 0.5) -> float:
    """Delay in seconds after failed attempt number `attempt` (1-based)."""
    return base_delay * (2 ** (attempt - 1))


def save_with_retry(
    operation: Callable[[], T],
    is_transient: Callable[[BaseException], bool] = is_transient_error,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """
    Runs `operation` until it succeeds, retrying transient failures.

    Args:
        operation: Zero-argument callable performing the save.
        is_transient: Predicate deciding whether an error may be retried.
        max_attempts: Total number of attempts, including the first one.
        base_delay: Seconds to wait after the first failure; doubles each retry.
        sleep: Function used to wait. Defaults to time.sleep.

    Returns:
        Whatever `operation` returns on its successful attempt.

    Raises:
        Exception: The last error, when it is permanent or attempts run out.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    wait = sleep or time.sleep

    attempt = 1
    while True:
        try:
            logger.info("Save attempt %d of %d", attempt, max_attempts)
            return operation()
        except Exception as exc:
            if not is_transient(exc) or attempt >= max_attempts:
                logger.error("Save failed on attempt %d: %s", attempt, exc)
                raise
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                "Transient error on attempt %d (%s); retrying in %.3fs",
                attempt, exc, delay
            )
            wait(delay)
            attempt += 1
