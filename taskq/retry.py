"""
Backoff and retry helpers for store access.
- Exponential backoff with jitter
- Retries only transient failures (ConnectivityError) by default
- Caller must ensure the retried operation is safe to repeat
"""
import logging
import random
import time
from typing import Callable, Optional, TypeVar

from taskq.queue.errors import ConnectivityError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_BACKOFF_SECONDS = 60.0


def is_retriable_default(exc: BaseException) -> bool:
    """Return True if the exception is a transient store failure."""
    return isinstance(exc, ConnectivityError)


def backoff_delay(
    attempt: int,
    backoff_base: float = 2.0,
    max_backoff: float = MAX_BACKOFF_SECONDS,
    jitter: bool = True,
) -> float:
    """
    Delay before retry number `attempt` (1-based): backoff_base ** attempt,
    scaled by a random factor in [0.5, 1.5) when jitter is on, capped at max_backoff.
    """
    delay = backoff_base ** attempt
    if jitter:
        delay = delay * (0.5 + random.random())
    return min(delay, max_backoff)


def retry_call(
    fn: Callable[[], T],
    max_retries: int = 5,
    backoff_base: float = 2.0,
    max_backoff: float = MAX_BACKOFF_SECONDS,
    jitter: bool = True,
    retriable: Optional[Callable[[BaseException], bool]] = None,
    operation_name: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn() with exponential backoff retry.

    Args:
        fn: No-arg callable (e.g. store.init_schema)
        max_retries: Number of retries after the initial attempt
        retriable: Predicate(exc) -> True if we should retry; default: ConnectivityError
        operation_name: Label for logging

    Raises:
        The last exception if retries are exhausted or it is not retriable
    """
    if retriable is None:
        retriable = is_retriable_default

    for attempt in range(max_retries + 1):
        try:
            return fn()
        except Exception as e:
            if attempt == max_retries or not retriable(e):
                logger.warning(
                    f"{operation_name}: attempt {attempt + 1}/{max_retries + 1} failed: {e}; "
                    f"{'exhausted retries' if attempt == max_retries else 'not retriable'}"
                )
                raise
            delay = backoff_delay(attempt + 1, backoff_base, max_backoff, jitter)
            logger.info(f"{operation_name}: attempt {attempt + 1} failed ({e}), retrying in {delay:.1f}s")
            sleep(delay)

    raise RuntimeError(f"{operation_name}: unexpected retry loop exit")
