"""
Bounded exponential backoff for transient storage failures.

Only database-level errors are retried. Domain errors (validation,
not-found, conflict) propagate on the first attempt.
"""

from dataclasses import dataclass
from typing import Callable, Optional, TypeVar
import logging
import time

from sqlalchemy.exc import DBAPIError, OperationalError

from .exceptions import InternalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (OperationalError, DBAPIError)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times and how patiently to retry a storage call."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.1
    max_delay_seconds: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay before the retry that follows the given zero-based attempt."""
        return min(self.base_delay_seconds * (2**attempt), self.max_delay_seconds)


def retry_call(
    fn: Callable[[], T],
    policy: RetryPolicy,
    description: str = "storage call",
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """
    Call ``fn`` and retry it on transient storage errors.

    Args:
        fn: Zero-argument callable to invoke
        policy: Retry policy
        description: Label used in log messages
        sleep: Sleep function (injectable for tests)

    Returns:
        Whatever ``fn`` returns

    Raises:
        InternalError: If every attempt failed with a transient error
    """
    sleep = sleep or time.sleep
    last_error: Optional[Exception] = None

    for attempt in range(policy.max_attempts):
        try:
            return fn()
        except TRANSIENT_ERRORS as e:
            last_error = e
            if attempt + 1 >= policy.max_attempts:
                break
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{description} failed (attempt {attempt + 1}/{policy.max_attempts}), "
                f"retrying in {delay:.2f}s: {e}"
            )
            sleep(delay)

    logger.error(f"{description} failed after {policy.max_attempts} attempts: {last_error}")
    raise InternalError(
        f"{description} failed after {policy.max_attempts} attempts: {last_error}"
    ) from last_error
