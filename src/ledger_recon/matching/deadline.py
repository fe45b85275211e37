"""Cooperative time limit for one batch of matching work."""

from typing import Callable, Optional
import time

from ..utils.exceptions import BatchTimeoutError


class Deadline:
    """
    Expires ``seconds`` after creation.

    The matching pipeline calls ``check()`` between statement transactions,
    so a slow batch stops at the next transaction boundary without leaving
    partial state behind.
    """

    def __init__(self, seconds: float, clock: Optional[Callable[[], float]] = None):
        self.clock = clock or time.monotonic
        self.seconds = seconds
        self.expires_at = self.clock() + seconds

    @property
    def remaining(self) -> float:
        return self.expires_at - self.clock()

    def check(self) -> None:
        if self.clock() >= self.expires_at:
            raise BatchTimeoutError(f"Batch exceeded its {self.seconds:.1f}s time limit")


class NoDeadline(Deadline):
    """A deadline that never expires."""

    def __init__(self) -> None:
        self.clock = time.monotonic
        self.seconds = float("inf")
        self.expires_at = float("inf")

    def check(self) -> None:
        return None
