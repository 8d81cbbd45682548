"""Timed polling with an injectable clock.

The reader signals finger placement and capture completion only through
status frames, so both waits are "ask again every N ms until an answer or
a deadline".  ``poll_until`` is that loop.  Time is measured with the
supplied ``clock``/``sleep`` pair so tests can run it on simulated time.
"""
from __future__ import annotations

import time
from typing import Callable, Optional, TypeVar

from .core.errors import CaptureCancelled

T = TypeVar('T')


class PollTimeout(Exception):
    """The deadline passed before the check produced a result."""

    def __init__(self, elapsed_s: float, attempts: int):
        self.elapsed_s = elapsed_s
        self.attempts = attempts
        super().__init__(f"No result after {attempts} polls ({elapsed_s:.3f}s)")


def poll_until(
    check: Callable[[], Optional[T]],
    timeout_s: float,
    interval_s: float,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> T:
    """Call *check* every *interval_s* until it returns something other than None.

    Check ``k`` runs at roughly ``k * interval_s`` after the start; once the
    elapsed wall-clock time reaches *timeout_s* no further check is made.

    Raises:
        PollTimeout: Deadline reached.
        CaptureCancelled: *should_cancel* returned True before a check.
        ValueError: Non-positive timeout (waits are never unbounded).
    """
    if timeout_s <= 0:
        raise ValueError("poll timeout must be positive")

    start = clock()
    attempts = 0
    while True:
        if should_cancel is not None and should_cancel():
            raise CaptureCancelled()
        attempts += 1
        result = check()
        if result is not None:
            return result
        sleep(interval_s)
        elapsed = clock() - start
        if elapsed >= timeout_s:
            raise PollTimeout(elapsed, attempts)
