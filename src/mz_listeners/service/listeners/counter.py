"""Thread-safe progress tally shared by pool workers."""

from __future__ import annotations

import threading
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ProgressSnapshot:
    attempted: int
    succeeded: int

    @property
    def failed(self) -> int:
        return self.attempted - self.succeeded


class ProgressCounter:
    """Counts attempted and successful operations against an optional target.

    Workers reserve a slot with `try_begin()` before starting an operation and
    then either `increment()` (success) or `abandon()` (failure). Slots held by
    in-flight operations count towards the target, so with a target of T the
    counter never records more than T successes no matter how many workers
    race for it. A failed operation gives its slot back for another attempt.
    """

    def __init__(self, target: int | None = None) -> None:
        if target is not None and target < 0:
            raise ValueError("target must be >= 0")
        self._target = target
        self._lock = threading.Lock()
        self._attempted = 0
        self._succeeded = 0
        self._in_flight = 0

    @property
    def target(self) -> int | None:
        return self._target

    def try_begin(self) -> bool:
        with self._lock:
            if self._target is not None and self._succeeded + self._in_flight >= self._target:
                return False
            self._attempted += 1
            self._in_flight += 1
            return True

    def increment(self) -> int:
        """Record a success and return the new success count."""

        with self._lock:
            if self._in_flight > 0:
                self._in_flight -= 1
            else:
                # Success reported without a reservation (e.g. a one-shot call).
                self._attempted += 1
            self._succeeded += 1
            return self._succeeded

    def abandon(self) -> None:
        with self._lock:
            if self._in_flight == 0:
                raise RuntimeError("abandon() called without a matching try_begin()")
            self._in_flight -= 1

    def total(self) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot(attempted=self._attempted, succeeded=self._succeeded)

    @property
    def reached(self) -> bool:
        with self._lock:
            return self._target is not None and self._succeeded >= self._target
