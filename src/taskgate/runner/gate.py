"""
runner/gate.py — Per-lane concurrency gate

Counts running items against a limit. release() notifies the owning
runner through on_release so the lane's queue is pumped again.
"""

from __future__ import annotations

from typing import Callable, Optional


class ConcurrencyGate:

    def __init__(self, limit: int, on_release: Optional[Callable[[], None]] = None) -> None:
        self._limit = validate_limit(limit)
        self._running = 0
        self._on_release = on_release

    def __repr__(self) -> str:
        return f"<ConcurrencyGate running={self._running} limit={self._limit}>"

    @property
    def running(self) -> int:
        return self._running

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def saturated(self) -> bool:
        return self._running >= self._limit

    def try_admit(self) -> bool:
        if self._running >= self._limit:
            return False
        self._running += 1
        return True

    def release(self) -> None:
        if self._running <= 0:
            raise RuntimeError("ConcurrencyGate.release() called with nothing running")
        self._running -= 1
        if self._on_release is not None:
            self._on_release()

    def set_limit(self, limit: int) -> None:
        """
        Change the limit. Running items are unaffected; a lower limit only
        blocks new admissions until enough of them finish.
        """
        grew = validate_limit(limit) > self._limit
        self._limit = limit
        if grew and self._on_release is not None:
            self._on_release()


def validate_limit(limit: int) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValueError(f"concurrency limit must be an integer >= 1, got {limit!r}")
    return limit
