"""
runner/retry.py — Retry backoff policy

A failed attempt with budget left is re-enqueued as a new queue entry.
RetryBackoff only decides how long the runner waits before re-enqueueing.
The default is no delay; any delay is a policy choice, not a guarantee.
"""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryBackoff:
    """
    Exponential backoff with optional jitter.

    Usage:
        backoff = RetryBackoff()                            # no delay
        backoff = RetryBackoff(base_delay=0.5, jitter=True) # 0.5s, 1s, 2s, ...
    """
    base_delay: float = 0.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = False

    def __post_init__(self) -> None:
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("backoff delays must be >= 0")
        if self.multiplier < 1:
            raise ValueError("backoff multiplier must be >= 1")

    @property
    def enabled(self) -> bool:
        return self.base_delay > 0 and self.max_delay > 0

    def delay_for_attempt(self, attempt: int) -> float:
        """Return sleep duration (seconds) before the given retry (1-indexed)."""
        if not self.enabled:
            return 0.0
        delay = min(self.base_delay * (self.multiplier ** (max(attempt, 1) - 1)), self.max_delay)
        if self.jitter:
            # [80%, 120%] of the computed delay
            delay *= (0.8 + random.random() * 0.4)
        return delay

    @classmethod
    def from_config(cls, cfg) -> "RetryBackoff":
        """Build from a config.settings.RetryBackoffConfig (or anything shaped like it)."""
        return cls(
            base_delay=getattr(cfg, "base_delay", 0.0),
            max_delay=getattr(cfg, "max_delay", 30.0),
            multiplier=getattr(cfg, "multiplier", 2.0),
            jitter=getattr(cfg, "jitter", False),
        )


NO_BACKOFF = RetryBackoff()
