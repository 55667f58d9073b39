"""Reconnect delay policy for the subscription loop."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable, Optional

FIXED = "fixed"
EXPONENTIAL = "exponential"
STRATEGIES = (FIXED, EXPONENTIAL)


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Compute how long to wait before reconnect attempt ``n``.

    ``attempt`` counts consecutive failed sessions starting at 1. With the
    fixed strategy every attempt waits ``base_delay``. With the exponential
    strategy the delay doubles per attempt up to ``max_delay``. ``jitter`` is
    a fraction of the computed delay that is randomly added or subtracted.
    ``max_retries`` of None means the loop never gives up.
    """

    base_delay: float = 30.0
    strategy: str = FIXED
    max_delay: float = 300.0
    jitter: float = 0.0
    max_retries: Optional[int] = None
    rand: Callable[[], float] = field(default=random.random, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.strategy not in STRATEGIES:
            raise ValueError(f"Unknown backoff strategy: {self.strategy}")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be between 0 and 1")
        if self.max_retries is not None and self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")

    def delay(self, attempt: int) -> float:
        if self.strategy == EXPONENTIAL:
            exponent = max(attempt - 1, 0)
            # cap the exponent so huge attempt counts cannot overflow
            delay = min(self.base_delay * (2 ** min(exponent, 32)), max(self.max_delay, self.base_delay))
        else:
            delay = self.base_delay
        if self.jitter:
            spread = delay * self.jitter
            delay += (self.rand() * 2 - 1) * spread
        return max(0.0, delay)

    def exhausted(self, failures: int) -> bool:
        return self.max_retries is not None and failures >= self.max_retries
