"""Retry scheduling for verifier reconciliation."""
from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

JITTER_MODES = ("none", "full", "equal")


@dataclass(frozen=True)
class BackoffPolicy:
    base: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 300.0
    jitter: str = "full"

    def without_jitter(self) -> "BackoffPolicy":
        return BackoffPolicy(self.base, self.multiplier, self.max_delay, "none")


def base_delay(attempts: int, policy: BackoffPolicy) -> float:
    """``min(max_delay, base * multiplier ** (attempts - 1))``; attempts below 1 count as 1."""
    exponent = max(attempts, 1) - 1
    if policy.multiplier <= 1.0:
        return min(policy.max_delay, policy.base)
    # stop multiplying once the cap is hit so large attempt counts cannot overflow
    delay = policy.base
    for _ in range(exponent):
        delay *= policy.multiplier
        if delay >= policy.max_delay:
            return policy.max_delay
    return min(policy.max_delay, delay)


def backoff_delay(attempts: int, policy: BackoffPolicy, rng: Optional[random.Random] = None) -> float:
    """Delay in seconds before attempt ``attempts + 1``.

    ``full`` jitter draws uniformly from ``[0, delay]``; ``equal`` jitter keeps
    half the delay and randomises the rest. Pass ``jitter="none"`` (or no rng
    with jitter disabled) for reproducible schedules.
    """
    delay = base_delay(attempts, policy)
    if policy.jitter == "none":
        return delay
    rng = rng or random.Random()
    if policy.jitter == "full":
        return rng.uniform(0.0, delay)
    return delay / 2.0 + rng.uniform(0.0, delay / 2.0)


def next_attempt_at(now: datetime, attempts: int, policy: BackoffPolicy, rng: Optional[random.Random] = None) -> datetime:
    return now + timedelta(seconds=backoff_delay(attempts, policy, rng))


__all__ = ["JITTER_MODES", "BackoffPolicy", "backoff_delay", "base_delay", "next_attempt_at"]
