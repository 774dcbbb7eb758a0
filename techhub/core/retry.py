"""Backoff utilities for the background loops.

Two independent schedules live here:

- ``ExponentialBackoff``: stateful, used by a loop to pace itself after
  infrastructure failures (database unreachable, commit errors). It doubles
  on every failure and is reset after a clean iteration.
- ``capped_exponential_delay``: stateless, computes how far in the future a
  failed unit of work should be retried given how many times it already
  failed. Used for per-task delivery retries.
"""

import random
from dataclasses import dataclass, field


@dataclass
class ExponentialBackoff:
    """Doubling delay with proportional jitter and a hard cap."""

    initial: float = 1.0
    maximum: float = 120.0
    jitter_ratio: float = 0.2
    rng: random.Random = field(default_factory=random.Random)
    current: float = field(init=False)

    def __post_init__(self) -> None:
        self.current = self.initial

    def next_delay(self) -> float:
        """Return the delay to sleep now and advance the schedule.

        The returned value is ``current * (1 + j)`` with ``j`` drawn from
        ``[0, jitter_ratio]``, so synchronized failures across instances
        spread out.
        """
        delay = self.current * (1 + self.rng.uniform(0, self.jitter_ratio))
        self.current = min(self.current * 2, self.maximum)
        return delay

    def reset(self) -> None:
        self.current = self.initial


def capped_exponential_delay(
    attempt: int,
    base_seconds: float = 60.0,
    max_multiplier: int = 32,
    jitter_seconds: float = 30.0,
    rng: random.Random | None = None,
) -> float:
    """
    Compute a retry delay: min(base * 2^attempt, base * max_multiplier) + jitter.

    With the defaults this yields 1, 2, 4, 8, 16 and 32 minute base delays
    for attempts 0 through 5, capped at 32 minutes, plus up to 30 seconds of
    random jitter.

    Args:
        attempt: Number of failures already recorded (0 for the first retry)
        base_seconds: Delay for attempt 0
        max_multiplier: Cap, as a multiple of base_seconds
        jitter_seconds: Upper bound of the uniform jitter added on top
        rng: Random source, mostly for deterministic tests

    Returns:
        Delay in seconds
    """
    rng = rng or random.Random()
    multiplier = min(2 ** max(0, attempt), max_multiplier)
    return base_seconds * multiplier + rng.uniform(0, jitter_seconds)
