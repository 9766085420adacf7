"""Bounded retry helper shared by every polling and retrying operation."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
import math
import time
from typing import Generic, TypeVar

from core.logging import logger as LOGGER


T = TypeVar("T")


class DelayStrategy(str, Enum):
    """How the pause between attempts grows."""

    FIXED = "fixed"
    LINEAR = "linear"


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and pause schedule for :func:`retry`."""

    attempts: int
    delay_s: float = 0.0
    strategy: DelayStrategy = DelayStrategy.FIXED

    def delay_after(self, attempt: int) -> float:
        """Return the pause after a failed 1-based ``attempt``."""

        if self.strategy is DelayStrategy.LINEAR:
            return self.delay_s * attempt
        return self.delay_s


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of a bounded retry run."""

    succeeded: bool
    attempts: int
    value: T | None = None


def retry(
    action: Callable[[int], T],
    policy: RetryPolicy,
    *,
    until: Callable[[T], bool] = bool,
    sleep: Callable[[float], None] = time.sleep,
    on_attempt: Callable[[int], None] | None = None,
    label: str = "",
) -> RetryOutcome[T]:
    """Call ``action(attempt)`` until ``until(value)`` holds or attempts run out.

    ``on_attempt`` runs before every attempt and before every pause, which is
    where callers refresh the boot heartbeat. No pause follows the final
    attempt.
    """

    value: T | None = None
    attempts = max(policy.attempts, 1)
    for attempt in range(1, attempts + 1):
        if on_attempt is not None:
            on_attempt(attempt)
        value = action(attempt)
        if until(value):
            return RetryOutcome(succeeded=True, attempts=attempt, value=value)
        if attempt < attempts:
            pause = policy.delay_after(attempt)
            if label:
                LOGGER.info(
                    "[Retry] %s: attempt %d/%d failed, retrying in %.0fs",
                    label,
                    attempt,
                    attempts,
                    pause,
                )
            if on_attempt is not None:
                on_attempt(attempt)
            if pause > 0:
                sleep(pause)
    return RetryOutcome(succeeded=False, attempts=attempts, value=value)


def wait_until(
    predicate: Callable[[], bool],
    *,
    timeout_s: float,
    interval_s: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
    on_poll: Callable[[int], None] | None = None,
    label: str = "",
) -> bool:
    """Poll ``predicate`` at a fixed interval for at most ``timeout_s``."""

    interval_s = max(interval_s, 0.1)
    attempts = int(math.ceil(timeout_s / interval_s)) + 1
    outcome = retry(
        lambda _attempt: predicate(),
        RetryPolicy(attempts=attempts, delay_s=interval_s),
        sleep=sleep,
        on_attempt=on_poll,
    )
    if not outcome.succeeded and label:
        LOGGER.warning("[Retry] %s not ready after %.0fs", label, timeout_s)
    return outcome.succeeded
