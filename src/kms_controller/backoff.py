"""Capped exponential backoff for retryable KMS calls.

The policy never sleeps. It only answers "how long until the next attempt",
and the step engine hands that delay back to the harness as a suspend
outcome. Elapsed time is therefore the sum of delays already advised,
tracked per step in the callback context.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass

from .config import Config
from .errors import ErrorCode, HandlerError

RetryFilter = Callable[[HandlerError], bool]


@dataclass(frozen=True)
class CappedExponentialBackoff:
    """Delay generator: min_delay * power**attempt, capped at max_delay.

    Attributes:
        min_delay_seconds: Delay before the first retry.
        max_delay_seconds: Upper bound for any single delay.
        power: Growth factor between consecutive delays.
        timeout_seconds: Budget for the sum of all advised delays.
    """

    min_delay_seconds: float = 1.0
    max_delay_seconds: float = 5.0
    power: float = 1.3
    timeout_seconds: float = 60.0

    @classmethod
    def from_config(cls, config: Config) -> CappedExponentialBackoff:
        return cls(
            min_delay_seconds=config.backoff_min_delay_seconds,
            max_delay_seconds=config.backoff_max_delay_seconds,
            power=config.backoff_power,
            timeout_seconds=config.backoff_timeout_seconds,
        )

    def delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (zero-based), ignoring the budget."""
        return min(self.max_delay_seconds, self.min_delay_seconds * self.power**attempt)

    def next_delay(self, attempt: int, elapsed_seconds: float) -> float | None:
        """Delay before the next retry, or None once the budget is spent.

        Args:
            attempt: Number of retries already advised.
            elapsed_seconds: Sum of delays already advised.

        Returns:
            Seconds to wait, or None if waiting would exceed the timeout.
        """
        delay = self.delay(attempt)
        if elapsed_seconds + delay > self.timeout_seconds:
            return None
        return delay

    def delays(self) -> Iterator[float]:
        """Yield every delay this policy allows, in order."""
        attempt = 0
        elapsed = 0.0
        while (delay := self.next_delay(attempt, elapsed)) is not None:
            yield delay
            attempt += 1
            elapsed += delay


def retry_on(*codes: ErrorCode) -> RetryFilter:
    """Build a retry filter matching errors with any of the given codes."""
    accepted = tuple(codes)

    def matches(error: HandlerError) -> bool:
        return error.code in accepted

    return matches
