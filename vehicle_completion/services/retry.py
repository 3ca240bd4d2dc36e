"""
Retry Policy
Bounded exponential backoff for provider sub-calls.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RetryOutcome:
    """Typed result of running an operation under a RetryPolicy."""
    succeeded: bool
    value: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0


@dataclass
class RetryPolicy:
    """
    Exponential backoff: delay before attempt n+1 is
    min(base_delay * 2**(n-1), max_delay).

    With the defaults (3 attempts, 1s base, 10s cap) a failing operation is
    tried at t=0, t=1s and t=3s.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def delay_for(self, attempt: int) -> float:
        """Backoff after the given (1-based) failed attempt."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    def delays(self) -> List[float]:
        return [self.delay_for(attempt) for attempt in range(1, self.max_attempts)]

    def run(
        self,
        operation: Callable[[], Any],
        is_retryable: Callable[[BaseException], bool],
        label: str = "operation",
        deadline: Optional[float] = None
    ) -> RetryOutcome:
        """
        Run `operation` until it succeeds, fails non-retryably, or attempts
        run out. Exceptions are captured in the outcome, never raised.

        With a `deadline` (a `clock` reading) no retry is started whose
        backoff would end at or after it.
        """
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return RetryOutcome(succeeded=True, value=operation(), attempts=attempt)
            except Exception as e:
                last_error = e
                retryable = is_retryable(e)
                if not retryable or attempt == self.max_attempts:
                    logger.warning(
                        "retry_gave_up",
                        label=label,
                        attempt=attempt,
                        retryable=retryable,
                        error=str(e)
                    )
                    return RetryOutcome(succeeded=False, error=e, attempts=attempt)

                delay = self.delay_for(attempt)
                if deadline is not None and self.clock() + delay >= deadline:
                    logger.warning(
                        "retry_deadline_reached",
                        label=label,
                        attempt=attempt,
                        error=str(e)
                    )
                    return RetryOutcome(succeeded=False, error=e, attempts=attempt)

                logger.info(
                    "retry_scheduled",
                    label=label,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    delay_seconds=delay,
                    error=str(e)
                )
                self.sleep(delay)

        return RetryOutcome(succeeded=False, error=last_error, attempts=self.max_attempts)
