"""
Circuit Breaker for the Vehicle Data Provider

Opens after consecutive transient failures so a provider outage degrades to
fallback data immediately instead of paying the full retry/timeout budget
on every sub-call. Permanent errors (bad key, unknown VRM) say nothing about
provider health and are excluded from the failure count.
"""

from typing import Optional

import pybreaker
import structlog

from vehicle_completion.config import settings
from vehicle_completion.services.errors import ProviderPermanentError
from vehicle_completion.services.monitoring.error_tracking import capture_message

logger = structlog.get_logger(__name__)


class ProviderBreakerListener(pybreaker.CircuitBreakerListener):
    """Logs state changes and raises a Sentry message when the circuit opens."""

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state: pybreaker.CircuitBreakerState, new_state: pybreaker.CircuitBreakerState):
        logger.warning(
            "circuit_breaker_state_change",
            circuit_breaker=cb.name,
            old_state=old_state.name if old_state else None,
            new_state=new_state.name,
            fail_count=cb.fail_counter
        )

        if new_state.name == pybreaker.STATE_OPEN:
            capture_message(
                f"Circuit breaker opened: {cb.name} after {cb.fail_counter} failures",
                level="error"
            )


def create_provider_breaker(
    fail_max: Optional[int] = None,
    reset_timeout: Optional[int] = None
) -> pybreaker.CircuitBreaker:
    """
    Create a provider circuit breaker with configured thresholds.

    Args:
        fail_max: Consecutive failures before opening (default from settings)
        reset_timeout: Seconds before a half-open probe (default from settings)
    """
    return pybreaker.CircuitBreaker(
        name="checkcardetails_api",
        fail_max=fail_max or settings.circuit_breaker_fail_max,
        reset_timeout=reset_timeout or settings.circuit_breaker_reset_timeout,
        exclude=[ProviderPermanentError],
        listeners=[ProviderBreakerListener()]
    )


# Module-level instance (lazy initialization)
_provider_breaker: Optional[pybreaker.CircuitBreaker] = None


def get_provider_breaker() -> pybreaker.CircuitBreaker:
    """
    Shared breaker for the provider.

    Lazy initializes on first access to avoid import-time side effects.
    """
    global _provider_breaker

    if _provider_breaker is None:
        _provider_breaker = create_provider_breaker()
        logger.info("circuit_breaker_initialized", circuit_breaker=_provider_breaker.name)
    return _provider_breaker


# Re-export exception for caller handling
from pybreaker import CircuitBreakerError  # noqa: E402

__all__ = [
    "ProviderBreakerListener",
    "create_provider_breaker",
    "get_provider_breaker",
    "CircuitBreakerError",
]
