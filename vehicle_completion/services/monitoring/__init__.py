"""
Monitoring Module
Exports for structured logging, circuit breaker, error tracking and cost accounting
"""

from vehicle_completion.services.monitoring.logging import setup_logging, CorrelationJsonFormatter
from vehicle_completion.services.monitoring.circuit_breakers import (
    get_provider_breaker,
    create_provider_breaker,
    CircuitBreakerError,
    ProviderBreakerListener,
)
from vehicle_completion.services.monitoring.cost_tracker import ApiCallLedger, calculate_severity

__all__ = [
    "setup_logging",
    "CorrelationJsonFormatter",
    "get_provider_breaker",
    "create_provider_breaker",
    "CircuitBreakerError",
    "ProviderBreakerListener",
    "ApiCallLedger",
    "calculate_severity",
]
