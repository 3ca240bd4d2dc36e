"""
CheckCarDetails Provider Client

Issues the fixed set of vehicle-data sub-calls for a VRM in parallel. Each
sub-call has a declared cost, its own HTTP timeout, a RetryPolicy and runs
through the provider circuit breaker.

A failing sub-call never fails the fetch: its slot is filled from the cache
entry when one exists, else from a generated payload, else left empty, and
the failure is recorded as an error entry.
"""

import contextvars
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

import httpx
import pybreaker
import structlog

from vehicle_completion.config import Settings, settings as default_settings
from vehicle_completion.models.canonical import CanonicalVehicleData
from vehicle_completion.services.errors import (
    ProviderCallError,
    ProviderPermanentError,
    ProviderTransientError,
)
from vehicle_completion.services.fallback import FallbackSynthesizer
from vehicle_completion.services.monitoring.circuit_breakers import get_provider_breaker
from vehicle_completion.services.monitoring.cost_tracker import ApiCallLedger
from vehicle_completion.services.monitoring.error_tracking import add_breadcrumb
from vehicle_completion.services.retry import RetryPolicy

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProviderEndpoint:
    name: str
    path: str
    cost: float
    sends_mileage: bool = False


ENDPOINTS: Tuple[ProviderEndpoint, ...] = (
    ProviderEndpoint("vehicleSpecs", "Vehiclespecs", 0.05),
    ProviderEndpoint("vehicleHistory", "carhistorycheck", 1.82),
    ProviderEndpoint("motHistory", "mot", 0.02),
    ProviderEndpoint("valuation", "vehiclevaluation", 0.12, sends_mileage=True),
)

# Provider error bodies that will not change on retry
NON_RETRYABLE_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"unauthorized",
        r"forbidden",
        r"invalid.*key",
        r"invalid.*vrm",
        r"not found",
        r"bad request",
    )
]

PERMANENT_STATUS_REASONS = {
    400: "Bad request - invalid VRM",
    401: "API authentication failed (unauthorized)",
    403: "API access forbidden",
    404: "Vehicle not found in API",
    422: "Invalid VRM format",
}


@dataclass
class ProviderCallResult:
    """Outcome of one sub-call. Never persisted directly."""
    endpoint: str
    cost: float
    success: bool
    payload: Optional[dict] = None
    error: Optional[ProviderCallError] = None
    latency_ms: int = 0
    attempts: int = 0
    fallback_source: Optional[str] = None  # "cache" or "generated"


@dataclass
class ProviderFetchResult:
    """All sub-call outcomes for one VRM."""
    vrm: str
    calls: Dict[str, ProviderCallResult] = field(default_factory=dict)
    total_cost: float = 0.0
    errors: List[dict] = field(default_factory=list)
    success_rate: float = 0.0

    @property
    def payloads(self) -> Dict[str, Optional[dict]]:
        """endpoint -> payload (real or fallback), None for empty slots."""
        return {name: call.payload for name, call in self.calls.items()}

    @property
    def cost_breakdown(self) -> dict:
        return {
            "total": self.total_cost,
            "endpoints": {
                name: call.cost if call.success else 0.0
                for name, call in self.calls.items()
            },
        }

    @property
    def all_failed(self) -> bool:
        return bool(self.calls) and not any(call.success for call in self.calls.values())


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, ProviderTransientError)


def classify_error_body(endpoint: str, message: str) -> ProviderCallError:
    """Classify an error message returned inside a 200 response body."""
    if any(pattern.search(message) for pattern in NON_RETRYABLE_PATTERNS):
        return ProviderPermanentError(endpoint, message)
    return ProviderTransientError(endpoint, message)


class ProviderClient:
    """
    Parallel, retrying, circuit-broken client for the vehicle data provider.

    Collaborators are injectable so tests can pass an httpx.MockTransport
    client, a fresh breaker and a no-op sleep.
    """

    def __init__(
        self,
        http_client: Optional[httpx.Client] = None,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        fallback: Optional[FallbackSynthesizer] = None,
        cache_lookup: Optional[Callable[[str], Optional[CanonicalVehicleData]]] = None,
        ledger: Optional[ApiCallLedger] = None,
        config: Settings = default_settings,
        endpoints: Tuple[ProviderEndpoint, ...] = ENDPOINTS
    ):
        """
        Args:
            http_client: Pre-configured client (default: one bound to the
                provider base URL with the configured timeout)
            breaker: Circuit breaker (default: shared provider breaker)
            retry_policy: Per sub-call retry policy (default from settings)
            fallback: Fallback synthesizer for failed slots
            cache_lookup: VRM -> cached canonical record of any age, used to
                fill failed slots
            ledger: Cost ledger receiving one entry per sub-call
            config: Settings
            endpoints: Sub-calls to issue
        """
        self.config = config
        self.http_client = http_client or httpx.Client(
            base_url=config.provider_base_url,
            timeout=config.provider_timeout_seconds
        )
        self.breaker = breaker or get_provider_breaker()
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=config.provider_max_attempts,
            base_delay=config.provider_backoff_base_seconds,
            max_delay=config.provider_backoff_max_seconds
        )
        self.fallback = fallback or FallbackSynthesizer()
        self.cache_lookup = cache_lookup
        self.ledger = ledger or ApiCallLedger(config)
        self.endpoints = endpoints
        self.logger = logger.bind(service="provider_client")

        if not config.provider_api_key:
            self.logger.warning("provider_api_key_missing")

    def close(self) -> None:
        self.http_client.close()

    def fetch_all(self, vrm: str) -> ProviderFetchResult:
        """
        Issue every sub-call for `vrm` in parallel.

        Never raises for sub-call failures; see ProviderFetchResult.errors.
        """
        started = time.monotonic()
        deadline = self.retry_policy.clock() + self.config.provider_fetch_deadline_seconds
        result = ProviderFetchResult(vrm=vrm)

        with ThreadPoolExecutor(max_workers=len(self.endpoints), thread_name_prefix="provider") as pool:
            futures = {
                endpoint.name: pool.submit(
                    contextvars.copy_context().run, self._call_endpoint, vrm, endpoint, deadline
                )
                for endpoint in self.endpoints
            }
            for endpoint in self.endpoints:
                result.calls[endpoint.name] = futures[endpoint.name].result()

        failed = [call for call in result.calls.values() if not call.success]
        if failed:
            self._fill_failed_slots(vrm, failed)

        successes = len(result.calls) - len(failed)
        result.total_cost = round(sum(call.cost for call in result.calls.values() if call.success), 2)
        result.success_rate = round(successes / len(result.calls) * 100, 1) if result.calls else 0.0
        result.errors = [self._error_entry(call) for call in failed]

        if result.errors:
            self.ledger.record_failure_report(vrm, result.errors)

        self.logger.info(
            "provider_fetch_complete",
            vrm=vrm,
            total_cost=result.total_cost,
            success_rate=result.success_rate,
            failed_endpoints=[call.endpoint for call in failed],
            duration_ms=int((time.monotonic() - started) * 1000)
        )
        return result

    def _call_endpoint(self, vrm: str, endpoint: ProviderEndpoint, deadline: float) -> ProviderCallResult:
        started = time.monotonic()
        outcome = self.retry_policy.run(
            lambda: self.breaker.call(self._request, vrm, endpoint, self._attempt_timeout(deadline)),
            is_retryable,
            label=endpoint.name,
            deadline=deadline
        )
        latency_ms = int((time.monotonic() - started) * 1000)

        if outcome.succeeded:
            call = ProviderCallResult(
                endpoint=endpoint.name,
                cost=endpoint.cost,
                success=True,
                payload=outcome.value,
                latency_ms=latency_ms,
                attempts=outcome.attempts
            )
        else:
            call = ProviderCallResult(
                endpoint=endpoint.name,
                cost=0.0,
                success=False,
                error=self._as_provider_error(endpoint, outcome.error),
                latency_ms=latency_ms,
                attempts=outcome.attempts
            )

        self.ledger.record_call(
            vrm=vrm,
            endpoint=endpoint.name,
            cost=endpoint.cost,
            success=call.success,
            latency_ms=latency_ms,
            error=call.error.reason if call.error else None,
            attempts=call.attempts
        )
        add_breadcrumb(
            category="provider",
            message=f"{endpoint.name} {'ok' if call.success else 'failed'}",
            level="info" if call.success else "warning",
            data={"vrm": vrm, "latency_ms": latency_ms, "attempts": call.attempts}
        )
        return call

    def _attempt_timeout(self, deadline: float) -> float:
        """Per-attempt HTTP timeout, cut short so no attempt runs past the fetch deadline."""
        remaining = deadline - self.retry_policy.clock()
        return max(min(self.config.provider_timeout_seconds, remaining), 0.01)

    def _request(self, vrm: str, endpoint: ProviderEndpoint, timeout: float) -> dict:
        """One HTTP attempt. Raises ProviderTransientError / ProviderPermanentError."""
        params = {"apikey": self.config.provider_api_key or "", "vrm": vrm}
        if endpoint.sends_mileage:
            params["mileage"] = self.config.valuation_mileage

        try:
            response = self.http_client.get(
                f"/vehicledata/{endpoint.path}",
                params=params,
                timeout=timeout
            )
        except httpx.TimeoutException as e:
            raise ProviderTransientError(endpoint.name, f"API request timeout: {e}") from e
        except httpx.TransportError as e:
            raise ProviderTransientError(endpoint.name, f"API server unreachable (network): {e}") from e

        status = response.status_code
        if status in PERMANENT_STATUS_REASONS:
            raise ProviderPermanentError(endpoint.name, PERMANENT_STATUS_REASONS[status], status)
        if status == 429:
            raise ProviderTransientError(endpoint.name, "API rate limit exceeded", status)
        if status >= 500:
            raise ProviderTransientError(endpoint.name, f"API server error (HTTP {status})", status)
        if status >= 400:
            raise ProviderPermanentError(endpoint.name, f"HTTP {status}", status)

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderTransientError(endpoint.name, "Invalid JSON response", status) from e

        if not isinstance(body, dict):
            raise ProviderTransientError(endpoint.name, "Unexpected response shape", status)

        error_message = body.get("error") or body.get("Error")
        if error_message:
            raise classify_error_body(endpoint.name, str(error_message))

        return body

    @staticmethod
    def _as_provider_error(endpoint: ProviderEndpoint, error: Optional[BaseException]) -> ProviderCallError:
        if isinstance(error, ProviderCallError):
            return error
        if isinstance(error, pybreaker.CircuitBreakerError):
            return ProviderTransientError(endpoint.name, "Circuit open - provider temporarily unavailable")
        return ProviderTransientError(endpoint.name, f"Unexpected error: {error}")

    def _fill_failed_slots(self, vrm: str, failed: List[ProviderCallResult]) -> None:
        cached = self.cache_lookup(vrm) if self.cache_lookup else None

        for call in failed:
            payload = None
            if cached is not None:
                payload = self.fallback.payload_from_cache(call.endpoint, cached)
                if payload is not None:
                    call.fallback_source = "cache"
            if payload is None:
                payload = self.fallback.generated_payload(call.endpoint, vrm)
                if payload is not None:
                    call.fallback_source = "generated"
            call.payload = payload

            self.logger.warning(
                "provider_slot_fallback",
                vrm=vrm,
                endpoint=call.endpoint,
                fallback_source=call.fallback_source or "empty",
                reason=call.error.reason if call.error else None
            )

    @staticmethod
    def _error_entry(call: ProviderCallResult) -> dict:
        error = call.error
        return {
            "endpoint": call.endpoint,
            "category": error.category.value if error else None,
            "reason": error.reason if error else None,
            "message": str(error) if error else None,
            "status_code": error.status_code if error else None,
            "attempts": call.attempts,
            "fallback_source": call.fallback_source,
            "timestamp": datetime.now(timezone.utc),
        }
