"""
Tests for ProviderClient

HTTP is stubbed with httpx.MockTransport; retries use a no-op sleep and each
test gets its own circuit breaker.

Tests cover:
- Parallel sub-calls, cost accounting and request parameters
- Transient vs permanent classification and retry behaviour
- Slot fallback from cache and from the VRM
- All sub-calls timing out
- Circuit breaker short-circuiting
"""

import threading

import httpx
from structlog.testing import capture_logs

from vehicle_completion.config import Settings
from vehicle_completion.models.canonical import CanonicalVehicleData
from vehicle_completion.services.monitoring.circuit_breakers import create_provider_breaker
from vehicle_completion.services.monitoring.cost_tracker import ApiCallLedger
from vehicle_completion.services.provider_client import ENDPOINTS, ProviderClient
from vehicle_completion.services.retry import RetryPolicy

from factories import VRM, hybrid_payloads

PATH_TO_ENDPOINT = {f"/vehicledata/{endpoint.path}": endpoint.name for endpoint in ENDPOINTS}


class Transport:
    """Routes requests by endpoint; records every request."""

    def __init__(self, responder):
        self.responder = responder
        self.requests = []
        self._lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        endpoint = PATH_TO_ENDPOINT[request.url.path]
        with self._lock:
            self.requests.append((endpoint, request))
        return self.responder(endpoint, request)

    def count(self, endpoint):
        return sum(1 for name, _ in self.requests if name == endpoint)


def ok(endpoint, request):
    return httpx.Response(200, json=hybrid_payloads()[endpoint])


def build_client(responder, cache_lookup=None, fail_max=100, endpoints=ENDPOINTS):
    transport = Transport(responder)
    config = Settings(provider_api_key="test-key")
    client = ProviderClient(
        http_client=httpx.Client(transport=httpx.MockTransport(transport), base_url="https://api.test"),
        breaker=create_provider_breaker(fail_max=fail_max, reset_timeout=60),
        retry_policy=RetryPolicy(sleep=lambda seconds: None),
        cache_lookup=cache_lookup,
        ledger=ApiCallLedger(config),
        config=config,
        endpoints=endpoints,
    )
    return client, transport


class TestFetchAll:

    def test_all_sub_calls_succeed(self):
        client, transport = build_client(ok)

        result = client.fetch_all(VRM)

        assert result.errors == []
        assert result.success_rate == 100.0
        assert result.total_cost == 2.01
        assert set(result.payloads) == {"vehicleSpecs", "vehicleHistory", "motHistory", "valuation"}
        assert result.cost_breakdown["endpoints"]["vehicleHistory"] == 1.82
        assert len(transport.requests) == 4

    def test_request_parameters(self):
        client, transport = build_client(ok)

        client.fetch_all(VRM)

        params = {name: dict(request.url.params) for name, request in transport.requests}
        assert params["vehicleSpecs"] == {"apikey": "test-key", "vrm": VRM}
        assert params["valuation"]["mileage"] == "50000"

    def test_every_call_recorded_in_ledger(self):
        client, _ = build_client(ok)

        client.fetch_all(VRM)
        stats = client.ledger.stats()

        assert stats["total_calls"] == 4
        assert stats["total_cost"] == 2.01


class TestFailureClassification:

    def test_permanent_failure_not_retried(self):
        def responder(endpoint, request):
            if endpoint == "vehicleHistory":
                return httpx.Response(404, json={})
            return ok(endpoint, request)

        client, transport = build_client(responder)

        result = client.fetch_all(VRM)

        assert transport.count("vehicleHistory") == 1
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error["endpoint"] == "vehicleHistory"
        assert error["category"] == "provider-permanent"
        assert error["status_code"] == 404
        assert result.total_cost == 0.19
        assert result.success_rate == 75.0

    def test_server_error_retried_until_success(self):
        attempts = {"count": 0}

        def responder(endpoint, request):
            if endpoint == "motHistory":
                attempts["count"] += 1
                if attempts["count"] == 1:
                    return httpx.Response(503)
            return ok(endpoint, request)

        client, transport = build_client(responder)

        result = client.fetch_all(VRM)

        assert result.errors == []
        assert result.calls["motHistory"].attempts == 2
        assert transport.count("motHistory") == 2

    def test_error_body_with_bad_key_is_permanent(self):
        def responder(endpoint, request):
            return httpx.Response(200, json={"error": "Invalid API key"})

        client, transport = build_client(responder)

        result = client.fetch_all(VRM)

        assert len(transport.requests) == 4
        assert {error["category"] for error in result.errors} == {"provider-permanent"}


class TestAllTimeouts:

    def test_four_transient_errors_and_generated_specs(self):
        def responder(endpoint, request):
            raise httpx.ReadTimeout("timed out", request=request)

        client, transport = build_client(responder)

        with capture_logs() as logs:
            result = client.fetch_all(VRM)

        assert result.all_failed is True
        assert result.total_cost == 0.0
        assert result.success_rate == 0.0
        assert len(result.errors) == 4
        assert {error["category"] for error in result.errors} == {"provider-transient"}
        assert all(error["attempts"] == 3 for error in result.errors)
        assert len(transport.requests) == 12

        payloads = result.payloads
        assert payloads["vehicleSpecs"]["VehicleIdentification"]["YearOfManufacture"] == 2012
        assert payloads["valuation"] is None

        reports = [log for log in logs if log["event"] == "provider_failure_report"]
        assert len(reports) == 1
        assert reports[0]["severity"] == "high"
        assert reports[0]["total_errors"] == 4


class TestSlotFallback:

    def test_failed_slot_filled_from_cache(self):
        cached = CanonicalVehicleData(make="TOYOTA", model="PRIUS", fuel_type="Hybrid", year=2012)

        def responder(endpoint, request):
            if endpoint == "vehicleSpecs":
                return httpx.Response(503)
            return ok(endpoint, request)

        client, _ = build_client(responder, cache_lookup=lambda vrm: cached)

        result = client.fetch_all(VRM)

        assert result.payloads["vehicleSpecs"]["_fallback"] == "cache"
        assert result.payloads["vehicleSpecs"]["ModelData"]["Make"] == "TOYOTA"
        assert result.errors[0]["fallback_source"] == "cache"


class TestCircuitBreaker:

    def test_open_circuit_stops_calling_provider(self):
        specs_only = tuple(endpoint for endpoint in ENDPOINTS if endpoint.name == "vehicleSpecs")

        def responder(endpoint, request):
            return httpx.Response(503)

        client, transport = build_client(responder, fail_max=1, endpoints=specs_only)

        first = client.fetch_all(VRM)
        second = client.fetch_all(VRM)

        assert len(transport.requests) == 1
        assert first.errors[0]["category"] == "provider-transient"
        assert "Circuit open" in second.errors[0]["reason"]
