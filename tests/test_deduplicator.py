"""
Tests for CallDeduplicator

Tests cover:
- Session reuse within the TTL, with cost saved reported
- Expiry and sweep with an injected clock
- Coalescing onto an in-flight fetch, and giving up on a slow one
- Failed fetches are not cached as sessions
"""

import threading
import time

import pytest

from vehicle_completion.services.deduplicator import (
    CallDeduplicator,
    SOURCE_COALESCED,
    SOURCE_NETWORK,
    SOURCE_SESSION,
)
from vehicle_completion.services.errors import LockTimeoutError, TIMEOUT_ERROR

from factories import FakeFetcher, VRM


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestSessions:

    def test_second_call_within_ttl_reuses_session(self, fake_fetcher, clock):
        dedup = CallDeduplicator(fake_fetcher, ttl_seconds=300, clock=clock)

        first = dedup.fetch(VRM)
        clock.advance(120)
        second = dedup.fetch(VRM)

        assert len(fake_fetcher.calls) == 1
        assert first.source == SOURCE_NETWORK
        assert first.deduplicated is False
        assert second.source == SOURCE_SESSION
        assert second.deduplicated is True
        assert second.cost_saved == 2.01
        assert second.result is first.result
        assert dedup.stats()["total_savings"] == 2.01

    def test_expired_session_refetches(self, fake_fetcher, clock):
        dedup = CallDeduplicator(fake_fetcher, ttl_seconds=300, clock=clock)

        dedup.fetch(VRM)
        clock.advance(301)
        again = dedup.fetch(VRM)

        assert len(fake_fetcher.calls) == 2
        assert again.source == SOURCE_NETWORK

    def test_sessions_are_per_vrm(self, fake_fetcher, clock):
        dedup = CallDeduplicator(fake_fetcher, ttl_seconds=300, clock=clock)

        dedup.fetch("AB12CDE")
        dedup.fetch("XY65ZZZ")

        assert fake_fetcher.calls == ["AB12CDE", "XY65ZZZ"]

    def test_sweep_evicts_expired(self, fake_fetcher, clock):
        dedup = CallDeduplicator(fake_fetcher, ttl_seconds=300, clock=clock)
        dedup.fetch("AB12CDE")
        clock.advance(200)
        dedup.fetch("XY65ZZZ")
        clock.advance(150)

        evicted = dedup.sweep()

        assert evicted == 1
        assert dedup.stats()["active_sessions"] == 1


class TestCoalescing:

    def test_concurrent_callers_share_one_fetch(self):
        gate = threading.Event()
        fetcher = FakeFetcher(gate=gate)
        dedup = CallDeduplicator(fetcher, ttl_seconds=300)
        results = {}

        def call(name):
            results[name] = dedup.fetch(VRM)

        owner = threading.Thread(target=call, args=("owner",))
        owner.start()
        assert fetcher.entered.wait(timeout=5)

        joiner = threading.Thread(target=call, args=("joiner",))
        joiner.start()
        time.sleep(0.2)
        gate.set()
        owner.join(timeout=5)
        joiner.join(timeout=5)

        assert len(fetcher.calls) == 1
        assert results["owner"].source == SOURCE_NETWORK
        assert results["joiner"].source in (SOURCE_COALESCED, SOURCE_SESSION)
        assert results["joiner"].result is results["owner"].result

    def test_coalesced_wait_past_timeout_is_a_lock_timeout(self):
        gate = threading.Event()
        fetcher = FakeFetcher(gate=gate)
        dedup = CallDeduplicator(fetcher, ttl_seconds=300, wait_timeout=0.1)
        owner = threading.Thread(target=dedup.fetch, args=(VRM,))
        owner.start()

        try:
            assert fetcher.entered.wait(timeout=5)
            with pytest.raises(LockTimeoutError) as excinfo:
                dedup.fetch(VRM)
        finally:
            gate.set()
            owner.join(timeout=5)

        assert excinfo.value.vrm == VRM
        assert excinfo.value.code == TIMEOUT_ERROR
        assert len(fetcher.calls) == 1


class TestFailures:

    def test_failed_fetch_propagates_and_is_not_cached(self, clock):
        calls = []

        def failing(vrm):
            calls.append(vrm)
            raise RuntimeError("provider client crashed")

        dedup = CallDeduplicator(failing, ttl_seconds=300, clock=clock)

        with pytest.raises(RuntimeError):
            dedup.fetch(VRM)
        with pytest.raises(RuntimeError):
            dedup.fetch(VRM)

        assert len(calls) == 2
        assert dedup.stats()["pending_calls"] == 0
        assert dedup.stats()["active_sessions"] == 0
