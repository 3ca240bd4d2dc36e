"""
Call Deduplicator

Short-window, in-process de-duplication of provider fetches per VRM:

1. a dedup session younger than the TTL is returned without any network call
2. otherwise a fetch already in flight for the VRM is joined (coalescing)
3. otherwise a new fetch starts, and on completion becomes the new session

N simultaneous requests for one VRM therefore cost one provider round trip.
Sessions are recorded whether the sub-calls succeeded or not, so a provider
outage is not hammered once per request.
"""

import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog

from vehicle_completion.services.errors import LockTimeoutError
from vehicle_completion.services.provider_client import ProviderFetchResult

logger = structlog.get_logger(__name__)

SOURCE_NETWORK = "network"
SOURCE_SESSION = "session"
SOURCE_COALESCED = "coalesced"


@dataclass
class DedupSession:
    timestamp: float
    result: ProviderFetchResult
    total_cost: float


@dataclass
class DedupedFetch:
    """A provider result plus how it was obtained."""
    result: ProviderFetchResult
    source: str
    cost_saved: float = 0.0

    @property
    def deduplicated(self) -> bool:
        return self.source != SOURCE_NETWORK


class CallDeduplicator:
    """
    Owns the dedup-session and in-flight maps for one orchestrator.

    Both maps are plain dicts guarded by one lock; the fetch itself runs
    outside the lock.
    """

    def __init__(
        self,
        fetcher: Callable[[str], ProviderFetchResult],
        ttl_seconds: float = 300,
        wait_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            fetcher: Performs the real provider fetch for a VRM
            ttl_seconds: Session lifetime
            wait_timeout: Max seconds a coalesced caller waits (None: no limit)
            clock: Monotonic time source (injectable for tests)
        """
        self.fetcher = fetcher
        self.ttl_seconds = ttl_seconds
        self.wait_timeout = wait_timeout
        self.clock = clock
        self._sessions: Dict[str, DedupSession] = {}
        self._in_flight: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._total_savings = 0.0
        self._network_fetches = 0
        self.logger = logger.bind(service="deduplicator")

    def fetch(self, vrm: str) -> DedupedFetch:
        """
        Fetch provider data for a VRM, reusing or joining where possible.

        Raises:
            LockTimeoutError: a coalesced caller waited longer than wait_timeout
            Whatever the fetcher raised (for the owner and every coalesced caller)
        """
        with self._lock:
            session = self._sessions.get(vrm)
            if session is not None:
                if self.clock() - session.timestamp < self.ttl_seconds:
                    self._total_savings += session.total_cost
                    self.logger.info(
                        "dedup_session_hit",
                        vrm=vrm,
                        cost_saved=session.total_cost,
                        age_seconds=round(self.clock() - session.timestamp, 1)
                    )
                    return DedupedFetch(session.result, SOURCE_SESSION, session.total_cost)
                del self._sessions[vrm]

            future = self._in_flight.get(vrm)
            owner = future is None
            if owner:
                future = Future()
                self._in_flight[vrm] = future

        if not owner:
            self.logger.info("dedup_call_coalesced", vrm=vrm)
            try:
                result = future.result(timeout=self.wait_timeout)
            except FuturesTimeoutError:
                self.logger.warning("dedup_wait_timeout", vrm=vrm, wait_timeout=self.wait_timeout)
                raise LockTimeoutError(f"Timed out waiting for in-flight provider fetch of {vrm}", vrm)
            with self._lock:
                self._total_savings += result.total_cost
            return DedupedFetch(result, SOURCE_COALESCED, result.total_cost)

        try:
            result = self.fetcher(vrm)
        except BaseException as e:
            with self._lock:
                self._in_flight.pop(vrm, None)
            future.set_exception(e)
            raise

        with self._lock:
            self._sessions[vrm] = DedupSession(
                timestamp=self.clock(),
                result=result,
                total_cost=result.total_cost
            )
            self._in_flight.pop(vrm, None)
            self._network_fetches += 1
        future.set_result(result)

        self.logger.info("dedup_session_recorded", vrm=vrm, total_cost=result.total_cost)
        return DedupedFetch(result, SOURCE_NETWORK, 0.0)

    def sweep(self) -> int:
        """
        Evict expired sessions.

        Returns:
            Number of sessions evicted
        """
        now = self.clock()
        with self._lock:
            expired = [
                vrm for vrm, session in self._sessions.items()
                if now - session.timestamp >= self.ttl_seconds
            ]
            for vrm in expired:
                del self._sessions[vrm]

        if expired:
            self.logger.info("dedup_sweep_complete", evicted=len(expired))
        return len(expired)

    def stats(self) -> dict:
        with self._lock:
            return {
                "active_sessions": len(self._sessions),
                "pending_calls": len(self._in_flight),
                "network_fetches": self._network_fetches,
                "total_savings": round(self._total_savings, 2),
                "session_ttl_seconds": self.ttl_seconds,
            }
