"""
Vehicle Lock Coordinator

Per-VRM mutual exclusion for completion pipelines. The first caller for a
VRM runs the operation; callers arriving while it is in flight wait on the
same future and receive the identical result object.

Every run has a fixed time budget. When it expires the operation's
cancellation event is set, the shared future fails with LockTimeoutError and
the entry is removed, so a stuck pipeline never blocks later calls.
"""

import threading
from concurrent.futures import Future, TimeoutError as FuturesTimeoutError
from typing import Callable, Dict, TypeVar

import structlog

from vehicle_completion.services.errors import LockTimeoutError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class _InFlight:
    """Lock entry: the shared future plus the run's cancellation flag."""

    def __init__(self):
        self.future: Future = Future()
        self.cancelled = threading.Event()


class VehicleLockCoordinator:
    def __init__(self, timeout_seconds: float = 30.0, acquire_timeout_seconds: float = 35.0):
        """
        Args:
            timeout_seconds: Budget for one pipeline run
            acquire_timeout_seconds: Max time a caller waits on someone
                else's run before giving up
        """
        self.timeout_seconds = timeout_seconds
        self.acquire_timeout_seconds = acquire_timeout_seconds
        self._entries: Dict[str, _InFlight] = {}
        self._lock = threading.Lock()
        self.logger = logger.bind(service="vehicle_lock")

    def run_exclusively(self, vrm: str, operation: Callable[[threading.Event], T]) -> T:
        """
        Run `operation` unless one is already running for `vrm`, in which
        case wait for and return its result.

        `operation` receives a threading.Event that is set when the run's
        time budget expires; it should check it between steps and abandon
        work (raising) once set.

        A waiter whose awaited run failed with anything other than a
        timeout starts a fresh run, once.

        Raises:
            LockTimeoutError: the run exceeded its budget, or waiting did
            Exception: whatever the operation raised
        """
        retried = False
        while True:
            with self._lock:
                entry = self._entries.get(vrm)
                owner = entry is None
                if owner:
                    entry = _InFlight()
                    self._entries[vrm] = entry

            if owner:
                return self._run_as_owner(vrm, entry, operation)

            self.logger.info("vehicle_lock_waiting", vrm=vrm)
            try:
                return entry.future.result(timeout=self.acquire_timeout_seconds)
            except FuturesTimeoutError:
                self.logger.warning("vehicle_lock_acquire_timeout", vrm=vrm, timeout=self.acquire_timeout_seconds)
                raise LockTimeoutError(f"Timed out waiting for in-flight completion of {vrm}", vrm)
            except LockTimeoutError:
                raise
            except Exception as e:
                if retried:
                    raise
                retried = True
                self.logger.info("vehicle_lock_retry_after_failure", vrm=vrm, error=str(e))

    def _run_as_owner(self, vrm: str, entry: _InFlight, operation: Callable[[threading.Event], T]) -> T:
        timer = threading.Timer(self.timeout_seconds, self._expire, args=(vrm, entry))
        timer.daemon = True
        timer.start()
        self.logger.debug("vehicle_lock_acquired", vrm=vrm)

        try:
            value = operation(entry.cancelled)
        except BaseException as e:
            self._settle(vrm, entry, error=e)
        else:
            self._settle(vrm, entry, value=value)
        finally:
            timer.cancel()

        # After an expiry this raises the LockTimeoutError every waiter saw
        return entry.future.result()

    def _settle(self, vrm: str, entry: _InFlight, value=None, error=None) -> None:
        with self._lock:
            if not entry.future.done():
                if error is not None:
                    entry.future.set_exception(error)
                else:
                    entry.future.set_result(value)
            if self._entries.get(vrm) is entry:
                del self._entries[vrm]
        self.logger.debug("vehicle_lock_released", vrm=vrm, failed=error is not None)

    def _expire(self, vrm: str, entry: _InFlight) -> None:
        with self._lock:
            if entry.future.done():
                return
            entry.cancelled.set()
            entry.future.set_exception(
                LockTimeoutError(f"Completion for {vrm} exceeded {self.timeout_seconds}s timeout", vrm)
            )
            if self._entries.get(vrm) is entry:
                del self._entries[vrm]
        self.logger.warning("vehicle_lock_timeout", vrm=vrm, timeout=self.timeout_seconds)

    def is_locked(self, vrm: str) -> bool:
        with self._lock:
            return vrm in self._entries

    def stats(self) -> dict:
        with self._lock:
            return {"active_locks": len(self._entries), "vrms": sorted(self._entries)}
