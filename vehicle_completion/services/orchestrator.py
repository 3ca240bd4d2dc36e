"""
Completion Orchestrator

Top-level coordinator: per-VRM lock -> cache check -> (deduplicated) provider
fetch -> normalization -> completeness validation and repair -> one atomic
write of the cache entry and the live vehicle record.

State machine:

    CACHE_CHECK -> USE_CACHE | FETCHING -> NORMALIZING -> VALIDATING
        -> [REPAIRING] -> PERSISTING -> DONE          (FAILED from any step)

Sub-call failures are absorbed as fallback data plus error entries. Anything
that aborts the pipeline (persistence, lock timeout, unexpected errors) rolls
back both writes and is converted to a user-safe CompletionResult here and
nowhere else.
"""

import enum
import re
import threading
import uuid
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, List, Optional

import structlog
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from vehicle_completion.config import Settings, settings as default_settings
from vehicle_completion.database import transaction_scope
from vehicle_completion.models.canonical import (
    CanonicalVehicleData,
    FUEL_ELECTRIC,
    VehicleCategory,
    merge_records,
)
from vehicle_completion.models.completion_result import (
    CompletionErrorDetail,
    CompletionMetadata,
    CompletionResult,
)
from vehicle_completion.models.vehicle import Vehicle
from vehicle_completion.models.vehicle_history import VehicleHistory
from vehicle_completion.services.cache_store import CacheHit, CacheStore
from vehicle_completion.services.completeness import CompletenessValidator
from vehicle_completion.services.deduplicator import CallDeduplicator, DedupedFetch
from vehicle_completion.services.errors import (
    API_ERROR,
    CompletionCancelled,
    CompletionFailure,
    DATABASE_ERROR,
    ErrorCategory,
    InvalidIdentifierError,
    LockTimeoutError,
    PROCESSING_ERROR,
    PersistenceFailure,
    TIMEOUT_ERROR,
    VALIDATION_ERROR,
    USER_MESSAGES,
    friendly_message,
)
from vehicle_completion.services.ev_specs import lookup_ev_specs
from vehicle_completion.services.fallback import FallbackSynthesizer
from vehicle_completion.services.monitoring.cost_tracker import ApiCallLedger
from vehicle_completion.services.monitoring.error_tracking import (
    add_breadcrumb,
    capture_exception,
    set_completion_context,
)
from vehicle_completion.services.normalizer import normalize_provider_payloads, normalize_record
from vehicle_completion.services.provider_client import ProviderClient
from vehicle_completion.services.vehicle_lock import VehicleLockCoordinator
from vehicle_completion.services.vehicle_writer import apply_record, snapshot_from_vehicle

logger = structlog.get_logger(__name__)

VRM_PATTERN = re.compile(r"^[A-Z0-9]{2,8}$")


class CompletionState(str, enum.Enum):
    CACHE_CHECK = "cache_check"
    USE_CACHE = "use_cache"
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    VALIDATING = "validating"
    REPAIRING = "repairing"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


def normalize_vrm(raw: Any) -> str:
    """
    Uppercase and strip whitespace from a registration.

    Raises:
        InvalidIdentifierError: missing, or not 2-8 alphanumerics
    """
    if raw is None or not str(raw).strip():
        raise InvalidIdentifierError("Vehicle registration number is required")
    vrm = re.sub(r"\s+", "", str(raw)).upper()
    if not VRM_PATTERN.match(vrm):
        raise InvalidIdentifierError(f"Invalid VRM format: {raw!r}", vrm)
    return vrm


class CompletionOrchestrator:
    """
    Owns one lock coordinator, one deduplicator and one background-refresh
    executor. Locking and deduplication are scoped to this instance.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        provider_client: Optional[ProviderClient] = None,
        deduplicator: Optional[CallDeduplicator] = None,
        lock: Optional[VehicleLockCoordinator] = None,
        cache_store: Optional[CacheStore] = None,
        validator: Optional[CompletenessValidator] = None,
        fallback: Optional[FallbackSynthesizer] = None,
        ledger: Optional[ApiCallLedger] = None,
        background_executor: Optional[Executor] = None,
        config: Settings = default_settings
    ):
        """
        Args:
            session_factory: sessionmaker for the transactional store
            provider_client: Provider client (default: built from settings)
            deduplicator: Call deduplicator wrapping the provider fetch
            lock: Per-VRM lock coordinator
            cache_store: VehicleHistory cache adapter
            validator: Completeness validator
            fallback: Fallback synthesizer shared with the validator
            ledger: Cost ledger used for the provider and the dashboard
            background_executor: Runs stale-tier refreshes
            config: Settings
        """
        self.session_factory = session_factory
        self.config = config
        self.ledger = ledger or ApiCallLedger(config)
        self.cache_store = cache_store or CacheStore(config)
        self.fallback = fallback or FallbackSynthesizer()

        self._owns_provider = provider_client is None
        self.provider_client = provider_client or ProviderClient(
            fallback=self.fallback,
            cache_lookup=self._cached_record,
            ledger=self.ledger,
            config=config
        )
        self.deduplicator = deduplicator or CallDeduplicator(
            self.provider_client.fetch_all,
            ttl_seconds=config.dedup_session_ttl_seconds,
            wait_timeout=config.lock_timeout_seconds
        )
        self.lock = lock or VehicleLockCoordinator(
            timeout_seconds=config.lock_timeout_seconds,
            acquire_timeout_seconds=config.lock_acquire_timeout_seconds
        )
        self.validator = validator or CompletenessValidator(config.completeness_threshold, self.fallback)
        self.background_executor = background_executor or ThreadPoolExecutor(
            max_workers=config.background_refresh_workers,
            thread_name_prefix="vehicle-refresh"
        )

        self._pending_refresh: set = set()
        self._refresh_lock = threading.Lock()
        self._refresh_queue_key = f"deferred_vehicle_refreshes:{id(self)}"
        self.logger = logger.bind(service="completion_orchestrator")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def complete(
        self,
        vehicle: Vehicle,
        force_refresh: bool = False,
        session: Optional[Session] = None
    ) -> CompletionResult:
        """
        Ensure `vehicle` holds a complete, normalized data set.

        Args:
            vehicle: Live vehicle record (persisted or new)
            force_refresh: Bypass the cache entirely
            session: Caller's session; when given, the writes run in a
                SAVEPOINT and the caller commits; a stale-tier refresh is
                submitted only after that commit

        Returns:
            CompletionResult (never raises)
        """
        raw_vrm = getattr(vehicle, "registration_number", None)
        correlation_id = uuid.uuid4().hex[:16]

        with structlog.contextvars.bound_contextvars(correlation_id=correlation_id):
            try:
                vrm = normalize_vrm(raw_vrm)
            except InvalidIdentifierError as e:
                self.logger.warning("completion_rejected", vrm=raw_vrm, error=str(e))
                return self._failure_result(e, VALIDATION_ERROR, ErrorCategory.VALIDATION, raw_vrm)

            self.logger.info("completion_started", vrm=vrm, force_refresh=force_refresh)

            try:
                result = self.lock.run_exclusively(
                    vrm,
                    lambda cancelled: self._run_pipeline(
                        vehicle, vrm, force_refresh, session, cancelled, correlation_id
                    )
                )
            except (LockTimeoutError, CompletionCancelled) as e:
                self.logger.warning("completion_timed_out", vrm=vrm, error=str(e))
                return self._failure_result(e, TIMEOUT_ERROR, ErrorCategory.LOCK_TIMEOUT, vrm)
            except SQLAlchemyError as e:
                self.logger.error("completion_persistence_failed", vrm=vrm, error=str(e))
                capture_exception(e)
                failure = PersistenceFailure(str(e), vrm)
                return self._failure_result(failure, DATABASE_ERROR, ErrorCategory.PERSISTENCE, vrm)
            except CompletionFailure as e:
                self.logger.error("completion_failed", vrm=vrm, code=e.code, error=str(e))
                return self._failure_result(e, e.code, e.category or ErrorCategory.INTERNAL, vrm)
            except Exception as e:
                self.logger.error("completion_crashed", vrm=vrm, error=str(e), exc_info=True)
                capture_exception(e)
                return self._failure_result(e, PROCESSING_ERROR, ErrorCategory.INTERNAL, vrm)

            if result.metadata.background_refresh_scheduled:
                # Pipeline asked for a refresh; report whether one was actually queued
                if session is None:
                    scheduled = self._schedule_background_refresh(vrm, result.vehicle_id)
                else:
                    scheduled = self._schedule_after_commit(session, vrm, result.vehicle_id)
                if not scheduled:
                    # Coalesced waiters share the owner's result object
                    result = result.model_copy(update={
                        "metadata": result.metadata.model_copy(update={"background_refresh_scheduled": False})
                    })

            self.logger.info(
                "completion_finished",
                vrm=vrm,
                cached=result.metadata.cached,
                completion_percentage=result.metadata.completion_percentage,
                total_cost=result.metadata.total_cost
            )
            return result

    def complete_by_id(self, vehicle_id: int, force_refresh: bool = False) -> CompletionResult:
        """
        Load a vehicle in a fresh session, complete it, and commit.

        Entry point for background refreshes and bulk-repair jobs.
        """
        with self.session_factory() as session:
            vehicle = session.get(Vehicle, vehicle_id)
            if vehicle is None:
                error = CompletionFailure(f"Vehicle {vehicle_id} not found")
                return self._failure_result(error, PROCESSING_ERROR, ErrorCategory.INTERNAL, None)

            result = self.complete(vehicle, force_refresh=force_refresh, session=session)
            if result.success:
                session.commit()
            else:
                session.rollback()
            return result

    def sweep(self) -> int:
        """Evict expired dedup sessions. Called by the scheduler."""
        return self.deduplicator.sweep()

    def purge_cache(self) -> int:
        """Delete cache entries past the stale tier. Called by the scheduler."""
        with transaction_scope(self.session_factory) as db:
            return self.cache_store.purge_expired(db)

    def dashboard(self) -> dict:
        return self.ledger.dashboard(self.deduplicator.stats())

    def shutdown(self, wait: bool = True) -> None:
        self.background_executor.shutdown(wait=wait)
        if self._owns_provider:
            self.provider_client.close()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _enter(
        self,
        state: CompletionState,
        vrm: str,
        cancelled: threading.Event,
        correlation_id: str
    ) -> CompletionState:
        if cancelled.is_set():
            raise CompletionCancelled(f"Completion for {vrm} cancelled before {state.value}", vrm)
        self.logger.debug("completion_state", vrm=vrm, state=state.value)
        set_completion_context(vrm, state.value, correlation_id)
        add_breadcrumb(category="completion", message=state.value, data={"vrm": vrm})
        return state

    def _run_pipeline(
        self,
        vehicle: Vehicle,
        vrm: str,
        force_refresh: bool,
        session: Optional[Session],
        cancelled: threading.Event,
        correlation_id: str
    ) -> CompletionResult:
        enter = lambda state: self._enter(state, vrm, cancelled, correlation_id)  # noqa: E731

        enter(CompletionState.CACHE_CHECK)
        with transaction_scope(self.session_factory, session) as db:
            target = self._resolve_vehicle(db, vehicle)
            target.registration_number = vrm
            category = VehicleCategory(target.category or VehicleCategory.CAR)

            hit: Optional[CacheHit] = None if force_refresh else self.cache_store.lookup(db, vrm)
            fetched: Optional[DedupedFetch] = None

            if hit is not None:
                enter(CompletionState.USE_CACHE)
                fresh_record = hit.record
                provider_errors: List[dict] = []
            else:
                enter(CompletionState.FETCHING)
                fetched = self.deduplicator.fetch(vrm)
                provider_errors = fetched.result.errors

                enter(CompletionState.NORMALIZING)
                fresh_record = normalize_provider_payloads(fetched.result.payloads)

            enter(CompletionState.VALIDATING)
            merged = normalize_record(merge_records(snapshot_from_vehicle(target), fresh_record))
            merged = self._enhance_electric(merged)
            report = self.validator.score(merged, category)

            repaired: List[str] = []
            if report.missing_fields:
                enter(CompletionState.REPAIRING)
            merged, repaired = self.validator.apply_fixes(merged, category, report.missing_fields)
            report = self.validator.score(merged, category)

            enter(CompletionState.PERSISTING)
            history_entry = None
            if hit is not None:
                history_entry = db.get(VehicleHistory, hit.entry_id)
                check_status = "cached"
            elif fetched.result.all_failed:
                # Pure fallback data is never cached; the next call retries
                check_status = "failed"
            else:
                history_entry = self.cache_store.upsert(
                    db, vrm, fresh_record, fetched.result.cost_breakdown
                )
                check_status = "verified"

            apply_record(target, merged, history_entry, check_status)
            target.data_completeness = report.percentage
            target.needs_data_review = not report.meets_threshold
            db.flush()
            vehicle_id = target.id

            # Last chance to abandon before the commit
            enter(CompletionState.DONE)

        return self._success_result(
            vrm, vehicle_id, merged, report, repaired, hit, fetched, provider_errors
        )

    def _resolve_vehicle(self, db: Session, vehicle: Vehicle) -> Vehicle:
        if vehicle in db:
            return vehicle
        if vehicle.id is not None:
            found = db.get(Vehicle, vehicle.id)
            if found is None:
                raise CompletionFailure(f"Vehicle {vehicle.id} no longer exists")
            return found
        db.add(vehicle)
        return vehicle

    def _enhance_electric(self, record: CanonicalVehicleData) -> CanonicalVehicleData:
        if record.fuel_type != FUEL_ELECTRIC:
            return record
        specs = lookup_ev_specs(record.make, record.model, record.variant)
        if not specs:
            return record
        updates = {name: value for name, value in specs.items() if getattr(record, name) is None}
        if not updates:
            return record
        self.logger.info("electric_specs_applied", make=record.make, model=record.model, fields=sorted(updates))
        return record.model_copy(update=updates)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _success_result(
        self,
        vrm: str,
        vehicle_id: Optional[int],
        record: CanonicalVehicleData,
        report,
        repaired: List[str],
        hit: Optional[CacheHit],
        fetched: Optional[DedupedFetch],
        provider_errors: List[dict]
    ) -> CompletionResult:
        metadata = CompletionMetadata(
            vrm=vrm,
            cached=hit is not None,
            completion_percentage=report.percentage,
            below_threshold=not report.meets_threshold,
            fields_repaired=repaired,
        )
        if hit is not None:
            metadata.cache_tier = hit.tier.value
            metadata.cache_age_days = hit.age_days
            metadata.background_refresh_scheduled = hit.needs_background_refresh
            metadata.success_rate = 100.0
            metadata.cost_saved = hit.total_cost
        else:
            metadata.success_rate = fetched.result.success_rate
            metadata.deduplicated = fetched.deduplicated
            metadata.fetch_source = fetched.source
            metadata.total_cost = 0.0 if fetched.deduplicated else fetched.result.total_cost
            metadata.cost_saved = fetched.cost_saved

        errors = [
            CompletionErrorDetail(
                code=API_ERROR,
                category=entry["category"] or ErrorCategory.PROVIDER_TRANSIENT.value,
                message=USER_MESSAGES[API_ERROR],
                technical=entry["message"],
                endpoint=entry["endpoint"],
                timestamp=entry["timestamp"],
            )
            for entry in provider_errors
        ]

        warnings = []
        if provider_errors:
            warnings.append(f"{len(provider_errors)} API endpoints failed but fallback data was used")
        if not report.meets_threshold:
            warnings.append(
                f"Data completeness {report.percentage}% is below the "
                f"{self.validator.threshold}% threshold; vehicle flagged for review"
            )
            self.logger.warning(
                "completion_below_threshold",
                vrm=vrm,
                completion_percentage=report.percentage,
                missing_fields=report.missing_fields
            )

        return CompletionResult(
            success=True,
            data=record,
            vehicle_id=vehicle_id,
            metadata=metadata,
            errors=errors,
            warnings=warnings,
        )

    @staticmethod
    def _failure_result(
        error: BaseException,
        code: str,
        category: ErrorCategory,
        vrm: Optional[str]
    ) -> CompletionResult:
        return CompletionResult(
            success=False,
            data=None,
            metadata=CompletionMetadata(vrm=vrm, error_code=code),
            errors=[
                CompletionErrorDetail(
                    code=code,
                    category=category.value,
                    message=friendly_message(error, code),
                    technical=str(error),
                )
            ],
        )

    # ------------------------------------------------------------------
    # Background refresh and fallback cache reads
    # ------------------------------------------------------------------

    def _schedule_background_refresh(self, vrm: str, vehicle_id: Optional[int]) -> bool:
        """Fire-and-forget forced refresh; at most one pending per VRM."""
        if vehicle_id is None or not self._reserve_refresh(vrm):
            return False
        return self._submit_refresh(vrm, vehicle_id)

    def _schedule_after_commit(self, session: Session, vrm: str, vehicle_id: Optional[int]) -> bool:
        """
        Reserve a refresh now and submit it once the caller's transaction commits.

        The refresh loads the vehicle in its own session, so submitting earlier
        could race an uncommitted insert. A rollback or close releases the
        reservation instead.
        """
        if vehicle_id is None or not self._reserve_refresh(vrm):
            return False

        queue = session.info.get(self._refresh_queue_key)
        if queue is None:
            queue = session.info[self._refresh_queue_key] = {}
            event.listen(session, "after_commit", self._submit_deferred_refreshes)
            event.listen(session, "after_transaction_end", self._release_deferred_refreshes)
        queue[vrm] = vehicle_id

        self.logger.info("background_refresh_deferred", vrm=vrm, vehicle_id=vehicle_id)
        return True

    def _submit_deferred_refreshes(self, session: Session) -> None:
        if session.get_nested_transaction() is not None:
            return  # SAVEPOINT released, outer transaction still open
        queue = session.info.get(self._refresh_queue_key) or {}
        while queue:
            vrm, vehicle_id = queue.popitem()
            self._submit_refresh(vrm, vehicle_id)

    def _release_deferred_refreshes(self, session: Session, transaction) -> None:
        if transaction.parent is not None:
            return
        queue = session.info.get(self._refresh_queue_key) or {}
        if not queue:
            return
        self.logger.info("background_refresh_dropped", vrms=sorted(queue))
        with self._refresh_lock:
            self._pending_refresh.difference_update(queue)
        queue.clear()

    def _reserve_refresh(self, vrm: str) -> bool:
        with self._refresh_lock:
            if vrm in self._pending_refresh:
                return False
            self._pending_refresh.add(vrm)
            return True

    def _submit_refresh(self, vrm: str, vehicle_id: int) -> bool:
        try:
            self.background_executor.submit(self._background_refresh, vrm, vehicle_id)
        except RuntimeError as e:
            # Executor already shut down
            with self._refresh_lock:
                self._pending_refresh.discard(vrm)
            self.logger.warning("background_refresh_rejected", vrm=vrm, error=str(e))
            return False

        self.logger.info("background_refresh_scheduled", vrm=vrm, vehicle_id=vehicle_id)
        return True

    def _background_refresh(self, vrm: str, vehicle_id: int) -> None:
        try:
            result = self.complete_by_id(vehicle_id, force_refresh=True)
            if result.success:
                self.logger.info("background_refresh_completed", vrm=vrm, vehicle_id=vehicle_id)
            else:
                self.logger.warning(
                    "background_refresh_failed",
                    vrm=vrm,
                    vehicle_id=vehicle_id,
                    errors=[error.technical for error in result.errors]
                )
        except Exception as e:
            self.logger.error("background_refresh_crashed", vrm=vrm, error=str(e), exc_info=True)
        finally:
            with self._refresh_lock:
                self._pending_refresh.discard(vrm)

    def _cached_record(self, vrm: str) -> Optional[CanonicalVehicleData]:
        with self.session_factory() as db:
            return self.cache_store.latest_record(db, vrm)


def build_orchestrator(
    session_factory: Optional[sessionmaker] = None,
    config: Settings = default_settings
) -> CompletionOrchestrator:
    """
    Orchestrator wired from settings.

    Uses the application SessionLocal when no factory is given.
    """
    if session_factory is None:
        from vehicle_completion import database

        if database.SessionLocal is None:
            database.init_db()
        if database.SessionLocal is None:
            raise RuntimeError("DATABASE_URL not configured")
        session_factory = database.SessionLocal

    return CompletionOrchestrator(session_factory=session_factory, config=config)
