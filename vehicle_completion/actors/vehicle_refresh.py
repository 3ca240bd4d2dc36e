"""
Vehicle Refresh Actor
Dramatiq actor for bulk data repair: re-runs completion for one vehicle id.
"""

from typing import Dict, Optional

import dramatiq
import structlog

from vehicle_completion.services.errors import (
    DATABASE_ERROR,
    LockTimeoutError,
    PersistenceFailure,
    TIMEOUT_ERROR,
)

logger = structlog.get_logger(__name__)

_orchestrator = None


def get_orchestrator():
    """Lazily build the worker-wide orchestrator (one lock/dedup scope per process)."""
    global _orchestrator
    if _orchestrator is None:
        from vehicle_completion.services.orchestrator import build_orchestrator

        _orchestrator = build_orchestrator()
    return _orchestrator


def should_retry(retries_so_far: int, exception: Exception) -> bool:
    """
    Determine if a failed job should be retried based on exception type.

    Retryable exceptions (transient failures):
    - PersistenceFailure, LockTimeoutError (raised from a failed completion)
    - OperationalError (from sqlalchemy - database connection issues)
    - httpx.TransportError, ConnectionError, TimeoutError

    Everything else (missing vehicle, programming errors) is permanent.

    Args:
        retries_so_far: Number of retries attempted so far
        exception: The exception that was raised

    Returns:
        True if should retry (and haven't exceeded max retries), False otherwise
    """
    import httpx
    from sqlalchemy.exc import OperationalError

    retryable_types = (
        PersistenceFailure,
        LockTimeoutError,
        OperationalError,
        httpx.TransportError,
        ConnectionError,
        TimeoutError,
    )

    if isinstance(exception, retryable_types):
        should_retry_flag = retries_so_far < 5
        logger.info("retryable_exception",
                    exception_type=type(exception).__name__,
                    retries=retries_so_far,
                    will_retry=should_retry_flag)
        return should_retry_flag

    logger.info("non_retryable_exception",
                exception_type=type(exception).__name__,
                retries=retries_so_far)
    return False


@dramatiq.actor(
    max_retries=5,
    min_backoff=15000,  # 15 seconds
    max_backoff=300000,  # 5 minutes
    retry_when=should_retry,
    queue_name="vehicle_refresh"
)
def refresh_vehicle_data(vehicle_id: int, force_refresh: bool = False) -> Dict:
    """
    Re-run completion for a stored vehicle.

    Failures the caller could recover from by retrying (database errors, lock
    timeouts) are raised so dramatiq retries the message; anything else is
    reported in the returned dict.

    Args:
        vehicle_id: Vehicle row id
        force_refresh: Bypass the cache

    Returns:
        Dict with vehicle_id, success, completion_percentage, cached, error_code

    Example:
        >>> refresh_vehicle_data.send(42, force_refresh=True)
    """
    logger.info("refresh_vehicle_started", vehicle_id=vehicle_id, force_refresh=force_refresh)

    result = get_orchestrator().complete_by_id(vehicle_id, force_refresh=force_refresh)
    error_code: Optional[str] = result.metadata.error_code

    if not result.success:
        technical = result.errors[0].technical if result.errors else error_code
        if error_code == DATABASE_ERROR:
            raise PersistenceFailure(technical or "database error", result.metadata.vrm)
        if error_code == TIMEOUT_ERROR:
            raise LockTimeoutError(technical or "completion timed out", result.metadata.vrm)
        logger.warning("refresh_vehicle_failed", vehicle_id=vehicle_id, error_code=error_code)
    else:
        logger.info(
            "refresh_vehicle_completed",
            vehicle_id=vehicle_id,
            completion_percentage=result.metadata.completion_percentage
        )

    return {
        "vehicle_id": vehicle_id,
        "success": result.success,
        "completion_percentage": result.metadata.completion_percentage,
        "cached": result.metadata.cached,
        "error_code": error_code,
    }
