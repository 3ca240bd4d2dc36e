"""
Sentry Error Tracking
Provides error tracking with completion context for production debugging.

All helpers are safe to call when Sentry was never initialized: the SDK
turns them into no-ops.
"""

from typing import Optional

import sentry_sdk
import structlog

logger = structlog.get_logger(__name__)


def init_sentry() -> bool:
    """
    Initialize Sentry SDK.

    If SENTRY_DSN is not configured, logs a warning and leaves tracking
    disabled.

    Returns:
        True when Sentry was initialized
    """
    from vehicle_completion.config import settings

    if settings.sentry_dsn is None:
        logger.warning("sentry_disabled", reason="dsn_not_configured")
        return False

    environment = settings.sentry_environment or settings.environment
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=environment,
        traces_sample_rate=0.1,  # 10% of transactions traced
    )
    logger.info("sentry_initialized", environment=environment, traces_sample_rate=0.1)
    return True


def set_completion_context(
    vrm: str,
    stage: str,
    correlation_id: Optional[str] = None,
    vehicle_id: Optional[int] = None
) -> None:
    """
    Set Sentry context for the completion in progress.

    Args:
        vrm: Registration being completed
        stage: Orchestrator state (e.g. "fetching", "persisting")
        correlation_id: Per-completion correlation ID
        vehicle_id: Live vehicle row, when it already exists
    """
    sentry_sdk.set_context("completion", {
        "vrm": vrm,
        "stage": stage,
        "vehicle_id": vehicle_id,
        "correlation_id": correlation_id or "none"
    })
    sentry_sdk.set_tag("vrm", vrm)
    sentry_sdk.set_tag("stage", stage)

    if correlation_id:
        sentry_sdk.set_tag("correlation_id", correlation_id)


def add_breadcrumb(
    category: str,
    message: str,
    level: str = "info",
    data: Optional[dict] = None
) -> None:
    """
    Add breadcrumb to Sentry for the processing trail.

    Args:
        category: Breadcrumb category (e.g. "completion", "provider")
        message: Human-readable message
        level: Severity level ("debug", "info", "warning", "error")
        data: Additional structured data
    """
    sentry_sdk.add_breadcrumb(
        category=category,
        message=message,
        level=level,
        data=data or {}
    )


def capture_message(message: str, level: str = "info") -> None:
    """Capture a non-exception event (e.g. a high-severity failure report)."""
    sentry_sdk.capture_message(message, level=level)


def capture_exception(error: BaseException) -> None:
    sentry_sdk.capture_exception(error)
