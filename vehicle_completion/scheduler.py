"""
APScheduler Background Jobs

Periodic housekeeping for a running orchestrator: dedup session sweep and
expired cache purge. Jobs run via BackgroundScheduler in the host process.
"""

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from vehicle_completion.services.orchestrator import CompletionOrchestrator

logger = structlog.get_logger(__name__)


def run_dedup_sweep(orchestrator: CompletionOrchestrator):
    """
    Wrapper function for the dedup sweep job.

    Called by APScheduler every minute to evict dedup sessions past their TTL.
    """
    try:
        evicted = orchestrator.sweep()
        logger.info("dedup_sweep_completed", evicted=evicted)
    except Exception as e:
        logger.error("dedup_sweep_crashed", error=str(e), exc_info=True)


def run_cache_purge(orchestrator: CompletionOrchestrator):
    """
    Wrapper function for the hourly cache purge job.

    Deletes VehicleHistory entries older than the stale tier; they can never
    be served again and only hold space.
    """
    try:
        deleted = orchestrator.purge_cache()
        logger.info("cache_purge_completed", deleted_count=deleted)
    except Exception as e:
        logger.error("cache_purge_crashed", error=str(e), exc_info=True)


def start_scheduler(
    orchestrator: CompletionOrchestrator,
    environment: str = "production"
) -> BackgroundScheduler:
    """
    Start background scheduler with all jobs.

    Args:
        orchestrator: Orchestrator whose dedup sessions and cache are maintained
        environment: Current environment (skip scheduler in testing)

    Returns:
        BackgroundScheduler instance
    """
    scheduler = BackgroundScheduler(timezone="Europe/London")

    if environment == "testing":
        logger.info("scheduler_skipped", reason="testing_environment")
        return scheduler

    # Job 1: Dedup session sweep (every minute)
    scheduler.add_job(
        run_dedup_sweep,
        trigger=IntervalTrigger(minutes=1),
        args=[orchestrator],
        id="dedup_sweep",
        name="Dedup Session Sweep",
        replace_existing=True
    )
    logger.info("job_registered", job="dedup_sweep", schedule="every_minute")

    # Job 2: Expired cache purge (hourly)
    scheduler.add_job(
        run_cache_purge,
        trigger=IntervalTrigger(hours=1),
        args=[orchestrator],
        id="cache_purge",
        name="Expired Vehicle History Purge",
        replace_existing=True
    )
    logger.info("job_registered", job="cache_purge", schedule="hourly")

    scheduler.start()
    logger.info("scheduler_started", jobs=["dedup_sweep", "cache_purge"])

    return scheduler


def stop_scheduler(scheduler: BackgroundScheduler):
    """
    Stop background scheduler gracefully.

    Args:
        scheduler: BackgroundScheduler instance to stop
    """
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")


__all__ = [
    "start_scheduler",
    "stop_scheduler",
    "run_dedup_sweep",
    "run_cache_purge",
]
