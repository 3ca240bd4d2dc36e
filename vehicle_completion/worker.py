"""
Dramatiq Worker Entrypoint

Imports the actor modules so they register with the broker, and starts the
housekeeping scheduler for the worker's orchestrator.

Usage:
    dramatiq vehicle_completion.worker --processes 2 --threads 4

Procfile Configuration:
    worker: dramatiq vehicle_completion.worker --processes 2 --threads 4

Each process builds its own orchestrator, so per-VRM locking and call
deduplication only cover the jobs that process runs.
"""

import structlog

from vehicle_completion.config import settings
from vehicle_completion.database import init_db
from vehicle_completion.services.monitoring.error_tracking import init_sentry
from vehicle_completion.services.monitoring.logging import setup_logging

setup_logging()
init_sentry()
init_db()

from vehicle_completion.actors import broker  # noqa: E402
from vehicle_completion.actors.vehicle_refresh import get_orchestrator  # noqa: E402
from vehicle_completion.scheduler import start_scheduler  # noqa: E402

logger = structlog.get_logger()

scheduler = start_scheduler(get_orchestrator(), environment=settings.environment)

# Worker health check log
logger.info("worker_ready", broker=type(broker).__name__, environment=settings.environment)
