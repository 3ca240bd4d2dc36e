"""
Dramatiq broker and actor registration

RedisBroker when REDIS_URL is set, StubBroker otherwise (tests, local runs
without a queue). Actors declared below are bound to whichever broker is
active at import time.
"""

from typing import Optional

import dramatiq
import structlog
from dramatiq.brokers.stub import StubBroker

from vehicle_completion.config import settings

logger = structlog.get_logger(__name__)

QUEUE_NAMESPACE = "vehicle_completion"


def setup_broker(redis_url: Optional[str] = None) -> dramatiq.Broker:
    """
    Create the broker and make it the global dramatiq broker.

    Args:
        redis_url: Redis connection URL (default: settings.redis_url)
    """
    redis_url = redis_url or settings.redis_url

    if redis_url:
        from dramatiq.brokers.redis import RedisBroker

        broker = RedisBroker(
            url=redis_url,
            namespace=QUEUE_NAMESPACE,
            socket_timeout=5,
            socket_connect_timeout=5,
            retry_on_timeout=True,
            dead_message_ttl=86400000  # Keep dead refresh jobs for a day
        )
        logger.info("broker_configured", type="RedisBroker", namespace=QUEUE_NAMESPACE)
    else:
        broker = StubBroker()
        logger.info("broker_configured", type="StubBroker")

    dramatiq.set_broker(broker)
    return broker


broker = setup_broker()

from vehicle_completion.actors.vehicle_refresh import refresh_vehicle_data  # noqa: E402

__all__ = ["broker", "setup_broker", "refresh_vehicle_data"]
