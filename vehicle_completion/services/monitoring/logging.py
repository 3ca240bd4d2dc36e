"""
Structured JSON Logging with Correlation ID
Provides JSON formatter that injects the completion correlation ID into every
stdlib log entry, and the matching structlog configuration.
"""

import logging
import sys
import os

import structlog
from pythonjsonlogger import jsonlogger

SERVICE_NAME = "vehicle-completion"


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with automatic correlation ID injection.

    The correlation ID is read from structlog's context variables, where the
    orchestrator binds one per completion.
    """

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        context = structlog.contextvars.get_contextvars()
        log_record['correlation_id'] = context.get('correlation_id') or 'none'
        log_record['service'] = SERVICE_NAME
        log_record['environment'] = os.getenv('ENVIRONMENT', 'development')


def configure_structlog():
    """Event-style structlog output: bound context, level, ISO timestamp, JSON."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ]
    )


def setup_logging(level: int = logging.INFO):
    """
    Configure structured JSON logging to stdout.

    Sets up the root logger with CorrelationJsonFormatter and configures
    structlog to render JSON with the same context.

    Returns:
        logging.Handler: The configured handler (for testing)
    """
    handler = logging.StreamHandler(sys.stdout)

    formatter = CorrelationJsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s',
        rename_fields={
            'timestamp': 'asctime',
            'level': 'levelname'
        }
    )
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    configure_structlog()

    return handler
