"""
Completion Error Taxonomy

Exceptions raised at service seams and the mapping from a technical cause to
a message safe to show end users. Only the orchestrator converts these into
a CompletionResult; everything below it raises.
"""

import enum
import re
from typing import Optional


class ErrorCategory(str, enum.Enum):
    VALIDATION = "validation"
    PROVIDER_TRANSIENT = "provider-transient"
    PROVIDER_PERMANENT = "provider-permanent"
    PERSISTENCE = "persistence"
    LOCK_TIMEOUT = "lock-timeout"
    INTERNAL = "internal"


# Error codes carried in CompletionResult.metadata.error_code
VALIDATION_ERROR = "VALIDATION_ERROR"
DATABASE_ERROR = "DATABASE_ERROR"
TIMEOUT_ERROR = "TIMEOUT_ERROR"
PROCESSING_ERROR = "PROCESSING_ERROR"
API_ERROR = "API_ERROR"
RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
NOT_FOUND_ERROR = "NOT_FOUND_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"
SERVER_ERROR = "SERVER_ERROR"

USER_MESSAGES = {
    PROCESSING_ERROR: "We encountered an issue processing your vehicle data. Please try again in a few moments.",
    API_ERROR: "We're having trouble connecting to our vehicle data service. Your vehicle information may be incomplete.",
    VALIDATION_ERROR: "The vehicle registration number appears to be invalid. Please check and try again.",
    DATABASE_ERROR: "We're experiencing a temporary database issue. Please try again shortly.",
    TIMEOUT_ERROR: "The request took too long to process. Please try again.",
    RATE_LIMIT_ERROR: "Too many requests have been made. Please wait a moment before trying again.",
    AUTHENTICATION_ERROR: "There's an issue with our vehicle data service authentication. Please contact support.",
    NOT_FOUND_ERROR: "We couldn't find information for this vehicle registration number.",
    NETWORK_ERROR: "We're having connectivity issues. Please check your internet connection and try again.",
    SERVER_ERROR: "Our vehicle data service is temporarily unavailable. Please try again in a few moments.",
}

DEFAULT_USER_MESSAGE = (
    "An unexpected error occurred. Please try again or contact support if the problem persists."
)

HTTP_STATUS_PATTERN = re.compile(r"\bhttp (\d{3})\b")


class CompletionFailure(Exception):
    """Base class for failures that abort a completion."""

    code = PROCESSING_ERROR
    category: Optional[ErrorCategory] = None

    def __init__(self, message: str, vrm: Optional[str] = None):
        super().__init__(message)
        self.vrm = vrm


class InvalidIdentifierError(CompletionFailure):
    """Missing or malformed registration. Raised before any provider call."""

    code = VALIDATION_ERROR
    category = ErrorCategory.VALIDATION


class PersistenceFailure(CompletionFailure):
    code = DATABASE_ERROR
    category = ErrorCategory.PERSISTENCE


class LockTimeoutError(CompletionFailure):
    """The completion pipeline for a VRM exceeded its time budget."""

    code = TIMEOUT_ERROR
    category = ErrorCategory.LOCK_TIMEOUT


class CompletionCancelled(CompletionFailure):
    """Raised inside a pipeline that noticed its cancellation flag."""

    code = TIMEOUT_ERROR
    category = ErrorCategory.LOCK_TIMEOUT


class ProviderCallError(Exception):
    """
    A single provider sub-call failed.

    These never escape the provider client: they are recorded as error
    entries and the slot is filled with fallback data.
    """

    category = ErrorCategory.PROVIDER_TRANSIENT

    def __init__(self, endpoint: str, reason: str, status_code: Optional[int] = None):
        super().__init__(f"{endpoint}: {reason}")
        self.endpoint = endpoint
        self.reason = reason
        self.status_code = status_code


class ProviderTransientError(ProviderCallError):
    """Timeout, network failure, 429 or 5xx. Retried with backoff."""

    category = ErrorCategory.PROVIDER_TRANSIENT


class ProviderPermanentError(ProviderCallError):
    """Authorization, malformed identifier or not found. Never retried."""

    category = ErrorCategory.PROVIDER_PERMANENT


def _status_code(error: BaseException, technical: str) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        match = HTTP_STATUS_PATTERN.search(technical)
        if match:
            status = int(match.group(1))
    return status


def friendly_message(error: BaseException, error_code: str) -> str:
    """
    Map a technical failure to a message safe for end users.

    Specific causes win over the generic message for `error_code`, so a
    database failure caused by a timeout still reads as a timeout. HTTP
    statuses come from the error's status_code or an "HTTP nnn" marker,
    never from bare digits (row ids, registrations).
    """
    technical = str(error).lower()
    status = _status_code(error, technical)

    if "timeout" in technical or "timed out" in technical:
        return USER_MESSAGES[TIMEOUT_ERROR]
    if status == 429 or "rate limit" in technical:
        return USER_MESSAGES[RATE_LIMIT_ERROR]
    if status in (401, 403) or "unauthorized" in technical or "forbidden" in technical:
        return USER_MESSAGES[AUTHENTICATION_ERROR]
    if status == 404 or "not found" in technical:
        return USER_MESSAGES[NOT_FOUND_ERROR]
    if "network" in technical or "unreachable" in technical or "connection" in technical:
        return USER_MESSAGES[NETWORK_ERROR]
    if (status is not None and status >= 500) or "server error" in technical:
        return USER_MESSAGES[SERVER_ERROR]

    return USER_MESSAGES.get(error_code, DEFAULT_USER_MESSAGE)
