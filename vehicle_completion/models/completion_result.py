"""
Completion Result Models

The well-formed response every caller of the orchestrator receives, whether
the completion succeeded, degraded to fallback data, or failed outright.
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from vehicle_completion.models.canonical import CanonicalVehicleData

SERVICE_NAME = "VehicleCompletionOrchestrator"
SERVICE_VERSION = "2.0.0"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CompletionErrorDetail(BaseModel):
    """
    User-safe error entry.

    `message` is safe to show an end user; `technical` carries the
    underlying cause for logs and support tooling only.
    """

    model_config = ConfigDict(from_attributes=True)

    code: str
    category: str
    message: str
    technical: Optional[str] = None
    endpoint: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class CompletionMetadata(BaseModel):
    """Metadata describing how a completion was served."""

    model_config = ConfigDict(from_attributes=True)

    timestamp: datetime = Field(default_factory=_utcnow)
    service: str = SERVICE_NAME
    version: str = SERVICE_VERSION
    vrm: Optional[str] = None
    cached: bool = False
    cache_tier: Optional[str] = None
    cache_age_days: Optional[int] = None
    background_refresh_scheduled: bool = False
    success_rate: Optional[float] = None
    completion_percentage: Optional[int] = None
    below_threshold: bool = False
    fields_repaired: List[str] = Field(default_factory=list)
    deduplicated: bool = False
    fetch_source: Optional[str] = Field(
        default=None,
        description="network, session (dedup session reuse) or coalesced"
    )
    total_cost: float = 0.0
    cost_saved: float = 0.0
    error_code: Optional[str] = None


class CompletionResult(BaseModel):
    """Result of one completion request."""

    model_config = ConfigDict(from_attributes=True)

    success: bool
    data: Optional[CanonicalVehicleData] = None
    vehicle_id: Optional[int] = None
    metadata: CompletionMetadata = Field(default_factory=CompletionMetadata)
    errors: List[CompletionErrorDetail] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
