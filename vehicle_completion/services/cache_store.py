"""
Cache Store Adapter
Reads and writes the per-VRM VehicleHistory cache entry and classifies hits
into freshness tiers.

Follows the caller-controls-transaction pattern: nothing here commits. The
orchestrator writes the cache entry and the live vehicle record in one
transaction so both succeed or both roll back.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from vehicle_completion.config import Settings, settings as default_settings
from vehicle_completion.models.canonical import CanonicalVehicleData
from vehicle_completion.models.vehicle_history import VehicleHistory

logger = structlog.get_logger(__name__)


class FreshnessTier(str, enum.Enum):
    FRESH = "fresh"
    GOOD = "good"
    STALE = "stale"
    EXPIRED = "expired"


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; stored values are always UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def classify_tier(
    checked_at: datetime,
    now: Optional[datetime] = None,
    config: Settings = default_settings
) -> FreshnessTier:
    """
    Freshness tier for an entry checked at `checked_at`.

    fresh <= 7 days, good <= 30 days, stale <= 90 days, otherwise expired
    (thresholds from settings).
    """
    now = _as_utc(now or datetime.now(timezone.utc))
    age = now - _as_utc(checked_at)

    if age <= timedelta(days=config.cache_fresh_days):
        return FreshnessTier.FRESH
    if age <= timedelta(days=config.cache_good_days):
        return FreshnessTier.GOOD
    if age <= timedelta(days=config.cache_stale_days):
        return FreshnessTier.STALE
    return FreshnessTier.EXPIRED


@dataclass
class CacheHit:
    """A usable (non-expired) cache entry."""
    entry_id: int
    record: CanonicalVehicleData
    tier: FreshnessTier
    checked_at: datetime
    age_days: int
    total_cost: float = 0.0

    @property
    def needs_background_refresh(self) -> bool:
        return self.tier == FreshnessTier.STALE


class CacheStore:
    """
    VehicleHistory-backed cache keyed by VRM.

    All methods take the caller's session and never commit.
    """

    def __init__(self, config: Settings = default_settings):
        self.config = config
        self.logger = logger.bind(service="cache_store")

    def lookup(
        self,
        session: Session,
        vrm: str,
        now: Optional[datetime] = None
    ) -> Optional[CacheHit]:
        """
        Find the cache entry for a VRM.

        Returns:
            CacheHit for fresh/good/stale entries, None when absent or expired
        """
        entry = session.query(VehicleHistory).filter(VehicleHistory.vrm == vrm).first()
        if entry is None:
            self.logger.debug("cache_miss", vrm=vrm)
            return None

        now = _as_utc(now or datetime.now(timezone.utc))
        tier = classify_tier(entry.checked_at, now, self.config)
        age_days = (now - _as_utc(entry.checked_at)).days

        if tier == FreshnessTier.EXPIRED:
            self.logger.info("cache_expired", vrm=vrm, age_days=age_days)
            return None

        self.logger.info("cache_hit", vrm=vrm, tier=tier.value, age_days=age_days)
        return CacheHit(
            entry_id=entry.id,
            record=CanonicalVehicleData.model_validate(entry.data),
            tier=tier,
            checked_at=entry.checked_at,
            age_days=age_days,
            total_cost=float((entry.total_cost or {}).get("total", 0.0)),
        )

    def latest_record(self, session: Session, vrm: str) -> Optional[CanonicalVehicleData]:
        """Cached record of any age, for filling failed provider slots."""
        entry = session.query(VehicleHistory).filter(VehicleHistory.vrm == vrm).first()
        if entry is None:
            return None
        return CanonicalVehicleData.model_validate(entry.data)

    def upsert(
        self,
        session: Session,
        vrm: str,
        record: CanonicalVehicleData,
        cost_breakdown: Optional[dict] = None,
        checked_at: Optional[datetime] = None
    ) -> VehicleHistory:
        """
        Replace the cache entry for a VRM (delete-then-insert, no merge).

        Flushes so the new row id is available, but does not commit.

        Args:
            session: Caller's session (transaction owner)
            vrm: Normalized registration
            record: Canonical record to store
            cost_breakdown: {"total": float, "endpoints": {...}} for the fetch
            checked_at: Defaults to now (UTC)

        Returns:
            The new VehicleHistory row
        """
        deleted = session.query(VehicleHistory).filter(
            VehicleHistory.vrm == vrm
        ).delete(synchronize_session=False)
        # Old row must be gone before the insert hits the unique constraint
        session.flush()

        entry = VehicleHistory(
            vrm=vrm,
            make=record.make,
            model=record.model,
            fuel_type=record.fuel_type,
            year=record.year,
            data=record.model_dump(mode="json"),
            total_cost=cost_breakdown,
            checked_at=checked_at or datetime.now(timezone.utc),
        )
        session.add(entry)
        session.flush()

        self.logger.info("cache_entry_written", vrm=vrm, entry_id=entry.id, replaced=deleted)
        return entry

    def purge_expired(self, session: Session, now: Optional[datetime] = None) -> int:
        """
        Delete entries older than the stale threshold.

        Called by the scheduler; caller commits.

        Returns:
            Number of entries deleted
        """
        now = _as_utc(now or datetime.now(timezone.utc))
        cutoff = now - timedelta(days=self.config.cache_stale_days)

        deleted_count = session.query(VehicleHistory).filter(
            VehicleHistory.checked_at < cutoff
        ).delete(synchronize_session=False)

        self.logger.info("cache_purge_complete", deleted_count=deleted_count)
        return deleted_count
