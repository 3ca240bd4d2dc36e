"""
Tests for CacheStore and freshness tiers
"""

from datetime import datetime, timedelta, timezone

import pytest

from vehicle_completion.models.canonical import CanonicalVehicleData
from vehicle_completion.models.vehicle_history import VehicleHistory
from vehicle_completion.services.cache_store import CacheStore, FreshnessTier, classify_tier

from factories import VRM, days_ago


NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return CacheStore()


def _record(**overrides):
    values = dict(make="TOYOTA", model="PRIUS", fuel_type="Hybrid", year=2012)
    values.update(overrides)
    return CanonicalVehicleData(**values)


class TestClassifyTier:

    @pytest.mark.parametrize("age_days,expected", [
        (0, FreshnessTier.FRESH),
        (7, FreshnessTier.FRESH),
        (10, FreshnessTier.GOOD),
        (30, FreshnessTier.GOOD),
        (45, FreshnessTier.STALE),
        (90, FreshnessTier.STALE),
        (91, FreshnessTier.EXPIRED),
    ])
    def test_boundaries(self, age_days, expected):
        assert classify_tier(NOW - timedelta(days=age_days), now=NOW) == expected

    def test_naive_timestamps_read_as_utc(self):
        naive = (NOW - timedelta(days=10)).replace(tzinfo=None)
        assert classify_tier(naive, now=NOW) == FreshnessTier.GOOD


class TestLookup:

    def test_absent_entry_is_miss(self, store, db):
        assert store.lookup(db, VRM) is None

    def test_fresh_hit(self, store, db):
        store.upsert(db, VRM, _record(), {"total": 2.01, "endpoints": {}})

        hit = store.lookup(db, VRM)

        assert hit.tier == FreshnessTier.FRESH
        assert hit.record.make == "TOYOTA"
        assert hit.total_cost == 2.01
        assert hit.needs_background_refresh is False

    def test_stale_hit_needs_refresh(self, store, db):
        store.upsert(db, VRM, _record(), checked_at=days_ago(45))

        hit = store.lookup(db, VRM)

        assert hit.tier == FreshnessTier.STALE
        assert hit.age_days == 45
        assert hit.needs_background_refresh is True

    def test_expired_entry_is_miss_but_still_readable(self, store, db):
        store.upsert(db, VRM, _record(), checked_at=days_ago(120))

        assert store.lookup(db, VRM) is None
        assert store.latest_record(db, VRM).make == "TOYOTA"


class TestUpsert:

    def test_replaces_existing_entry(self, store, db):
        store.upsert(db, VRM, _record(make="OLD"), checked_at=days_ago(40))
        store.upsert(db, VRM, _record(make="NEW"))

        entries = db.query(VehicleHistory).filter(VehicleHistory.vrm == VRM).all()

        assert len(entries) == 1
        assert entries[0].make == "NEW"
        assert entries[0].data["make"] == "NEW"

    def test_does_not_commit(self, store, session_factory):
        with session_factory() as session:
            store.upsert(session, VRM, _record())
            session.rollback()

        with session_factory() as session:
            assert session.query(VehicleHistory).count() == 0


class TestPurge:

    def test_deletes_only_entries_past_stale_tier(self, store, db):
        store.upsert(db, "OLD1ABC", _record(), checked_at=days_ago(120))
        store.upsert(db, "NEW1ABC", _record(), checked_at=days_ago(10))

        deleted = store.purge_expired(db)

        assert deleted == 1
        assert [entry.vrm for entry in db.query(VehicleHistory).all()] == ["NEW1ABC"]
