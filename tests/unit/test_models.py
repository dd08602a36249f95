"""Tests for data models."""

import pytest
from datetime import datetime, timedelta, timezone

from src.data.models import (
    CacheHealth,
    CacheRecord,
    CacheStats,
    EntityType,
    OperationType,
    PendingOperation,
    parse_iso,
    to_iso,
)


class TestParseIso:
    def test_trailing_z(self):
        parsed = parse_iso("2026-03-05T08:15:00.000Z")
        assert parsed == datetime(2026, 3, 5, 8, 15, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert parse_iso("2026-03-05T08:15:00").tzinfo is not None

    def test_invalid(self):
        assert parse_iso("") is None
        assert parse_iso(None) is None
        assert parse_iso("yesterday") is None

    def test_to_iso(self):
        assert to_iso(None) is None
        assert to_iso(datetime(2026, 1, 1, tzinfo=timezone.utc)) == "2026-01-01T00:00:00+00:00"


class TestEntityType:
    def test_resource(self):
        assert EntityType.PROVIDER.resource == "providers"
        assert EntityType.CLIENT.resource == "clients"

    def test_from_value(self):
        assert EntityType("client") is EntityType.CLIENT


class TestCacheRecord:
    def test_from_entity(self):
        record = CacheRecord.from_entity(EntityType.PROVIDER, {"id": 42, "name": "Acme"})
        assert record.entity_id == "42"
        assert record.entity["name"] == "Acme"
        assert record.fetched_at.tzinfo is not None

    def test_requires_id(self):
        with pytest.raises(ValueError):
            CacheRecord.from_entity(EntityType.CLIENT, {"name": "No id"})

    def test_is_temporary(self):
        assert CacheRecord.from_entity(EntityType.CLIENT, {"id": "temp_abc"}).is_temporary
        assert not CacheRecord.from_entity(EntityType.CLIENT, {"id": "cli-1"}).is_temporary

    def test_age(self):
        now = datetime(2026, 1, 2, tzinfo=timezone.utc)
        record = CacheRecord.from_entity(EntityType.CLIENT, {"id": "c"}, fetched_at=now - timedelta(hours=1))
        assert record.age_seconds(now) == 3600


class TestPendingOperation:
    def test_targets_temporary_entity(self):
        op = PendingOperation(OperationType.UPDATE, EntityType.CLIENT, entity_id="temp_1")
        assert op.targets_temporary_entity
        assert not PendingOperation(OperationType.CREATE, EntityType.CLIENT).targets_temporary_entity


class TestSummaries:
    def test_stats_to_dict(self):
        stats = CacheStats(providers_count=3, clients_count=1, cache_size=2048)
        assert stats.to_dict() == {
            "providersCount": 3,
            "clientsCount": 1,
            "pendingOperationsCount": 0,
            "lastSync": None,
            "cacheSize": "2.00 KB",
            "cacheSizeBytes": 2048,
        }

    def test_health(self):
        assert CacheHealth().to_dict() == {"isHealthy": True, "issues": []}
        health = CacheHealth(issues=["Last sync failed"])
        assert not health.is_healthy
