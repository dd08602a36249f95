"""Tests for the local SQLite store."""

import pytest
from datetime import timedelta

from src.data.errors import StorageError
from src.data.models import (
    CacheRecord,
    EntityType,
    OperationType,
    PendingOperation,
    SyncStatus,
    utcnow,
)
from src.data.persistence import LocalStore, format_ts


def _record(entity_id, fetched_at=None, **fields):
    entity = {"id": entity_id, "name": f"Entity {entity_id}", **fields}
    return CacheRecord.from_entity(EntityType.PROVIDER, entity, fetched_at=fetched_at)


class TestFormatTs:
    def test_naive_treated_as_utc(self):
        now = utcnow()
        assert format_ts(now.replace(tzinfo=None)) == format_ts(now)

    def test_lexical_order_matches_time_order(self):
        now = utcnow()
        earlier = now - timedelta(microseconds=1)
        assert format_ts(earlier) < format_ts(now)


class TestLocalStoreRecords:
    def test_new_store_has_version_zero(self, temp_data_dir):
        store = LocalStore(temp_data_dir)
        assert store.get_schema_version() == 0

    def test_records_require_migration(self, temp_data_dir):
        store = LocalStore(temp_data_dir)
        with pytest.raises(StorageError):
            store.get(EntityType.PROVIDER, "prov-1")

    def test_put_and_get(self, store):
        store.put(_record("prov-1"))
        record = store.get(EntityType.PROVIDER, "prov-1")
        assert record is not None
        assert record.entity["name"] == "Entity prov-1"
        assert record.fetched_at.tzinfo is not None

    def test_get_missing_returns_none(self, store):
        assert store.get(EntityType.CLIENT, "nope") is None

    def test_last_write_wins(self, store):
        store.put(_record("prov-1", name="first"))
        store.put(_record("prov-1", name="second"))
        assert store.count(EntityType.PROVIDER) == 1
        assert store.get(EntityType.PROVIDER, "prov-1").entity["name"] == "second"

    def test_types_are_separate(self, store):
        store.put(_record("shared"))
        store.put(CacheRecord.from_entity(EntityType.CLIENT, {"id": "shared"}))
        assert store.count(EntityType.PROVIDER) == 1
        assert store.count(EntityType.CLIENT) == 1
        assert store.count() == 2

    def test_put_many_returns_count(self, store):
        assert store.put_many([_record("a"), _record("b"), _record("c")]) == 3
        assert store.put_many([]) == 0
        assert [r.entity_id for r in store.get_all(EntityType.PROVIDER)] == ["a", "b", "c"]

    def test_delete(self, store):
        store.put(_record("prov-1"))
        assert store.delete(EntityType.PROVIDER, "prov-1") is True
        assert store.delete(EntityType.PROVIDER, "prov-1") is False

    def test_delete_older_than(self, store):
        now = utcnow()
        store.put_many([
            _record("old-1", fetched_at=now - timedelta(days=8)),
            _record("old-2", fetched_at=now - timedelta(days=30)),
            _record("fresh", fetched_at=now - timedelta(days=1)),
        ])
        removed = store.delete_older_than(EntityType.PROVIDER, now - timedelta(days=7))
        assert removed == 2
        assert [r.entity_id for r in store.get_all(EntityType.PROVIDER)] == ["fresh"]

    def test_clear_one_type(self, store):
        store.put(_record("prov-1"))
        store.put(CacheRecord.from_entity(EntityType.CLIENT, {"id": "cli-1"}))
        store.clear(EntityType.PROVIDER)
        assert store.count(EntityType.PROVIDER) == 0
        assert store.count(EntityType.CLIENT) == 1

    def test_unserializable_entity(self, store):
        record = CacheRecord(EntityType.PROVIDER, "bad", {"id": "bad", "value": object()})
        with pytest.raises(StorageError):
            store.put(record)


class TestLocalStorePendingOperations:
    def _op(self, entity_id, op_type=OperationType.UPDATE, **payload):
        return PendingOperation(
            operation_type=op_type,
            entity_type=EntityType.CLIENT,
            entity_id=entity_id,
            payload=payload,
        )

    def test_insertion_order(self, store):
        for entity_id in ("c", "a", "b"):
            store.add_pending_operation(self._op(entity_id))
        ops = store.list_pending_operations()
        assert [op.entity_id for op in ops] == ["c", "a", "b"]
        assert ops[0].id < ops[1].id < ops[2].id

    def test_add_assigns_id(self, store):
        op = store.add_pending_operation(self._op("cli-1", name="x"))
        assert op.id is not None
        stored = store.list_pending_operations()[0]
        assert stored.payload == {"name": "x"}
        assert stored.retries == 0
        assert stored.synced is False

    def test_record_failure(self, store):
        op = store.add_pending_operation(self._op("cli-1"))
        store.record_failure(op.id, "boom")
        store.record_failure(op.id, "boom again")
        stored = store.list_pending_operations()[0]
        assert stored.retries == 2
        assert stored.error == "boom again"
        assert store.count_pending(min_retries=2) == 1
        assert store.count_pending(min_retries=3) == 0

    def test_mark_synced_hides_operation(self, store):
        op = store.add_pending_operation(self._op("cli-1"))
        store.mark_synced(op.id)
        assert store.list_pending_operations() == []
        assert len(store.list_pending_operations(include_synced=True)) == 1
        assert store.count_pending() == 0
        assert store.delete_synced_operations() == 1
        assert store.count_pending(include_synced=True) == 0

    def test_remap_entity_id(self, store):
        pending = store.add_pending_operation(self._op("temp_1"))
        done = store.add_pending_operation(self._op("temp_1"))
        store.mark_synced(done.id)
        store.add_pending_operation(self._op("cli-9"))

        assert store.remap_entity_id(EntityType.CLIENT, "temp_1", "srv-1") == 1
        assert store.remap_entity_id(EntityType.PROVIDER, "cli-9", "srv-2") == 0
        ops = {op.id: op.entity_id for op in store.list_pending_operations(include_synced=True)}
        assert ops[pending.id] == "srv-1"
        assert ops[done.id] == "temp_1"

    def test_filter_by_entity_type(self, store):
        store.add_pending_operation(self._op("cli-1"))
        store.add_pending_operation(PendingOperation(
            operation_type=OperationType.DELETE,
            entity_type=EntityType.PROVIDER,
            entity_id="prov-1",
        ))
        ops = store.list_pending_operations(entity_type=EntityType.PROVIDER)
        assert [op.entity_id for op in ops] == ["prov-1"]


class TestLocalStoreMetadata:
    def test_sync_metadata_roundtrip(self, store):
        when = utcnow() - timedelta(hours=1)
        store.set_sync_metadata("sync", SyncStatus.ERROR, when)
        meta = store.get_sync_metadata("sync")
        assert meta.status == SyncStatus.ERROR
        assert meta.last_sync == when

    def test_missing_metadata(self, store):
        assert store.get_sync_metadata("providers_preload") is None

    def test_schema_version_never_decreases(self, store):
        with pytest.raises(ValueError):
            store.set_schema_version(1)

    def test_estimate_size(self, store):
        assert store.estimate_size() == 0
        store.put(_record("prov-1"))
        assert store.estimate_size() > 0

    def test_is_readable(self, store):
        assert store.is_readable() is True

    def test_reset_returns_to_version_zero(self, store):
        store.put(_record("prov-1"))
        store.reset()
        assert store.get_schema_version() == 0
