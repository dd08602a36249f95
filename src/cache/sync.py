"""Replay of operations recorded while offline.

Operations are replayed strictly in insertion order. Conflicts with newer
server-side changes are resolved last-write-wins: the conflict is logged and
the local change is still sent. If an operation fails, later operations for
the same entity are deferred to the next pass so they never overtake it.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..data.errors import NetworkError, StorageError
from ..data.models import (
    TEMP_ID_PREFIX,
    CacheRecord,
    EntityType,
    OperationType,
    PendingOperation,
    SyncStatus,
    parse_iso,
)
from ..data.persistence import LocalStore
from ..remote.client import EntityService
from .manager import MAX_RETRIES, SYNC_KEY

StatusListener = Callable[[SyncStatus], None]


def _log(msg: str) -> None:
    print(f"[sync] {msg}", flush=True)


@dataclass
class SyncResult:
    """Outcome of one replay pass."""

    processed: int = 0
    failed: int = 0
    deferred: int = 0
    remaining: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "deferred": self.deferred,
            "remaining": self.remaining,
        }


class SyncManager:
    """Queues offline mutations and replays them against the backend."""

    def __init__(
        self,
        store: LocalStore,
        services: Iterable[EntityService] = (),
        is_online: Callable[[], bool] = lambda: True,
        max_retries: int = MAX_RETRIES,
    ):
        self.store = store
        self.services: Dict[EntityType, EntityService] = {s.entity_type: s for s in services}
        self.is_online = is_online
        self.max_retries = max_retries
        self._sync_lock = threading.Lock()
        self._listeners: List[StatusListener] = []
        self._listeners_lock = threading.Lock()

    @property
    def is_syncing(self) -> bool:
        return self._sync_lock.locked()

    # --- Recording offline writes ---

    def queue_operation(
        self,
        operation_type: OperationType,
        entity_type: EntityType,
        payload: Optional[Dict[str, Any]] = None,
        entity_id: Optional[str] = None,
    ) -> PendingOperation:
        """Record a mutation made while offline and apply it to the local cache.

        CREATE without an id gets a temporary ``temp_`` id so the entity can be
        shown and edited before the server assigns a real one.
        """
        operation_type = OperationType(operation_type)
        entity_type = EntityType(entity_type)
        payload = dict(payload or {})

        if operation_type == OperationType.CREATE and not entity_id:
            entity_id = f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"
        if operation_type != OperationType.CREATE and not entity_id:
            raise ValueError(f"{operation_type.value} requires an entity_id")

        operation = self.store.add_pending_operation(PendingOperation(
            operation_type=operation_type,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload,
        ))
        self._apply_locally(operation)
        return operation

    def _apply_locally(self, operation: PendingOperation) -> None:
        entity_type = operation.entity_type
        if operation.operation_type == OperationType.DELETE:
            self.store.delete(entity_type, operation.entity_id)
            return
        existing = self.store.get(entity_type, operation.entity_id)
        entity = dict(existing.entity) if existing else {}
        entity.update(operation.payload)
        entity["id"] = operation.entity_id
        self.store.put(CacheRecord.from_entity(entity_type, entity))

    def get_pending_count(self) -> int:
        return self.store.count_pending()

    # --- Status listeners ---

    def on_status_change(self, listener: StatusListener) -> Callable[[], None]:
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, status: SyncStatus) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(status)
            except Exception as exc:
                _log(f"Status listener failed: {exc}")

    # --- Replay ---

    def process_pending_operations(self) -> Optional[SyncResult]:
        """Replay queued operations in order.

        Returns:
            SyncResult, or None if offline or a replay is already running
        """
        if not self._sync_lock.acquire(blocking=False):
            _log("Sync already in progress")
            return None
        try:
            if not self.is_online():
                _log("Cannot sync: offline")
                return None
            return self._run_pass()
        finally:
            self._sync_lock.release()

    def _run_pass(self) -> Optional[SyncResult]:
        self._notify(SyncStatus.SYNCING)
        result = SyncResult()
        try:
            self.store.set_sync_metadata(SYNC_KEY, SyncStatus.SYNCING)
            operations = self.store.list_pending_operations()
            _log(f"Processing {len(operations)} pending operations")

            blocked = set()
            id_map: Dict[Tuple[EntityType, str], str] = {}
            for operation in operations:
                key = (operation.entity_type, operation.entity_id)
                if operation.entity_id and key in blocked:
                    result.deferred += 1
                    continue
                if key in id_map:
                    operation.entity_id = id_map[key]
                try:
                    new_id = self._replay(operation)
                except (NetworkError, ValueError) as exc:
                    result.failed += 1
                    if operation.entity_id:
                        blocked.add(key)
                    self.store.record_failure(operation.id, str(exc))
                    attempts = operation.retries + 1
                    _log(f"Failed operation {operation.id} (attempt {attempts}): {exc}")
                    if attempts >= self.max_retries:
                        _log(
                            f"Operation {operation.id} ({operation.operation_type.value} "
                            f"{operation.entity_type.value}) has failed {attempts} times"
                        )
                    continue
                if new_id and operation.targets_temporary_entity:
                    id_map[key] = new_id
                self.store.mark_synced(operation.id)
                self.store.delete_pending_operation(operation.id)
                result.processed += 1

            result.remaining = self.store.count_pending()
            self.store.set_sync_metadata(SYNC_KEY, SyncStatus.IDLE)
        except StorageError as exc:
            _log(f"Sync error: {exc}")
            self._notify(SyncStatus.ERROR)
            try:
                self.store.set_sync_metadata(SYNC_KEY, SyncStatus.ERROR)
            except StorageError as meta_exc:
                _log(f"Could not record sync error: {meta_exc}")
            return result

        self._notify(SyncStatus.IDLE)
        if result.remaining == 0:
            _log("All changes synchronized")
        else:
            _log(f"{result.remaining} operations still pending")
        return result

    def _replay(self, operation: PendingOperation) -> Optional[str]:
        """Send one operation. Returns the server id for creates."""
        service = self.services.get(operation.entity_type)
        if service is None:
            raise ValueError(f"Unknown entity type: {operation.entity_type}")

        if operation.operation_type == OperationType.CREATE:
            return self._replay_create(service, operation)

        if not operation.entity_id:
            raise ValueError(f"Missing entity_id for {operation.operation_type.value} operation")
        if operation.targets_temporary_entity:
            # Creates remap their followers, so a temp id here has no create ahead of it.
            raise ValueError(
                f"No server id for temporary entity {operation.entity_id}; "
                f"{operation.operation_type.value} cannot be replayed"
            )

        if operation.operation_type == OperationType.UPDATE:
            self._log_conflict(service, operation)
            updated = service.update(operation.entity_id, operation.payload)
            if updated and updated.get("id") is not None:
                self.store.put(CacheRecord.from_entity(operation.entity_type, updated))
            return None

        if operation.operation_type == OperationType.DELETE:
            service.delete(operation.entity_id)
            self.store.delete(operation.entity_type, operation.entity_id)
            return None

        raise ValueError(f"Unknown operation type: {operation.operation_type}")

    def _replay_create(self, service: EntityService, operation: PendingOperation) -> Optional[str]:
        created = service.create(operation.payload)
        if operation.targets_temporary_entity:
            self.store.delete(operation.entity_type, operation.entity_id)
        if created and created.get("id") is not None:
            record = CacheRecord.from_entity(operation.entity_type, created)
            self.store.put(record)
            if operation.targets_temporary_entity:
                moved = self.store.remap_entity_id(
                    operation.entity_type, operation.entity_id, record.entity_id
                )
                if moved:
                    _log(f"Remapped {moved} queued operations from {operation.entity_id} to {record.entity_id}")
            return record.entity_id
        return None

    def _log_conflict(self, service: EntityService, operation: PendingOperation) -> None:
        try:
            server_version = service.get(operation.entity_id)
            local = self.store.get(operation.entity_type, operation.entity_id)
        except NetworkError as exc:
            _log(f"Could not check for conflicts on {operation.entity_id}: {exc}")
            return
        if not server_version or not local:
            return
        server_time = parse_iso(server_version.get("updated_at"))
        local_time = parse_iso(local.entity.get("updated_at"))
        if server_time and local_time and server_time > local_time:
            _log(
                f"Conflict on {operation.entity_type.value} {operation.entity_id}: server "
                f"updated {server_time.isoformat()} after local {local_time.isoformat()}; "
                f"applying local change (last write wins)"
            )
