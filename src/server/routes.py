"""HTTP request handlers for the cache diagnostics API.

Exposes cache stats, health, coordinator state and on-demand cache
operations (preload, cleanup, clear, migrate, sync) as JSON endpoints.
"""

from __future__ import annotations

import json
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler
from typing import Any, Dict, Optional, TYPE_CHECKING
from urllib.parse import urlparse

from ..data.errors import MigrationError, StorageError
from ..data.migrations import migrate_database
from ..data.models import EntityType, to_iso

if TYPE_CHECKING:
    from ..cache.manager import CacheManager
    from ..cache.sync import SyncManager
    from ..data.persistence import LocalStore
    from .workers import OfflineInitCoordinator


API_PATHS = {
    "/api/status",
    "/api/config",
    "/api/cache/stats",
    "/api/cache/health",
    "/api/cache/preload",
    "/api/cache/cleanup",
    "/api/cache/clear",
    "/api/cache/migrate",
    "/api/sync",
    "/api/sync/pending",
}


class DiagnosticsRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for cache diagnostics."""

    # These will be set by the server
    cache_manager: Optional["CacheManager"] = None
    sync_manager: Optional["SyncManager"] = None
    coordinator: Optional["OfflineInitCoordinator"] = None
    store: Optional["LocalStore"] = None
    url_prefix: str = ""
    config: Optional[Dict] = None

    def do_GET(self):
        path = self._route_path()
        if path is None:
            return

        if path == "/api/status":
            return self._handle_status()
        if path == "/api/config":
            return self._send_json(self.config or {})
        if path == "/api/cache/stats":
            return self._handle_stats()
        if path == "/api/cache/health":
            return self._handle_health()
        if path == "/api/sync/pending":
            return self._handle_pending()
        if path.startswith("/api/cache/entities/"):
            resource = path.split("/api/cache/entities/", 1)[-1].strip("/")
            return self._handle_entities(resource)

        self._send_json({"error": "Unknown endpoint"}, status_code=HTTPStatus.NOT_FOUND)

    def do_POST(self):
        path = self._route_path()
        if path is None:
            return

        if path == "/api/cache/preload":
            return self._with_manager(lambda m: {"ok": True, "preloaded": m.preload_all()})
        if path == "/api/cache/cleanup":
            return self._with_manager(lambda m: {"ok": True, "removed": m.clean_old_data()})
        if path == "/api/cache/clear":
            return self._with_manager(lambda m: {"ok": m.clear_all_cache()})
        if path == "/api/cache/migrate":
            return self._handle_migrate()
        if path == "/api/sync":
            return self._handle_sync()

        self._send_json({"error": "Unknown endpoint"}, status_code=HTTPStatus.NOT_FOUND)

    def do_OPTIONS(self):
        path = self._route_path()
        if path is None:
            return
        if path in API_PATHS:
            self.send_response(HTTPStatus.NO_CONTENT)
            self._send_cors_headers()
            self.send_header("Access-Control-Allow-Methods", "GET,POST,OPTIONS")
            self.send_header("Access-Control-Allow-Headers", "Content-Type")
            self.end_headers()
            return
        self._send_json({"error": "Unknown endpoint"}, status_code=HTTPStatus.NOT_FOUND)

    # --- API Handlers ---

    def _handle_status(self):
        coordinator = self.coordinator
        payload: Dict[str, Any] = {
            "coordinator": coordinator.get_status() if coordinator else None,
            "syncing": bool(self.sync_manager and self.sync_manager.is_syncing),
        }
        if self.store is not None:
            try:
                payload["schema_version"] = self.store.get_schema_version()
            except StorageError as exc:
                payload["schema_version"] = None
                payload["error"] = str(exc)
        self._send_json(payload)

    def _handle_stats(self):
        self._with_manager(lambda m: m.get_cache_stats().to_dict())

    def _handle_health(self):
        self._with_manager(lambda m: m.check_cache_health().to_dict())

    def _handle_entities(self, resource: str):
        lookup = {entity_type.resource: entity_type for entity_type in EntityType}
        entity_type = lookup.get(resource)
        if entity_type is None:
            self._send_json({"error": f"Unknown entity type {resource!r}"}, status_code=HTTPStatus.NOT_FOUND)
            return
        self._with_manager(lambda m: {"entities": m.list_cached(entity_type)})

    def _handle_pending(self):
        if self.store is None:
            self._send_json({"error": "Server not initialized."}, status_code=HTTPStatus.SERVICE_UNAVAILABLE)
            return
        try:
            operations = self.store.list_pending_operations()
        except StorageError as exc:
            self._send_json({"error": str(exc)}, status_code=HTTPStatus.INTERNAL_SERVER_ERROR)
            return
        self._send_json({
            "operations": [
                {
                    "id": op.id,
                    "type": op.operation_type.value,
                    "entity": op.entity_type.value,
                    "entity_id": op.entity_id,
                    "created_at": to_iso(op.created_at),
                    "retries": op.retries,
                    "error": op.error,
                }
                for op in operations
            ]
        })

    def _handle_migrate(self):
        if self.store is None:
            self._send_json({"error": "Server not initialized."}, status_code=HTTPStatus.SERVICE_UNAVAILABLE)
            return
        try:
            version = migrate_database(self.store)
        except MigrationError as exc:
            self._send_json(
                {"ok": False, "error": str(exc), "failed_version": exc.version},
                status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            )
            return
        self._send_json({"ok": True, "schema_version": version})

    def _handle_sync(self):
        sync_manager = self.sync_manager
        if sync_manager is None:
            self._send_json({"error": "Sync not configured."}, status_code=HTTPStatus.SERVICE_UNAVAILABLE)
            return
        result = sync_manager.process_pending_operations()
        if result is None:
            self._send_json(
                {"ok": False, "detail": "Offline or sync already in progress."},
                status_code=HTTPStatus.CONFLICT,
            )
            return
        self._send_json({"ok": True, **result.to_dict()})

    def _with_manager(self, action):
        manager = self.cache_manager
        if manager is None:
            self._send_json({"error": "Server not initialized."}, status_code=HTTPStatus.SERVICE_UNAVAILABLE)
            return
        try:
            payload = action(manager)
        except Exception as exc:
            self._send_json({"error": str(exc)}, status_code=HTTPStatus.INTERNAL_SERVER_ERROR)
            return
        self._send_json(payload)

    # --- Helpers ---

    def _route_path(self) -> Optional[str]:
        parsed = urlparse(self.path)
        stripped = self._strip_prefix(parsed.path)
        if stripped is None:
            self._send_json({"error": "Invalid prefix"}, status_code=HTTPStatus.NOT_FOUND)
            return None
        return stripped.rstrip("/") or "/"

    def _send_json(self, data: Any, *, status_code: HTTPStatus = HTTPStatus.OK):
        body = json.dumps(data, default=str).encode("utf-8")
        self.send_response(status_code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store, max-age=0")
        self._send_cors_headers()
        self.end_headers()
        self.wfile.write(body)

    def _send_cors_headers(self):
        self.send_header("Access-Control-Allow-Origin", "*")

    def _strip_prefix(self, path: str) -> Optional[str]:
        norm_prefix = (self.url_prefix or "").rstrip("/")
        if not norm_prefix:
            return path or "/"
        if not norm_prefix.startswith("/"):
            norm_prefix = f"/{norm_prefix}"
        if not path.startswith(norm_prefix):
            return None
        stripped = path[len(norm_prefix):] or "/"
        if not stripped.startswith("/"):
            stripped = "/" + stripped
        return stripped

    def log_message(self, format, *args):
        print(f"[diagnostics] {self.address_string()} {format % args}", flush=True)
