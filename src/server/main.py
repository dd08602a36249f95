#!/usr/bin/env python3
"""
Offline Cache - Main entry point.

Migrates the local store, preloads reference data in the background and
serves the cache diagnostics API.
"""

from __future__ import annotations

import argparse
from http.server import ThreadingHTTPServer
from pathlib import Path
from typing import Optional

from ..cache.manager import CacheManager
from ..cache.sync import SyncManager
from ..data.errors import MigrationError, StorageError
from ..data.migrations import migrate_database
from ..data.models import EntityType
from ..data.persistence import LocalStore
from ..remote.client import ApiClient, EntityService
from ..remote.connectivity import ConnectivityMonitor
from .config import Config
from .routes import DiagnosticsRequestHandler
from .workers import OfflineInitCoordinator


class OfflineCacheApp:
    """Wires the store, API client, managers and coordinator together.

    Create one per process and share it; the coordinator inside enforces the
    run-once startup sequence.
    """

    def __init__(self, config: Config, store: Optional[LocalStore] = None, client: Optional[ApiClient] = None):
        self.config = config
        self.store = store or LocalStore(Path(config.data_dir) if config.data_dir else None)
        self.client = client or ApiClient(
            config.api.base_url,
            token=config.api.token,
            timeout=config.api.timeout,
            verify=config.api.verify,
            ca_bundle=config.api.ca_bundle,
        )
        self.services = [
            EntityService(self.client, EntityType.PROVIDER),
            EntityService(self.client, EntityType.CLIENT),
        ]
        self.connectivity = ConnectivityMonitor(self.client.is_available)
        self.cache_manager = CacheManager(
            self.store,
            self.services,
            is_online=self.connectivity.is_online,
            retention=config.cache.retention,
            deleted_retention=config.cache.deleted_retention,
            pending_threshold=config.cache.pending_operations_threshold,
            max_retries=config.cache.max_retries,
            temp_entity_max_age=config.cache.temp_entity_max_age,
        )
        self.sync_manager = SyncManager(
            self.store,
            self.services,
            is_online=self.connectivity.is_online,
            max_retries=config.cache.max_retries,
        )
        self.coordinator = OfflineInitCoordinator(
            self.store,
            self.cache_manager,
            self.connectivity,
            self.sync_manager,
            startup_delay=config.offline_init.startup_delay,
            cleanup_interval=config.offline_init.cleanup_interval,
            connectivity_poll_interval=config.offline_init.connectivity_poll_interval,
            sync_on_reconnect=config.offline_init.sync_on_reconnect,
        )

    def close(self) -> None:
        self.coordinator.stop()
        self.client.close()


def run_server(args) -> None:
    """Start the coordinator and serve the diagnostics API."""
    config = Config.load(args.config)
    print(f"[config] Loaded: deployment={config.deployment_name!r}, api={config.api.base_url!r}")

    # Override config with CLI args
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.url_prefix:
        config.server.url_prefix = args.url_prefix
    if args.api_url:
        config.api.base_url = args.api_url
    if args.data_dir:
        config.data_dir = args.data_dir
    if args.startup_delay is not None:
        config.offline_init.startup_delay = args.startup_delay

    app = OfflineCacheApp(config)
    app.coordinator.start()

    DiagnosticsRequestHandler.cache_manager = app.cache_manager
    DiagnosticsRequestHandler.sync_manager = app.sync_manager
    DiagnosticsRequestHandler.coordinator = app.coordinator
    DiagnosticsRequestHandler.store = app.store
    DiagnosticsRequestHandler.url_prefix = config.server.url_prefix
    DiagnosticsRequestHandler.config = config.to_dict()

    server = ThreadingHTTPServer((config.server.host, config.server.port), DiagnosticsRequestHandler)

    print(f"[diagnostics] Serving on http://{config.server.host}:{config.server.port}")
    if config.server.url_prefix:
        print(f"[diagnostics] URL prefix: {config.server.url_prefix}")
    print(f"[diagnostics] Data directory: {app.store.data_dir}")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\n[diagnostics] Shutting down...")
    finally:
        app.close()
        server.server_close()


def run_command(args) -> int:
    """Run a single cache operation and print the result."""
    config = Config.load(args.config)
    if args.api_url:
        config.api.base_url = args.api_url
    if args.data_dir:
        config.data_dir = args.data_dir
    app = OfflineCacheApp(config)
    try:
        if args.command not in ("migrate", "reset"):
            try:
                migrate_database(app.store)
            except MigrationError as exc:
                print(f"[migration] Failed, continuing: {exc}")
        if args.command == "migrate":
            try:
                version = migrate_database(app.store)
            except MigrationError as exc:
                print(f"[migration] Failed: {exc}")
                return 1
            print(f"[migration] Schema version {version}")
        elif args.command == "reset":
            try:
                app.store.reset()
                version = migrate_database(app.store)
            except (StorageError, MigrationError) as exc:
                print(f"[cache] Reset failed: {exc}")
                return 1
            print(f"[cache] Database reset (schema version {version})")
        elif args.command == "preload":
            for resource, count in app.cache_manager.preload_all().items():
                print(f"[cache] {resource}: {count}")
        elif args.command == "cleanup":
            print(f"[cache] Removed {app.cache_manager.clean_old_data()} rows")
        elif args.command == "clear":
            return 0 if app.cache_manager.clear_all_cache() else 1
        elif args.command == "stats":
            for key, value in app.cache_manager.get_cache_stats().to_dict().items():
                print(f"{key}: {value}")
        elif args.command == "health":
            health = app.cache_manager.check_cache_health()
            print("healthy" if health.is_healthy else "unhealthy")
            for issue in health.issues:
                print(f"  - {issue}")
            return 0 if health.is_healthy else 2
        elif args.command == "sync":
            result = app.sync_manager.process_pending_operations()
            if result is None:
                print("[sync] Skipped (offline or already running)")
                return 1
            print(f"[sync] {result.to_dict()}")
    finally:
        app.client.close()
    return 0


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Offline reference-data cache",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", type=str, help="Path to config YAML file")
    parser.add_argument("--api-url", default=None, help="Override the backend API base URL")
    parser.add_argument("--data-dir", default=None, help="Override the data directory")

    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the coordinator and diagnostics server")
    serve.add_argument("--host", default=None, help="Bind address")
    serve.add_argument("--port", type=int, default=None, help="Port to listen on")
    serve.add_argument("--url-prefix", default="", help="Path prefix for reverse proxy setup")
    serve.add_argument(
        "--startup-delay",
        type=float,
        default=None,
        help="Seconds to wait after migration before preloading",
    )

    for name, help_text in (
        ("migrate", "Apply pending schema migrations"),
        ("reset", "Delete the local database and recreate it"),
        ("preload", "Fetch providers and clients into the cache"),
        ("cleanup", "Evict stale cached data"),
        ("clear", "Delete all cached data and pending operations"),
        ("stats", "Print cache statistics"),
        ("health", "Run cache health checks"),
        ("sync", "Replay pending offline operations"),
    ):
        subparsers.add_parser(name, help=help_text)

    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "serve"
        args.host = None
        args.port = None
        args.url_prefix = ""
        args.startup_delay = None
    return args


def main(argv=None):
    """Entry point for the offline-cache command."""
    args = parse_args(argv)
    if args.command == "serve":
        run_server(args)
        return 0
    return run_command(args)


if __name__ == "__main__":
    raise SystemExit(main())
