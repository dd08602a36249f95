"""Background workers for offline initialization and periodic cleanup.

The OfflineInitCoordinator is created once at bootstrap and handed to
whatever owns the application lifetime. It runs the one-time startup
sequence (migrate, wait, preload, clean) on a detached thread, then keeps a
cleanup timer alive until stopped.
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..cache.manager import CacheManager
from ..cache.sync import SyncManager
from ..data.errors import MigrationError, StorageError
from ..data.migrations import migrate_database
from ..data.models import to_iso, utcnow
from ..data.persistence import LocalStore
from ..remote.connectivity import ConnectivityMonitor

DEFAULT_STARTUP_DELAY = 2.0
DEFAULT_CLEANUP_INTERVAL = 24 * 60 * 60


def _log(msg: str) -> None:
    """Print with flush for reliable output in daemon threads."""
    print(msg, flush=True)


class InitState(str, Enum):
    """Lifecycle states of the offline-init coordinator."""

    UNINITIALIZED = "uninitialized"
    MIGRATING = "migrating"
    WAITING = "waiting"
    PRELOADING = "preloading"
    CLEANING_UP = "cleaning_up"
    IDLE = "idle"  # Offline at startup; preload skipped
    STEADY = "steady"
    STOPPED = "stopped"


class CleanupWorker(threading.Thread):
    """Background worker that fires a tick every interval until stopped."""

    daemon = True

    def __init__(self, tick: Callable[[], None], interval_seconds: float):
        super().__init__(name="cache-cleanup-worker")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.tick = tick
        self.interval = interval_seconds
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.tick()
            except Exception as exc:
                _log(f"[offline-init] Periodic cleanup failed: {exc}")

    def stop(self) -> None:
        self._stop_event.set()


class ConnectivityWorker(threading.Thread):
    """Polls the connectivity monitor so transitions reach its subscribers."""

    daemon = True

    def __init__(self, monitor: ConnectivityMonitor, interval_seconds: float):
        super().__init__(name="connectivity-worker")
        self.monitor = monitor
        self.interval = interval_seconds
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.monitor.is_online()

    def stop(self) -> None:
        self._stop_event.set()


class OfflineInitCoordinator:
    """Runs offline initialization once and owns the periodic cleanup timer.

    State flow:
        UNINITIALIZED -> MIGRATING -> WAITING
            -> PRELOADING -> CLEANING_UP -> STEADY   (online)
            -> IDLE -> STEADY                        (offline)
        STEADY -> CLEANING_UP -> STEADY on each timer tick while online

    Migration failures are logged and startup continues with whatever
    schema the store has. In-flight preload or cleanup runs to completion
    even if stop() is called meanwhile.
    """

    def __init__(
        self,
        store: LocalStore,
        cache_manager: CacheManager,
        connectivity: ConnectivityMonitor,
        sync_manager: Optional[SyncManager] = None,
        *,
        startup_delay: float = DEFAULT_STARTUP_DELAY,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        connectivity_poll_interval: float = 0,
        sync_on_reconnect: bool = True,
        migrate_fn: Callable[[LocalStore], Any] = migrate_database,
    ):
        self.store = store
        self.cache_manager = cache_manager
        self.connectivity = connectivity
        self.sync_manager = sync_manager
        self.startup_delay = startup_delay
        self.cleanup_interval = cleanup_interval
        self.connectivity_poll_interval = connectivity_poll_interval
        self.sync_on_reconnect = sync_on_reconnect
        self.migrate_fn = migrate_fn

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._settled = threading.Event()
        self._reset_state()

    def _reset_state(self) -> None:
        self._started = False
        self._state = InitState.UNINITIALIZED
        self.history: List[InitState] = [InitState.UNINITIALIZED]
        self.last_error: Optional[str] = None
        self.started_at = None
        self.cleanup_runs = 0
        self.skipped_ticks = 0
        self._init_thread: Optional[threading.Thread] = None
        self._cleanup_worker: Optional[CleanupWorker] = None
        self._connectivity_worker: Optional[ConnectivityWorker] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def state(self) -> InitState:
        return self._state

    @property
    def started(self) -> bool:
        return self._started

    def _set_state(self, state: InitState) -> None:
        with self._lock:
            self._state = state
            self.history.append(state)

    def _advance(self, state: InitState) -> bool:
        """Set state unless stop() has been requested."""
        with self._lock:
            if self._stop_event.is_set():
                return False
            self._state = state
            self.history.append(state)
            return True

    # --- Lifecycle ---

    def start(self) -> bool:
        """Kick off initialization in the background.

        Returns:
            False if this coordinator was already started (no-op)
        """
        with self._lock:
            if self._started:
                return False
            self._started = True
            self._stop_event.clear()
            self._settled.clear()
            self.started_at = utcnow()

        if self.sync_manager is not None and self.sync_on_reconnect:
            self._unsubscribe = self.connectivity.subscribe(self._on_connectivity_change)

        self._init_thread = threading.Thread(target=self._run_init, name="offline-init", daemon=True)
        self._init_thread.start()
        return True

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel timers and wait briefly for background threads."""
        self._stop_event.set()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        with self._lock:
            workers = [self._cleanup_worker, self._connectivity_worker]
        for worker in workers:
            if worker is not None:
                worker.stop()
                worker.join(timeout=timeout)
        if self._init_thread is not None and self._init_thread is not threading.current_thread():
            self._init_thread.join(timeout=timeout)
        if self._started:
            self._set_state(InitState.STOPPED)
        self._settled.set()

    def reset(self) -> None:
        """Stop and return to UNINITIALIZED so start() can run again."""
        self.stop()
        with self._lock:
            self._reset_state()
        self._stop_event.clear()
        self._settled.clear()

    def wait_until_settled(self, timeout: Optional[float] = None) -> bool:
        """Block until the one-time sequence has finished (or was stopped)."""
        return self._settled.wait(timeout)

    # --- One-time sequence ---

    def _run_init(self) -> None:
        self._set_state(InitState.MIGRATING)
        try:
            self.migrate_fn(self.store)
        except (MigrationError, StorageError) as exc:
            self.last_error = str(exc)
            _log(f"[offline-init] Database migration failed, continuing: {exc}")

        self._set_state(InitState.WAITING)
        if self._stop_event.wait(self.startup_delay):
            _log("[offline-init] Stopped before preload")
            self._settled.set()
            return

        if self.connectivity.is_online():
            _log("[offline-init] Initializing offline capabilities...")
            self._set_state(InitState.PRELOADING)
            try:
                self.cache_manager.preload_providers()
                self.cache_manager.preload_clients()
            except Exception as exc:
                _log(f"[offline-init] Error preloading data: {exc}")
            self._run_cleanup()
        else:
            _log("[offline-init] Offline at startup; skipping preload")
            self._set_state(InitState.IDLE)

        with self._lock:
            if self._stop_event.is_set():
                self._settled.set()
                return
            self._cleanup_worker = CleanupWorker(self._cleanup_tick, self.cleanup_interval)
            self._cleanup_worker.start()
            if self.connectivity_poll_interval > 0:
                self._connectivity_worker = ConnectivityWorker(
                    self.connectivity, self.connectivity_poll_interval
                )
                self._connectivity_worker.start()
        self._set_state(InitState.STEADY)
        self._settled.set()

    def _run_cleanup(self) -> None:
        if not self._advance(InitState.CLEANING_UP):
            return
        try:
            self.cache_manager.clean_old_data()
            self.cleanup_runs += 1
        except Exception as exc:
            _log(f"[offline-init] Error cleaning old data: {exc}")

    def _cleanup_tick(self) -> None:
        # Offline ticks are dropped, not queued; the next tick rechecks.
        if not self.connectivity.is_online():
            self.skipped_ticks += 1
            _log("[offline-init] Offline; skipping periodic cleanup")
            return
        self._run_cleanup()
        self._advance(InitState.STEADY)
        _log("[offline-init] Periodic cleanup completed")

    # --- Reconnect handling ---

    def _on_connectivity_change(self, online: bool) -> None:
        if not online or self.sync_manager is None or self._stop_event.is_set():
            return
        threading.Thread(
            target=self._sync_after_reconnect, name="offline-sync", daemon=True
        ).start()

    def _sync_after_reconnect(self) -> None:
        _log("[offline-init] Back online; replaying pending operations")
        try:
            self.sync_manager.process_pending_operations()
        except Exception as exc:
            _log(f"[offline-init] Replay after reconnect failed: {exc}")

    def get_status(self) -> Dict[str, Any]:
        """Status information for API responses."""
        return {
            "state": self._state.value,
            "started": self._started,
            "started_at": to_iso(self.started_at),
            "last_error": self.last_error,
            "cleanup_runs": self.cleanup_runs,
            "skipped_ticks": self.skipped_ticks,
            "online": self.connectivity.last_known,
        }
