"""Connectivity tracking.

Callers can poll ``is_online()`` at decision points, or subscribe to
online/offline transitions. Transitions are detected whenever the probe is
consulted or the host pushes a state with ``set_online()``.
"""

from __future__ import annotations

import threading
from typing import Callable, List, Optional

Listener = Callable[[bool], None]


def _log(msg: str) -> None:
    print(f"[connectivity] {msg}", flush=True)


class ConnectivityMonitor:
    """Tracks whether the backend is reachable and notifies on change."""

    def __init__(self, probe: Callable[[], bool], initial: Optional[bool] = None):
        self._probe = probe
        self._online = initial
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []

    @property
    def last_known(self) -> Optional[bool]:
        """Most recent state without probing (None before the first check)."""
        return self._online

    def is_online(self) -> bool:
        """Probe connectivity now. Probe failures count as offline."""
        try:
            online = bool(self._probe())
        except Exception as exc:
            _log(f"Probe failed, assuming offline: {exc}")
            online = False
        self._update(online)
        return online

    def set_online(self, online: bool) -> None:
        """Record a state pushed by the host (e.g. an OS network event)."""
        self._update(bool(online))

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a transition listener.

        Returns:
            A callable that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _update(self, online: bool) -> None:
        with self._lock:
            previous = self._online
            self._online = online
            listeners = list(self._listeners)
        if previous is None or previous == online:
            return
        _log("Back online" if online else "Went offline")
        for listener in listeners:
            try:
                listener(online)
            except Exception as exc:
                _log(f"Listener {listener!r} failed: {exc}")
