"""Cache orchestration - preload, eviction, health, and offline replay."""

from .manager import CacheManager
from .sync import SyncManager, SyncResult

__all__ = ["CacheManager", "SyncManager", "SyncResult"]
