"""Remote sources - backend REST client, entity services, connectivity."""

from .base import EntitySource
from .client import ApiClient, EntityService
from .connectivity import ConnectivityMonitor

__all__ = [
    "EntitySource",
    "ApiClient",
    "EntityService",
    "ConnectivityMonitor",
]
