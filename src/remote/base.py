"""Base interface for remote reference-data sources."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from ..data.models import EntityType


class EntitySource(ABC):
    """Abstract base class for sources of reference entities.

    The cache manager only depends on this interface, so the REST services
    and test doubles are interchangeable.
    """

    @property
    @abstractmethod
    def entity_type(self) -> EntityType:
        """Entity type this source produces (e.g., EntityType.PROVIDER)."""
        pass

    @property
    def name(self) -> str:
        """Short identifier used in log prefixes (e.g., 'providers')."""
        return self.entity_type.resource

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable name for diagnostics output."""
        pass

    @abstractmethod
    def fetch_all(self) -> List[Dict[str, Any]]:
        """Fetch every current entity from the source.

        Returns:
            List of entity dicts, each carrying an 'id'.

        Raises:
            NetworkError: If the source cannot be reached.
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this source can currently be reached."""
        pass

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "available": self.is_available(),
        }
