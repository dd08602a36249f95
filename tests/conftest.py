"""Pytest configuration and shared fixtures."""

import pytest
from pathlib import Path
from tempfile import TemporaryDirectory

from src.data.errors import NetworkError
from src.data.migrations import migrate_database
from src.data.models import EntityType
from src.data.persistence import LocalStore
from src.remote.base import EntitySource


class FakeEntityService(EntitySource):
    """In-memory stand-in for the REST entity services."""

    def __init__(self, entity_type, entities=None):
        self._entity_type = entity_type
        self.entities = {e["id"]: dict(e) for e in (entities or [])}
        self.fail = False
        self.fail_ids = set()
        self.calls = []
        self._next_id = 1000

    @property
    def entity_type(self):
        return self._entity_type

    @property
    def display_name(self):
        return self._entity_type.resource.capitalize()

    def is_available(self):
        return not self.fail

    def _check(self, entity_id=None):
        if self.fail or (entity_id is not None and entity_id in self.fail_ids):
            raise NetworkError(self.name, "simulated network failure")

    def fetch_all(self):
        self.calls.append(("fetch_all",))
        self._check()
        return [dict(e) for e in self.entities.values()]

    def get(self, entity_id):
        self.calls.append(("get", entity_id))
        self._check(entity_id)
        entity = self.entities.get(entity_id)
        return dict(entity) if entity else None

    def create(self, data):
        self.calls.append(("create", dict(data)))
        self._check()
        self._next_id += 1
        entity = dict(data, id=f"srv-{self._next_id}")
        self.entities[entity["id"]] = entity
        return dict(entity)

    def update(self, entity_id, data):
        self.calls.append(("update", entity_id, dict(data)))
        self._check(entity_id)
        entity = dict(self.entities.get(entity_id, {}), **data, id=entity_id)
        self.entities[entity_id] = entity
        return dict(entity)

    def delete(self, entity_id):
        self.calls.append(("delete", entity_id))
        self._check(entity_id)
        self.entities.pop(entity_id, None)


class Connectivity:
    """Toggleable connectivity probe."""

    def __init__(self, online=True):
        self.online = online
        self.checks = 0

    def __call__(self):
        self.checks += 1
        return self.online


@pytest.fixture
def temp_data_dir():
    """Create a temporary data directory for tests."""
    with TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_data_dir):
    """A fully migrated local store."""
    local = LocalStore(temp_data_dir)
    migrate_database(local)
    return local


@pytest.fixture
def connectivity():
    return Connectivity(online=True)


@pytest.fixture
def sample_providers():
    return [
        {
            "id": "prov-1",
            "code": "P001",
            "name": "Acme Supplies",
            "email": "sales@acme.example",
            "status": True,
            "created_at": "2026-01-10T09:00:00.000Z",
            "updated_at": "2026-01-10T09:00:00.000Z",
            "deleted_at": None,
        },
        {
            "id": "prov-2",
            "code": "P002",
            "name": "Northwind Traders",
            "email": "orders@northwind.example",
            "status": True,
            "created_at": "2026-02-01T12:30:00.000Z",
            "updated_at": "2026-03-05T08:15:00.000Z",
            "deleted_at": None,
        },
    ]


@pytest.fixture
def sample_clients():
    return [
        {
            "id": "cli-1",
            "name": "Contoso Retail",
            "email": "billing@contoso.example",
            "created_at": "2026-01-15T10:00:00.000Z",
            "updated_at": "2026-01-15T10:00:00.000Z",
            "deleted_at": None,
        },
    ]


@pytest.fixture
def provider_service(sample_providers):
    return FakeEntityService(EntityType.PROVIDER, sample_providers)


@pytest.fixture
def client_service(sample_clients):
    return FakeEntityService(EntityType.CLIENT, sample_clients)
