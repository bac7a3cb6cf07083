"""
Shared fixtures for the gateway tests.
"""

import pytest

from mcp_gateway.core.errors import StoreUnavailableError
from mcp_gateway.db.database import Database
from mcp_gateway.services.database import DatabaseService
from mcp_gateway.services.memory_store import InMemoryStore
from mcp_gateway.services.state_manager import StateManager
from mcp_gateway.tools.definitions import get_builtin_definitions

TEST_KEY = "test-encryption-key"
MEMORY_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class UnreachableStore:
    """Durable store double whose every call fails as if the database were down."""

    def __init__(self):
        self.calls: list[str] = []

    def __getattr__(self, name):
        async def fail(*args, **kwargs):
            self.calls.append(name)
            raise StoreUnavailableError(f"{name}: connection refused")
        return fail


def break_durable_store(service: DatabaseService) -> UnreachableStore:
    """Make every durable call of ``service`` fail from now on."""
    broken = UnreachableStore()
    service.durable = broken
    service.use_fallback = False
    return broken


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore(encryption_key=TEST_KEY)


@pytest.fixture
def fallback_service() -> DatabaseService:
    """A DatabaseService without a durable store (fallback mode from the start)."""
    return DatabaseService(database=None, encryption_key=TEST_KEY)


@pytest.fixture
async def db_service():
    """A DatabaseService on a fresh in-memory SQLite database."""
    service = DatabaseService(
        database=Database(MEMORY_DATABASE_URL, attempts=1),
        encryption_key=TEST_KEY,
    )
    assert await service.connect() is True
    yield service
    await service.close()


@pytest.fixture
async def seeded_state(fallback_service):
    """A StateManager over the in-memory store with the built-in catalog loaded."""
    await fallback_service.seed_tools(get_builtin_definitions())
    state = StateManager(fallback_service)
    await state.initialize(sync_interval=None)
    yield state
    await state.shutdown()
