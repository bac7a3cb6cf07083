"""
Tests for the SQLAlchemy record store (in-memory SQLite).
"""

import pytest

from mcp_gateway.core.crypto import ENCRYPTION_KEY_CONFIG
from mcp_gateway.core.errors import DecryptionError, StoreUnavailableError
from mcp_gateway.db.database import Database
from mcp_gateway.schemas.tools import ExecutionStatus, ToolDefinition, ToolExecution
from mcp_gateway.services.sql_store import SQLRecordStore
from mcp_gateway.tools.definitions import get_builtin_definition

MEMORY_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def database():
    db = Database(MEMORY_DATABASE_URL, attempts=1)
    await db.connect()
    yield db
    await db.dispose()


@pytest.fixture
def store(database) -> SQLRecordStore:
    return SQLRecordStore(database, encryption_key="sql-test-key")


class TestDatabase:
    """Test connection handling."""

    async def test_session_requires_connection(self):
        """Test that sessions cannot be opened before connect()."""
        db = Database(MEMORY_DATABASE_URL)
        with pytest.raises(StoreUnavailableError):
            db.session()

    async def test_connect_failure_raises_store_unavailable(self, tmp_path):
        """Test that an unreachable database is reported after the retry budget."""
        missing = tmp_path / "missing" / "dir" / "gateway.db"
        db = Database(f"sqlite+aiosqlite:///{missing}", attempts=2, base_delay=0, max_delay=0)

        with pytest.raises(StoreUnavailableError):
            await db.connect()
        assert db.connected is False


class TestToolRecords:
    """Test tool definition persistence."""

    async def test_round_trip(self, store):
        """Test that a definition survives the JSON columns intact."""
        definition = get_builtin_definition("web_search")
        await store.save_tool_definition(definition)

        fetched = await store.get_tool_by_name("web_search")
        assert fetched.parameters == definition.parameters
        assert fetched.tags == definition.tags
        assert fetched.category == definition.category
        assert fetched.metadata.created_at is not None

    async def test_extra_fields_survive(self, store):
        """Test that undeclared fields (e.g. provider) are stored."""
        await store.save_tool_definition(
            ToolDefinition.model_validate({"name": "x", "description": "d", "provider": "openai"})
        )
        fetched = await store.get_tool_by_name("x")
        assert fetched.provider_name() == "openai"

    async def test_upsert_keeps_one_row(self, store):
        """Test that saving an existing name merges instead of inserting."""
        await store.save_tool_definition(ToolDefinition(name="x", description="one", tags=["t"]))
        await store.save_tool_definition(ToolDefinition(name="x", description="two"))

        tools = await store.get_all_tools()
        assert len(tools) == 1
        assert tools[0].description == "two"
        assert tools[0].tags == ["t"]

    async def test_filters_and_delete(self, store):
        await store.save_tool_definition(ToolDefinition(name="a", description="a", category="web"))
        await store.save_tool_definition(ToolDefinition(name="b", description="b", category="image", enabled=False))

        assert [t.name for t in await store.get_all_tools(category="web")] == ["a"]
        assert [t.name for t in await store.get_all_tools(enabled_only=True)] == ["a"]
        assert await store.delete_tool_definition("b") is True
        assert await store.delete_tool_definition("b") is False


class TestConfigurationRecords:
    """Test configuration persistence and encryption."""

    async def test_encrypt_before_write(self, store):
        """Test that the stored value is ciphertext and reads decrypt it."""
        config = await store.update_configuration("ANTHROPIC_API_KEY", "sk-test-123", True)

        assert config.is_encrypted
        assert config.value != "sk-test-123"
        assert await store.get_configuration("ANTHROPIC_API_KEY") == "sk-test-123"

    async def test_generated_key_row(self, database):
        """Test that without an explicit key one is generated and stored in plaintext."""
        store = SQLRecordStore(database)
        await store.update_configuration("OPENAI_API_KEY", "sk-openai", True)

        key_row = await store.get_configuration_record(ENCRYPTION_KEY_CONFIG)
        assert key_row is not None
        assert not key_row.is_encrypted

        # A second store on the same database reuses the persisted key
        other = SQLRecordStore(database)
        assert await other.get_configuration("OPENAI_API_KEY") == "sk-openai"

    async def test_wrong_key_is_a_decryption_error(self, database):
        """Test that values written under one key are not returned as plaintext under another."""
        await SQLRecordStore(database, encryption_key="key-one").update_configuration("SECRET", "value", True)
        reader = SQLRecordStore(database, encryption_key="key-two")

        try:
            assert await reader.get_configuration("SECRET") != "value"
        except DecryptionError:
            pass


class TestExecutionRecords:
    """Test execution logging and SQL statistics."""

    async def test_log_and_complete(self, store):
        handle = await store.log_tool_execution(ToolExecution(tool_name="web_search", inputs={"query": "q"}))
        [pending] = await store.get_executions()
        assert pending.status == ExecutionStatus.PENDING

        await handle.complete(result={"results": []})
        [done] = await store.get_executions()
        assert done.status == ExecutionStatus.SUCCESS
        assert done.outputs == {"results": []}
        assert done.inputs == {"query": "q"}

    async def test_stats(self, store):
        """Test aggregate counts, ranking and success-only timings."""
        for name, error in [("a", None), ("a", None), ("b", None), ("b", "failed"), ("b", "failed")]:
            handle = await store.log_tool_execution(ToolExecution(tool_name=name))
            await handle.complete(result=None if error else "ok", error=error)

        stats = await store.get_tool_execution_stats("day", limit=1)

        assert stats.total_count == 5
        assert stats.success_count == 3
        assert stats.failure_count == 2
        assert stats.success_rate == "60.00%"
        assert [(t.name, t.count) for t in stats.top_tools] == [("b", 3)]
        assert sorted(t.name for t in stats.execution_times) == ["a", "b"]
