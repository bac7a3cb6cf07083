"""
Tests for the DatabaseService facade and its fallback policy.
"""

import pytest

from mcp_gateway.core.errors import StoreUnavailableError
from mcp_gateway.db.database import Database
from mcp_gateway.schemas.tools import ToolDefinition, ToolExecution
from mcp_gateway.services.database import DatabaseService
from mcp_gateway.tools.definitions import get_builtin_definitions

from conftest import TEST_KEY, break_durable_store


class TestConnect:
    """Test startup behaviour."""

    async def test_without_database_runs_in_memory(self, fallback_service):
        assert await fallback_service.connect() is False
        assert fallback_service.use_fallback
        assert fallback_service.mode == "memory"
        assert not fallback_service.is_connected

    async def test_connected(self, db_service):
        assert db_service.is_connected
        assert db_service.mode == "database"

    async def test_failed_connection_falls_back(self, tmp_path):
        """Test that an unreachable database switches the service to memory."""
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'no' / 'such' / 'db'}", attempts=1)
        service = DatabaseService(database=database, encryption_key=TEST_KEY)

        assert await service.connect() is False
        assert service.use_fallback

        await service.save_tool_definition(ToolDefinition(name="x", description="d"))
        assert (await service.get_tool_by_name("x")).name == "x"

    async def test_failed_connection_without_fallback_is_fatal(self, tmp_path):
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'no' / 'such' / 'db'}", attempts=1)
        service = DatabaseService(database=database, encryption_key=TEST_KEY, allow_fallback=False)

        with pytest.raises(StoreUnavailableError):
            await service.connect()

    async def test_environment_configuration_imported(self, monkeypatch):
        """Test that provider keys and server settings are copied from the environment."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")
        monkeypatch.setenv("PORT", "4000")
        service = DatabaseService(database=Database("sqlite+aiosqlite:///:memory:", attempts=1), encryption_key=TEST_KEY)
        await service.connect()
        try:
            record = await service.get_configuration_record("OPENAI_API_KEY")
            assert record.is_encrypted
            assert record.category.value == "api_key"
            assert await service.get_configuration("OPENAI_API_KEY") == "sk-from-env"

            port = await service.get_configuration_record("PORT")
            assert port.value == "4000"
            assert not port.is_encrypted
        finally:
            await service.close()


class TestWithFallback:
    """Test the single fallback combinator."""

    async def test_durable_failure_served_from_memory(self, db_service):
        """Test that every call still answers once the durable store is down."""
        broken = break_durable_store(db_service)

        saved = await db_service.save_tool_definition(ToolDefinition(name="x", description="d"))
        assert saved.name == "x"
        assert [t.name for t in await db_service.get_all_tools()] == ["x"]
        assert await db_service.delete_tool_definition("x") is True

        await db_service.update_configuration("ANTHROPIC_API_KEY", "sk-test-123")
        assert await db_service.get_configuration("ANTHROPIC_API_KEY") == "sk-test-123"

        handle = await db_service.log_tool_execution(ToolExecution(tool_name="web_search"))
        await handle.complete(result="ok")
        stats = await db_service.get_tool_execution_stats()
        assert stats.total_count == 1

        assert "save_tool_definition" in broken.calls
        assert "log_tool_execution" in broken.calls
        # A per-call fallback does not switch the whole service into memory mode
        assert db_service.use_fallback is False

    async def test_durable_failure_without_permission(self, db_service):
        """Test that fallback can be disabled."""
        break_durable_store(db_service)
        db_service.allow_fallback = False

        with pytest.raises(StoreUnavailableError):
            await db_service.get_all_tools()

    async def test_fallback_mode_skips_durable(self, db_service):
        """Test that in fallback mode the durable store is never called."""
        broken = break_durable_store(db_service)
        db_service.use_fallback = True

        await db_service.get_all_tools()
        assert broken.calls == []


class TestSeeding:
    """Test built-in catalog seeding."""

    async def test_seed_skips_existing(self, db_service):
        """Test that seeding twice adds nothing and keeps edited definitions."""
        definitions = get_builtin_definitions()
        assert await db_service.seed_tools(definitions) == len(definitions)

        await db_service.save_tool_definition(ToolDefinition(name="web_search", description="custom"))
        assert await db_service.seed_tools(get_builtin_definitions()) == 0
        assert (await db_service.get_tool_by_name("web_search")).description == "custom"

    async def test_names_unique_after_seeding(self, db_service):
        """Test that no two stored definitions share a name."""
        await db_service.seed_tools(get_builtin_definitions())
        await db_service.seed_tools(get_builtin_definitions())

        names = [t.name for t in await db_service.get_all_tools()]
        assert len(names) == len(set(names)) == 6
