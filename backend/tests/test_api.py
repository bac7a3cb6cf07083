"""
Tests for the HTTP API.
"""

from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

from mcp_gateway.core.config import API_KEY_VARIABLES, Settings
from mcp_gateway.core.errors import StoreUnavailableError
from mcp_gateway.main import create_app
from mcp_gateway.services.container import build_services

SEARCH_HTML = """
<div class="result">
  <a class="result__a" href="https://python.org/">Python</a>
  <a class="result__snippet">Official site</a>
</div>
"""

ANTHROPIC_REPLY = {
    "id": "msg_1",
    "type": "message",
    "stop_reason": "end_turn",
    "content": [{"type": "text", "text": "Hello!"}],
}


def upstream(request: httpx.Request) -> httpx.Response:
    """Stand-in for every outbound HTTP call the gateway makes."""
    if request.url.host == "api.anthropic.com":
        return httpx.Response(200, json=ANTHROPIC_REPLY)
    if request.url.host == "html.duckduckgo.com":
        return httpx.Response(200, text=SEARCH_HTML)
    return httpx.Response(404, text="not found")


def make_settings(tmp_path, use_database=True) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'gateway.db'}",
        use_database=use_database,
        encryption_key="api-test-key",
        sync_interval_seconds=0,
        backup_dir=str(tmp_path / "backups"),
        cache_dir=str(tmp_path / "cache"),
        image_dir=str(tmp_path / "images"),
        connect_attempts=1,
    )


@pytest.fixture
def client(tmp_path, monkeypatch):
    for key in API_KEY_VARIABLES:
        monkeypatch.delenv(key, raising=False)

    services = build_services(make_settings(tmp_path), transport=httpx.MockTransport(upstream))
    with TestClient(create_app(services)) as test_client:
        yield test_client


@pytest.fixture
def memory_client(tmp_path, monkeypatch):
    for key in API_KEY_VARIABLES:
        monkeypatch.delenv(key, raising=False)

    services = build_services(make_settings(tmp_path, use_database=False), transport=httpx.MockTransport(upstream))
    with TestClient(create_app(services)) as test_client:
        yield test_client


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestToolEndpoints:
    """Test /tools."""

    def test_list_tools(self, client):
        response = client.get("/tools")

        assert response.status_code == 200
        assert len(response.json()) == 6

    def test_list_tools_by_category(self, client):
        response = client.get("/tools", params={"category": "image"})
        assert {t["category"] for t in response.json()} == {"image"}

    def test_available(self, client):
        response = client.get("/tools/available", params={"category": "web", "limit": 2})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["count"] == 2
        assert body["metadata"]["totalCount"] == 3

    def test_available_unknown_format(self, client):
        """Test that an unsupported format falls back to json."""
        response = client.get("/tools/available", params={"format": "bogus"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        assert response.json()["count"] == 6

    def test_available_no_matches(self, client):
        response = client.get("/tools/available", params={"category": "nonexistent"})

        assert response.status_code == 200
        assert response.json()["count"] == 0

    def test_available_formats(self, client):
        yaml_response = client.get("/tools/available", params={"format": "yaml"})
        assert yaml_response.headers["content-type"].startswith("text/yaml")

        table = client.get("/tools/available", params={"format": "table"})
        assert table.headers["content-type"].startswith("text/plain")
        assert table.text.startswith("| Name |")

        html = client.get("/tools/available", params={"format": "html"})
        assert html.headers["content-type"].startswith("text/html")

    def test_available_lenient_paging(self, client):
        """Test that bad paging values are ignored or clamped rather than rejected."""
        negative = client.get("/tools/available", params={"limit": -1, "offset": -3})
        assert negative.status_code == 200
        assert negative.json()["count"] == 0
        assert negative.json()["metadata"]["offset"] == 0
        assert negative.json()["metadata"]["totalCount"] == 6

        garbage = client.get("/tools/available", params={"limit": "abc", "offset": "x"})
        assert garbage.status_code == 200
        assert garbage.json()["count"] == 6

    def test_available_store_failure(self, client, monkeypatch):
        """Test that a failing store is a 500, unlike an empty result."""
        services = client.app.state.services
        monkeypatch.setattr(services.catalog, "list", AsyncMock(side_effect=StoreUnavailableError("database down")))

        response = client.get("/tools/available")

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "database down"}

    def test_list_all(self, client):
        summary = client.get("/tools/list/all").json()
        assert summary["count"] == 6

        html = client.get("/tools/list/all", params={"format": "html"})
        assert html.headers["content-type"].startswith("text/html")

    def test_get_tool(self, client):
        response = client.get("/tools/web_search")

        assert response.status_code == 200
        assert response.json()["parameters"]["required"] == ["query"]

    def test_get_missing_tool(self, client):
        response = client.get("/tools/nope")

        assert response.status_code == 404
        assert response.json() == {"error": 'Tool "nope" not found'}


class TestDirectTools:
    """Test direct execution endpoints."""

    def test_web_search(self, client):
        response = client.post("/tools/web/search", json={"query": "python"})

        assert response.status_code == 200
        assert response.json()["results"][0]["url"] == "https://python.org/"

    def test_missing_required_parameter(self, client):
        response = client.post("/tools/web/search", json={})

        assert response.status_code == 400
        assert "query" in response.json()["error"]

    def test_tool_reported_failure(self, client):
        """Test that a tool returning success=False surfaces as 500."""
        response = client.post("/tools/image/generate", json={"prompt": "a cat"})

        assert response.status_code == 500
        assert "is not configured" in response.json()["error"]

    def test_executions_are_counted(self, client):
        client.post("/tools/web/search", json={"query": "python"}, headers={"x-user-id": "alice"})

        stats = client.get("/admin/stats", params={"toolName": "web_search"}).json()
        assert stats["totalCount"] == 1
        assert stats["successCount"] == 1


class TestMcpEndpoint:
    """Test /mcp/{provider}."""

    def test_unsupported_provider(self, client):
        response = client.post("/mcp/gemini", json={"prompt": "hi"})

        assert response.status_code == 400
        assert response.json() == {"error": "Unsupported provider: gemini"}

    def test_prompt_required(self, client):
        response = client.post("/mcp/anthropic", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "Either prompt or messages must be provided"}

    def test_missing_api_key(self, client):
        response = client.post("/mcp/anthropic", json={"prompt": "hi"})

        assert response.status_code == 500
        assert "ANTHROPIC_API_KEY" in response.json()["error"]

    def test_dispatch(self, client):
        client.post("/admin/config", json={"key": "ANTHROPIC_API_KEY", "value": "sk-ant"})

        response = client.post("/mcp/anthropic", json={"prompt": "hi"})

        assert response.status_code == 200
        assert response.json() == ANTHROPIC_REPLY


class TestAdminEndpoints:
    """Test /admin."""

    def test_status(self, client):
        status = client.get("/admin/status").json()

        assert status["dbConnected"] is True
        assert status["database"] == {"connected": True, "useFallback": False, "mode": "database"}
        assert status["toolCount"] == 6
        assert status["memory"]["rss"].endswith("MB")

    def test_sync(self, client):
        response = client.post("/admin/sync")
        assert response.json() == {"success": True, "message": "State synced successfully"}

    def test_backup_and_restore(self, client):
        backup = client.post("/admin/backup").json()
        assert backup["success"] is True

        listed = client.get("/admin/backups").json()
        assert listed["count"] == 1
        assert listed["backups"][0]["toolCount"] == 6

        restored = client.post("/admin/restore", json={"backupFile": listed["backups"][0]["fileName"]})
        assert restored.json() == {"success": True, "message": "Backup restored successfully"}

    def test_restore_requires_file(self, client):
        response = client.post("/admin/restore", json={})

        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "Backup file path is required"}

    def test_restore_failure(self, client):
        response = client.post("/admin/restore", json={"backupFile": "missing.json"})
        assert response.status_code == 500

    def test_backup_refused_in_memory_mode(self, memory_client):
        response = memory_client.post("/admin/backup")

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "Error creating backup"
        assert "fallback" in body["error"]

    def test_register_update_delete_tool(self, client):
        created = client.post(
            "/admin/tools",
            json={"name": "weather", "description": "Current weather", "category": "data"},
            headers={"x-user-id": "alice"},
        )
        assert created.status_code == 201
        assert created.json()["tool"]["metadata"]["createdBy"] == "alice"

        updated = client.put("/admin/tools/weather", json={"description": "Weather now", "name": "renamed"})
        assert updated.status_code == 200
        assert updated.json()["tool"]["name"] == "weather"
        assert updated.json()["tool"]["description"] == "Weather now"
        assert client.get("/tools/weather").json()["description"] == "Weather now"

        deleted = client.delete("/admin/tools/weather")
        assert deleted.json() == {"success": True, "message": 'Tool "weather" deleted successfully'}
        assert client.delete("/admin/tools/weather").status_code == 404

    def test_register_requires_name_and_description(self, client):
        response = client.post("/admin/tools", json={"name": "incomplete"})

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_update_missing_tool(self, client):
        assert client.put("/admin/tools/nope", json={"description": "x"}).status_code == 404

    def test_config_round_trip(self, client):
        saved = client.post("/admin/config", json={"key": "FEATURE_MODE", "value": "beta"})
        assert saved.json()["success"] is True

        value = client.get("/admin/config/FEATURE_MODE").json()
        assert value == {"success": True, "key": "FEATURE_MODE", "value": "beta"}

        ciphertext = client.get("/admin/config/FEATURE_MODE", params={"decrypt": "false"}).json()["value"]
        assert ciphertext != "beta"
        assert ":" in ciphertext

    def test_config_requires_key_and_value(self, client):
        response = client.post("/admin/config", json={"key": "ONLY_KEY"})

        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "Both key and value are required"}

    def test_missing_config(self, client):
        assert client.get("/admin/config/NOT_SET_ANYWHERE").status_code == 404
