"""
Backups and restore.

This module provides:
- JSON backups of tool definitions and configuration metadata (never values)
- Listing of backup files, newest first
- Restore of tools and non-secret configuration flags, followed by a cache reload
"""

import asyncio
import json
from pathlib import Path
from typing import Any

import pydantic
import structlog

from mcp_gateway.core.errors import BackupError, DecryptionError, GatewayError
from mcp_gateway.schemas.tools import ConfigCategory, ToolDefinition, utcnow
from mcp_gateway.services.database import DatabaseService
from mcp_gateway.services.state_manager import StateManager

logger = structlog.get_logger(__name__)

BACKUP_VERSION = "1.0.0"
BACKUP_PREFIX = "mcp_backup_"


class BackupService:
    """Creates, lists and restores backup files in ``backup_dir``."""

    def __init__(self, store: DatabaseService, state: StateManager, backup_dir: str | Path = "./backups"):
        self.store = store
        self.state = state
        self.backup_dir = Path(backup_dir)

    async def create_backup(self) -> Path:
        """
        Write a backup of the durable store.

        Returns:
            Path of the written file

        Raises:
            BackupError: While running on the in-memory fallback store
        """
        if self.store.use_fallback:
            raise BackupError("Cannot create backup when using fallback store")

        tools = await self.store.get_all_tools()
        configs = []
        for category in (ConfigCategory.SERVER, ConfigCategory.API_KEY):
            configs.extend(await self.store.get_configurations_by_category(category))

        now = utcnow()
        backup = {
            "version": BACKUP_VERSION,
            "timestamp": now.isoformat() + "Z",
            "tools": [tool.to_dict() for tool in tools],
            "configurations": [
                {
                    "key": config.key,
                    "category": config.category.value,
                    "description": config.description,
                    "isEncrypted": config.is_encrypted,
                }
                for config in configs
            ],
        }

        path = self.backup_dir / f"{BACKUP_PREFIX}{now.strftime('%Y-%m-%dT%H-%M-%S')}.json"
        await asyncio.to_thread(self._write, path, backup)
        logger.info("Backup created", path=str(path), tools=len(tools), configs=len(configs))
        return path

    def _write(self, path: Path, data: dict[str, Any]) -> None:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def list_backups(self) -> list[dict[str, Any]]:
        """Backup files with their metadata, newest first."""
        if not self.backup_dir.exists():
            return []

        backups = []
        for path in self.backup_dir.glob(f"{BACKUP_PREFIX}*.json"):
            stat = path.stat()
            info: dict[str, Any] = {
                "fileName": path.name,
                "path": str(path),
                "size": stat.st_size,
                "modified": stat.st_mtime,
            }
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                info.update(
                    version=data.get("version"),
                    timestamp=data.get("timestamp"),
                    toolCount=len(data.get("tools") or []),
                    configCount=len(data.get("configurations") or []),
                )
            except (OSError, ValueError, AttributeError):
                info["error"] = "Could not parse backup file"
            backups.append(info)

        backups.sort(key=lambda b: (b["modified"], b["fileName"]), reverse=True)
        return backups

    def resolve_path(self, backup_file: str) -> Path:
        path = Path(backup_file)
        if not path.is_absolute() and not path.exists():
            path = self.backup_dir / path
        return path

    async def restore_from_backup(self, backup_file: str) -> bool:
        """
        Restore tools and configuration flags from a backup file.

        API keys are never restored; they must come from the environment or
        the admin API. Other configurations keep their current value and take
        the backup's encryption flag.

        Returns:
            True on success
        """
        path = self.resolve_path(backup_file)
        try:
            data = json.loads(await asyncio.to_thread(path.read_text, encoding="utf-8"))
            if not isinstance(data, dict) or not data.get("version"):
                raise ValueError("Invalid backup file: missing version")

            for tool_data in data.get("tools") or []:
                await self.store.save_tool_definition(ToolDefinition.model_validate(tool_data))

            for config in data.get("configurations") or []:
                if config.get("category") == ConfigCategory.API_KEY.value:
                    continue
                try:
                    current = await self.store.get_configuration(config["key"])
                except DecryptionError as e:
                    logger.warning("Skipping undecryptable configuration", key=config["key"], error=str(e))
                    continue
                if current:
                    await self.store.update_configuration(
                        config["key"], current, bool(config.get("isEncrypted"))
                    )
        except (OSError, ValueError, KeyError, pydantic.ValidationError, GatewayError) as e:
            logger.error("Restore failed", path=str(path), error=str(e))
            return False

        await self.state.load_state_from_db()
        logger.info("Backup restored", path=str(path))
        return True
