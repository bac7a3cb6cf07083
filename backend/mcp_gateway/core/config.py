"""
Gateway Configuration

This module provides:
- Settings dataclass populated from environment variables (and .env files)
- Typed parsing helpers for boolean and numeric variables
- The list of provider credentials mirrored into the configuration store
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

# Provider credentials that are copied into the encrypted configuration store
API_KEY_VARIABLES = ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "STABILITY_API_KEY")

# Plain server settings copied into the configuration store
SERVER_CONFIG_VARIABLES = ("PORT", "LOG_LEVEL", "ENVIRONMENT")

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./mcp_gateway.db"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass
class Settings:
    """Runtime settings for the gateway."""
    database_url: str = DEFAULT_DATABASE_URL
    use_database: bool = True
    allow_fallback: bool = True
    encryption_key: Optional[str] = None

    anthropic_default_model: str = "claude-3-opus-20240229"
    openai_default_model: str = "gpt-4o"
    anthropic_max_tokens: int = 1000
    provider_timeout: float = 60.0

    sync_interval_seconds: float = 300.0
    backup_dir: str = "./backups"
    cache_dir: str = "./cache"
    image_dir: str = "./public/images"

    log_level: str = "INFO"
    log_format: str = "console"
    host: str = "0.0.0.0"
    port: int = 3000

    # Connection retry policy for the durable store
    connect_attempts: int = 5
    connect_base_delay: float = 1.0
    connect_max_delay: float = 10.0

    api_key_variables: tuple[str, ...] = field(default=API_KEY_VARIABLES)

    @property
    def json_logs(self) -> bool:
        return self.log_format.lower() == "json"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """
        Build settings from the process environment.

        Args:
            dotenv: Load a .env file first when True

        Returns:
            Settings instance
        """
        if dotenv:
            load_dotenv()

        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            use_database=_env_bool("USE_DATABASE", True),
            allow_fallback=_env_bool("ALLOW_FALLBACK", True),
            encryption_key=os.getenv("ENCRYPTION_KEY") or None,
            anthropic_default_model=os.getenv("ANTHROPIC_DEFAULT_MODEL", "claude-3-opus-20240229"),
            openai_default_model=os.getenv("OPENAI_DEFAULT_MODEL", "gpt-4o"),
            anthropic_max_tokens=_env_int("ANTHROPIC_MAX_TOKENS", 1000),
            provider_timeout=_env_float("PROVIDER_TIMEOUT", 60.0),
            sync_interval_seconds=_env_float("SYNC_INTERVAL_SECONDS", 300.0),
            backup_dir=os.getenv("BACKUP_DIR", "./backups"),
            cache_dir=os.getenv("CACHE_DIR", "./cache"),
            image_dir=os.getenv("IMAGE_DIR", "./public/images"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "console"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=_env_int("PORT", 3000),
        )
