"""
Service wiring.

Every long-lived component is built once here and handed to the HTTP layer
through ``app.state.services``.
"""

import time
from dataclasses import dataclass, field
from typing import Optional

import httpx
import structlog

from mcp_gateway.core.config import Settings
from mcp_gateway.db.database import Database
from mcp_gateway.services.catalog import ToolCatalog
from mcp_gateway.services.database import DatabaseService
from mcp_gateway.services.orchestrator import Orchestrator
from mcp_gateway.services.persistence import BackupService
from mcp_gateway.services.providers import AnthropicProvider, OpenAIProvider, ProviderAdapter
from mcp_gateway.services.state_manager import StateManager
from mcp_gateway.services.tool_executor import ToolExecutor
from mcp_gateway.tools.definitions import get_builtin_definitions
from mcp_gateway.tools.image_generation import ImageGenerationClient
from mcp_gateway.tools.registry import ToolHandlerRegistry, register_builtin_tools
from mcp_gateway.tools.web_search import WebSearchClient

logger = structlog.get_logger(__name__)


@dataclass
class GatewayServices:
    settings: Settings
    store: DatabaseService
    state: StateManager
    registry: ToolHandlerRegistry
    executor: ToolExecutor
    orchestrator: Orchestrator
    catalog: ToolCatalog
    backups: BackupService
    web: WebSearchClient
    images: ImageGenerationClient
    start_time: float = field(default_factory=time.time)

    @property
    def uptime(self) -> float:
        return time.time() - self.start_time

    async def startup(self) -> None:
        """Connect the store, seed the catalog and warm the cache."""
        await self.store.connect()
        seeded = await self.store.seed_tools(get_builtin_definitions())
        await self.state.initialize(self.settings.sync_interval_seconds)
        logger.info(
            "Gateway services started",
            mode=self.store.mode,
            seeded_tools=seeded,
            handlers=self.registry.names(),
        )

    async def shutdown(self) -> None:
        await self.state.shutdown()
        await self.store.close()
        logger.info("Gateway services stopped")


def build_services(
    settings: Optional[Settings] = None,
    providers: Optional[dict[str, ProviderAdapter]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> GatewayServices:
    """
    Construct the gateway's components.

    Args:
        settings: Runtime settings, read from the environment when omitted
        providers: Provider adapters by name, built from settings when omitted
        transport: Optional httpx transport shared by all outbound clients

    Returns:
        An unstarted GatewayServices
    """
    settings = settings or Settings.from_env()

    database = None
    if settings.use_database:
        database = Database(
            settings.database_url,
            attempts=settings.connect_attempts,
            base_delay=settings.connect_base_delay,
            max_delay=settings.connect_max_delay,
        )

    store = DatabaseService(
        database=database,
        encryption_key=settings.encryption_key,
        allow_fallback=settings.allow_fallback,
    )
    state = StateManager(store)

    web = WebSearchClient(cache_dir=settings.cache_dir, transport=transport)
    images = ImageGenerationClient(get_key=state.get_config, image_dir=settings.image_dir, transport=transport)

    registry = ToolHandlerRegistry()
    register_builtin_tools(registry, web, images)
    executor = ToolExecutor(registry, state)

    if providers is None:
        providers = {
            "anthropic": AnthropicProvider(
                state.get_config,
                settings.anthropic_default_model,
                max_tokens=settings.anthropic_max_tokens,
                timeout=settings.provider_timeout,
                transport=transport,
            ),
            "openai": OpenAIProvider(
                state.get_config,
                settings.openai_default_model,
                timeout=settings.provider_timeout,
                transport=transport,
            ),
        }

    return GatewayServices(
        settings=settings,
        store=store,
        state=state,
        registry=registry,
        executor=executor,
        orchestrator=Orchestrator(providers, executor, state),
        catalog=ToolCatalog(state),
        backups=BackupService(store, state, settings.backup_dir),
        web=web,
        images=images,
    )
