"""
Main application class for the Openera MCP service.
"""

from contextlib import asynccontextmanager
from typing import Optional

from openera_mcp.config.settings import Settings, load_config
from openera_mcp.context.retriever import ContextRetriever
from openera_mcp.context.store import ContextStore, create_store
from openera_mcp.llm.enhance import PromptEnhancer
from openera_mcp.llm.provider import ModelProvider, create_provider
from openera_mcp.mcp.aggregator import ToolAggregator
from openera_mcp.mcp.connection_registry import ConnectionRegistry
from openera_mcp.mcp.session_factory import SessionBuilder, SessionFactory
from openera_mcp.turn.assembler import TurnContextAssembler
from openera_mcp.utils.logging import get_logger
from openera_mcp.utils.secrets import mask_secret


class OpeneraApp:
    """
    Owns the process-wide components and their lifecycle.

    One app holds one ConnectionRegistry, so tool-server sessions are shared
    by every turn it serves and closed together on cleanup.

    Example usage:
        app = OpeneraApp()

        async with app.run() as running_app:
            async for event in running_app.assembler.run_turn(request):
                ...
    """

    def __init__(
        self,
        name: str = "openera",
        config_path: Optional[str] = None,
        settings: Optional[Settings] = None,
        provider: Optional[ModelProvider] = None,
        store: Optional[ContextStore] = None,
        session_builder: Optional[SessionBuilder] = None,
    ):
        """
        Initialize the application.

        Args:
            name: Name of the application, used for its logger.
            config_path: Path to the configuration file (if not provided, looks for openera_mcp.config.yaml).
            settings: Configuration object (if provided, takes precedence over config_path).
            provider: Model provider to use instead of the configured one.
            store: Context store to use instead of the configured one.
            session_builder: Builds tool-server sessions; replaces the transport-based default.
        """
        self.name = name
        self._config_path = config_path
        self._settings = settings
        self._provider = provider
        self._store = store
        self._session_builder = session_builder

        self._logger = None
        self._initialized = False

        self.registry: Optional[ConnectionRegistry] = None
        self.factory: Optional[SessionFactory] = None
        self.aggregator: Optional[ToolAggregator] = None
        self.retriever: Optional[ContextRetriever] = None
        self._assembler: Optional[TurnContextAssembler] = None
        self._enhancer: Optional[PromptEnhancer] = None

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = load_config(self._config_path)
        return self._settings

    @property
    def assembler(self) -> TurnContextAssembler:
        if self._assembler is None:
            raise RuntimeError(
                "OpeneraApp not initialized. Please call initialize() first, or use async with app.run()."
            )
        return self._assembler

    @property
    def enhancer(self) -> PromptEnhancer:
        if self._enhancer is None:
            raise RuntimeError(
                "OpeneraApp not initialized. Please call initialize() first, or use async with app.run()."
            )
        return self._enhancer

    @property
    def logger(self):
        if self._logger is None:
            self._logger = get_logger(f"openera.{self.name}")
        return self._logger

    async def initialize(self):
        """Build the registry, store, provider and assembler."""
        if self._initialized:
            return

        settings = self.settings

        self.registry = ConnectionRegistry(
            failure_cooldown_seconds=settings.connections.failure_cooldown_seconds
        )
        self.factory = SessionFactory(
            self.registry,
            connect_timeout_seconds=settings.connections.connect_timeout_seconds,
            session_builder=self._session_builder,
        )
        self.aggregator = ToolAggregator(self.registry, self.factory)

        if self._store is None:
            self._store = create_store(settings.store)
        self.retriever = ContextRetriever.from_settings(
            self._store, settings.context, settings.store
        )

        if self._provider is None:
            self._provider = create_provider(settings.openrouter)

        self._assembler = TurnContextAssembler(
            self.aggregator,
            self.retriever,
            self._provider,
            default_model=settings.openrouter.model,
            default_servers=settings.mcp.server_list(),
            context_settings=settings.context,
        )
        self._enhancer = PromptEnhancer(self._provider, settings.enhancement)

        self._initialized = True
        self.logger.info(
            f"OpeneraApp initialized - app_name: {self.name}, store: {settings.store.backend}, "
            f"provider: {settings.openrouter.provider}, api_key: {mask_secret(settings.openrouter.api_key)}"
        )

    async def cleanup(self):
        """Close every tool-server session and the store."""
        if not self._initialized:
            return

        self.logger.info(f"OpeneraApp cleaning up - app_name: {self.name}")

        try:
            await self.registry.close_all()
        finally:
            await self._store.close()

        self._assembler = None
        self._enhancer = None
        self._initialized = False

    @asynccontextmanager
    async def run(self):
        """
        Run the application as an async context manager.

        Yields:
            The initialized application instance.
        """
        await self.initialize()
        try:
            yield self
        finally:
            await self.cleanup()
