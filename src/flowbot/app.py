"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from pathlib import Path

from flowbot.ai.client import AIClient, AnthropicClient, OpenAIClient
from flowbot.ai.responder import AIResponder
from flowbot.cache.response_cache import ResponseCache
from flowbot.config import AppConfig, ChannelConfig
from flowbot.core.channel_registry import ChannelRegistry
from flowbot.core.errors import ConfigurationError
from flowbot.core.session import SessionManager
from flowbot.flows.blacklist import BlacklistGate
from flowbot.flows.dynamic import DynamicMatcher
from flowbot.flows.router import MessageRouter
from flowbot.flows.welcome import WelcomeDispatcher
from flowbot.forms.engine import DataCollectionEngine
from flowbot.log import get_logger
from flowbot.messenger.base import MessengerAdapter
from flowbot.messenger.gate import InboundGate
from flowbot.services.maintenance import MaintenanceService
from flowbot.speech.openai_speech import (
    Embedder,
    SpeechSynthesizer,
    Transcriber,
    create_openai_client,
)
from flowbot.storage.blacklist_repo import BlacklistRepository
from flowbot.storage.chatbot_repo import ChatbotRepository
from flowbot.storage.client_repo import ClientDataRepository
from flowbot.storage.database import Database
from flowbot.storage.flow_repo import FlowRepository
from flowbot.storage.form_repo import FormRepository
from flowbot.storage.history_repo import ChatHistoryRepository
from flowbot.storage.prompt_repo import PromptRepository
from flowbot.storage.seed import Repositories
from flowbot.storage.welcome_repo import WelcomeRepository

logger = get_logger(__name__)


class FlowbotApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.tmp_dir = Path(config.data_dir) / "tmp"
        self.db = Database(
            config.storage.db_path,
            pool_size=config.storage.pool_size,
            reconnect_attempts=config.storage.reconnect_attempts,
            reconnect_max_delay=config.storage.reconnect_max_delay,
        )
        self.cache = ResponseCache(
            default_ttl=config.cache.default_ttl,
            db=self.db if config.cache.persistent else None,
        )

        openai_client = create_openai_client(config.openai) if config.openai else None
        embedder = None
        if openai_client is not None and config.openai.embeddings_enabled:
            embedder = Embedder(openai_client, config.openai)
        self.transcriber = Transcriber(openai_client, config.openai) if openai_client else None
        self.synthesizer = (
            SpeechSynthesizer(openai_client, config.openai, self.tmp_dir) if openai_client else None
        )

        self.repos = Repositories(
            chatbots=ChatbotRepository(self.db, self.cache),
            flows=FlowRepository(self.db, self.cache),
            welcomes=WelcomeRepository(
                self.db,
                self.cache,
                window_seconds=config.welcome.window_hours * 3600,
                tracking_ttl=config.cache.tracking_ttl,
            ),
            forms=FormRepository(self.db),
            prompts=PromptRepository(self.db),
            blacklist=BlacklistRepository(self.db),
        )
        self.clients = ClientDataRepository(self.db)
        self.history = ChatHistoryRepository(self.db, embedder=embedder)
        self.sessions = SessionManager()
        self.maintenance = MaintenanceService(
            config.maintenance, self.cache, self.repos.welcomes, self.history
        )
        self.channel_registry = ChannelRegistry()

    async def start(self) -> None:
        """Initialize and start all components."""
        self.tmp_dir.mkdir(parents=True, exist_ok=True)

        # 1. Database
        await self.db.initialize()

        # 2. Housekeeping
        await self.maintenance.start()

        # 3. Channels
        ai_client = self._create_ai_client()
        for channel_cfg in self.config.channels:
            try:
                adapter = self._create_adapter(channel_cfg)
                router = self.build_router(channel_cfg.id, adapter, ai_client)
                adapter.on_message(router.handle)
                await adapter.start()
                self.channel_registry.register(adapter)
                logger.info("channel_started", channel=channel_cfg.id, platform=channel_cfg.platform)
            except Exception as e:
                logger.error("channel_start_failed", channel=channel_cfg.id, error=str(e))

        logger.info("flowbot_started", channel_count=len(self.channel_registry))

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        await self.channel_registry.stop_all()
        await self.maintenance.stop()
        await self.db.close()
        logger.info("flowbot_stopped")

    def build_router(self, channel_ref: str, adapter: MessengerAdapter, ai_client: AIClient) -> MessageRouter:
        cfg = self.config
        return MessageRouter(
            channel_ref=channel_ref,
            send=adapter.send_message,
            chatbots=self.repos.chatbots,
            blacklist=BlacklistGate(self.repos.blacklist, cfg.retry, cfg.phone.country_code),
            welcome=WelcomeDispatcher(self.repos.welcomes, cfg.retry),
            dynamic=DynamicMatcher(self.repos.flows, self.history, cfg.retry),
            forms=DataCollectionEngine(
                self.repos.forms, self.clients, self.history, self.sessions, cfg.forms, cfg.messages
            ),
            ai=AIResponder(
                ai_client,
                self.repos.prompts,
                self.history,
                self.cache,
                cfg.ai,
                cfg.messages,
                response_ttl=cfg.cache.ai_response_ttl,
                synthesizer=self.synthesizer,
            ),
            messages=cfg.messages,
            retry_config=cfg.retry,
            transcriber=self.transcriber,
        )

    def _create_ai_client(self) -> AIClient:
        """Create an AI client based on the configured backend."""
        match self.config.ai.backend:
            case "anthropic":
                if not self.config.anthropic:
                    raise ConfigurationError("backend 'anthropic' selected but no 'anthropic' section in config")
                return AnthropicClient(self.config.anthropic, self.config.ai)
            case "openai":
                if not self.config.openai:
                    raise ConfigurationError("backend 'openai' selected but no 'openai' section in config")
                return OpenAIClient(self.config.openai, self.config.ai)
            case _:
                raise ConfigurationError(f"Unknown AI backend: {self.config.ai.backend}")

    def _create_adapter(self, cfg: ChannelConfig) -> MessengerAdapter:
        gate = InboundGate(self.config.gate)
        match cfg.platform:
            case "whatsapp":
                from flowbot.messenger.whatsapp import WhatsAppCloudAdapter

                return WhatsAppCloudAdapter(cfg, gate)
            case "telegram":
                from flowbot.messenger.telegram import TelegramAdapter

                return TelegramAdapter(cfg, gate)
            case _:
                raise ConfigurationError(f"Unknown platform: {cfg.platform}")
