"""
Service initialization and dependency injection for the qualification API.

Creates and manages all service instances used by the API.
"""

import logging
from typing import Optional

from config.agent_config import AgentConfig, load_agent_config
from config.settings import get_settings, Settings
from llm.conversation_service import ConversationService, SupportService
from llm.conversation_store import ConversationStateStore, InMemoryConversationStateStore
from llm.providers.base import CompletionService
from llm.session_lock import KeyedLockManager
from qualification.archetypes import ArchetypeClassifier
from qualification.handoff import HandoffRouter
from qualification.policy import QualificationPolicy
from qualification.scoring_rules import BANTScoringEngine

from .middleware.metrics import InstrumentedCompletionService

logger = logging.getLogger(__name__)


class Services:
    """Container for all application services."""

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.agent_config: Optional[AgentConfig] = None
        self.completion: Optional[CompletionService] = None
        self.store: Optional[ConversationStateStore] = None
        self.handoff_router: Optional[HandoffRouter] = None
        self.conversations: Optional[ConversationService] = None
        self.support: Optional[SupportService] = None
        self._initialized = False

    def initialize(
        self,
        completion: Optional[CompletionService] = None,
        store: Optional[ConversationStateStore] = None,
        agent_config: Optional[AgentConfig] = None,
        handoff_router: Optional[HandoffRouter] = None,
    ):
        """Initialize all services. Arguments override the settings-built defaults."""
        if self._initialized:
            return

        self.settings = get_settings()
        logger.info(f"Initializing services with provider: {self.settings.llm_provider}")

        try:
            self.agent_config = agent_config or load_agent_config(self.settings.agent_config_path)
            self.completion = InstrumentedCompletionService(completion or self._init_completion())
            self.store = store or self._init_store()
            self.handoff_router = handoff_router or HandoffRouter(
                webhook_url=self.settings.handoff_webhook_url,
                api_key=self.settings.handoff_api_key,
                max_queue=self.settings.handoff_queue_limit,
                max_delivered=self.settings.handoff_delivered_limit,
            )
            self._init_conversations()
            self._initialized = True
            logger.info("All services initialized successfully")
        except Exception as e:
            logger.error(f"Service initialization failed: {e}")
            # Allow API to start even if some services fail
            self._initialized = True
            logger.warning("API starting in degraded mode")

    def _init_completion(self) -> CompletionService:
        """Initialize the completion provider."""
        s = self.settings
        if s.is_bedrock:
            from llm.providers.bedrock import BedrockProvider
            return BedrockProvider(model_id=s.bedrock_llm_model_id, region=s.aws_region)

        from llm.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(
            api_key=s.openai_api_key,
            model_id=s.openai_llm_model,
            timeout=s.llm_timeout_seconds,
        )

    def _init_store(self) -> ConversationStateStore:
        """Database store when the database is initialized, else in-memory."""
        if self.settings.database_url:
            from database.session import get_session_factory
            from llm.db_conversation_store import DbConversationStateStore
            try:
                return DbConversationStateStore(get_session_factory())
            except RuntimeError as e:
                logger.warning(f"{e} Falling back to in-memory state store")
        return InMemoryConversationStateStore()

    def _init_conversations(self):
        s = self.settings
        locks = KeyedLockManager()
        self.conversations = ConversationService(
            store=self.store,
            completion=self.completion,
            config=self.agent_config,
            model=s.llm_model_id,
            llm_timeout=s.llm_timeout_seconds,
            turn_timeout=s.turn_timeout_seconds,
            window_size=s.turn_window_size,
            scoring=BANTScoringEngine(),
            policy=QualificationPolicy(
                inactivity_disqualify_days=s.inactivity_disqualify_days,
                inactivity_risk_days=s.inactivity_risk_days,
            ),
            classifier=ArchetypeClassifier(),
            handoff_router=self.handoff_router,
            handoff_max_retries=s.handoff_max_retries,
            locks=locks,
        )
        self.support = SupportService(
            store=self.store,
            completion=self.completion,
            config=self.agent_config,
            model=s.llm_model_id,
            llm_timeout=s.llm_timeout_seconds,
            turn_timeout=s.turn_timeout_seconds,
            window_size=s.turn_window_size,
            locks=locks,
        )
        logger.info("Conversation services ready")

    def reset(self):
        """Drop all instances (tests and reloads)."""
        self.__init__()

    @property
    def is_ready(self) -> bool:
        return self._initialized and self.conversations is not None

    def health(self) -> dict:
        """Return health status of all services."""
        return {
            "initialized": self._initialized,
            "completion": self.completion is not None,
            "store": type(self.store).__name__ if self.store else None,
            "conversations": self.conversations is not None,
            "support": self.support is not None,
            "handoff_webhook": bool(self.handoff_router and self.handoff_router.enabled),
            "handoff_queue": self.handoff_router.queue_size() if self.handoff_router else 0,
        }


# Singleton
_services = Services()


def get_services() -> Services:
    """Get the global services instance."""
    return _services


def initialize_services(**overrides):
    """Initialize all services (called at startup)."""
    _services.initialize(**overrides)
