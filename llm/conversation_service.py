"""
Conversation Service.

Entry point for processing turns and managing per-conversation state.

Each call runs under the conversation's lock: load the snapshot, rebuild
the engine, run the operation, save. Nothing is saved unless the whole
operation succeeds, so a failed or timed-out turn leaves the stored state
as it was.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from config.agent_config import AgentConfig
from qualification.archetypes import ArchetypeClassifier
from qualification.errors import ConversationNotFoundError, ValidationError
from qualification.handoff import HandoffRequest, HandoffRouter
from qualification.policy import QualificationPolicy
from qualification.scoring_rules import BANTScoringEngine

from .conversation_store import ConversationStateStore
from .orchestrator import ConsultativeEngine, TurnResult
from .providers.base import CompletionService
from .session_lock import KeyedLockManager
from .support_engine import SupportEngine, SupportTurnResult

logger = logging.getLogger(__name__)

SUPPORT_KEY_PREFIX = "support:"


def _require_key(key: str) -> str:
    if not isinstance(key, str) or not key.strip():
        raise ValidationError("Conversation key is required", details={"kind": "missing_key"})
    return key.strip()


def _require_consultative_key(key: str) -> str:
    key = _require_key(key)
    if key.startswith(SUPPORT_KEY_PREFIX):
        raise ValidationError(
            f"Conversation keys may not start with {SUPPORT_KEY_PREFIX!r}",
            details={"kind": "reserved_key"},
        )
    return key


def _require_text(text: str) -> str:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Message text is required", details={"kind": "empty_message"})
    return text


def _check_snapshot_key(key: str, snapshot: Any) -> Dict[str, Any]:
    if not isinstance(snapshot, dict):
        raise ValidationError("Snapshot must be a mapping", details={"kind": "invalid_snapshot"})
    data = dict(snapshot)
    stored_key = data.setdefault("conversation_key", key)
    if stored_key != key:
        raise ValidationError(
            f"Snapshot belongs to {stored_key!r}, not {key!r}",
            details={"kind": "invalid_snapshot"},
        )
    return data


class ConversationService:
    """
    Consultative (SPIN/BANT) conversations.

    Turns for the same key are serialized; different keys run concurrently.
    """

    def __init__(
        self,
        store: ConversationStateStore,
        completion: CompletionService,
        config: AgentConfig,
        model: Optional[str] = None,
        llm_timeout: float = 20.0,
        turn_timeout: Optional[float] = 60.0,
        window_size: int = 20,
        scoring: Optional[BANTScoringEngine] = None,
        policy: Optional[QualificationPolicy] = None,
        classifier: Optional[ArchetypeClassifier] = None,
        handoff_router: Optional[HandoffRouter] = None,
        handoff_max_retries: int = 3,
        locks: Optional[KeyedLockManager] = None,
    ):
        self.store = store
        self.completion = completion
        self.config = config
        self.model = model
        self.llm_timeout = llm_timeout
        self.turn_timeout = turn_timeout
        self.window_size = window_size
        self.scoring = scoring or BANTScoringEngine()
        self.policy = policy or QualificationPolicy()
        self.classifier = classifier or ArchetypeClassifier()
        self.handoff_router = handoff_router
        self.handoff_max_retries = handoff_max_retries
        self.locks = locks or KeyedLockManager()

    def _engine_args(self) -> Dict[str, Any]:
        return {
            "scoring": self.scoring,
            "policy": self.policy,
            "classifier": self.classifier,
            "model": self.model,
            "llm_timeout": self.llm_timeout,
            "window_size": self.window_size,
        }

    def _new_engine(self, key: str) -> ConsultativeEngine:
        return ConsultativeEngine(key, self.config, self.completion, **self._engine_args())

    def _restore_engine(self, snapshot: Dict[str, Any]) -> ConsultativeEngine:
        return ConsultativeEngine.from_snapshot(snapshot, self.config, self.completion, **self._engine_args())

    async def _load_engine(self, key: str, create: bool = False) -> ConsultativeEngine:
        snapshot = await self.store.load(key)
        if snapshot is None:
            if create:
                return self._new_engine(key)
            raise ConversationNotFoundError(
                f"Conversation {key} not found",
                details={"conversation_key": key},
            )
        return self._restore_engine(snapshot)

    # ── Turns ────────────────────────────────────────────

    async def process_turn(self, key: str, text: str) -> TurnResult:
        """
        Process one user message for a conversation, creating it if needed.

        Raises:
            ValidationError: empty key or text, corrupt stored snapshot
            asyncio.TimeoutError: the turn exceeded turn_timeout (state unchanged)
        """
        key = _require_consultative_key(key)
        text = _require_text(text)

        async with self.locks.acquire(key):
            engine = await self._load_engine(key, create=True)
            if self.turn_timeout:
                result = await asyncio.wait_for(engine.process_turn(text), timeout=self.turn_timeout)
            else:
                result = await engine.process_turn(text)
            await self.store.save(key, engine.to_snapshot())

        if result.handoff_triggered:
            await self._send_handoff(engine, text)
        return result

    async def _send_handoff(self, engine: ConsultativeEngine, last_message: str):
        if self.handoff_router is None:
            return
        lead = engine.lead
        request = HandoffRequest(
            conversation_key=engine.conversation_key,
            phase=engine.phase.value,
            progress=engine.progress(),
            score=lead.score.value,
            stage=lead.stage.value,
            bant=dict(engine.bant_values),
            archetype=engine.archetype.current,
            cta=self.config.cta.description,
            name=lead.name,
            company=lead.company,
            last_message=last_message,
        )
        delivered = await self.handoff_router.send_with_retry(request, max_retries=self.handoff_max_retries)
        if not delivered:
            logger.warning(f"Handoff for {engine.conversation_key} not delivered; kept in queue")

    # ── State ────────────────────────────────────────────

    async def get_state(self, key: str) -> Dict[str, Any]:
        """
        Raises:
            ConversationNotFoundError: nothing stored for the key
        """
        key = _require_consultative_key(key)
        snapshot = await self.store.load(key)
        if snapshot is None:
            raise ConversationNotFoundError(
                f"Conversation {key} not found",
                details={"conversation_key": key},
            )
        return snapshot

    async def restore_state(self, key: str, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        """
        Replace a conversation's state with a snapshot.

        Raises:
            ValidationError: malformed snapshot (stored state untouched)
        """
        key = _require_consultative_key(key)
        data = _check_snapshot_key(key, snapshot)
        engine = self._restore_engine(data)
        normalized = engine.to_snapshot()
        async with self.locks.acquire(key):
            await self.store.save(key, normalized)
        logger.info(f"Conversation {key} restored at phase {engine.phase.value}")
        return normalized

    async def delete(self, key: str) -> bool:
        key = _require_consultative_key(key)
        async with self.locks.acquire(key):
            return await self.store.delete(key)

    # ── Qualification ────────────────────────────────────

    async def qualify(self, key: str) -> Dict[str, Any]:
        """
        Raises:
            ConversationNotFoundError
            BusinessRuleError: listing unmet conditions (state unchanged)
        """
        key = _require_consultative_key(key)
        async with self.locks.acquire(key):
            engine = await self._load_engine(key)
            self.policy.qualify(engine.lead)
            await self.store.save(key, engine.to_snapshot())
        return engine.lead.to_dict()

    async def disqualify(self, key: str, reason: str) -> Dict[str, Any]:
        """
        Raises:
            ConversationNotFoundError
            ValidationError: empty reason
            BusinessRuleError: lead already terminal
        """
        key = _require_consultative_key(key)
        async with self.locks.acquire(key):
            engine = await self._load_engine(key)
            self.policy.disqualify(engine.lead, reason)
            await self.store.save(key, engine.to_snapshot())
        return engine.lead.to_dict()

    async def assess(self, key: str) -> Dict[str, Any]:
        """Read-only qualification assessment."""
        key = _require_consultative_key(key)
        engine = await self._load_engine(key)
        lead = engine.lead
        return {
            "conversation_key": key,
            "phase": engine.phase.value,
            "progress": engine.progress(),
            "ready_for_handoff": engine.ready_for_handoff(),
            "lead": lead.to_dict(),
            "qualification": self.policy.evaluate_qualification(lead).to_dict(),
            "disqualification": self.policy.should_disqualify(lead).to_dict(),
            "risk": self.policy.risk_score(lead).to_dict(),
            "next_step": self.scoring.next_stage_recommendation(lead),
            "disqualification_reason": self.policy.get_disqualification_reason(lead),
        }


class SupportService:
    """Customer-support conversations, stored under a separate key prefix."""

    def __init__(
        self,
        store: ConversationStateStore,
        completion: CompletionService,
        config: AgentConfig,
        model: Optional[str] = None,
        llm_timeout: float = 20.0,
        turn_timeout: Optional[float] = 60.0,
        window_size: int = 20,
        locks: Optional[KeyedLockManager] = None,
    ):
        self.store = store
        self.completion = completion
        self.config = config
        self.model = model
        self.llm_timeout = llm_timeout
        self.turn_timeout = turn_timeout
        self.window_size = window_size
        self.locks = locks or KeyedLockManager()

    @staticmethod
    def storage_key(key: str) -> str:
        return f"{SUPPORT_KEY_PREFIX}{key}"

    def _engine_args(self) -> Dict[str, Any]:
        return {"model": self.model, "llm_timeout": self.llm_timeout, "window_size": self.window_size}

    async def process_turn(self, key: str, text: str) -> SupportTurnResult:
        key = _require_key(key)
        text = _require_text(text)
        storage_key = self.storage_key(key)

        async with self.locks.acquire(storage_key):
            snapshot = await self.store.load(storage_key)
            if snapshot is None:
                engine = SupportEngine(key, self.config, self.completion, **self._engine_args())
            else:
                engine = SupportEngine.from_snapshot(snapshot, self.config, self.completion, **self._engine_args())
            if self.turn_timeout:
                result = await asyncio.wait_for(engine.process_turn(text), timeout=self.turn_timeout)
            else:
                result = await engine.process_turn(text)
            await self.store.save(storage_key, engine.to_snapshot())
        return result

    async def get_state(self, key: str) -> Dict[str, Any]:
        key = _require_key(key)
        snapshot = await self.store.load(self.storage_key(key))
        if snapshot is None:
            raise ConversationNotFoundError(
                f"Support conversation {key} not found",
                details={"conversation_key": key},
            )
        return snapshot

    async def delete(self, key: str) -> bool:
        key = _require_key(key)
        storage_key = self.storage_key(key)
        async with self.locks.acquire(storage_key):
            return await self.store.delete(storage_key)
