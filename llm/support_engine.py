"""
Support Engine.

Customer-support conversations. No SPIN, no BANT, no scheduling: the goal
is to resolve the issue or hand it to the right team.

Pipeline per turn:
1. Analyze (LLM, JSON) or keyword fallback
2. Update the support state machine
3. Respond (LLM) or per-state fallback text
4. Check, then at most one regeneration, else the state fallback
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from config.agent_config import AgentConfig
from qualification.clock import utc_now
from qualification.errors import BusinessRuleError, ValidationError

from .guardrails import SupportResponseChecker
from .history import TurnWindow
from .prompt_templates import PromptTemplates
from .providers.base import CompletionError, CompletionService
from .snapshot import SNAPSHOT_VERSION, SupportSnapshot, validate_snapshot

logger = logging.getLogger(__name__)

ESCALATION_TURN_LIMIT = 8

ANALYZER_TEMPERATURE = 0.3
RESPONDER_TEMPERATURE = 0.6
REPAIR_TEMPERATURE = 0.5


class SupportState(Enum):
    GREETING = "greeting"
    IDENTIFYING_ISSUE = "identifying_issue"
    CLARIFYING = "clarifying"
    RESOLVING = "resolving"
    CONFIRMING = "confirming"
    ESCALATING = "escalating"
    CLOSING = "closing"

    @classmethod
    def from_value(cls, value) -> "SupportState":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Unknown support state: {value!r}",
                details={"kind": "unknown_state", "value": value},
            )


TRANSITIONS: Dict[SupportState, Tuple[SupportState, ...]] = {
    SupportState.GREETING: (SupportState.IDENTIFYING_ISSUE,),
    SupportState.IDENTIFYING_ISSUE: (
        SupportState.RESOLVING, SupportState.CLARIFYING, SupportState.ESCALATING,
    ),
    SupportState.CLARIFYING: (SupportState.RESOLVING, SupportState.ESCALATING),
    SupportState.RESOLVING: (SupportState.CONFIRMING, SupportState.ESCALATING),
    SupportState.CONFIRMING: (SupportState.CLOSING, SupportState.RESOLVING),
    SupportState.ESCALATING: (SupportState.CLOSING,),
    SupportState.CLOSING: (),
}


ISSUE_CATEGORIES: Dict[str, Dict[str, Any]] = {
    "technical": {
        "name": "Technical problem",
        "keywords": ["error", "bug", "not working", "crashed", "won't load", "broken", "problem"],
        "escalate_to": "technical_support",
        "priority": "high",
    },
    "billing": {
        "name": "Billing and payments",
        "keywords": ["payment", "charge", "charged", "invoice", "bill", "card", "refund", "price"],
        "escalate_to": "finance",
        "priority": "medium",
    },
    "cancellation": {
        "name": "Cancellation",
        "keywords": ["cancel", "cancellation", "give up", "don't want it anymore", "close my account"],
        "escalate_to": "retention",
        "priority": "high",
    },
    "sales": {
        "name": "Sales",
        "keywords": ["buy", "hire", "plan", "upgrade", "more information", "how much"],
        "escalate_to": "sales",
        "priority": "low",
    },
    "general": {
        "name": "General question",
        "keywords": ["question", "how", "when", "where", "which", "what"],
        "escalate_to": None,
        "priority": "low",
    },
}

PRIORITIES = ("low", "medium", "high", "urgent")

STATE_GUIDANCE = {
    SupportState.GREETING: "Greet warmly, introduce yourself by name and ask how you can help.",
    SupportState.IDENTIFYING_ISSUE: "Acknowledge what the customer said and ask one specific question about the issue.",
    SupportState.CLARIFYING: "Ask for the one detail you still need. Keep the tone welcoming.",
    SupportState.RESOLVING: "Give the solution clearly, numbered steps if needed, and ask if it is clear.",
    SupportState.CONFIRMING: "Ask whether the issue is solved and offer help with anything else.",
    SupportState.ESCALATING: "Explain you are passing the case to a specialist team and thank them for their patience.",
    SupportState.CLOSING: "Thank the customer, stay available and say goodbye warmly.",
}

FALLBACK_RESPONSES = {
    SupportState.GREETING: "Hi! Welcome. How can I help you today?",
    SupportState.IDENTIFYING_ISSUE: "I see. Could you give me a few more details about that?",
    SupportState.CLARIFYING: "I need one more detail to help you properly. Could you explain a bit more?",
    SupportState.RESOLVING: "Let me check that for you. One moment, please.",
    SupportState.CONFIRMING: "Did that solve it? Is there anything else I can help with?",
    SupportState.ESCALATING: "I'm passing your case to a specialist who will help you. You'll hear from them soon.",
    SupportState.CLOSING: "It was a pleasure to help! If you need anything else, just message us. Have a great day!",
}


class SupportAnalysis(BaseModel):
    """Analyzer output."""
    model_config = ConfigDict(extra="ignore")

    intent: str = "request"
    sentiment: str = "neutral"
    category: str = "general"
    priority: str = "low"
    issue_summary: Optional[str] = None
    needs_clarification: bool = False
    can_resolve: bool = False
    should_escalate: bool = False
    escalate_reason: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, v):
        v = str(v or "general").strip().lower()
        return v if v in ISSUE_CATEGORIES else "general"

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v):
        v = str(v or "low").strip().lower()
        return v if v in PRIORITIES else "low"

    @field_validator("issue_summary", "escalate_reason", mode="before")
    @classmethod
    def _optional_text(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return None if v.lower() in ("", "null", "none") else v


def keyword_analysis(message: str) -> SupportAnalysis:
    """Keyword fallback: first category (in table order) with a hit wins."""
    text = (message or "").lower()
    for key, category in ISSUE_CATEGORIES.items():
        if any(re.search(rf"(?<!\w){re.escape(k)}(?!\w)", text) for k in category["keywords"]):
            return SupportAnalysis(category=key, priority=category["priority"], needs_clarification=True)
    return SupportAnalysis(needs_clarification=True)


def parse_analysis(raw: str) -> SupportAnalysis:
    """
    Raises:
        ValueError: not a JSON object or not a valid analysis
    """
    text = re.sub(r"^```(?:json)?\s*|\s*```$", "", (raw or "").strip())
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("analyzer output is not a JSON object")
    return SupportAnalysis.model_validate(data)


@dataclass
class SupportTurnResult:
    reply: str
    state: SupportState
    category: Optional[str]
    priority: str
    escalated: bool
    escalated_to: Optional[str]
    resolved: bool
    turn: int
    conversation_key: str = ""
    analysis_source: str = "llm"
    degraded_steps: List[str] = field(default_factory=list)
    check_issues: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reply": self.reply,
            "state": self.state.value,
            "category": self.category,
            "priority": self.priority,
            "escalated": self.escalated,
            "escalated_to": self.escalated_to,
            "resolved": self.resolved,
            "turn": self.turn,
            "conversation_key": self.conversation_key,
            "analysis_source": self.analysis_source,
            "degraded_steps": self.degraded_steps,
            "check_issues": self.check_issues,
        }


class SupportEngine:
    """State and pipeline of one support conversation."""

    def __init__(
        self,
        conversation_key: str,
        config: AgentConfig,
        completion: CompletionService,
        model: Optional[str] = None,
        llm_timeout: float = 20.0,
        window_size: int = 20,
    ):
        self.conversation_key = conversation_key
        self.config = config
        self.completion = completion
        self.model = config.ai.model or model
        self.llm_timeout = llm_timeout
        self.checker = SupportResponseChecker()

        self.state = SupportState.GREETING
        self.turn_count = 0
        self.category: Optional[str] = None
        self.priority = "low"
        self.issue_summary: Optional[str] = None
        self.resolved = False
        self.escalated = False
        self.escalated_to: Optional[str] = None
        self.state_history: List[Dict[str, Any]] = []
        self.window = TurnWindow(limit=window_size)

    # ── State machine ────────────────────────────────────

    def transition(self, target: SupportState, now: Optional[datetime] = None):
        """
        Raises:
            BusinessRuleError: target not reachable from the current state
        """
        if target is self.state:
            return
        if target not in TRANSITIONS[self.state]:
            raise BusinessRuleError(
                f"Cannot move support conversation from {self.state.value} to {target.value}",
                violations=[f"{target.value} is not reachable from {self.state.value}"],
            )
        logger.info(f"[support] {self.conversation_key}: {self.state.value} -> {target.value}")
        self.state_history.append({
            "from": self.state.value,
            "to": target.value,
            "turn": self.turn_count,
            "at": (now or utc_now()).isoformat(),
        })
        self.state = target

    def next_state(self, analysis: SupportAnalysis) -> SupportState:
        current = self.state
        if current is SupportState.GREETING:
            return SupportState.IDENTIFYING_ISSUE
        if current is SupportState.IDENTIFYING_ISSUE:
            if analysis.needs_clarification:
                return SupportState.CLARIFYING
            if analysis.should_escalate:
                return SupportState.ESCALATING
            if analysis.can_resolve:
                return SupportState.RESOLVING
            return current
        if current is SupportState.CLARIFYING:
            if analysis.should_escalate:
                return SupportState.ESCALATING
            if analysis.can_resolve:
                return SupportState.RESOLVING
            return current
        if current is SupportState.RESOLVING:
            if analysis.should_escalate:
                return SupportState.ESCALATING
            return SupportState.CONFIRMING
        if current is SupportState.CONFIRMING:
            if analysis.intent == "farewell" or analysis.sentiment == "positive":
                return SupportState.CLOSING
            return SupportState.RESOLVING
        if current is SupportState.ESCALATING:
            return SupportState.CLOSING
        return current

    def apply_analysis(self, analysis: SupportAnalysis, now: Optional[datetime] = None):
        if analysis.category != "general":
            self.category = analysis.category
        if analysis.issue_summary:
            self.issue_summary = analysis.issue_summary
        self.priority = analysis.priority

        previous = self.state
        self.transition(self.next_state(analysis), now=now)
        if previous is SupportState.CONFIRMING and self.state is SupportState.CLOSING:
            self.resolved = True
        if previous is SupportState.ESCALATING and self.state is SupportState.CLOSING:
            self.escalated = True
            self.escalated_to = self.escalation_target()

    def escalation_target(self) -> str:
        category = ISSUE_CATEGORIES.get(self.category or "general", {})
        return category.get("escalate_to") or "specialist"

    def should_escalate(self) -> bool:
        if self.turn_count >= ESCALATION_TURN_LIMIT and not self.resolved:
            return True
        if self.priority == "urgent":
            return True
        if self.category == "cancellation":
            return True
        return self.escalated

    # ── LLM calls ────────────────────────────────────────

    async def _call(self, step: str, messages, temperature: float, max_tokens: int, json_mode: bool = False):
        try:
            text = await asyncio.wait_for(
                self.completion.complete(
                    messages,
                    model=self.model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    json_mode=json_mode,
                ),
                timeout=self.llm_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[support:{step}] completion timed out ({self.conversation_key})")
            return None
        except CompletionError as e:
            logger.warning(f"[support:{step}] completion failed ({self.conversation_key}): {e}")
            return None
        return text.strip() if text and text.strip() else None

    async def analyze(self, message: str) -> Tuple[SupportAnalysis, bool]:
        """Returns (analysis, used_fallback)."""
        prompt = PromptTemplates.build_support_analyzer_prompt(
            self.config, self.state.value, ISSUE_CATEGORIES, self.window, message,
        )
        raw = await self._call(
            "analyzer",
            [{"role": "user", "content": prompt}],
            temperature=ANALYZER_TEMPERATURE,
            max_tokens=500,
            json_mode=True,
        )
        if raw is not None:
            try:
                return parse_analysis(raw), False
            except (ValueError, PydanticValidationError) as e:
                logger.warning(f"[support:analyzer] malformed analysis: {e}")
        return keyword_analysis(message), True

    async def respond(self, analysis: SupportAnalysis) -> Tuple[str, bool]:
        messages = PromptTemplates.build_support_responder_messages(
            self.config,
            self.state.value,
            analysis.model_dump(),
            self.window,
            guidance=STATE_GUIDANCE[self.state],
        )
        text = await self._call("responder", messages, temperature=RESPONDER_TEMPERATURE, max_tokens=400)
        if text is None:
            return FALLBACK_RESPONSES[self.state], True
        return text, False

    async def check_and_repair(self, draft: str) -> Tuple[str, List[str], bool]:
        """Returns (final text, first check issues, regeneration failed)."""
        first = self.checker.check(draft)
        if first.valid:
            return draft, [], False

        messages = PromptTemplates.build_support_repair_messages(
            draft, self.checker.repair_instructions(first.issues),
        )
        text = await self._call("repair", messages, temperature=REPAIR_TEMPERATURE, max_tokens=300)
        if text is not None and self.checker.check(text).valid:
            return text, first.issues, False
        return FALLBACK_RESPONSES[self.state], first.issues, text is None

    # ── Turn ─────────────────────────────────────────────

    async def process_turn(self, message: str, now: Optional[datetime] = None) -> SupportTurnResult:
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message text is required", details={"kind": "empty_message"})
        message = message.strip()
        now = now or utc_now()

        self.turn_count += 1
        self.window.append("user", message, now)
        degraded: List[str] = []

        analysis, analysis_fallback = await self.analyze(message)
        if analysis_fallback:
            degraded.append("analyze")
        self.apply_analysis(analysis, now=now)

        draft, respond_fallback = await self.respond(analysis)
        if respond_fallback:
            degraded.append("respond")

        reply, issues, repair_failed = await self.check_and_repair(draft)
        if repair_failed:
            degraded.append("repair")
        self.window.append("assistant", reply, now)

        escalate = self.should_escalate()
        if escalate and not self.escalated:
            self.escalated = True
            self.escalated_to = self.escalation_target()
            logger.info(f"[support] {self.conversation_key} flagged for escalation to {self.escalated_to}")

        return SupportTurnResult(
            reply=reply,
            state=self.state,
            category=self.category,
            priority=self.priority,
            escalated=escalate,
            escalated_to=self.escalated_to if escalate else None,
            resolved=self.resolved,
            turn=self.turn_count,
            conversation_key=self.conversation_key,
            analysis_source="fallback" if analysis_fallback else "llm",
            degraded_steps=degraded,
            check_issues=issues,
        )

    # ── Snapshot ─────────────────────────────────────────

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "engine": "support",
            "conversation_key": self.conversation_key,
            "state": self.state.value,
            "turn_count": self.turn_count,
            "category": self.category,
            "priority": self.priority,
            "issue_summary": self.issue_summary,
            "resolved": self.resolved,
            "escalated": self.escalated,
            "escalated_to": self.escalated_to,
            "state_history": list(self.state_history),
            "window": self.window.to_dict(),
        }

    @classmethod
    def from_snapshot(
        cls,
        snapshot: Dict[str, Any],
        config: AgentConfig,
        completion: CompletionService,
        **kwargs,
    ) -> "SupportEngine":
        """
        Raises:
            ValidationError: malformed snapshot or unknown state
        """
        parsed: SupportSnapshot = validate_snapshot(SupportSnapshot, snapshot)
        window_size = kwargs.pop("window_size", None) or parsed.window.limit
        engine = cls(parsed.conversation_key, config, completion, window_size=window_size, **kwargs)
        engine.state = SupportState.from_value(parsed.state)
        engine.turn_count = parsed.turn_count
        engine.category = parsed.category if parsed.category in ISSUE_CATEGORIES else None
        engine.priority = parsed.priority if parsed.priority in PRIORITIES else "low"
        engine.issue_summary = parsed.issue_summary
        engine.resolved = parsed.resolved
        engine.escalated = parsed.escalated
        engine.escalated_to = parsed.escalated_to
        engine.state_history = list(parsed.state_history)
        engine.window = TurnWindow.from_dict(parsed.window.model_dump(), limit=window_size)
        return engine
