"""
Consultative Engine.

Runs one SPIN/BANT conversation turn by turn.

Pipeline per turn:
1. Classify archetype, detect phase signals
2. Plan (LLM, JSON) or fall back to a neutral plan
3. Merge extracted BANT values into the lead's stage data
4. Advance stage and phase when the planner asks and the stage allows it
5. Write the reply (LLM) or fall back to the phase question
6. Check the draft
7. Repair: strip fixes, then at most one regeneration, else a safe question
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from config.agent_config import AgentConfig, BANTFieldConfig
from qualification.archetypes import ArchetypeClassifier, ArchetypeState
from qualification.clock import utc_now
from qualification.errors import ValidationError
from qualification.lead import Lead
from qualification.policy import QualificationPolicy
from qualification.progress import compute_progress
from qualification.scoring_rules import AdvanceResult, BANTScoringEngine
from qualification.stage import SpinPhase

from .guardrails import CheckResult, StyleChecker
from .history import TurnWindow
from .phases import PhaseStateMachine, RegressionHint
from .plan import Plan, PlanOutcome, PlanSource, fallback_plan, parse_plan
from .prompt_templates import PromptTemplates
from .providers.base import CompletionError, CompletionService
from .snapshot import SNAPSHOT_VERSION, ConversationSnapshot, validate_snapshot

logger = logging.getLogger(__name__)

HANDOFF_MIN_PROGRESS = 70


@dataclass
class TurnResult:
    """Everything a caller needs after one turn."""
    reply: str
    phase: SpinPhase
    progress: int
    bant: Dict[str, Any]
    archetype: str
    ready_for_handoff: bool
    conversation_key: str = ""
    turn: int = 0
    funnel_stage: str = "qualifying"
    lead_stage: str = "discovery"
    score: int = 0
    plan_source: str = PlanSource.LLM.value
    degraded_steps: List[str] = field(default_factory=list)
    check_issues: List[str] = field(default_factory=list)
    repaired: bool = False
    extracted: Dict[str, Any] = field(default_factory=dict)
    rejected_values: Dict[str, str] = field(default_factory=dict)
    advance: Optional[AdvanceResult] = None
    advance_signals: List[str] = field(default_factory=list)
    regression_hint: Optional[RegressionHint] = None
    objection: Optional[str] = None
    can_qualify: bool = False
    disqualification_advice: Dict[str, Any] = field(default_factory=dict)
    handoff_triggered: bool = False

    @property
    def degraded(self) -> bool:
        return bool(self.degraded_steps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reply": self.reply,
            "phase": self.phase.value,
            "progress": self.progress,
            "bant": self.bant,
            "archetype": self.archetype,
            "ready_for_handoff": self.ready_for_handoff,
            "conversation_key": self.conversation_key,
            "turn": self.turn,
            "funnel_stage": self.funnel_stage,
            "lead_stage": self.lead_stage,
            "score": self.score,
            "plan_source": self.plan_source,
            "degraded_steps": self.degraded_steps,
            "check_issues": self.check_issues,
            "repaired": self.repaired,
            "extracted": self.extracted,
            "rejected_values": self.rejected_values,
            "advance": self.advance.to_dict() if self.advance else None,
            "advance_signals": self.advance_signals,
            "regression_hint": self.regression_hint.to_dict() if self.regression_hint else None,
            "objection": self.objection,
            "can_qualify": self.can_qualify,
            "disqualification_advice": self.disqualification_advice,
            "handoff_triggered": self.handoff_triggered,
        }


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip() or value.strip().lower() in ("null", "none", "n/a", "unknown")
    if isinstance(value, (list, dict)):
        return not value
    return False


def _strip_quotes(text: str) -> str:
    text = (text or "").strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        text = text[1:-1].strip()
    return text


class ConsultativeEngine:
    """
    State and pipeline of one consultative conversation.

    Not safe for concurrent use: callers serialize turns per conversation
    key (see ConversationService).
    """

    def __init__(
        self,
        conversation_key: str,
        config: AgentConfig,
        completion: CompletionService,
        lead: Optional[Lead] = None,
        scoring: Optional[BANTScoringEngine] = None,
        policy: Optional[QualificationPolicy] = None,
        classifier: Optional[ArchetypeClassifier] = None,
        model: Optional[str] = None,
        llm_timeout: float = 20.0,
        window_size: int = 20,
    ):
        self.conversation_key = conversation_key
        self.config = config
        self.completion = completion
        self.scoring = scoring or BANTScoringEngine()
        self.policy = policy or QualificationPolicy()
        self.classifier = classifier or ArchetypeClassifier()
        self.model = config.ai.model or model
        self.llm_timeout = llm_timeout
        self.checker = StyleChecker(config.style_rules)

        self.lead = lead or Lead(lead_id=conversation_key)
        self.phases = PhaseStateMachine(config)
        self.bant_values: Dict[str, Any] = {}
        self.archetype = ArchetypeState()
        self.window = TurnWindow(limit=window_size)
        self.turn_count = 0

    # ── State ────────────────────────────────────────────

    @property
    def phase(self) -> SpinPhase:
        return self.phases.current

    def progress(self) -> int:
        return compute_progress(self.config.weights(), self.bant_values, self.phases.ordinal)

    def missing_fields(self, phase: Optional[SpinPhase] = None) -> List[BANTFieldConfig]:
        fields = self.config.fields_for_phase(phase or self.phase)
        return [f for f in fields if _is_empty(self.bant_values.get(f.key))]

    def ready_for_handoff(self) -> bool:
        return self.phase is SpinPhase.CLOSING and self.progress() >= HANDOFF_MIN_PROGRESS

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "engine": "consultative",
            "conversation_key": self.conversation_key,
            "turn_count": self.turn_count,
            "phase": self.phases.to_dict(),
            "bant": dict(self.bant_values),
            "lead": self.lead.to_dict(),
            "archetype": self.archetype.to_dict(),
            "window": self.window.to_dict(),
        }

    @classmethod
    def from_snapshot(
        cls,
        snapshot: Dict[str, Any],
        config: AgentConfig,
        completion: CompletionService,
        **kwargs,
    ) -> "ConsultativeEngine":
        """
        Rebuild an engine from to_snapshot() output.

        Raises:
            ValidationError: malformed snapshot, unknown phase/stage, bad lead
        """
        parsed: ConversationSnapshot = validate_snapshot(ConversationSnapshot, snapshot)
        unknown = [k for k in parsed.bant if config.field(k) is None]
        if unknown:
            raise ValidationError(
                f"Snapshot has BANT keys not in the agent config: {unknown}",
                details={"kind": "invalid_snapshot"},
            )
        lead = Lead.from_dict(parsed.lead)
        window_size = kwargs.pop("window_size", None) or parsed.window.limit
        engine = cls(
            conversation_key=parsed.conversation_key,
            config=config,
            completion=completion,
            lead=lead,
            window_size=window_size,
            **kwargs,
        )
        engine.phases = PhaseStateMachine.from_dict(config, parsed.phase.model_dump())
        engine.bant_values = dict(parsed.bant)
        engine.archetype = ArchetypeState.from_dict(parsed.archetype.model_dump())
        engine.window = TurnWindow.from_dict(parsed.window.model_dump(), limit=window_size)
        engine.turn_count = parsed.turn_count
        return engine

    # ── LLM calls ────────────────────────────────────────

    async def _call(
        self,
        step: str,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
        json_mode: bool = False,
    ) -> Tuple[Optional[str], Optional[str]]:
        """Returns (text, error). Failures never propagate."""
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
            logger.warning(f"[{step}] completion timed out after {self.llm_timeout}s ({self.conversation_key})")
            return None, "timeout"
        except CompletionError as e:
            logger.warning(f"[{step}] completion failed ({self.conversation_key}): {e}")
            return None, str(e) or "completion error"
        if not text or not text.strip():
            logger.warning(f"[{step}] empty completion ({self.conversation_key})")
            return None, "empty response"
        return text, None

    # ── Pipeline steps ───────────────────────────────────

    async def plan(
        self,
        message: str,
        advance_signals: List[str],
        regression: Optional[RegressionHint],
    ) -> PlanOutcome:
        phase_config = self.phases.current_config
        missing = self.missing_fields()
        prompt = PromptTemplates.build_planner_prompt(
            config=self.config,
            phase_config=phase_config,
            missing_fields=missing,
            archetype=self.classifier.profile(self.archetype.current),
            window=self.window,
            bant_values=self.bant_values,
            user_message=message,
            advance_signals=advance_signals,
            regression_hint=regression.to_dict() if regression else None,
        )
        ai = self.config.ai
        raw, error = await self._call(
            "planner",
            [{"role": "user", "content": prompt}],
            temperature=ai.planner_temperature,
            max_tokens=ai.max_tokens_planner,
            json_mode=True,
        )
        if raw is not None:
            try:
                return PlanOutcome(plan=parse_plan(raw), source=PlanSource.LLM)
            except (ValueError, PydanticValidationError) as e:
                error = f"malformed plan: {e}"
                logger.warning(f"[planner] {error} ({self.conversation_key})")

        plan = fallback_plan(phase_config, [f.key for f in missing])
        return PlanOutcome(plan=plan, source=PlanSource.FALLBACK, error=error)

    def apply_extraction(
        self,
        extracted: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> Tuple[Dict[str, Any], Dict[str, str]]:
        """
        Merge extracted values into BANT values and stage data.

        Null/empty values and unknown keys are ignored. Values the stage
        schema rejects are skipped with a warning. Each touched stage is
        re-evaluated (overwrite semantics).

        Returns:
            (applied values, rejected key -> reason)
        """
        applied: Dict[str, Any] = {}
        rejected: Dict[str, str] = {}
        staged: Dict[Any, Any] = {}

        for key, value in (extracted or {}).items():
            if _is_empty(value):
                continue
            descriptor = self.config.field(key)
            if descriptor is None:
                logger.debug(f"Ignoring unknown extracted key {key!r}")
                continue
            if isinstance(value, str):
                value = value.strip()

            stage = descriptor.stage
            current = staged.get(stage) or self.lead.get_stage_data(stage)
            try:
                staged[stage] = current.merged({descriptor.attribute: value})
            except PydanticValidationError as e:
                reason = e.errors()[0]["msg"] if e.errors() else "invalid value"
                logger.warning(f"Rejected extracted {key}={value!r}: {reason}")
                rejected[key] = reason
                continue
            applied[key] = value

        if self.lead.is_terminal:
            if staged:
                logger.info(f"Lead {self.lead.lead_id} is {self.lead.stage.value}; stage data not updated")
        else:
            for stage, data in staged.items():
                self.scoring.process_stage_update(self.lead, stage, data, now=now)

        self.bant_values.update(applied)
        return applied, rejected

    def try_advance(self, plan: Plan, now: Optional[datetime] = None) -> Optional[AdvanceResult]:
        """Advance stage and phase together, only if the scoring engine allows it."""
        if not plan.should_advance:
            return None
        if self.lead.is_terminal:
            logger.info(f"Advance ignored: lead {self.lead.lead_id} is {self.lead.stage.value}")
            return None
        if not self.phases.can_advance():
            return None

        result = self.scoring.advance(self.lead, now=now)
        if result.advanced:
            self.phases.advance(
                turn=self.turn_count,
                reason=plan.phase_decision.reason or result.reason,
                now=now,
            )
        return result

    def fallback_reply(self) -> str:
        phase_config = self.phases.current_config
        if self.phase is SpinPhase.CLOSING:
            return f"{phase_config.fallback_question} {self.config.cta.description}."
        return phase_config.fallback_question

    async def write(self, plan: Plan) -> Tuple[str, bool]:
        """Returns (draft, used_fallback)."""
        phase_config = self.phases.current_config
        target_key = plan.writer_instructions.target_field
        target = self.config.field(target_key) if target_key else None
        if target is None:
            missing = self.missing_fields()
            target = missing[0] if missing else None

        system = PromptTemplates.build_writer_system_prompt(
            config=self.config,
            phase_config=phase_config,
            archetype=self.classifier.profile(self.archetype.current),
            plan=plan,
            target_field=target,
        )
        ai = self.config.ai
        text, _ = await self._call(
            "writer",
            PromptTemplates.build_writer_messages(system, self.window),
            temperature=ai.writer_temperature,
            max_tokens=ai.max_tokens_writer,
        )
        if text is None:
            return self.fallback_reply(), True
        return _strip_quotes(text), False

    async def check_and_repair(self, draft: str, message: str) -> Tuple[str, CheckResult, bool, bool]:
        """
        Returns (final text, first check, repaired, regeneration failed).
        """
        first = self.checker.check(draft)
        if first.valid:
            return draft, first, False, False

        fixed = self.checker.apply_fixes(draft)
        if fixed and self.checker.check(fixed).valid:
            logger.info(f"Draft fixed deterministically: {first.issues}")
            return fixed, first, True, False

        remaining = self.checker.check(fixed or draft)
        ai = self.config.ai
        messages = PromptTemplates.build_repair_messages(
            self.config,
            self.phases.current_config,
            fixed or draft,
            self.checker.repair_instructions(remaining.issues),
            message,
        )
        text, _ = await self._call(
            "repair",
            messages,
            temperature=ai.repair_temperature,
            max_tokens=ai.max_tokens_repair,
        )
        if text is not None:
            regenerated = self.checker.apply_fixes(_strip_quotes(text))
            if regenerated and self.checker.check(regenerated).valid:
                return regenerated, first, True, False
            logger.warning(f"Regenerated draft still invalid: {self.checker.check(regenerated).issues}")
            return self.config.style_rules.safe_question, first, True, False

        return self.config.style_rules.safe_question, first, True, True

    # ── Turn ─────────────────────────────────────────────

    async def process_turn(self, message: str, now: Optional[datetime] = None) -> TurnResult:
        """
        Process one user message and produce the reply.

        Raises:
            ValidationError: empty message (nothing is mutated)
        """
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message text is required", details={"kind": "empty_message"})
        message = message.strip()
        now = now or utc_now()

        self.turn_count += 1
        self.lead.record_interaction(now)
        self.window.append("user", message, now)
        degraded: List[str] = []

        decision = self.classifier.classify(message, previous=self.archetype.current)
        self.archetype.update(decision, now)

        advance_signals = self.phases.detect_advance_signals(message)
        regression = self.phases.detect_regression(message)

        outcome = await self.plan(message, advance_signals, regression)
        if outcome.degraded:
            degraded.append("plan")
        plan = outcome.plan

        applied, rejected = self.apply_extraction(plan.extracted_data, now=now)
        advance = self.try_advance(plan, now=now)

        draft, write_fallback = await self.write(plan)
        if write_fallback:
            degraded.append("write")

        reply, check, repaired, repair_failed = await self.check_and_repair(draft, message)
        if repair_failed:
            degraded.append("repair")

        self.window.append("assistant", reply, now)
        self.lead.record_outbound_message(now)

        progress = self.progress()
        ready = self.ready_for_handoff()
        handoff_triggered = False
        if ready and not self.lead.metadata.get("handoff_requested_at"):
            self.lead.metadata["handoff_requested_at"] = now.isoformat()
            handoff_triggered = True
            logger.info(f"Conversation {self.conversation_key} ready for handoff (progress={progress})")

        advice = self.policy.should_disqualify(self.lead, now=now)

        logger.info(
            f"Turn {self.turn_count} for {self.conversation_key}: phase={self.phase.value} "
            f"progress={progress} score={self.lead.score.value} plan={outcome.source.value}"
        )

        return TurnResult(
            reply=reply,
            phase=self.phase,
            progress=progress,
            bant=dict(self.bant_values),
            archetype=self.classifier.profile(self.archetype.current).name,
            ready_for_handoff=ready,
            conversation_key=self.conversation_key,
            turn=self.turn_count,
            funnel_stage=self.phase.funnel_label,
            lead_stage=self.lead.stage.value,
            score=self.lead.score.value,
            plan_source=outcome.source.value,
            degraded_steps=degraded,
            check_issues=check.issues,
            repaired=repaired,
            extracted=applied,
            rejected_values=rejected,
            advance=advance,
            advance_signals=advance_signals,
            regression_hint=regression,
            objection=plan.objection,
            can_qualify=self.policy.can_qualify(self.lead) and not self.lead.is_terminal,
            disqualification_advice=advice.to_dict(),
            handoff_triggered=handoff_triggered,
        )
