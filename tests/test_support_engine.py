"""Tests for the customer-support engine."""

import json

import pytest

from llm.support_engine import (
    FALLBACK_RESPONSES,
    SupportAnalysis,
    SupportEngine,
    SupportState,
    keyword_analysis,
    parse_analysis,
)
from qualification.errors import BusinessRuleError, ValidationError

from .conftest import NOW, ScriptedCompletionService


def analysis_json(**fields) -> str:
    return json.dumps(fields)


def make_engine(agent_config, completion, **kwargs):
    return SupportEngine("support-1", agent_config, completion, **kwargs)


# ── Analysis ──────────────────────────────────────────

class TestAnalysis:
    def test_keyword_fallback_first_category_wins(self):
        analysis = keyword_analysis("I was charged twice on my card")
        assert analysis.category == "billing"
        assert analysis.priority == "medium"
        assert analysis.needs_clarification

    def test_technical_before_billing(self):
        assert keyword_analysis("payment page shows an error").category == "technical"

    def test_no_keywords_is_general(self):
        assert keyword_analysis("hello").category == "general"

    def test_unknown_values_normalised(self):
        analysis = SupportAnalysis(category="weather", priority="extreme", issue_summary="null")
        assert analysis.category == "general"
        assert analysis.priority == "low"
        assert analysis.issue_summary is None

    def test_parse_rejects_non_object(self):
        with pytest.raises(ValueError):
            parse_analysis("[1, 2]")

    def test_parse_fenced(self):
        raw = "```json\n" + analysis_json(category="billing", can_resolve=True) + "\n```"
        assert parse_analysis(raw).can_resolve


# ── State Machine ─────────────────────────────────────

class TestStateMachine:
    def test_invalid_transition(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)
        with pytest.raises(BusinessRuleError):
            engine.transition(SupportState.CLOSING)
        assert engine.state is SupportState.GREETING

    def test_greeting_always_identifies(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)
        assert engine.next_state(SupportAnalysis(should_escalate=True)) is SupportState.IDENTIFYING_ISSUE

    def test_clarification_first(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)
        engine.state = SupportState.IDENTIFYING_ISSUE
        analysis = SupportAnalysis(needs_clarification=True, can_resolve=True)
        assert engine.next_state(analysis) is SupportState.CLARIFYING

    def test_confirming_back_to_resolving(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)
        engine.state = SupportState.CONFIRMING
        assert engine.next_state(SupportAnalysis(sentiment="negative")) is SupportState.RESOLVING

    def test_escalation_target_fallback(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)
        assert engine.escalation_target() == "specialist"
        engine.category = "billing"
        assert engine.escalation_target() == "finance"


# ── Turns ─────────────────────────────────────────────

class TestSupportTurns:
    @pytest.mark.asyncio
    async def test_fallbacks_when_llm_unavailable(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)

        result = await engine.process_turn("I was charged twice on my card", now=NOW)

        assert result.state is SupportState.IDENTIFYING_ISSUE
        assert result.reply == FALLBACK_RESPONSES[SupportState.IDENTIFYING_ISSUE]
        assert result.category == "billing"
        assert result.analysis_source == "fallback"
        assert result.degraded_steps == ["analyze", "respond"]
        assert not result.escalated

    @pytest.mark.asyncio
    async def test_resolution_path(self, agent_config):
        fake = ScriptedCompletionService(
            plans=[
                analysis_json(intent="greeting"),
                analysis_json(category="technical", priority="high", can_resolve=True,
                              issue_summary="app crashes on login"),
                analysis_json(intent="feedback"),
                analysis_json(intent="farewell", sentiment="positive"),
            ],
            replies=[
                "Hi, I'm Ana. What can I help you with?",
                "Sorry about that. Try clearing the cache and logging in again. Is that clear?",
                "Did that sort it out?",
                "Glad it works now. Have a great day!",
            ],
        )
        engine = make_engine(agent_config, fake)
        states = []
        for message in ["hi", "the app crashes on login", "ok I tried it", "works now, thanks"]:
            result = await engine.process_turn(message, now=NOW)
            states.append(result.state)

        assert states == [
            SupportState.IDENTIFYING_ISSUE,
            SupportState.RESOLVING,
            SupportState.CONFIRMING,
            SupportState.CLOSING,
        ]
        assert result.resolved
        assert not result.escalated
        assert engine.category == "technical"
        assert engine.issue_summary == "app crashes on login"
        assert [h["to"] for h in engine.state_history] == [s.value for s in states]
        assert all(c["temperature"] == 0.3 for c in fake.calls if c["step"] == "plan")
        assert all(c["temperature"] == 0.6 for c in fake.calls if c["step"] == "reply")

    @pytest.mark.asyncio
    async def test_cancellation_escalates_and_sticks(self, agent_config):
        fake = ScriptedCompletionService(
            plans=[analysis_json(category="cancellation", priority="high"), analysis_json()],
            replies=["I'm sorry to hear that. Could you tell me what happened?", "Thanks for the detail. Anything else?"],
        )
        engine = make_engine(agent_config, fake)

        first = await engine.process_turn("I want to cancel", now=NOW)
        second = await engine.process_turn("It's just too slow", now=NOW)

        assert first.escalated and first.escalated_to == "retention"
        assert second.escalated and second.escalated_to == "retention"

    @pytest.mark.asyncio
    async def test_urgent_priority_escalates_to_specialist(self, agent_config):
        fake = ScriptedCompletionService(
            plans=[analysis_json(priority="urgent")],
            replies=["I'm on it. Could you share your account email?"],
        )
        result = await make_engine(agent_config, fake).process_turn("help please, everything is down", now=NOW)
        assert result.escalated
        assert result.escalated_to == "specialist"

    @pytest.mark.asyncio
    async def test_long_conversation_escalates(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)
        engine.turn_count = 7
        result = await engine.process_turn("still not fixed", now=NOW)
        assert result.turn == 8
        assert result.escalated

    @pytest.mark.asyncio
    async def test_escalation_through_states(self, agent_config):
        fake = ScriptedCompletionService(
            plans=[
                analysis_json(),
                analysis_json(category="billing", should_escalate=True, escalate_reason="refund over limit"),
                analysis_json(),
            ],
            replies=[
                "Hi! How can I help?",
                "I'm passing this to our finance team. Thanks for your patience!",
                "Thanks for waiting. Anything else I can help with?",
            ],
        )
        engine = make_engine(agent_config, fake)
        await engine.process_turn("hi", now=NOW)
        escalating = await engine.process_turn("I need a refund of 5000", now=NOW)
        closing = await engine.process_turn("ok", now=NOW)

        assert escalating.state is SupportState.ESCALATING
        assert closing.state is SupportState.CLOSING
        assert closing.escalated
        assert closing.escalated_to == "finance"

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)
        with pytest.raises(ValidationError):
            await engine.process_turn("", now=NOW)
        assert engine.turn_count == 0


# ── Reply Checks ──────────────────────────────────────

class TestSupportRepair:
    @pytest.mark.asyncio
    async def test_sales_language_regenerated(self, agent_config):
        fake = ScriptedCompletionService(
            plans=[analysis_json()],
            replies=["You could upgrade to fix that. Does that help?"],
            repairs=["Let's fix that together. Could you tell me which screen you're on?"],
        )
        result = await make_engine(agent_config, fake).process_turn("the export is slow", now=NOW)

        assert result.reply == "Let's fix that together. Could you tell me which screen you're on?"
        assert result.check_issues == ["sales_language"]
        assert result.degraded_steps == []
        assert fake.calls[-1]["temperature"] == 0.5

    @pytest.mark.asyncio
    async def test_invalid_regeneration_uses_state_fallback(self, agent_config):
        fake = ScriptedCompletionService(
            plans=[analysis_json()],
            replies=["What budget do you have for this?"],
            repairs=["Who makes the decision on your side?"],
        )
        result = await make_engine(agent_config, fake).process_turn("hello", now=NOW)
        assert result.reply == FALLBACK_RESPONSES[SupportState.IDENTIFYING_ISSUE]
        assert result.degraded_steps == []

    @pytest.mark.asyncio
    async def test_failed_regeneration_is_degraded(self, agent_config):
        fake = ScriptedCompletionService(plans=[analysis_json()], replies=["As per policy, you must wait."])
        result = await make_engine(agent_config, fake).process_turn("hello", now=NOW)
        assert result.reply == FALLBACK_RESPONSES[SupportState.IDENTIFYING_ISSUE]
        assert result.degraded_steps == ["repair"]


# ── Snapshots ─────────────────────────────────────────

class TestSupportSnapshot:
    @pytest.mark.asyncio
    async def test_round_trip(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)
        await engine.process_turn("I was charged twice", now=NOW)

        snapshot = engine.to_snapshot()
        restored = SupportEngine.from_snapshot(snapshot, agent_config, fake_completion)

        assert restored.to_snapshot() == snapshot

    def test_unknown_state_rejected(self, agent_config, fake_completion):
        snapshot = make_engine(agent_config, fake_completion).to_snapshot()
        snapshot["state"] = "limbo"
        with pytest.raises(ValidationError):
            SupportEngine.from_snapshot(snapshot, agent_config, fake_completion)

    def test_consultative_snapshot_rejected(self, agent_config, fake_completion):
        snapshot = make_engine(agent_config, fake_completion).to_snapshot()
        snapshot["engine"] = "consultative"
        with pytest.raises(ValidationError):
            SupportEngine.from_snapshot(snapshot, agent_config, fake_completion)
