"""Tests for the consultative conversation engine."""

import pytest

from llm.orchestrator import ConsultativeEngine
from llm.phases import PhaseStateMachine
from qualification.errors import ValidationError
from qualification.stage import SalesStage, SpinPhase

from .conftest import HANG, NOW, ScriptedCompletionService, plan_json

GOOD_REPLY = "Referrals are great.\n\nHow do new clients find you today?"


def make_engine(agent_config, completion, **kwargs):
    return ConsultativeEngine("conv-1", agent_config, completion, **kwargs)


# ── Happy Path ────────────────────────────────────────

class TestTurnPipeline:
    @pytest.mark.asyncio
    async def test_first_turn_extracts_without_advancing(self, agent_config):
        fake = ScriptedCompletionService(
            plans=[plan_json({"pain_points": "we depend on referrals", "pain_urgency": "urgent"}, should_advance=True)],
            replies=[GOOD_REPLY],
        )
        engine = make_engine(agent_config, fake)

        result = await engine.process_turn("We depend on referrals and it's a problem", now=NOW)

        assert result.reply == GOOD_REPLY
        assert result.phase is SpinPhase.SITUATION
        assert result.turn == 1
        assert result.score == 25
        assert result.progress == 20
        assert result.bant == {"pain_points": "we depend on referrals", "pain_urgency": "urgent"}
        assert result.extracted == result.bant
        assert result.plan_source == "llm"
        assert result.degraded_steps == []
        assert result.check_issues == []
        assert not result.repaired
        # discovery needs two interactions before it can be left
        assert result.advance is not None and not result.advance.advanced
        assert result.advance_signals == ["problem"]
        assert result.archetype == "Balanced"
        assert result.lead_stage == "discovery"
        assert result.funnel_stage == "qualifying"
        assert not result.ready_for_handoff
        assert fake.steps() == ["plan", "reply"]

    @pytest.mark.asyncio
    async def test_second_turn_advances_stage_and_phase(self, agent_config):
        fake = ScriptedCompletionService(
            plans=[
                plan_json({"pain_points": "we depend on referrals", "pain_urgency": "urgent"}, should_advance=True),
                plan_json({}, should_advance=True),
            ],
            replies=[GOOD_REPLY, "Losing projects costs real money.\n\nWhat budget do you set aside for growth?"],
        )
        engine = make_engine(agent_config, fake)
        await engine.process_turn("We depend on referrals", now=NOW)

        result = await engine.process_turn("Some months are empty", now=NOW)

        assert result.advance.advanced
        assert result.phase is SpinPhase.PROBLEM
        assert result.lead_stage == "budget"
        assert result.score == 25
        assert result.progress == 30
        assert engine.phases.history[0].turn == 2
        assert engine.lead.stage is SalesStage.BUDGET

    @pytest.mark.asyncio
    async def test_llm_parameters(self, agent_config):
        fake = ScriptedCompletionService(plans=[plan_json()], replies=[GOOD_REPLY])
        engine = make_engine(agent_config, fake, model="gpt-test")
        await engine.process_turn("hello", now=NOW)

        planner, writer = fake.calls
        assert planner["json_mode"] is True
        assert planner["temperature"] == 0.3
        assert planner["model"] == "gpt-test"
        assert writer["temperature"] == 0.9
        assert writer["messages"][-1] == {"role": "user", "content": "hello"}

    @pytest.mark.asyncio
    async def test_objection_is_reported(self, agent_config):
        fake = ScriptedCompletionService(plans=[plan_json(objection="Price")], replies=[GOOD_REPLY])
        result = await make_engine(agent_config, fake).process_turn("It sounds expensive", now=NOW)
        assert result.objection == "price"

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)
        with pytest.raises(ValidationError) as exc:
            await engine.process_turn("   ", now=NOW)
        assert exc.value.details["kind"] == "empty_message"
        assert engine.turn_count == 0
        assert len(engine.window) == 0
        assert fake_completion.calls == []


# ── Extraction ────────────────────────────────────────

class TestExtraction:
    @pytest.mark.asyncio
    async def test_invalid_and_unknown_values_skipped(self, agent_config):
        extracted = {
            "pain_points": "slow onboarding",
            "pain_urgency": "whenever",
            "favorite_color": "blue",
            "budget": None,
        }
        fake = ScriptedCompletionService(plans=[plan_json(extracted)], replies=[GOOD_REPLY])
        engine = make_engine(agent_config, fake)

        result = await engine.process_turn("Onboarding is slow", now=NOW)

        assert result.bant == {"pain_points": "slow onboarding"}
        assert list(result.rejected_values) == ["pain_urgency"]
        assert result.score == 15
        assert engine.lead.stage_fields("discovery") == {"pain_points": "slow onboarding"}

    def test_values_map_onto_stage_data(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)
        applied, rejected = engine.apply_extraction(
            {"budget": "5-10k per month", "budget_confirmed": "yes", "decision_maker": "I decide"},
            now=NOW,
        )
        assert rejected == {}
        assert engine.lead.stage_fields("budget") == {"budget_range": "5-10k per month", "budget_confirmed": True}
        assert engine.lead.stage_fields("authority") == {"decision_power": "final"}
        # budget confirmed +20, decision maker +20
        assert engine.lead.score.value == 40
        # the raw values are what the conversation collected
        assert applied["budget_confirmed"] == "yes"

    def test_replaying_extraction_does_not_rescore(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)
        engine.apply_extraction({"pain_points": "churn", "pain_urgency": "critical"}, now=NOW)
        engine.apply_extraction({"pain_points": "churn", "pain_urgency": "critical"}, now=NOW)
        assert engine.lead.score.value == 30

    @pytest.mark.asyncio
    async def test_terminal_lead_keeps_stage_data(self, agent_config, policy):
        fake = ScriptedCompletionService(
            plans=[plan_json({"budget_confirmed": "yes"}, should_advance=True)],
            replies=[GOOD_REPLY],
        )
        engine = make_engine(agent_config, fake)
        policy.disqualify(engine.lead, "No fit", now=NOW)

        result = await engine.process_turn("We do have budget", now=NOW)

        assert result.lead_stage == "disqualified"
        assert result.score == 0
        assert result.advance is None
        assert engine.lead.stage_record("budget") is None
        assert not result.can_qualify


# ── Degradation ───────────────────────────────────────

class TestDegradation:
    @pytest.mark.asyncio
    async def test_planner_and_writer_unavailable(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)

        result = await engine.process_turn("hi", now=NOW)

        assert result.reply == "How does the process work today?"
        assert result.plan_source == "fallback"
        assert result.degraded_steps == ["plan", "write"]
        assert result.degraded
        assert result.bant == {}
        assert fake_completion.steps() == ["plan", "reply"]

    @pytest.mark.asyncio
    async def test_malformed_plan_falls_back(self, agent_config):
        fake = ScriptedCompletionService(plans=["this is not json"], replies=[GOOD_REPLY])
        result = await make_engine(agent_config, fake).process_turn("hi", now=NOW)
        assert result.plan_source == "fallback"
        assert result.degraded_steps == ["plan"]
        assert result.reply == GOOD_REPLY

    @pytest.mark.asyncio
    async def test_plan_in_code_fence(self, agent_config):
        fence = "```json\n" + plan_json({"pain_points": "churn"}) + "\n```"
        fake = ScriptedCompletionService(plans=[fence], replies=[GOOD_REPLY])
        result = await make_engine(agent_config, fake).process_turn("We lose clients", now=NOW)
        assert result.plan_source == "llm"
        assert result.bant == {"pain_points": "churn"}

    @pytest.mark.asyncio
    async def test_planner_timeout(self, agent_config):
        fake = ScriptedCompletionService(plans=[HANG], replies=[GOOD_REPLY])
        engine = make_engine(agent_config, fake, llm_timeout=0.05)

        result = await engine.process_turn("hi", now=NOW)

        assert result.plan_source == "fallback"
        assert result.degraded_steps == ["plan"]
        assert result.reply == GOOD_REPLY

    @pytest.mark.asyncio
    async def test_closing_fallback_mentions_next_step(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)
        engine.phases = PhaseStateMachine(agent_config, phase=SpinPhase.CLOSING)
        result = await engine.process_turn("ok", now=NOW)
        assert result.reply == "Can we talk about this? 30 minute diagnostic call."


# ── Guardrails and Repair ─────────────────────────────

class TestRepair:
    @pytest.mark.asyncio
    async def test_opener_fixed_without_llm(self, agent_config):
        fake = ScriptedCompletionService(
            plans=[plan_json()],
            replies=["Got it! Referrals are great.\n\nHow do new clients find you today?"],
        )
        result = await make_engine(agent_config, fake).process_turn("Mostly referrals", now=NOW)

        assert result.reply == GOOD_REPLY
        assert result.check_issues == ["banned_opener:got it"]
        assert result.repaired
        assert fake.steps() == ["plan", "reply"]

    @pytest.mark.asyncio
    async def test_quoted_reply_unwrapped(self, agent_config):
        fake = ScriptedCompletionService(plans=[plan_json()], replies=[f'"{GOOD_REPLY}"'])
        result = await make_engine(agent_config, fake).process_turn("Mostly referrals", now=NOW)
        assert result.reply == GOOD_REPLY
        assert not result.repaired

    @pytest.mark.asyncio
    async def test_regeneration_used_when_valid(self, agent_config):
        fake = ScriptedCompletionService(
            plans=[plan_json()],
            replies=["How many clients? And how often?"],
            repairs=["How many new clients do you get each month?"],
        )
        result = await make_engine(agent_config, fake).process_turn("Mostly referrals", now=NOW)

        assert result.reply == "How many new clients do you get each month?"
        assert result.check_issues == ["multiple_questions"]
        assert result.repaired
        assert result.degraded_steps == []
        assert fake.steps() == ["plan", "reply", "repair"]
        assert fake.calls[2]["temperature"] == 0.75

    @pytest.mark.asyncio
    async def test_invalid_regeneration_uses_safe_question(self, agent_config):
        fake = ScriptedCompletionService(
            plans=[plan_json()],
            replies=["How many clients? And how often?"],
            repairs=["Still two? Questions?"],
        )
        result = await make_engine(agent_config, fake).process_turn("Mostly referrals", now=NOW)
        assert result.reply == "Tell me more about that?"
        assert result.degraded_steps == []

    @pytest.mark.asyncio
    async def test_failed_regeneration_is_degraded(self, agent_config):
        fake = ScriptedCompletionService(plans=[plan_json()], replies=["How many clients? And how often?"])
        result = await make_engine(agent_config, fake).process_turn("Mostly referrals", now=NOW)
        assert result.reply == "Tell me more about that?"
        assert result.degraded_steps == ["repair"]


# ── Advisories and Handoff ────────────────────────────

class TestAdvisories:
    @pytest.mark.asyncio
    async def test_handoff_fires_once(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)
        engine.phases = PhaseStateMachine(agent_config, phase=SpinPhase.CLOSING)
        engine.bant_values = {f.key: "collected" for f in agent_config.bant_fields}

        first = await engine.process_turn("Let's schedule a call", now=NOW)
        second = await engine.process_turn("Tuesday works", now=NOW)

        assert first.progress == 100
        assert first.ready_for_handoff and first.handoff_triggered
        assert second.ready_for_handoff and not second.handoff_triggered
        assert engine.lead.metadata["handoff_requested_at"] == NOW.isoformat()
        assert first.funnel_stage == "negotiation"

    @pytest.mark.asyncio
    async def test_not_ready_before_closing(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)
        engine.bant_values = {f.key: "collected" for f in agent_config.bant_fields}
        result = await engine.process_turn("hi", now=NOW)
        assert result.progress == 80
        assert not result.ready_for_handoff

    @pytest.mark.asyncio
    async def test_regression_is_advisory(self, agent_config, fake_completion):
        engine = make_engine(agent_config, fake_completion)
        engine.phases = PhaseStateMachine(agent_config, phase=SpinPhase.IMPLICATION)
        result = await engine.process_turn("Wait, what do you do?", now=NOW)
        assert result.regression_hint.target is SpinPhase.SITUATION
        assert result.phase is SpinPhase.IMPLICATION

    @pytest.mark.asyncio
    async def test_disqualification_advice(self, agent_config):
        fake = ScriptedCompletionService(
            plans=[plan_json({"budget_confirmed": "no"})],
            replies=[GOOD_REPLY],
        )
        engine = make_engine(agent_config, fake)
        result = await engine.process_turn("We have no budget", now=NOW)
        assert result.disqualification_advice == {
            "recommended": True,
            "factors": ["Critically low score (0)", "No budget available"],
        }
        # advice only
        assert result.lead_stage == "discovery"


# ── Snapshots ─────────────────────────────────────────

class TestSnapshot:
    @pytest.mark.asyncio
    async def test_round_trip(self, agent_config):
        fake = ScriptedCompletionService(
            plans=[plan_json({"pain_points": "churn"})],
            replies=[GOOD_REPLY],
        )
        engine = make_engine(agent_config, fake)
        await engine.process_turn("Explain the data behind churn", now=NOW)

        snapshot = engine.to_snapshot()
        restored = ConsultativeEngine.from_snapshot(snapshot, agent_config, fake)

        assert restored.to_snapshot() == snapshot
        assert restored.progress() == engine.progress()

    def test_unknown_bant_key_rejected(self, agent_config, fake_completion):
        snapshot = make_engine(agent_config, fake_completion).to_snapshot()
        snapshot["bant"] = {"shoe_size": 42}
        with pytest.raises(ValidationError):
            ConsultativeEngine.from_snapshot(snapshot, agent_config, fake_completion)

    def test_unknown_phase_rejected(self, agent_config, fake_completion):
        snapshot = make_engine(agent_config, fake_completion).to_snapshot()
        snapshot["phase"]["current"] = "negotiation"
        with pytest.raises(ValidationError):
            ConsultativeEngine.from_snapshot(snapshot, agent_config, fake_completion)

    def test_support_snapshot_rejected(self, agent_config, fake_completion):
        snapshot = make_engine(agent_config, fake_completion).to_snapshot()
        snapshot["engine"] = "support"
        with pytest.raises(ValidationError):
            ConsultativeEngine.from_snapshot(snapshot, agent_config, fake_completion)
