"""Tests for free-text coercion of stage data, including negated answers."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from llm.orchestrator import ConsultativeEngine
from qualification.errors import ValidationError
from qualification.stage_data import (
    AuthorityData,
    BudgetData,
    DiscoveryData,
    NeedData,
    TimelineData,
    parse_stage_data,
)

from .conftest import NOW


# ── Discovery Urgency ─────────────────────────────────

class TestDiscoveryUrgency:
    @pytest.mark.parametrize("text,urgency", [
        ("not urgent", "low"),
        ("Not very urgent", "low"),
        ("it's not critical", "low"),
        ("not a high priority", "low"),
        ("no rush", "low"),
        ("urgent", "urgent"),
        ("we need it asap", "urgent"),
        ("this is an emergency", "critical"),
        ("moderate", "medium"),
    ])
    def test_coercion(self, text, urgency):
        assert DiscoveryData(pain_points="churn", urgency=text).urgency == urgency

    def test_negated_urgency_scores_negative(self, scoring):
        evaluation = scoring.evaluate("discovery", {"pain_points": "churn", "urgency": "not urgent"})
        # pain +15, low urgency -5
        assert evaluation.score_delta == 10


# ── Authority ─────────────────────────────────────────

class TestDecisionPower:
    @pytest.mark.parametrize("text,power", [
        ("I'm not the decision maker", "none"),
        ("it's not up to me", "none"),
        ("No, I'm the owner", "final"),
        ("I have no say", "none"),
        ("the board decides", "influencer"),
        ("I decide", "final"),
    ])
    def test_coercion(self, text, power):
        assert AuthorityData(decision_power=text).decision_power == power

    def test_not_the_decision_maker_scores_negative(self, scoring):
        evaluation = scoring.evaluate("authority", {"decision_power": "I'm not the decision maker"})
        assert evaluation.score_delta == -15

    def test_unrecognised_answer_rejected(self):
        with pytest.raises(PydanticValidationError):
            AuthorityData(decision_power="I don't know")


# ── Need / Budget ─────────────────────────────────────

class TestNeedAndBudget:
    @pytest.mark.parametrize("text,fit", [
        ("not exactly", "no_fit"),
        ("we don't need it", "no_fit"),
        ("not sure yet", "exploring"),
        ("it fits", "confirmed"),
    ])
    def test_solution_fit(self, text, fit):
        assert NeedData(solution_fit=text).solution_fit == fit

    @pytest.mark.parametrize("text,urgency", [
        ("not urgent", "not_urgent"),
        ("not a high priority", "not_urgent"),
        ("asap", "urgent"),
    ])
    def test_need_urgency(self, text, urgency):
        assert NeedData(urgency=text).urgency == urgency

    @pytest.mark.parametrize("text,flexibility", [
        ("not flexible", "fixed"),
        ("not negotiable", "fixed"),
        ("there is some room", "flexible"),
    ])
    def test_flexibility(self, text, flexibility):
        assert BudgetData(flexibility=text).flexibility == flexibility


# ── Timeline ──────────────────────────────────────────

class TestTimeline:
    @pytest.mark.parametrize("text,horizon", [
        ("in 6 months from now", "medium_term"),
        ("not now, maybe next year", "long_term"),
        ("not this month", "long_term"),
        ("we know exactly: 2 months", "short_term"),
        ("within a month", "immediate"),
        ("< 1 month", "immediate"),
        ("this week", "immediate"),
        ("not sure, probably next quarter", "short_term"),
        ("one day", "long_term"),
    ])
    def test_horizon(self, text, horizon):
        assert TimelineData(implementation_timeline=text).horizon() == horizon

    @pytest.mark.parametrize("text", ["I don't know yet", "not sure", "TBD", "no idea"])
    def test_uncertain_timeline_rejected(self, text):
        with pytest.raises(ValidationError) as exc:
            parse_stage_data("timeline", {"implementation_timeline": text})
        assert exc.value.details["kind"] == "malformed_stage_data"

    @pytest.mark.parametrize("text", ["not now", "not right now"])
    def test_negated_urgency_rejected(self, text):
        with pytest.raises(PydanticValidationError):
            TimelineData(urgency=text)

    def test_distant_timeline_scores_by_duration(self, scoring):
        evaluation = scoring.evaluate("timeline", {"implementation_timeline": "in 6 months from now"})
        assert evaluation.score_delta == 5
        assert evaluation.completed

    def test_uncertain_timeline_not_collected(self, agent_config, fake_completion):
        engine = ConsultativeEngine("conv-1", agent_config, fake_completion)

        applied, rejected = engine.apply_extraction({"timeline": "I don't know yet"}, now=NOW)

        assert applied == {}
        assert list(rejected) == ["timeline"]
        assert engine.lead.stage_fields("timeline") == {}
        assert engine.lead.score.value == 0
