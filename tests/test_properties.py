"""Property-based tests for the qualification rules."""

from hypothesis import given, settings
from hypothesis import strategies as st

from config.agent_config import default_agent_config
from llm.orchestrator import ConsultativeEngine
from qualification.lead import Lead
from qualification.policy import QualificationPolicy
from qualification.score import QualificationScore
from qualification.scoring_rules import BANTScoringEngine
from qualification.stage import KEY_STAGES, SalesStage

from .conftest import NOW, ScriptedCompletionService

scores = st.integers(min_value=0, max_value=100)
deltas = st.integers(min_value=-500, max_value=500)

discovery_data = st.fixed_dictionaries(
    {},
    optional={
        "pain_points": st.sampled_from(["churn", "manual work", "slow sales"]),
        "urgency": st.sampled_from(["low", "medium", "urgent", "critical"]),
    },
)
budget_data = st.fixed_dictionaries(
    {},
    optional={
        "budget_range": st.sampled_from(["5k", "10-20k"]),
        "budget_confirmed": st.booleans(),
        "flexibility": st.sampled_from(["flexible", "fixed"]),
    },
)
authority_data = st.fixed_dictionaries(
    {},
    optional={
        "decision_power": st.sampled_from(["final", "influencer", "technical", "none"]),
        "decision_maker": st.booleans(),
    },
)


@given(scores, deltas)
def test_score_arithmetic_stays_in_range(value, delta):
    result = QualificationScore(value).apply(delta)
    assert 0 <= result.value <= 100


@given(st.sampled_from(SalesStage.ordered()))
def test_next_and_previous_are_inverse(stage):
    following = stage.next()
    if following is not None:
        assert following.previous() is stage
        assert stage.is_before(following)


@settings(max_examples=60)
@given(discovery_data, budget_data, authority_data)
def test_can_qualify_matches_its_definition(discovery, budget, authority):
    scoring = BANTScoringEngine()
    policy = QualificationPolicy()
    lead = Lead(lead_id="prop", created_at=NOW, updated_at=NOW)
    scoring.process_stage_update(lead, "discovery", discovery, now=NOW)
    scoring.process_stage_update(lead, "budget", budget, now=NOW)
    scoring.process_stage_update(lead, "authority", authority, now=NOW)

    expected = lead.score.value >= 60 and all(lead.is_stage_completed(s) for s in KEY_STAGES)
    assert policy.can_qualify(lead) == expected
    assert 0 <= lead.score.value <= 100


@settings(max_examples=60)
@given(st.lists(discovery_data, min_size=1, max_size=4))
def test_replaying_last_update_is_idempotent(updates):
    scoring = BANTScoringEngine()
    lead = Lead(lead_id="prop", created_at=NOW, updated_at=NOW)
    for data in updates:
        scoring.process_stage_update(lead, "discovery", data, now=NOW)
    before = lead.score.value
    scoring.process_stage_update(lead, "discovery", updates[-1], now=NOW)
    assert lead.score.value == before


extracted_values = st.fixed_dictionaries(
    {},
    optional={
        "pain_points": st.sampled_from(["churn", "manual work"]),
        "pain_urgency": st.sampled_from(["urgent", "not urgent", "critical", "whenever"]),
        "budget": st.sampled_from(["5k", "10-20k"]),
        "budget_confirmed": st.sampled_from(["yes", "no"]),
        "decision_maker": st.sampled_from(["I decide", "the board", "I'm not the decision maker"]),
        "solution_fit": st.sampled_from(["it fits", "maybe"]),
        "timeline": st.sampled_from(["2 months", "next year", "asap", "I don't know yet"]),
    },
)
conversation_steps = st.lists(st.one_of(extracted_values, st.just("advance")), min_size=1, max_size=8)


@settings(max_examples=60, deadline=None)
@given(conversation_steps)
def test_progress_never_decreases(steps):
    engine = ConsultativeEngine("prop", default_agent_config(), ScriptedCompletionService())
    previous = engine.progress()
    for turn, step in enumerate(steps, start=1):
        if step == "advance":
            if engine.phases.can_advance():
                engine.phases.advance(turn=turn, now=NOW)
        else:
            engine.apply_extraction(step, now=NOW)
        current = engine.progress()
        assert 0 <= current <= 100
        assert current >= previous
        previous = current
