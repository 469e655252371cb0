"""Shared fixtures for lead qualification engine tests."""

import asyncio
import json
import os
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

# Ensure we use test/mock settings
os.environ.setdefault("LLM_PROVIDER", "openai")
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.pop("DATABASE_URL", None)
os.environ.pop("HANDOFF_WEBHOOK_URL", None)

from config.agent_config import default_agent_config  # noqa: E402
from llm.providers.base import CompletionError  # noqa: E402
from qualification.lead import Lead  # noqa: E402
from qualification.policy import QualificationPolicy  # noqa: E402
from qualification.scoring_rules import BANTScoringEngine  # noqa: E402

NOW = datetime(2024, 3, 4, 10, 0, 0, tzinfo=timezone.utc)

# Scripted entry that never answers (for timeout tests)
HANG = object()


def plan_json(extracted=None, should_advance=False, objection=None, target_field=None, **extra) -> str:
    """Planner output as the model would return it."""
    data = {
        "lead_analysis": {"summary": "lead answered", "sentiment": "neutral", "intent": "answer"},
        "phase_decision": {"should_advance": should_advance, "reason": "test"},
        "extracted_data": extracted or {},
        "writer_instructions": {
            "response_type": "exploration",
            "hook": "mirror",
            "fact": "insight",
            "question": "ask about the pain",
            "target_field": target_field,
        },
        "objection": objection,
        "tone_directives": [],
        "avoid": [],
    }
    data.update(extra)
    return json.dumps(data)


class ScriptedCompletionService:
    """
    Fake completion service answering from per-step scripts.

    JSON-mode calls read from `plans`, calls starting with a system prompt
    from `replies`, anything else (rewrite requests) from `repairs`. Entries
    are strings, exceptions to raise, or HANG. An exhausted script raises
    CompletionError.
    """

    def __init__(self, plans=None, replies=None, repairs=None):
        self.scripts = {
            "plan": list(plans or []),
            "reply": list(replies or []),
            "repair": list(repairs or []),
        }
        self.calls = []

    @staticmethod
    def step_for(messages, json_mode: bool) -> str:
        if json_mode:
            return "plan"
        if messages and messages[0]["role"] == "system":
            return "reply"
        return "repair"

    async def complete(self, messages, *, model=None, temperature=0.3, max_tokens=1024, json_mode=False):
        step = self.step_for(messages, json_mode)
        self.calls.append({
            "step": step,
            "messages": messages,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "json_mode": json_mode,
        })
        script = self.scripts[step]
        if not script:
            raise CompletionError(f"no scripted {step} response", provider="fake")
        item = script.pop(0)
        if item is HANG:
            await asyncio.sleep(10)
            raise CompletionError("hung", provider="fake")
        if isinstance(item, BaseException):
            raise item
        return item

    def steps(self):
        return [c["step"] for c in self.calls]


@pytest.fixture
def agent_config():
    return default_agent_config()


@pytest.fixture
def scoring():
    return BANTScoringEngine()


@pytest.fixture
def policy():
    return QualificationPolicy()


@pytest.fixture
def lead():
    lead = Lead(lead_id="lead-1", created_at=NOW, updated_at=NOW)
    return lead


@pytest.fixture
def qualified_ready_lead(scoring):
    """Lead with discovery, budget and authority completed and score >= 60."""
    lead = Lead(lead_id="lead-ready", created_at=NOW, updated_at=NOW)
    lead.record_interaction(NOW)
    lead.record_interaction(NOW)
    scoring.process_stage_update(lead, "discovery", {"pain_points": "slow pipeline", "urgency": "urgent"}, now=NOW)
    scoring.process_stage_update(lead, "budget", {"budget_confirmed": True}, now=NOW)
    scoring.process_stage_update(lead, "authority", {"decision_power": "final"}, now=NOW)
    return lead


@pytest.fixture
def fake_completion():
    return ScriptedCompletionService()


@pytest.fixture
def client():
    """FastAPI test client wired to a scripted completion service."""
    from api.main import app
    from api.services import get_services
    from llm.conversation_store import InMemoryConversationStateStore

    services = get_services()
    services.reset()
    fake = ScriptedCompletionService()
    services.initialize(completion=fake, store=InMemoryConversationStateStore())
    with TestClient(app) as test_client:
        test_client.fake = fake
        yield test_client
    services.reset()
