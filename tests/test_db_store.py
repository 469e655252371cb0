"""Tests for the database-backed conversation state store (SQLite via aiosqlite)."""

import pytest
import pytest_asyncio

from config.agent_config import default_agent_config
from database.repositories import ConversationStateRepository
from database.session import close_db, get_session_factory, init_db, normalize_url
from llm.conversation_service import ConversationService
from llm.db_conversation_store import DbConversationStateStore
from llm.orchestrator import ConsultativeEngine

from .conftest import ScriptedCompletionService, plan_json


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    factory = await init_db(f"sqlite:///{tmp_path / 'state.db'}")
    yield factory
    await close_db()


@pytest.fixture
def db_store(session_factory):
    return DbConversationStateStore(session_factory)


def test_normalize_url():
    assert normalize_url("postgresql://u:p@db/leads") == "postgresql+asyncpg://u:p@db/leads"
    assert normalize_url("sqlite:///x.db") == "sqlite+aiosqlite:///x.db"
    assert normalize_url("postgresql+asyncpg://db/leads") == "postgresql+asyncpg://db/leads"


def test_session_factory_requires_init():
    with pytest.raises(RuntimeError):
        get_session_factory()


class TestDbConversationStateStore:
    @pytest.mark.asyncio
    async def test_save_and_load(self, db_store, agent_config, fake_completion):
        snapshot = ConsultativeEngine("conv-1", agent_config, fake_completion).to_snapshot()

        assert await db_store.load("conv-1") is None
        await db_store.save("conv-1", snapshot)

        assert await db_store.load("conv-1") == snapshot

    @pytest.mark.asyncio
    async def test_loaded_copy_is_detached(self, db_store):
        await db_store.save("k", {"engine": "support", "state": "greeting", "turn_count": 0})
        loaded = await db_store.load("k")
        loaded["state"] = "closing"
        assert (await db_store.load("k"))["state"] == "greeting"

    @pytest.mark.asyncio
    async def test_delete(self, db_store):
        await db_store.save("k", {"engine": "support", "state": "greeting"})
        assert await db_store.delete("k")
        assert not await db_store.delete("k")
        assert await db_store.load("k") is None

    @pytest.mark.asyncio
    async def test_summary_columns_and_events(self, db_store, session_factory, agent_config, fake_completion):
        engine = ConsultativeEngine("conv-1", agent_config, fake_completion)
        await db_store.save("conv-1", engine.to_snapshot())
        engine.policy.disqualify(engine.lead, "No budget")
        await db_store.save("conv-1", engine.to_snapshot())

        async with session_factory() as session:
            repo = ConversationStateRepository(session)
            row = await repo.get_by_key("conv-1")
            events = await repo.get_events("conv-1")
            disqualified = await repo.list_by_stage("disqualified")

        assert row.engine == "consultative"
        assert row.stage == "disqualified"
        assert row.phase == "situation"
        assert row.score == 0
        assert sorted(e.event_type for e in events) == ["created", "stage_changed"]
        assert [r.key for r in disqualified] == ["conv-1"]

    @pytest.mark.asyncio
    async def test_conversation_service_on_database(self, db_store):
        fake = ScriptedCompletionService(
            plans=[plan_json({"pain_points": "churn"})],
            replies=["Referrals are great.\n\nHow do new clients find you today?"],
        )
        service = ConversationService(store=db_store, completion=fake, config=default_agent_config())

        await service.process_turn("conv-db", "We lose clients")

        state = await service.get_state("conv-db")
        assert state["bant"] == {"pain_points": "churn"}
        assert state["lead"]["score"] == 15
