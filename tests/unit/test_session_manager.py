"""
Unit Tests for SessionManager

Background runs are awaited by polling until the finished engine is dropped.
"""

import asyncio

import pytest

from freeagent.application.api.session_manager import SessionManager
from freeagent.domain.errors import TransportError
from freeagent.domain.models.session import SessionStatus

from tests.conftest import ScriptedModelClient, agent_reply


def completed_reply() -> str:
    return agent_reply(
        status="completed",
        entry="Answered the question directly",
        category="decision",
        message_to_user="The answer is 4.",
    )


async def wait_until_evicted(manager: SessionManager, session_id: str, timeout: float = 5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while session_id in manager.engines:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"Engine for {session_id} was never evicted")
        await asyncio.sleep(0.01)


@pytest.fixture
def make_manager(settings, store, dispatcher):
    def _make(model_client) -> SessionManager:
        return SessionManager(settings, model_client, store=store, dispatcher=dispatcher)

    return _make


class TestEngineEviction:
    """Tests for dropping engines once their session has finished."""

    @pytest.mark.asyncio
    async def test_completed_engine_is_evicted(self, make_manager, store):
        manager = make_manager(ScriptedModelClient([completed_reply()]))

        session = await manager.create_session("What is 2 + 2?")
        await wait_until_evicted(manager, session.id)

        loaded = await manager.get_session(session.id)

        assert manager.engines == {}
        assert loaded.status == SessionStatus.COMPLETED
        assert (await store.load(session.id)).current_iteration == 1

    @pytest.mark.asyncio
    async def test_completed_session_drops_its_cached_results(self, make_manager, dispatcher):
        scrape = [{"tool": "web_scrape", "params": {"url": "https://a.test"}}]
        manager = make_manager(ScriptedModelClient([agent_reply(tool_calls=scrape), completed_reply()]))

        session = await manager.create_session("Summarize a.test")
        await wait_until_evicted(manager, session.id)

        assert session.id not in dispatcher.cache.cache

    @pytest.mark.asyncio
    async def test_errored_session_is_reloaded_for_retry(self, make_manager):
        manager = make_manager(ScriptedModelClient([TransportError("connection reset"), completed_reply()]))

        session = await manager.create_session("What is 2 + 2?")
        await wait_until_evicted(manager, session.id)
        assert (await manager.get_session(session.id)).status == SessionStatus.ERROR

        await manager.retry(session.id)
        await wait_until_evicted(manager, session.id)

        retried = await manager.get_session(session.id)
        assert retried.status == SessionStatus.COMPLETED
        assert retried.error is None

    @pytest.mark.asyncio
    async def test_waiting_engine_is_kept(self, make_manager):
        manager = make_manager(ScriptedModelClient([
            agent_reply(tool_calls=[{"tool": "request_assistance", "params": {"question": "Which year?"}}]),
        ]))

        session = await manager.create_session("Report the figures")
        await asyncio.gather(*manager._tasks)

        assert session.id in manager.engines
        assert (await manager.get_session(session.id)).status == SessionStatus.NEEDS_ASSISTANCE
