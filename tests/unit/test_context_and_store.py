"""
Unit Tests for ContextManager and the session stores
"""

import pytest

from freeagent.domain.context.context_manager import ContextManager
from freeagent.domain.context.memory.memory_store import MemoryStore
from freeagent.domain.context.state.session_store import (
    FileSessionStore, InMemorySessionStore, create_session_store,
)
from freeagent.domain.errors import SessionNotFoundError
from freeagent.domain.models.session import (
    AssistanceResponse, BlackboardCategory, BlackboardEntry, Session, SessionFile,
    SessionMemory, ToolResult,
)
from freeagent.domain.tool.tool_registry import ToolRegistry


@pytest.fixture
def manager():
    return ContextManager(ToolRegistry(), blackboard_window=2, scratchpad_chars=20, result_chars=50)


def view_with(entries=(), scratchpad=""):
    memory = SessionMemory(blackboard=list(entries), scratchpad=scratchpad)
    return MemoryStore(memory, []).snapshot()


class TestContextManager:
    """Tests for iteration input assembly."""

    def test_blackboard_window(self, manager):
        entries = [
            BlackboardEntry(category=BlackboardCategory.PLAN, content=f"Step {i}", iteration=i)
            for i in range(1, 5)
        ]

        data = manager.build_input("task", 5, 10, view_with(entries))

        assert [e.content for e in data.blackboard] == ["Step 3", "Step 4"]

    def test_scratchpad_keeps_tail(self, manager):
        data = manager.build_input("task", 1, 10, view_with(scratchpad="a" * 30 + "TAIL"))

        prompt = manager.render_system_prompt(data)

        assert "## Scratchpad (34 chars)" in prompt
        assert "[...older content truncated...]\n\n" + "a" * 16 + "TAIL" in prompt
        assert "a" * 25 not in prompt

    def test_previous_results_are_truncated(self, manager):
        results = [ToolResult(tool="web_scrape", success=True, result={"text": "x" * 200})]

        prompt = manager.render_system_prompt(manager.build_input("task", 2, 10, view_with(), previous_results=results))

        assert "### Tool: web_scrape" in prompt
        assert "...[truncated, save what you need to the scratchpad]" in prompt

    def test_optional_sections(self, manager):
        data = manager.build_input(
            "task", 3, 10, view_with(),
            assistance_response=AssistanceResponse(selected_choice="blue"),
            loop_warning="Do not repeat yourself.",
            exclude_tools=["spawn"],
        )

        prompt = manager.render_system_prompt(data)

        assert 'The user answered: "blue"' in prompt
        assert "## Warning\nDo not repeat yourself." in prompt
        assert "- spawn:" not in prompt
        assert "Current Iteration: 3 of 10" in prompt
        assert manager.render_task(data) == "User Task: task"

    def test_small_text_files_are_inlined(self, manager):
        small = SessionFile(filename="notes.md", mime_type="text/markdown", content="# Notes", size=7)
        binary = SessionFile(filename="logo.png", mime_type="image/png", content="iVBOR", size=5)

        prompt = manager.render_system_prompt(
            manager.build_input("task", 1, 10, view_with(), session_files=[small, binary])
        )

        assert "# Notes" in prompt
        assert "iVBOR" not in prompt
        assert f'fileId: "{binary.id}"' in prompt


class TestSessionStores:
    """Tests for in-memory and JSON-file persistence."""

    @pytest.mark.asyncio
    async def test_in_memory_round_trip_is_isolated(self):
        store = InMemorySessionStore()
        session = Session(prompt="Task")
        await store.save(session)

        loaded = await store.load(session.id)
        loaded.prompt = "changed"

        assert (await store.load(session.id)).prompt == "Task"
        assert await store.list_ids() == [session.id]

    @pytest.mark.asyncio
    async def test_missing_session(self):
        with pytest.raises(SessionNotFoundError):
            await InMemorySessionStore().load("missing")

    @pytest.mark.asyncio
    async def test_file_store(self, tmp_path):
        store = create_session_store(str(tmp_path / "sessions"))
        assert isinstance(store, FileSessionStore)

        session = Session(prompt="Task")
        session.memory.blackboard.append(BlackboardEntry(category=BlackboardCategory.PLAN, content="Plan"))
        await store.save(session)

        loaded = await store.load(session.id)

        assert loaded.memory.blackboard[0].content == "Plan"
        assert loaded.start_time == session.start_time
        assert await store.list_ids() == [session.id]

        await store.delete(session.id)
        with pytest.raises(SessionNotFoundError):
            await store.load(session.id)
