"""
Unit Tests for MemoryStore and the reference resolver
"""

import json

import pytest

from freeagent.domain.context.memory.memory_store import MemoryStore
from freeagent.domain.context.reference_resolver import (
    resolve_references, summarize_resolutions,
)
from freeagent.domain.models.session import (
    Artifact, BlackboardCategory, BlackboardEntry, SessionMemory,
)


@pytest.fixture
def memory():
    return MemoryStore(SessionMemory(), [])


class TestMemoryStore:
    """Tests for the three memory tiers."""

    @pytest.mark.asyncio
    async def test_blackboard_is_append_only(self, memory):
        first = await memory.append_blackboard(BlackboardEntry(category=BlackboardCategory.PLAN, content="Plan it"))
        await memory.append_blackboard(BlackboardEntry(category=BlackboardCategory.INSIGHT, content="Learned it"))

        view = memory.snapshot()
        assert [e.content for e in view.blackboard] == ["Plan it", "Learned it"]
        assert view.blackboard[0].id == first.id
        assert memory.blackboard_size == 2

    @pytest.mark.asyncio
    async def test_append_scratchpad_separator(self, memory):
        await memory.append_scratchpad("one")
        await memory.append_scratchpad("two")

        assert memory.scratchpad == "one\n\ntwo"

    @pytest.mark.asyncio
    async def test_set_attribute_overwrites(self, memory):
        await memory.set_attribute("results", "brave_search", {"a": 1}, {"query": "x"}, 1)
        attribute = await memory.set_attribute("results", "google_search", [1, 2], {}, 2)

        assert attribute.tool == "google_search"
        assert attribute.result_string == json.dumps([1, 2], indent=2)
        assert attribute.size == len(attribute.result_string)
        assert memory.list_attribute_names() == ["results"]

    @pytest.mark.asyncio
    async def test_snapshot_is_isolated(self, memory):
        await memory.set_scratchpad("before")
        view = memory.snapshot()

        await memory.set_scratchpad("after")

        assert view.scratchpad == "before"
        assert memory.scratchpad == "after"

    @pytest.mark.asyncio
    async def test_get_attribute_returns_copy(self, memory):
        await memory.set_attribute("name", "tool", "value")

        copy = memory.get_attribute("name")
        copy.result = "changed"

        assert memory.get_attribute("name").result == "value"
        assert memory.get_attribute("missing") is None


class TestReferenceResolver:
    """Tests for {{...}} token expansion."""

    @pytest.fixture
    async def view(self, memory):
        await memory.set_scratchpad("Notes: {{attribute:pages}}")
        await memory.set_attribute("pages", "web_scrape", {"title": "Home"})
        await memory.set_attribute("plain", "brave_search", "just text")
        await memory.append_blackboard(BlackboardEntry(category=BlackboardCategory.PLAN, content="Plan it", iteration=2))
        await memory.add_artifact(Artifact(title="Report", content="Report body"))
        return memory.snapshot()

    @pytest.mark.asyncio
    async def test_attribute_string_is_raw(self, view):
        assert resolve_references("Value: {{attribute:plain}}", view) == "Value: just text"

    @pytest.mark.asyncio
    async def test_attribute_object_is_json(self, view):
        resolved = resolve_references("{{attribute:pages}}", view)
        assert json.loads(resolved) == {"title": "Home"}

    @pytest.mark.asyncio
    async def test_scratchpad_references_are_expanded(self, view):
        resolved = resolve_references("{{scratchpad}}", view)
        assert resolved.startswith("Notes: {")
        assert "{{attribute" not in resolved

    @pytest.mark.asyncio
    async def test_unknown_tokens_are_left_unchanged(self, view):
        text = "{{attribute:missing}} and {{artifact:nope}}"
        assert resolve_references(text, view) == text

    @pytest.mark.asyncio
    async def test_blackboard_and_artifacts(self, view):
        assert resolve_references("{{blackboard}}", view) == "[PLAN] (Iteration 2): Plan it"
        assert resolve_references("{{artifact:Report}}", view) == "Report body"
        assert json.loads(resolve_references("{{artifacts}}", view))[0]["title"] == "Report"
        assert set(json.loads(resolve_references("{{attributes}}", view))) == {"pages", "plain"}

    @pytest.mark.asyncio
    async def test_nested_structures(self, view):
        params = {"body": {"lines": ["{{attribute:plain}}", 3]}, "flag": True}

        resolved = resolve_references(params, view)

        assert resolved == {"body": {"lines": ["just text", 3]}, "flag": True}
        assert params["body"]["lines"][0] == "{{attribute:plain}}"
        assert summarize_resolutions(params, resolved) == ["body.lines[0]: resolved {{attribute:plain}}"]
