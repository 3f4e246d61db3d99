"""
Unit Tests for LoopGuard
"""

import pytest

from freeagent.domain.guard.loop_guard import IterationActivity, LoopGuard
from freeagent.domain.models.agent_response import BlackboardDraft
from freeagent.domain.models.session import (
    BlackboardCategory, BlackboardEntry, EntrySource, LoopGuardState,
)


def entry(content: str, iteration: int, category=BlackboardCategory.PLAN, source=EntrySource.MODEL) -> BlackboardEntry:
    return BlackboardEntry(category=category, content=content, iteration=iteration, source=source)


@pytest.fixture
def guard():
    return LoopGuard()


class TestLoopGuard:
    """Tests for duplicate detection and auto entries."""

    def test_new_entry_is_kept(self, guard):
        state = LoopGuardState()
        draft = BlackboardDraft(category=BlackboardCategory.PLAN, content="Search for recent papers")

        outcome = guard.evaluate(draft, [], 1, IterationActivity(), state)

        assert [e.content for e in outcome.entries] == ["Search for recent papers"]
        assert outcome.duplicate_of is None
        assert state.pending_warning is None

    def test_duplicate_sets_warning(self, guard):
        state = LoopGuardState()
        previous = entry("Search for recent papers", 1)
        draft = BlackboardDraft(category=BlackboardCategory.PLAN, content="search for  RECENT papers")

        outcome = guard.evaluate(draft, [previous], 2, IterationActivity(), state)

        assert outcome.duplicate_of == previous.id
        assert state.duplicate_streak == 1
        assert "iteration 1" in state.pending_warning
        assert len(outcome.entries) == 1

    def test_other_category_is_not_a_duplicate(self, guard):
        state = LoopGuardState()
        draft = BlackboardDraft(category=BlackboardCategory.INSIGHT, content="Search for recent papers")

        outcome = guard.evaluate(draft, [entry("Search for recent papers", 1)], 2, IterationActivity(), state)

        assert outcome.duplicate_of is None

    def test_second_duplicate_adds_auto_entry(self, guard):
        state = LoopGuardState(duplicate_streak=1)
        history = [entry("Search for recent papers", 1), entry("Search for recent papers", 2)]
        draft = BlackboardDraft(category=BlackboardCategory.PLAN, content="Search for recent papers")
        activity = IterationActivity(tool_names=["brave_search"], scratchpad_changed=True)

        outcome = guard.evaluate(draft, history, 3, activity, state)

        assert state.duplicate_streak == 2
        assert outcome.auto_added
        auto = outcome.entries[-1]
        assert auto.source == EntrySource.AUTO
        assert auto.content == "Iteration 3: 1 tool call(s) (brave_search). Scratchpad updated."

    def test_degenerate_entry_is_replaced(self, guard):
        state = LoopGuardState(duplicate_streak=3)
        draft = BlackboardDraft(category=BlackboardCategory.PLAN, content="ok")
        activity = IterationActivity(artifact_titles=["Report"])

        outcome = guard.evaluate(draft, [], 4, activity, state)

        assert state.duplicate_streak == 0
        assert outcome.entries[0].content == (
            "Iteration 4: no tool calls. 1 artifact(s) created (Report). Scratchpad unchanged."
        )

    def test_auto_entries_are_ignored_in_history(self, guard):
        state = LoopGuardState()
        history = [entry("Iteration 1: no tool calls. Scratchpad unchanged.", 1, BlackboardCategory.OBSERVATION, EntrySource.AUTO)]
        draft = BlackboardDraft(category=BlackboardCategory.OBSERVATION, content="Iteration 1: no tool calls. Scratchpad unchanged.")

        outcome = guard.evaluate(draft, history, 2, IterationActivity(), state)

        assert outcome.duplicate_of is None

    def test_window_limits_comparison(self):
        guard = LoopGuard(window=2)
        state = LoopGuardState()
        history = [
            entry("Search for recent papers", 1),
            entry("Summarize the abstract of each paper", 2),
            entry("Compare methods across the two groups", 3),
        ]
        draft = BlackboardDraft(category=BlackboardCategory.PLAN, content="Search for recent papers")

        outcome = guard.evaluate(draft, history, 4, IterationActivity(), state)

        assert outcome.duplicate_of is None

    def test_take_warning_clears(self):
        state = LoopGuardState(pending_warning="careful")

        assert LoopGuard.take_warning(state) == "careful"
        assert state.pending_warning is None

    def test_repeated_short_entry_is_flagged(self, guard):
        state = LoopGuardState()
        draft = BlackboardDraft(category=BlackboardCategory.PLAN, content="Searching")

        first = guard.evaluate(draft, [], 1, IterationActivity(), state)
        first_id = state.last_degenerate.id
        second = guard.evaluate(draft, [], 2, IterationActivity(), state)

        assert first.duplicate_of is None
        assert second.auto_added
        assert second.entries[0].source == EntrySource.AUTO
        assert second.duplicate_of == first_id
        assert state.duplicate_streak == 1
        assert "iteration 1" in state.pending_warning

    def test_short_entry_outside_window_is_not_flagged(self, guard):
        state = LoopGuardState()
        draft = BlackboardDraft(category=BlackboardCategory.PLAN, content="Searching")

        guard.evaluate(draft, [], 1, IterationActivity(), state)
        outcome = guard.evaluate(draft, [], 9, IterationActivity(), state)

        assert outcome.duplicate_of is None
        assert state.pending_warning is None
