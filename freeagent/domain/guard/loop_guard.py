from typing import List, Optional
from pydantic import BaseModel, Field

import structlog

from freeagent.domain.context.context_ranker import ContextRanker
from freeagent.domain.models.agent_response import BlackboardDraft
from freeagent.domain.models.session import (
    BlackboardCategory, BlackboardEntry, EntrySource, LoopGuardState,
)

logger = structlog.get_logger(__name__)


class IterationActivity(BaseModel):
    """What an iteration actually did, used for auto entries"""
    tool_names: List[str] = Field(default_factory=list)
    artifact_titles: List[str] = Field(default_factory=list)
    scratchpad_changed: bool = False


class GuardOutcome(BaseModel):
    """Entries to append and whether a duplicate was seen"""
    entries: List[BlackboardEntry] = Field(default_factory=list)
    duplicate_of: Optional[str] = None
    auto_added: bool = False


class LoopGuard:
    """Detects repeated blackboard entries and keeps the journal informative"""

    def __init__(
        self,
        window: int = 5,
        similarity_threshold: float = 0.8,
        min_entry_chars: int = 10,
        ranker: Optional[ContextRanker] = None
    ):
        self.window = window
        self.similarity_threshold = similarity_threshold
        self.min_entry_chars = min_entry_chars
        self.ranker = ranker or ContextRanker()

    def is_degenerate(self, draft: Optional[BlackboardDraft]) -> bool:
        if draft is None:
            return True
        return len(draft.content.strip()) < self.min_entry_chars

    def find_duplicate(self, draft: BlackboardDraft, previous: List[BlackboardEntry]) -> Optional[BlackboardEntry]:
        """Most recent earlier entry this draft repeats, if any"""

        for entry in reversed(previous):
            if entry.category != draft.category:
                continue
            if self.ranker.calculate_overlap(entry.content, draft.content) >= self.similarity_threshold:
                return entry
        return None

    def build_auto_entry(self, iteration: int, activity: IterationActivity) -> BlackboardEntry:
        """Factual summary of the iteration's activity"""

        parts = [f"Iteration {iteration}:"]
        if activity.tool_names:
            parts.append(f"{len(activity.tool_names)} tool call(s) ({', '.join(activity.tool_names)}).")
        else:
            parts.append("no tool calls.")
        if activity.artifact_titles:
            parts.append(f"{len(activity.artifact_titles)} artifact(s) created ({', '.join(activity.artifact_titles)}).")
        parts.append("Scratchpad updated." if activity.scratchpad_changed else "Scratchpad unchanged.")

        return BlackboardEntry(
            category=BlackboardCategory.OBSERVATION,
            content=" ".join(parts),
            iteration=iteration,
            tools=activity.tool_names or None,
            source=EntrySource.AUTO,
        )

    def evaluate(
        self,
        draft: Optional[BlackboardDraft],
        history: List[BlackboardEntry],
        iteration: int,
        activity: IterationActivity,
        state: LoopGuardState
    ) -> GuardOutcome:
        """Decide which entries to append for this iteration

        ``history`` is the blackboard before this iteration's write. ``state``
        is updated in place.
        """

        if draft is None:
            logger.info("Replacing missing blackboard entry", iteration=iteration)
            state.duplicate_streak = 0
            state.last_degenerate = None
            return GuardOutcome(entries=[self.build_auto_entry(iteration, activity)], auto_added=True)

        entry = BlackboardEntry(
            category=draft.category,
            content=draft.content,
            data=draft.data,
            iteration=iteration,
            tools=activity.tool_names or None,
            source=EntrySource.MODEL,
        )

        if self.is_degenerate(draft):
            # Short entries never reach the blackboard, so compare against the last one kept here
            logger.info("Replacing degenerate blackboard entry", iteration=iteration)
            last = state.last_degenerate
            previous = [last] if last is not None and last.iteration >= iteration - self.window else []
            state.last_degenerate = entry
            outcome = GuardOutcome(entries=[self.build_auto_entry(iteration, activity)], auto_added=True)
            duplicate = self.find_duplicate(draft, previous)
            if duplicate is None:
                state.duplicate_streak = 0
            else:
                self._flag_duplicate(draft, duplicate, iteration, state)
                outcome.duplicate_of = duplicate.id
            return outcome

        state.last_degenerate = None
        previous = [e for e in history if e.source != EntrySource.AUTO][-self.window:] if self.window > 0 else []
        duplicate = self.find_duplicate(draft, previous)
        if duplicate is None:
            state.duplicate_streak = 0
            return GuardOutcome(entries=[entry])

        self._flag_duplicate(draft, duplicate, iteration, state)
        outcome = GuardOutcome(entries=[entry], duplicate_of=duplicate.id)
        if state.duplicate_streak >= 2:
            outcome.entries.append(self.build_auto_entry(iteration, activity))
            outcome.auto_added = True
        return outcome

    def _flag_duplicate(
        self,
        draft: BlackboardDraft,
        duplicate: BlackboardEntry,
        iteration: int,
        state: LoopGuardState
    ):
        state.duplicate_streak += 1
        state.pending_warning = (
            f"Your last blackboard entry repeated an earlier '{draft.category.value}' entry "
            f"from iteration {duplicate.iteration}. Do not repeat yourself. "
            "Take a different action or record what is new."
        )
        logger.warning(
            "Duplicate blackboard entry",
            iteration=iteration,
            category=draft.category.value,
            streak=state.duplicate_streak,
        )

    @staticmethod
    def take_warning(state: LoopGuardState) -> Optional[str]:
        """Pop the pending warning so it is shown exactly once"""
        warning = state.pending_warning
        state.pending_warning = None
        return warning
