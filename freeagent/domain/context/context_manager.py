from typing import List, Optional
from pydantic import BaseModel, Field
import json

import structlog

from freeagent.domain.context.memory.memory_store import MemoryView
from freeagent.domain.context.reference_resolver import format_blackboard
from freeagent.domain.models.session import (
    AssistanceResponse, BlackboardEntry, SessionFile, ToolResult,
)
from freeagent.domain.tool.binary_content import sanitize_for_context
from freeagent.domain.tool.tool_registry import ToolRegistry

logger = structlog.get_logger(__name__)

INLINE_FILE_LIMIT = 50000
TEXT_MIME_MARKERS = ("json", "xml", "javascript", "typescript")

RESPONSE_FORMAT = """## Response Format
Respond with one JSON object and nothing else:
{
  "reasoning": "Your thought process",
  "tool_calls": [{"tool": "tool_name", "params": {}}],
  "blackboard_entry": {"category": "observation|insight|plan|decision|error|artifact|question", "content": "What you did or learned"},
  "status": "in_progress|completed|needs_assistance|error",
  "message_to_user": "Optional progress message",
  "artifacts": [{"type": "text|file|image|data", "title": "Title", "content": "Content", "description": "Description"}],
  "final_report": {"summary": "...", "tools_used": [], "artifacts_created": [{"title": "...", "description": "..."}], "key_findings": [], "recommendations": []}
}
At most 5 tool calls per iteration. Add "saveAs": "name" to a tool's params to keep its result as a named attribute.
Tool params may reference memory with {{scratchpad}}, {{blackboard}}, {{attribute:NAME}}, {{attributes}}, {{artifact:ID_OR_TITLE}} and {{artifacts}}."""

MEMORY_GUIDE = """## Memory
- The blackboard above is your planning journal. Record progress every iteration.
- The scratchpad above is your data storage. Previous tool results are shown for one iteration only, so save what you need.
- Check both before calling a tool again. Never repeat a search you already ran."""


class IterationInput(BaseModel):
    """Everything the model sees for one iteration"""
    task: str
    iteration: int
    max_iterations: int
    blackboard: List[BlackboardEntry] = Field(default_factory=list)
    scratchpad: str = ""
    attribute_names: List[str] = Field(default_factory=list)
    previous_results: List[ToolResult] = Field(default_factory=list)
    assistance_response: Optional[AssistanceResponse] = None
    loop_warning: Optional[str] = None
    session_files: List[SessionFile] = Field(default_factory=list)
    tool_catalogue: str = ""


def _is_inline_text(f: SessionFile) -> bool:
    if not f.content or f.size >= INLINE_FILE_LIMIT:
        return False
    return f.mime_type.startswith("text/") or any(m in f.mime_type for m in TEXT_MIME_MARKERS)


class ContextManager:
    """Assembles the per-iteration model input from session memory"""

    def __init__(
        self,
        registry: ToolRegistry,
        blackboard_window: Optional[int] = None,
        scratchpad_chars: int = 50000,
        result_chars: int = 8000
    ):
        self.registry = registry
        self.blackboard_window = blackboard_window
        self.scratchpad_chars = scratchpad_chars
        self.result_chars = result_chars

    def build_input(
        self,
        task: str,
        iteration: int,
        max_iterations: int,
        view: MemoryView,
        previous_results: Optional[List[ToolResult]] = None,
        assistance_response: Optional[AssistanceResponse] = None,
        loop_warning: Optional[str] = None,
        session_files: Optional[List[SessionFile]] = None,
        exclude_tools: Optional[List[str]] = None
    ) -> IterationInput:
        """Build the iteration input from a memory snapshot"""

        blackboard = list(view.blackboard)
        if self.blackboard_window:
            oldest = iteration - self.blackboard_window
            blackboard = [e for e in blackboard if e.iteration >= oldest]

        results = [
            ToolResult(
                tool=r.tool,
                success=r.success,
                result=sanitize_for_context(r.tool, r.result),
                error=r.error,
            )
            for r in previous_results or []
        ]

        return IterationInput(
            task=task,
            iteration=iteration,
            max_iterations=max_iterations,
            blackboard=blackboard,
            scratchpad=view.scratchpad,
            attribute_names=view.attribute_names(),
            previous_results=results,
            assistance_response=assistance_response,
            loop_warning=loop_warning,
            session_files=list(session_files or []),
            tool_catalogue=self.registry.describe_tools(exclude=exclude_tools),
        )

    def render_system_prompt(self, data: IterationInput) -> str:
        """Render the system prompt for one iteration"""

        sections = [
            "You are FreeAgent, an autonomous assistant. You accomplish tasks by using tools and tracking your progress.",
            f"## Available Tools\n{data.tool_catalogue}",
            self._files_section(data.session_files),
            self._blackboard_section(data.blackboard),
            self._scratchpad_section(data.scratchpad),
            self._attributes_section(data.attribute_names),
        ]

        if data.previous_results:
            sections.append(self._results_section(data.previous_results))
        if data.assistance_response is not None:
            sections.append(
                "## User Response to Your Previous Question\n"
                f"The user answered: \"{data.assistance_response.as_text()}\"\n"
                "Incorporate this answer. Do not ask the same question again."
            )
        if data.loop_warning:
            sections.append(f"## Warning\n{data.loop_warning}")

        sections.append(f"Current Iteration: {data.iteration} of {data.max_iterations}")
        sections.append(MEMORY_GUIDE)
        sections.append(RESPONSE_FORMAT)

        prompt = "\n\n".join(sections)
        logger.debug("Rendered system prompt", iteration=data.iteration, length=len(prompt))
        return prompt

    def render_task(self, data: IterationInput) -> str:
        return f"User Task: {data.task}"

    def _files_section(self, files: List[SessionFile]) -> str:
        if not files:
            return "## Session Files\nNo session files provided."

        lines = []
        for f in files:
            line = f"- {f.filename} (fileId: \"{f.id}\", type: {f.mime_type}, size: {f.size} bytes)"
            if _is_inline_text(f):
                line += f"\n  Content:\n```\n{f.content}\n```"
            lines.append(line)
        return "## Session Files\n" + "\n".join(lines) + "\n\nUse read_file with the exact fileId to read file contents."

    def _blackboard_section(self, entries: List[BlackboardEntry]) -> str:
        if not entries:
            return "## Blackboard\nEmpty. Track your plan and completed items here."
        return f"## Blackboard (planning journal)\n{format_blackboard(entries)}"

    def _scratchpad_section(self, scratchpad: str) -> str:
        if not scratchpad.strip():
            return "## Scratchpad\nEmpty. Use write_scratchpad to save important data here."

        content = scratchpad
        if len(content) > self.scratchpad_chars:
            content = "[...older content truncated...]\n\n" + content[-self.scratchpad_chars:]
        return f"## Scratchpad ({len(scratchpad)} chars)\n```\n{content}\n```"

    def _attributes_section(self, names: List[str]) -> str:
        if not names:
            return "## Saved Attributes\nNone."
        return "## Saved Attributes\n" + ", ".join(names) + "\nUse read_attribute or {{attribute:NAME}} to access them."

    def _results_section(self, results: List[ToolResult]) -> str:
        blocks = []
        for r in results:
            payload = r.result if r.success else {"error": r.error}
            text = json.dumps(payload, indent=2, default=str)
            if len(text) > self.result_chars:
                text = text[:self.result_chars] + "\n...[truncated, save what you need to the scratchpad]"
            status = "" if r.success else " (failed)"
            blocks.append(f"### Tool: {r.tool}{status}\n```json\n{text}\n```")

        return (
            "## Previous Iteration Tool Results\n"
            "These results are shown for this iteration only.\n\n"
            + "\n\n".join(blocks)
        )
