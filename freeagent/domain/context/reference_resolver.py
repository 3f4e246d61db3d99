"""
Reference resolution for tool parameters.

Tool-call parameters may carry placeholders instead of copies of large
content:

    {{scratchpad}}            whole scratchpad
    {{blackboard}}            every blackboard entry, one block each
    {{attribute:NAME}}        one named attribute's raw value
    {{attributes}}            all attributes as a JSON object
    {{artifact:ID_OR_TITLE}}  one artifact's content
    {{artifacts}}             all artifacts as a JSON array

Only string leaves are rewritten. Tokens naming an unknown attribute or
artifact are left exactly as written.
"""

from typing import Dict, List, Any, Sequence
import json
import re

from freeagent.domain.context.memory.memory_store import MemoryView, stringify_result
from freeagent.domain.models.session import BlackboardEntry, NamedAttribute, Artifact

SCRATCHPAD = re.compile(r"\{\{scratchpad\}\}", re.IGNORECASE)
BLACKBOARD = re.compile(r"\{\{blackboard\}\}", re.IGNORECASE)
ATTRIBUTE = re.compile(r"\{\{attribute:([^}]+)\}\}", re.IGNORECASE)
ATTRIBUTES = re.compile(r"\{\{attributes\}\}", re.IGNORECASE)
ARTIFACT = re.compile(r"\{\{artifact:([^}]+)\}\}", re.IGNORECASE)
ARTIFACTS = re.compile(r"\{\{artifacts\}\}", re.IGNORECASE)

ALL_PATTERNS = (SCRATCHPAD, BLACKBOARD, ATTRIBUTE, ATTRIBUTES, ARTIFACT, ARTIFACTS)


def format_blackboard(entries: Sequence[BlackboardEntry]) -> str:
    """Format blackboard entries as readable blocks"""
    if not entries:
        return "[No blackboard entries]"

    return "\n\n".join(
        f"[{entry.category.value.upper()}] (Iteration {entry.iteration}): {entry.content}"
        for entry in entries
    )


def format_all_attributes(attributes: Dict[str, NamedAttribute]) -> str:
    if not attributes:
        return "{}"

    formatted = {
        name: {
            "tool": attr.tool,
            "size": attr.size,
            "createdAt": attr.created_at.isoformat(),
            "iteration": attr.iteration,
            "result": attr.result,
        }
        for name, attr in attributes.items()
    }
    return json.dumps(formatted, indent=2, default=str)


def format_all_artifacts(artifacts: Sequence[Artifact]) -> str:
    if not artifacts:
        return "[]"

    return json.dumps(
        [
            {
                "id": a.id,
                "type": a.type.value,
                "title": a.title,
                "content": a.content,
                "description": a.description,
            }
            for a in artifacts
        ],
        indent=2,
    )


class ReferenceResolver:
    """Expands reference tokens against a memory snapshot"""

    def __init__(self, view: MemoryView):
        self.view = view

    def resolve(self, value: Any) -> Any:
        """Resolve tokens recursively through dicts and lists"""
        if isinstance(value, str):
            return self._resolve_string(value)
        if isinstance(value, list):
            return [self.resolve(item) for item in value]
        if isinstance(value, tuple):
            return tuple(self.resolve(item) for item in value)
        if isinstance(value, dict):
            return {key: self.resolve(item) for key, item in value.items()}
        return value

    def _resolve_string(self, text: str) -> str:
        if "{{" not in text:
            return text

        view = self.view
        # Scratchpad first: it may hold attribute references of its own.
        result = SCRATCHPAD.sub(lambda _: view.scratchpad, text)
        result = BLACKBOARD.sub(lambda _: format_blackboard(view.blackboard), result)
        result = ATTRIBUTES.sub(lambda _: format_all_attributes(view.attributes), result)
        result = ATTRIBUTE.sub(self._attribute_value, result)
        result = ARTIFACTS.sub(lambda _: format_all_artifacts(view.artifacts), result)
        result = ARTIFACT.sub(self._artifact_content, result)
        return result

    def _attribute_value(self, match: "re.Match[str]") -> str:
        attribute = self.view.attributes.get(match.group(1).strip())
        if attribute is None:
            return match.group(0)
        return stringify_result(attribute.result)

    def _artifact_content(self, match: "re.Match[str]") -> str:
        key = match.group(1).strip()
        for artifact in self.view.artifacts:
            if artifact.id == key or artifact.title == key:
                return artifact.content
        return match.group(0)


def resolve_references(value: Any, view: MemoryView) -> Any:
    return ReferenceResolver(view).resolve(value)


def summarize_resolutions(original: Any, resolved: Any, path: str = "") -> List[str]:
    """List the tokens that were substituted, by parameter path"""
    summary: List[str] = []

    if isinstance(original, str) and isinstance(resolved, str):
        if original != resolved:
            for pattern in ALL_PATTERNS:
                for match in pattern.finditer(original):
                    if match.group(0) not in resolved or pattern in (SCRATCHPAD, BLACKBOARD, ATTRIBUTES, ARTIFACTS):
                        summary.append(f"{path or '<root>'}: resolved {match.group(0)}")
    elif isinstance(original, (list, tuple)) and isinstance(resolved, (list, tuple)):
        for i, (orig_item, resolved_item) in enumerate(zip(original, resolved)):
            summary.extend(summarize_resolutions(orig_item, resolved_item, f"{path}[{i}]"))
    elif isinstance(original, dict) and isinstance(resolved, dict):
        for key, orig_item in original.items():
            child_path = f"{path}.{key}" if path else str(key)
            summary.extend(summarize_resolutions(orig_item, resolved.get(key), child_path))

    return summary
