from typing import Dict, List, Any, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field
import asyncio
import json

import structlog

from freeagent.domain.models.session import (
    Artifact, BlackboardEntry, NamedAttribute, SessionMemory,
)

logger = structlog.get_logger(__name__)


class MemoryView(BaseModel):
    """Read-only snapshot of a session's memory tiers"""
    model_config = ConfigDict(frozen=True)

    blackboard: Tuple[BlackboardEntry, ...] = ()
    scratchpad: str = ""
    attributes: Dict[str, NamedAttribute] = Field(default_factory=dict)
    artifacts: Tuple[Artifact, ...] = ()

    def attribute_names(self) -> List[str]:
        return list(self.attributes.keys())


def stringify_result(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, indent=2, default=str)
    except (TypeError, ValueError):
        return str(value)


class MemoryStore:
    """Blackboard, scratchpad and named attributes for one session"""

    def __init__(self, memory: SessionMemory, artifacts: Optional[List[Artifact]] = None):
        self._memory = memory
        self._artifacts = artifacts if artifacts is not None else []
        self._lock = asyncio.Lock()

    async def append_blackboard(self, entry: BlackboardEntry) -> BlackboardEntry:
        """Append an entry to the blackboard"""

        async with self._lock:
            self._memory.blackboard.append(entry)
            return entry

    async def set_scratchpad(self, text: str) -> str:
        """Replace the scratchpad content"""

        async with self._lock:
            self._memory.scratchpad = text or ""
            return self._memory.scratchpad

    async def append_scratchpad(self, text: str, separator: str = "\n\n") -> str:
        """Append to the scratchpad under the lock"""

        async with self._lock:
            current = self._memory.scratchpad
            self._memory.scratchpad = f"{current}{separator}{text}" if current else text
            return self._memory.scratchpad

    async def set_attribute(
        self,
        name: str,
        tool_name: str,
        value: Any,
        params: Optional[Dict[str, Any]] = None,
        iteration: int = 0
    ) -> NamedAttribute:
        """Create or overwrite a named attribute"""

        async with self._lock:
            return self._put_attribute(name, tool_name, value, params or {}, iteration)

    async def add_artifact(self, artifact: Artifact) -> Artifact:
        """Add an artifact to the session"""

        async with self._lock:
            self._artifacts.append(artifact)
            return artifact

    def get_attribute(self, name: str) -> Optional[NamedAttribute]:
        """Get a named attribute"""

        attribute = self._memory.attributes.get(name)
        return attribute.model_copy() if attribute else None

    def list_attribute_names(self) -> List[str]:
        """List attribute names in creation order"""

        return list(self._memory.attributes.keys())

    @property
    def scratchpad(self) -> str:
        return self._memory.scratchpad

    @property
    def blackboard_size(self) -> int:
        return len(self._memory.blackboard)

    def snapshot(self) -> MemoryView:
        """Take a read-only snapshot for resolvers and tools"""

        return MemoryView(
            blackboard=tuple(self._memory.blackboard),
            scratchpad=self._memory.scratchpad,
            attributes={name: attr.model_copy() for name, attr in self._memory.attributes.items()},
            artifacts=tuple(a.model_copy() for a in self._artifacts),
        )

    async def merge_child(
        self,
        entries: List[BlackboardEntry],
        attributes: List[NamedAttribute],
        artifacts: List[Artifact],
        scratchpad_section: Optional[str] = None
    ) -> None:
        """Merge a child's memory in one exclusive section"""

        async with self._lock:
            self._memory.blackboard.extend(entries)
            for attribute in attributes:
                self._put_attribute(
                    attribute.name, attribute.tool, attribute.result,
                    attribute.params, attribute.iteration
                )
            self._artifacts.extend(artifacts)
            if scratchpad_section:
                current = self._memory.scratchpad
                self._memory.scratchpad = f"{current}\n\n{scratchpad_section}" if current else scratchpad_section

        logger.debug(
            "Merged child memory",
            entries=len(entries),
            attributes=len(attributes),
            artifacts=len(artifacts),
        )

    def _put_attribute(
        self,
        name: str,
        tool_name: str,
        value: Any,
        params: Dict[str, Any],
        iteration: int
    ) -> NamedAttribute:
        result_string = stringify_result(value)
        attribute = NamedAttribute(
            name=name,
            tool=tool_name,
            params=params,
            result=value,
            result_string=result_string,
            size=len(result_string),
            iteration=iteration,
        )
        if name in self._memory.attributes:
            logger.info("Overwriting attribute", name=name, tool=tool_name)
        self._memory.attributes[name] = attribute
        return attribute
