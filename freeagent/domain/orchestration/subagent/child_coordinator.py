from typing import Dict, List, Optional, Callable, Any
from pydantic import BaseModel
import asyncio
from datetime import datetime

import structlog

from freeagent.domain.context.memory.memory_store import MemoryStore
from freeagent.domain.errors import ToolExecutionError
from freeagent.domain.models.session import (
    BlackboardCategory, BlackboardEntry, EntrySource, Session, SessionStatus,
)
from freeagent.domain.tool.mutations import ChildSpec
from freeagent.infrastructure.observability.logging import agent_logger

logger = structlog.get_logger(__name__)


class ChildAgentInfo(BaseModel):
    """Outcome of one child agent"""
    name: str
    session_id: str
    status: SessionStatus
    iterations: int = 0
    stop_reason: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    def get_info(self) -> Dict[str, Any]:
        """Summary reported back to the parent as the spawn result"""
        return {
            "name": self.name,
            "status": self.status.value,
            "iterations": self.iterations,
            "stopReason": self.stop_reason,
            "error": self.error,
        }


class _Baseline(BaseModel):
    """Parent memory at spawn time, used to compute a child's delta"""
    entry_ids: List[str]
    attributes: Dict[str, str]
    artifact_ids: List[str]
    scratchpad: str


# Returns an object with ``async run() -> Session``
EngineFactory = Callable[[Session], Any]


class ChildCoordinator:
    """Runs child sessions concurrently and merges their memory into the parent"""

    def __init__(
        self,
        engine_factory: EngineFactory,
        max_concurrent: int = 5,
        max_children: int = 100,
        child_max_iterations: int = 20
    ):
        self.engine_factory = engine_factory
        self.max_concurrent = max_concurrent
        self.max_children = max_children
        self.child_max_iterations = child_max_iterations

    def validate(self, specs: List[ChildSpec]):
        if not specs:
            raise ToolExecutionError("spawn", "No children specified")
        if len(specs) > self.max_children:
            raise ToolExecutionError(
                "spawn", f"Too many children ({len(specs)}). Maximum allowed: {self.max_children}"
            )
        names = [spec.name for spec in specs]
        if len(set(names)) != len(names):
            raise ToolExecutionError("spawn", "Child names must be unique")

    def create_child_session(self, parent: Session, spec: ChildSpec) -> Session:
        """New session seeded with a deep copy of the parent's memory"""

        return Session(
            prompt=f"{parent.prompt}\n\n## Your sub-task ({spec.name})\n{spec.task}",
            model=parent.model,
            max_iterations=spec.max_iterations or self.child_max_iterations,
            memory=parent.memory.model_copy(deep=True),
            artifacts=[a.model_copy(deep=True) for a in parent.artifacts],
            session_files=[f.model_copy(deep=True) for f in parent.session_files],
            parent_id=parent.id,
            child_name=spec.name,
        )

    async def run_children(
        self,
        parent: Session,
        memory: MemoryStore,
        specs: List[ChildSpec]
    ) -> List[ChildAgentInfo]:
        """Run every child to a stop state and merge each one on completion"""

        self.validate(specs)

        baseline = _Baseline(
            entry_ids=[e.id for e in parent.memory.blackboard],
            attributes={name: attr.result_string for name, attr in parent.memory.attributes.items()},
            artifact_ids=[a.id for a in parent.artifacts],
            scratchpad=parent.memory.scratchpad,
        )
        semaphore = asyncio.Semaphore(self.max_concurrent)

        logger.info(
            "Spawning child agents",
            parent_id=parent.id,
            children=[spec.name for spec in specs],
            max_concurrent=self.max_concurrent,
        )

        async def run_one(index: int, spec: ChildSpec) -> ChildAgentInfo:
            child = self.create_child_session(parent, spec)
            info = ChildAgentInfo(
                name=spec.name,
                session_id=child.id,
                status=child.status,
                started_at=datetime.utcnow(),
            )

            async with semaphore:
                try:
                    engine = self.engine_factory(child)
                    child = await engine.run()
                except Exception as e:
                    logger.exception("Child agent failed", child=spec.name)
                    child.error = str(e) or type(e).__name__
                    child.update_status(SessionStatus.ERROR)

            info.status = child.status
            info.iterations = child.current_iteration
            info.stop_reason = child.stop_reason.value if child.stop_reason else None
            info.error = child.error
            info.finished_at = datetime.utcnow()

            await self.merge_child(memory, parent, child, index, baseline)
            logger.info(
                "Child agent finished",
                child=spec.name,
                status=info.status.value,
                iterations=info.iterations,
            )
            return info

        return list(await asyncio.gather(
            *(run_one(index, spec) for index, spec in enumerate(specs, start=1))
        ))

    async def merge_child(
        self,
        memory: MemoryStore,
        parent: Session,
        child: Session,
        index: int,
        baseline: _Baseline
    ):
        """Fold a finished child's new memory into the parent"""

        name = child.child_name or f"child-{index}"
        iteration = parent.current_iteration + 1
        known_entries = set(baseline.entry_ids)
        known_artifacts = set(baseline.artifact_ids)

        entries = [
            entry.model_copy(update={
                "content": f"[child:{name}] {entry.content}",
                "iteration": iteration,
                "source": EntrySource.CHILD,
                "child_name": name,
            })
            for entry in child.memory.blackboard
            if entry.id not in known_entries
        ]

        if child.status != SessionStatus.COMPLETED:
            reason = child.error or (child.stop_reason.value if child.stop_reason else child.status.value)
            entries.append(BlackboardEntry(
                category=BlackboardCategory.ERROR,
                content=f"[child:{name}] Child did not complete ({child.status.value}): {reason}",
                iteration=iteration,
                source=EntrySource.CHILD,
                child_name=name,
            ))

        attributes = [
            attr.model_copy(update={"name": f"{name}.{attr_name}"})
            for attr_name, attr in child.memory.attributes.items()
            if baseline.attributes.get(attr_name) != attr.result_string
        ]

        artifacts = [
            artifact.model_copy(update={"title": f"[{name}] {artifact.title}"})
            for artifact in child.artifacts
            if artifact.id not in known_artifacts
        ]

        scratchpad = child.memory.scratchpad
        if scratchpad.startswith(baseline.scratchpad):
            delta = scratchpad[len(baseline.scratchpad):].strip()
        else:
            delta = scratchpad.strip()
        section = f"## Child {index}: {name}\n{delta}" if delta else None

        await memory.merge_child(entries, attributes, artifacts, section)
        agent_logger.log_child_merge(
            parent_id=parent.id,
            child_name=name,
            child_status=child.status.value,
            entries=len(entries),
            attributes=len(attributes),
            artifacts=len(artifacts),
        )
