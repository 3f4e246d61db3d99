"""Memory mutation commands returned by local-handler tools.

Local tools never touch session state directly. They return these commands
and the Session Engine applies them in order.
"""

from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field

from freeagent.domain.models.session import (
    Artifact, AssistanceRequest, BlackboardCategory,
)


class AddArtifact(BaseModel):
    kind: Literal["add_artifact"] = "add_artifact"
    artifact: Artifact


class AppendBlackboard(BaseModel):
    kind: Literal["append_blackboard"] = "append_blackboard"
    category: BlackboardCategory
    content: str
    data: Optional[Dict[str, Any]] = None


class SetScratchpad(BaseModel):
    kind: Literal["set_scratchpad"] = "set_scratchpad"
    content: str


class RequestAssistance(BaseModel):
    kind: Literal["request_assistance"] = "request_assistance"
    request: AssistanceRequest


class ChildSpec(BaseModel):
    name: str
    task: str
    max_iterations: Optional[int] = Field(None, alias="maxIterations")

    model_config = {"populate_by_name": True}


class SpawnChildren(BaseModel):
    kind: Literal["spawn_children"] = "spawn_children"
    children: List[ChildSpec]


MemoryMutation = Union[AddArtifact, AppendBlackboard, SetScratchpad, RequestAssistance, SpawnChildren]
