"""
Built-in tools that run against session state instead of a remote service.

Handlers read from a ``MemoryView`` snapshot and return mutation commands.
They never write to the session themselves.
"""

from typing import Dict, List, Any, Optional, Callable, Awaitable
from pydantic import BaseModel, ConfigDict, Field, ValidationError

import structlog

from freeagent.domain.context.memory.memory_store import MemoryView
from freeagent.domain.errors import ToolExecutionError
from freeagent.domain.models.session import (
    AssistanceInputType, AssistanceRequest, BlackboardCategory, SessionFile,
)
from freeagent.domain.tool.mutations import (
    AppendBlackboard, ChildSpec, MemoryMutation, RequestAssistance, SetScratchpad, SpawnChildren,
)

logger = structlog.get_logger(__name__)


class ToolContext(BaseModel):
    """What a tool may see of the session it runs in"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    session_id: str
    prompt: str
    cache_scope: Optional[str] = Field(None, description="Root session id that owns cached tool results")
    iteration: int = 0
    view: MemoryView = Field(default_factory=MemoryView)
    session_files: List[SessionFile] = Field(default_factory=list)
    is_child: bool = False
    spawn_enabled: bool = True
    max_children: int = 100
    child_max_iterations: int = 20


class LocalOutcome(BaseModel):
    """Result of a local handler"""
    success: bool = True
    result: Any = None
    error: Optional[str] = None
    mutations: List[MemoryMutation] = Field(default_factory=list)


LocalHandler = Callable[[Dict[str, Any], ToolContext], Awaitable[LocalOutcome]]


async def read_blackboard(params: Dict[str, Any], context: ToolContext) -> LocalOutcome:
    entries = list(context.view.blackboard)
    category = params.get("filter")
    if category:
        entries = [e for e in entries if e.category.value == category]

    return LocalOutcome(result=[
        {
            "id": e.id,
            "timestamp": e.timestamp.isoformat(),
            "category": e.category.value,
            "content": e.content,
            "data": e.data,
            "iteration": e.iteration,
        }
        for e in entries
    ])


async def write_blackboard(params: Dict[str, Any], context: ToolContext) -> LocalOutcome:
    try:
        category = BlackboardCategory(params.get("category"))
    except ValueError:
        raise ToolExecutionError("write_blackboard", f"Invalid category: {params.get('category')}")

    mutation = AppendBlackboard(
        category=category,
        content=params.get("content") or "",
        data=params.get("data"),
    )
    return LocalOutcome(
        result={"written": True, "category": category.value},
        mutations=[mutation],
    )


async def read_scratchpad(params: Dict[str, Any], context: ToolContext) -> LocalOutcome:
    # References are not expanded here, read_attribute returns full values
    return LocalOutcome(result={
        "content": context.view.scratchpad,
        "note": "Placeholders like {{attribute:name}} refer to saved results. Use read_attribute to fetch them.",
        "available_attributes": [
            {"name": name, "tool": attr.tool, "size": attr.size}
            for name, attr in context.view.attributes.items()
        ],
    })


async def write_scratchpad(params: Dict[str, Any], context: ToolContext) -> LocalOutcome:
    content = params.get("content") or ""
    mode = params.get("mode") or "append"
    if mode not in ("append", "overwrite"):
        raise ToolExecutionError("write_scratchpad", f"Invalid mode: {mode}")

    current = context.view.scratchpad
    if mode == "append" and current:
        content = f"{current}\n\n{content}"

    return LocalOutcome(
        result={"success": True, "length": len(content)},
        mutations=[SetScratchpad(content=content)],
    )


async def read_attribute(params: Dict[str, Any], context: ToolContext) -> LocalOutcome:
    names = params.get("names") or []
    attributes = context.view.attributes

    if not names:
        metadata = [
            {
                "name": name,
                "tool": attr.tool,
                "size": attr.size,
                "iteration": attr.iteration,
                "createdAt": attr.created_at.isoformat(),
            }
            for name, attr in attributes.items()
        ]
        return LocalOutcome(result={"attributes": metadata, "count": len(metadata)})

    results: Dict[str, Any] = {}
    for name in names:
        attribute = attributes.get(name)
        if attribute is None:
            results[name] = f"Attribute '{name}' not found"
        else:
            results[name] = attribute.result

    logger.debug("Read attributes", requested=names, found=[n for n in names if n in attributes])
    return LocalOutcome(result=results)


async def read_prompt(params: Dict[str, Any], context: ToolContext) -> LocalOutcome:
    return LocalOutcome(result=context.prompt)


async def read_prompt_files(params: Dict[str, Any], context: ToolContext) -> LocalOutcome:
    return LocalOutcome(result=[
        {"id": f.id, "filename": f.filename, "mimeType": f.mime_type, "size": f.size}
        for f in context.session_files
    ])


async def read_file(params: Dict[str, Any], context: ToolContext) -> LocalOutcome:
    file_id = params.get("fileId")
    for f in context.session_files:
        if f.id == file_id:
            return LocalOutcome(result={
                "filename": f.filename,
                "content": f.content,
                "mimeType": f.mime_type,
                "size": f.size,
            })
    return LocalOutcome(success=False, error=f"File not found: {file_id}")


async def request_assistance(params: Dict[str, Any], context: ToolContext) -> LocalOutcome:
    try:
        input_type = AssistanceInputType(params.get("inputType") or "text")
    except ValueError:
        input_type = AssistanceInputType.TEXT

    request = AssistanceRequest(
        question=params.get("question") or "",
        context=params.get("context"),
        input_type=input_type,
        choices=params.get("choices"),
    )
    return LocalOutcome(
        result={"awaiting_response": True, "request_id": request.id},
        mutations=[RequestAssistance(request=request)],
    )


async def spawn(params: Dict[str, Any], context: ToolContext) -> LocalOutcome:
    if context.is_child:
        return LocalOutcome(success=False, error="Child agents cannot spawn further children")
    if not context.spawn_enabled:
        return LocalOutcome(success=False, error="Spawn is not enabled for this session")

    raw_children = params.get("children")
    if not isinstance(raw_children, list) or not raw_children:
        return LocalOutcome(
            success=False,
            error="No children specified. Provide an array of child specifications with 'name' and 'task'.",
        )

    children: List[ChildSpec] = []
    names: List[str] = []
    for raw in raw_children:
        try:
            child = ChildSpec.model_validate(raw)
        except ValidationError:
            return LocalOutcome(success=False, error="Each child must have a 'name' string and a 'task' string")
        if not child.name.strip() or not child.task.strip():
            return LocalOutcome(success=False, error="Each child must have a 'name' string and a 'task' string")
        if child.name in names:
            return LocalOutcome(success=False, error=f"Duplicate child name: {child.name}. Names must be unique.")
        names.append(child.name)
        if child.max_iterations is None:
            child = child.model_copy(update={"max_iterations": context.child_max_iterations})
        children.append(child)

    if len(children) > context.max_children:
        return LocalOutcome(
            success=False,
            error=f"Too many children ({len(children)}). Maximum allowed: {context.max_children}",
        )

    return LocalOutcome(
        result={"spawned": len(children), "childNames": names},
        mutations=[SpawnChildren(children=children)],
    )


BUILTIN_HANDLERS: Dict[str, LocalHandler] = {
    "read_blackboard": read_blackboard,
    "write_blackboard": write_blackboard,
    "read_scratchpad": read_scratchpad,
    "write_scratchpad": write_scratchpad,
    "read_attribute": read_attribute,
    "read_prompt": read_prompt,
    "read_prompt_files": read_prompt_files,
    "read_file": read_file,
    "request_assistance": request_assistance,
    "spawn": spawn,
}


class LocalToolHandlers:
    """Name to handler mapping for local tools"""

    def __init__(self, include_builtins: bool = True):
        self.handlers: Dict[str, LocalHandler] = dict(BUILTIN_HANDLERS) if include_builtins else {}

    def register(self, name: str, handler: LocalHandler):
        """Register or replace a local handler"""
        self.handlers[name] = handler

    def get(self, name: str) -> Optional[LocalHandler]:
        return self.handlers.get(name)
