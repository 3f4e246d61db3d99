from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from enum import Enum
import uuid


def new_id() -> str:
    return str(uuid.uuid4())


class SessionStatus(str, Enum):
    """Session execution status"""
    RUNNING = "running"
    NEEDS_ASSISTANCE = "needs_assistance"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ERROR)


class StopReason(str, Enum):
    """Why the last loop run stopped"""
    COMPLETED = "completed"
    NEEDS_ASSISTANCE = "needs_assistance"
    ERROR = "error"
    ITERATION_LIMIT = "iteration_limit"
    CANCELLED = "cancelled"


class BlackboardCategory(str, Enum):
    """Blackboard entry categories"""
    OBSERVATION = "observation"
    INSIGHT = "insight"
    PLAN = "plan"
    DECISION = "decision"
    ERROR = "error"
    ARTIFACT = "artifact"
    QUESTION = "question"
    USER_INTERJECTION = "user_interjection"


class EntrySource(str, Enum):
    """Who authored a blackboard entry"""
    MODEL = "model"
    AUTO = "auto"
    TOOL = "tool"
    CHILD = "child"
    USER = "user"


class ToolStatus(str, Enum):
    """Tool call execution status"""
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERROR = "error"


class ArtifactType(str, Enum):
    """Artifact kinds"""
    TEXT = "text"
    FILE = "file"
    IMAGE = "image"
    DATA = "data"


class AssistanceInputType(str, Enum):
    """Expected input kind for an assistance request"""
    TEXT = "text"
    FILE = "file"
    CHOICE = "choice"


class BlackboardEntry(BaseModel):
    """Immutable entry in the session's planning journal"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    category: BlackboardCategory
    content: str
    data: Optional[Dict[str, Any]] = None
    iteration: int = 0
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    tools: Optional[List[str]] = Field(None, description="Tool names associated with the entry")
    source: EntrySource = Field(default=EntrySource.MODEL)
    child_name: Optional[str] = None


class NamedAttribute(BaseModel):
    """Tool result saved under a name for later reference"""
    id: str = Field(default_factory=new_id)
    name: str = Field(description="saveAs name, unique per session")
    tool: str = Field(description="Tool that produced the value")
    params: Dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    result_string: str = ""
    size: int = 0
    iteration: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)


class SessionMemory(BaseModel):
    """Three memory tiers of a session"""
    blackboard: List[BlackboardEntry] = Field(default_factory=list)
    scratchpad: str = ""
    attributes: Dict[str, NamedAttribute] = Field(default_factory=dict)


class ToolCallRecord(BaseModel):
    """One attempted tool invocation"""
    id: str = Field(default_factory=new_id)
    tool: str
    params: Dict[str, Any] = Field(default_factory=dict, description="Parameters before reference resolution")
    status: ToolStatus = Field(default=ToolStatus.PENDING)
    result: Any = None
    error: Optional[str] = None
    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None
    iteration: int = 0


class Artifact(BaseModel):
    """Deliverable produced by the agent"""
    id: str = Field(default_factory=new_id)
    type: ArtifactType = Field(default=ArtifactType.TEXT)
    title: str
    content: str = ""
    description: Optional[str] = None
    mime_type: Optional[str] = None
    size: Optional[int] = None
    iteration: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)


class SessionFile(BaseModel):
    """User-provided input file"""
    id: str = Field(default_factory=new_id)
    filename: str
    mime_type: str = "text/plain"
    size: int = 0
    content: Optional[str] = Field(None, description="Text, or base64 for binary files")
    uploaded_at: datetime = Field(default_factory=datetime.utcnow)


class AssistanceRequest(BaseModel):
    """Blocking request for human input"""
    id: str = Field(default_factory=new_id)
    question: str
    context: Optional[str] = None
    input_type: AssistanceInputType = Field(default=AssistanceInputType.TEXT)
    choices: Optional[List[str]] = None
    response: Optional[str] = None
    selected_choice: Optional[str] = None
    file_id: Optional[str] = None
    requested_at: datetime = Field(default_factory=datetime.utcnow)
    responded_at: Optional[datetime] = None

    @property
    def is_answered(self) -> bool:
        return self.responded_at is not None


class AssistanceResponse(BaseModel):
    """User's answer to an assistance request"""
    response: Optional[str] = None
    selected_choice: Optional[str] = None
    file_id: Optional[str] = None

    def as_text(self) -> str:
        return self.response or self.selected_choice or "[File provided]"


class SessionMessage(BaseModel):
    """Conversation message"""
    id: str = Field(default_factory=new_id)
    role: str = Field(description="user, assistant, system or tool")
    content: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    iteration: Optional[int] = None


class ReportedArtifact(BaseModel):
    title: str
    description: str = ""
    artifact_id: str = ""


class FinalReport(BaseModel):
    """Report persisted when a session completes"""
    summary: str
    tools_used: List[str] = Field(default_factory=list)
    artifacts_created: List[ReportedArtifact] = Field(default_factory=list)
    key_findings: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    total_iterations: int = 0
    total_time_ms: int = 0


class ToolResult(BaseModel):
    """Normalized tool outcome carried into the next iteration"""
    tool: str
    success: bool
    result: Any = None
    error: Optional[str] = None


class IterationRecord(BaseModel):
    """Raw per-iteration data kept for diagnostics"""
    iteration: int
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    model: str = ""
    system_prompt_length: int = 0
    scratchpad_length: int = 0
    blackboard_entries: int = 0
    previous_results_count: int = 0
    raw_response: str = ""
    parsed: bool = False
    parse_error: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    tool_results: List[ToolResult] = Field(default_factory=list)


class LoopGuardState(BaseModel):
    """Loop Guard bookkeeping that must survive a suspend"""
    duplicate_streak: int = 0
    pending_warning: Optional[str] = None
    last_degenerate: Optional[BlackboardEntry] = Field(None, description="Last short entry, replaced on the blackboard but still compared")


class Session(BaseModel):
    """One agent run"""
    id: str = Field(default_factory=new_id)
    status: SessionStatus = Field(default=SessionStatus.RUNNING)
    prompt: str = Field(description="Original task text")
    model: str = "gemini-2.5-flash"
    current_iteration: int = 0
    max_iterations: int = 50
    memory: SessionMemory = Field(default_factory=SessionMemory)
    tool_calls: List[ToolCallRecord] = Field(default_factory=list)
    artifacts: List[Artifact] = Field(default_factory=list)
    messages: List[SessionMessage] = Field(default_factory=list)
    session_files: List[SessionFile] = Field(default_factory=list)
    assistance_request: Optional[AssistanceRequest] = None
    final_report: Optional[FinalReport] = None
    error: Optional[str] = None
    stop_reason: Optional[StopReason] = None
    loop_guard: LoopGuardState = Field(default_factory=LoopGuardState)
    previous_results: List[ToolResult] = Field(default_factory=list, description="Tool results shown to the next iteration")
    raw_data: List[IterationRecord] = Field(default_factory=list)
    parent_id: Optional[str] = None
    child_name: Optional[str] = None
    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None
    last_activity_time: datetime = Field(default_factory=datetime.utcnow)

    def update_status(self, status: SessionStatus):
        """Update session status"""
        self.status = status
        self.last_activity_time = datetime.utcnow()
        self.end_time = self.last_activity_time if status.is_terminal else None

    def touch(self):
        self.last_activity_time = datetime.utcnow()

    def add_message(self, role: str, content: str, iteration: Optional[int] = None) -> SessionMessage:
        """Append a conversation message"""
        message = SessionMessage(role=role, content=content, iteration=iteration)
        self.messages.append(message)
        self.touch()
        return message

    def get_state_summary(self) -> Dict[str, Any]:
        """Get a summary of the current state"""
        return {
            "session_id": self.id,
            "status": self.status.value,
            "iteration": self.current_iteration,
            "max_iterations": self.max_iterations,
            "blackboard_entries": len(self.memory.blackboard),
            "scratchpad_length": len(self.memory.scratchpad),
            "attributes": sorted(self.memory.attributes.keys()),
            "tool_calls": len(self.tool_calls),
            "artifacts": len(self.artifacts),
            "awaiting_assistance": self.assistance_request is not None and not self.assistance_request.is_answered,
            "error": self.error,
            "stop_reason": self.stop_reason.value if self.stop_reason else None,
            "last_activity": self.last_activity_time.isoformat(),
        }
