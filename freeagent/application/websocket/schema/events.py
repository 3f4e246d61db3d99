from typing import Dict, Any, Optional, List, Literal, Union
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum


class EventType(str, Enum):
    """WebSocket event types"""
    MARKDOWN = "markdown"
    COMPONENT = "component"
    ERROR = "error"
    CONNECTION = "connection"


class ComponentType(str, Enum):
    """UI component types"""
    PROGRESS = "progress"
    TOOL_RESULT = "tool_result"
    STATUS = "status"
    UI_INTERACTION = "ui_interaction"
    FORM_SUBMIT = "form_submit"


class BaseEvent(BaseModel):
    """Base event model for all WebSocket messages"""
    type: EventType
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    session_id: Optional[str] = None


class MarkdownEvent(BaseEvent):
    """Agent message to the user"""
    type: Literal[EventType.MARKDOWN] = EventType.MARKDOWN
    payload: str


class ProgressData(BaseModel):
    """Iteration progress"""
    status: str
    iteration: Optional[int] = None
    max_iterations: Optional[int] = None


class ToolResultData(BaseModel):
    """Outcome of one tool call"""
    tool: str
    success: bool
    error: Optional[str] = None
    cached: bool = False
    duration_ms: float = 0.0


class StatusData(BaseModel):
    """Session status change"""
    status: str
    stop_reason: Optional[str] = None
    iteration: int = 0
    error: Optional[str] = None


class FormField(BaseModel):
    """Form field definition"""
    type: Literal["text", "select", "file", "textarea"]
    key: str
    label: str
    required: bool = False
    placeholder: Optional[str] = None
    options: Optional[List[Dict[str, str]]] = None  # For select fields


class FormData(BaseModel):
    """Assistance request rendered as a form"""
    id: str
    title: str
    description: Optional[str] = None
    fields: List[FormField]
    submit_label: str = "Submit"


class ComponentPayload(BaseModel):
    """Component event payload"""
    component: ComponentType
    data: Union[ProgressData, ToolResultData, StatusData, FormData, Dict[str, Any]]


class ComponentEvent(BaseEvent):
    """Component event for UI updates"""
    type: Literal[EventType.COMPONENT] = EventType.COMPONENT
    payload: ComponentPayload


class ErrorEvent(BaseEvent):
    """Error event"""
    type: Literal[EventType.ERROR] = EventType.ERROR
    payload: Dict[str, Any]
    error_code: Optional[str] = None


class ConnectionEvent(BaseEvent):
    """Connection status event"""
    type: Literal[EventType.CONNECTION] = EventType.CONNECTION
    status: Literal["connected", "disconnected"]


class FormSubmitData(BaseModel):
    """Assistance answer sent by the client"""
    form_id: str
    values: Dict[str, Any]
