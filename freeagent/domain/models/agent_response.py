"""
Structured model response and its decode step.

The model is asked for a single JSON object. Decoding never returns a silent
``None``: callers get either ``ParsedResponse`` or ``ParseFailure`` holding the
raw text.
"""

from typing import Dict, Any, List, Optional, Union
from pydantic import BaseModel, Field, ValidationError, model_validator
from enum import Enum
import json

import structlog

from freeagent.domain.errors import ParseError
from freeagent.domain.models.session import ArtifactType, BlackboardCategory

logger = structlog.get_logger(__name__)


class ResponseStatus(str, Enum):
    """Status field returned by the model"""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    NEEDS_ASSISTANCE = "needs_assistance"
    ERROR = "error"


class ToolCallRequest(BaseModel):
    tool: str
    params: Dict[str, Any] = Field(default_factory=dict)


class BlackboardDraft(BaseModel):
    category: BlackboardCategory
    content: str = ""
    data: Optional[Dict[str, Any]] = None


class ArtifactDraft(BaseModel):
    type: ArtifactType = ArtifactType.TEXT
    title: str
    content: str = ""
    description: Optional[str] = None


class ReportedArtifactDraft(BaseModel):
    title: str
    description: str = ""


class FinalReportDraft(BaseModel):
    summary: str = ""
    tools_used: List[str] = Field(default_factory=list)
    artifacts_created: List[ReportedArtifactDraft] = Field(default_factory=list)
    key_findings: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class AgentResponse(BaseModel):
    """One iteration's decision from the model"""
    reasoning: str = ""
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)
    blackboard_entry: Optional[BlackboardDraft] = None
    status: ResponseStatus
    message_to_user: Optional[str] = None
    artifacts: List[ArtifactDraft] = Field(default_factory=list)
    final_report: Optional[FinalReportDraft] = None

    @model_validator(mode="after")
    def _final_report_only_when_completed(self) -> "AgentResponse":
        if self.status != ResponseStatus.COMPLETED and self.final_report is not None:
            self.final_report = None
        return self


class ParsedResponse(BaseModel):
    response: AgentResponse
    raw_text: str


class ParseFailure(BaseModel):
    reason: str
    raw_text: str

    def as_error(self) -> ParseError:
        return ParseError(f"Failed to parse model response: {self.reason}", raw_text=self.raw_text)

    def diagnostics(self) -> Dict[str, Any]:
        """Preview data kept on the iteration record"""
        return {
            "reason": self.reason,
            "response_length": len(self.raw_text),
            "preview": self.raw_text[:500],
            "ending": self.raw_text[-200:],
        }


DecodeResult = Union[ParsedResponse, ParseFailure]


def _extract_first_object(text: str) -> Optional[Dict[str, Any]]:
    """Find the first well-formed JSON object embedded in text"""
    decoder = json.JSONDecoder()
    index = text.find("{")
    while index != -1:
        try:
            value, _ = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            index = text.find("{", index + 1)
            continue
        if isinstance(value, dict):
            return value
        index = text.find("{", index + 1)
    return None


def decode_agent_response(raw_text: str) -> DecodeResult:
    """Decode raw model text into a validated AgentResponse"""
    if not raw_text or not raw_text.strip():
        return ParseFailure(reason="Empty model response", raw_text=raw_text or "")

    payload: Any
    try:
        payload = json.loads(raw_text.strip())
    except json.JSONDecodeError as e:
        logger.warning("Direct JSON parse failed", error=str(e), length=len(raw_text))
        payload = _extract_first_object(raw_text)
        if payload is None:
            return ParseFailure(reason="No JSON object found in model response", raw_text=raw_text)

    if not isinstance(payload, dict):
        return ParseFailure(reason="Model response is not a JSON object", raw_text=raw_text)

    try:
        response = AgentResponse.model_validate(payload)
    except ValidationError as e:
        return ParseFailure(reason=f"Response failed validation: {e.error_count()} error(s): {e.errors()[0]['msg']}", raw_text=raw_text)

    return ParsedResponse(response=response, raw_text=raw_text)
