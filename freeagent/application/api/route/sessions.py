from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from freeagent.application.api.session_manager import SessionManager
from freeagent.domain.models.session import AssistanceResponse, Session, SessionFile

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])


class FileUpload(BaseModel):
    filename: str
    mime_type: str = "text/plain"
    content: str = Field(description="Text, or base64 for binary files")


class CreateSessionRequest(BaseModel):
    prompt: str = Field(min_length=1)
    model: Optional[str] = None
    max_iterations: Optional[int] = Field(None, ge=1)
    files: List[FileUpload] = Field(default_factory=list)


class IterationCapRequest(BaseModel):
    max_iterations: int = Field(ge=1)


class SessionResponse(BaseModel):
    """Session snapshot returned by every route"""
    session_id: str
    status: str
    stop_reason: Optional[str] = None
    current_iteration: int
    max_iterations: int
    error: Optional[str] = None
    assistance_request: Optional[Dict[str, Any]] = None
    final_report: Optional[Dict[str, Any]] = None
    artifacts: List[Dict[str, Any]] = Field(default_factory=list)
    summary: Dict[str, Any] = Field(default_factory=dict)


def to_response(session: Session) -> SessionResponse:
    return SessionResponse(
        session_id=session.id,
        status=session.status.value,
        stop_reason=session.stop_reason.value if session.stop_reason else None,
        current_iteration=session.current_iteration,
        max_iterations=session.max_iterations,
        error=session.error,
        assistance_request=session.assistance_request.model_dump(mode="json") if session.assistance_request else None,
        final_report=session.final_report.model_dump(mode="json") if session.final_report else None,
        artifacts=[a.model_dump(mode="json") for a in session.artifacts],
        summary=session.get_state_summary(),
    )


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


@router.post("", status_code=201)
async def create_session(
    body: CreateSessionRequest,
    manager: SessionManager = Depends(get_session_manager)
) -> SessionResponse:
    """Create a session and start its loop in the background"""
    files = [
        SessionFile(filename=f.filename, mime_type=f.mime_type, content=f.content, size=len(f.content))
        for f in body.files
    ]
    session = await manager.create_session(
        body.prompt, model=body.model, max_iterations=body.max_iterations, files=files
    )
    return to_response(session)


@router.get("/{session_id}")
async def get_session(session_id: str, manager: SessionManager = Depends(get_session_manager)) -> SessionResponse:
    return to_response(await manager.get_session(session_id))


@router.post("/{session_id}/assistance")
async def submit_assistance(
    session_id: str,
    body: AssistanceResponse,
    manager: SessionManager = Depends(get_session_manager)
) -> SessionResponse:
    """Answer a pending assistance request and continue the loop"""
    if not (body.response or body.selected_choice or body.file_id):
        raise HTTPException(status_code=422, detail="Provide response, selected_choice or file_id")
    return to_response(await manager.submit_assistance(session_id, body))


@router.post("/{session_id}/cancel")
async def cancel_session(session_id: str, manager: SessionManager = Depends(get_session_manager)) -> SessionResponse:
    return to_response(await manager.cancel(session_id))


@router.post("/{session_id}/resume")
async def resume_session(session_id: str, manager: SessionManager = Depends(get_session_manager)) -> SessionResponse:
    return to_response(await manager.resume(session_id))


@router.post("/{session_id}/retry")
async def retry_session(session_id: str, manager: SessionManager = Depends(get_session_manager)) -> SessionResponse:
    return to_response(await manager.retry(session_id))


@router.post("/{session_id}/iteration-cap")
async def raise_iteration_cap(
    session_id: str,
    body: IterationCapRequest,
    manager: SessionManager = Depends(get_session_manager)
) -> SessionResponse:
    try:
        session = await manager.raise_iteration_cap(session_id, body.max_iterations)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return to_response(session)
