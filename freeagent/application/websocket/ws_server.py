from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from typing import Dict, Any
from pydantic import ValidationError
import structlog

from freeagent.domain.errors import FreeAgentError
from freeagent.domain.models.session import AssistanceResponse
from .schema.events import ComponentType, EventType, FormSubmitData

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.websocket("/ws/sessions/{session_id}")
async def session_websocket(websocket: WebSocket, session_id: str):
    """Stream engine events for one session and accept assistance answers"""

    manager = websocket.app.state.session_manager
    connection_manager = manager.streaming_handler.connection_manager

    try:
        session = await manager.get_session(session_id)
    except FreeAgentError:
        await websocket.close(code=1008, reason="Unknown session")
        return

    await connection_manager.connect(websocket, session_id)
    await manager.streaming_handler.send_status(session_id, {
        "status": session.status.value,
        "stop_reason": session.stop_reason.value if session.stop_reason else None,
        "iteration": session.current_iteration,
        "error": session.error,
    })

    try:
        while True:
            data = await websocket.receive_json()
            try:
                await handle_client_message(manager, session_id, data)
            except (FreeAgentError, ValidationError) as e:
                logger.warning("Rejected client message", session_id=session_id, error=str(e))
                await connection_manager.send_error(session_id, str(e), error_code=type(e).__name__)

    except WebSocketDisconnect:
        logger.info("Client disconnected", session_id=session_id)
    finally:
        await connection_manager.disconnect(session_id, close=False)


async def handle_client_message(manager, session_id: str, data: Dict[str, Any]):
    """Handle UI component interactions"""

    if data.get("type") != EventType.COMPONENT.value:
        logger.debug("Ignoring client message", session_id=session_id, message_type=data.get("type"))
        return

    payload = data.get("payload", {})
    if payload.get("component") == ComponentType.FORM_SUBMIT.value:
        form = FormSubmitData.model_validate(payload.get("data", {}))
        logger.info("Form submitted", session_id=session_id, form_id=form.form_id)
        await manager.submit_assistance(session_id, AssistanceResponse(
            response=form.values.get("response"),
            selected_choice=form.values.get("selected_choice"),
            file_id=form.values.get("file_id"),
        ))
