from typing import Dict, Any, Optional, List
import structlog

from freeagent.application.websocket.connection_manager import ConnectionManager
from freeagent.application.websocket.schema.events import (
    MarkdownEvent, ComponentEvent, ComponentPayload, ProgressData,
    ComponentType, FormData, FormField, StatusData, ToolResultData
)
from freeagent.domain.models.session import AssistanceInputType, AssistanceRequest

logger = structlog.get_logger(__name__)


class StreamingHandler:
    """Handles real-time streaming of session events to WebSocket clients"""

    def __init__(self, connection_manager: Optional[ConnectionManager] = None):
        self.connection_manager = connection_manager or ConnectionManager()

    async def handle_update(self, session_id: str, update: Dict[str, Any]):
        """Handle graph node updates and stream them to the client"""

        for node_id, node_data in update.items():
            await self._process_node_update(session_id, node_id, node_data or {})

    async def _process_node_update(self, session_id: str, node_id: str, node_data: Dict[str, Any]):
        """Process updates from specific graph nodes"""

        logger.debug("Processing node update", session_id=session_id, node_id=node_id)

        if node_id == "check_limits":
            await self._handle_check_limits(session_id, node_data)
        elif node_id == "call_model":
            if not node_data.get("failure"):
                await self.send_progress(session_id, "Thinking...")
        elif node_id == "dispatch_tools":
            await self._handle_tool_results(session_id, node_data)
        elif node_id == "apply_memory":
            message = node_data.get("message_to_user")
            if message:
                await self.send_markdown(session_id, message)
        elif node_id in ("evaluate", "record_failure"):
            await self._handle_evaluation(session_id, node_id, node_data)

    async def _handle_check_limits(self, session_id: str, data: Dict[str, Any]):
        if data.get("outcome") == "continue":
            await self.send_progress(session_id, "Starting iteration", iteration=data.get("iteration"))
        else:
            await self.send_status(session_id, data)

    async def _handle_tool_results(self, session_id: str, data: Dict[str, Any]):
        """Send one component per dispatched tool call"""

        for result in data.get("dispatch_results", []):
            tool_data = ToolResultData(
                tool=result.tool,
                success=result.success,
                error=result.error,
                cached=result.cached,
                duration_ms=result.duration_ms,
            )
            await self._send_component(session_id, ComponentType.TOOL_RESULT, tool_data)

    async def _handle_evaluation(self, session_id: str, node_id: str, data: Dict[str, Any]):
        if data.get("outcome") != "stop":
            return

        await self.send_status(session_id, data)

        if node_id == "record_failure" and data.get("error"):
            await self.connection_manager.send_error(session_id, data["error"], error_code="iteration_failed")

        request = data.get("assistance_request")
        if isinstance(request, AssistanceRequest):
            await self._send_assistance_form(session_id, request)

    async def _send_assistance_form(self, session_id: str, request: AssistanceRequest):
        """Send an assistance request to the client as a form"""

        fields: List[FormField] = []
        if request.input_type == AssistanceInputType.CHOICE and request.choices:
            fields.append(FormField(
                key="selected_choice",
                type="select",
                label="Choice",
                required=True,
                options=[{"value": choice, "label": choice} for choice in request.choices]
            ))
        elif request.input_type == AssistanceInputType.FILE:
            fields.append(FormField(key="file_id", type="file", label="File", required=True))
        else:
            fields.append(FormField(
                key="response",
                type="textarea",
                label="Response",
                required=True,
                placeholder="Type your answer..."
            ))

        form_data = FormData(
            id=request.id,
            title=request.question,
            description=request.context,
            fields=fields
        )
        await self._send_component(session_id, ComponentType.UI_INTERACTION, form_data)

    async def send_progress(
        self,
        session_id: str,
        status: str,
        iteration: Optional[int] = None,
        max_iterations: Optional[int] = None
    ):
        """Send progress update to client"""

        progress_data = ProgressData(
            status=status,
            iteration=iteration,
            max_iterations=max_iterations
        )
        await self._send_component(session_id, ComponentType.PROGRESS, progress_data)

    async def send_status(self, session_id: str, data: Dict[str, Any]):
        """Send the session status the loop stopped in"""

        status_data = StatusData(
            status=data.get("status") or "unknown",
            stop_reason=data.get("stop_reason"),
            iteration=data.get("iteration") or 0,
            error=data.get("error"),
        )
        await self._send_component(session_id, ComponentType.STATUS, status_data)

    async def send_markdown(self, session_id: str, content: str):
        """Send markdown content to client"""

        await self.connection_manager.send_event(
            session_id,
            MarkdownEvent(payload=content)
        )

    async def _send_component(self, session_id: str, component: ComponentType, data: Any):
        await self.connection_manager.send_event(
            session_id,
            ComponentEvent(payload=ComponentPayload(component=component, data=data))
        )
