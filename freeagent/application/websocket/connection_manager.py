from typing import Dict, Set, Optional
from fastapi import WebSocket
import asyncio
import structlog

from .schema.events import BaseEvent, ConnectionEvent, ErrorEvent

logger = structlog.get_logger(__name__)


class ConnectionManager:
    """Manages WebSocket connections, one per observed session"""

    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, session_id: str):
        """Accept a new WebSocket connection"""
        await websocket.accept()

        async with self._lock:
            self.active_connections[session_id] = websocket

        await self.send_event(
            session_id,
            ConnectionEvent(status="connected", session_id=session_id)
        )

        logger.info("WebSocket connected", session_id=session_id)

    async def disconnect(self, session_id: str, close: bool = True):
        """Forget a connection, closing it if still open"""
        async with self._lock:
            ws = self.active_connections.pop(session_id, None)

        if ws is not None and close:
            try:
                await ws.close()
            except RuntimeError as e:
                logger.debug("WebSocket already closed", session_id=session_id, error=str(e))

        logger.info("WebSocket disconnected", session_id=session_id)

    async def send_event(self, session_id: str, event: BaseEvent) -> bool:
        """Send an event to a specific session"""
        websocket = self.active_connections.get(session_id)
        if websocket is None:
            logger.debug("No client connected for session", session_id=session_id)
            return False

        if event.session_id is None:
            event.session_id = session_id

        try:
            await websocket.send_json(event.model_dump(mode="json"))
            return True
        except Exception as e:
            logger.error("Failed to send event", session_id=session_id, error=str(e))
            await self.disconnect(session_id, close=False)
            return False

    async def send_error(self, session_id: str, error_message: str, error_code: Optional[str] = None):
        """Send an error event to a session"""
        error_event = ErrorEvent(
            payload={"message": error_message},
            error_code=error_code,
            session_id=session_id
        )
        await self.send_event(session_id, error_event)

    def get_active_sessions(self) -> Set[str]:
        """Get session IDs with a connected client"""
        return set(self.active_connections.keys())
