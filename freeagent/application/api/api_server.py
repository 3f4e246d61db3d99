from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional, Union

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from langchain_core.language_models.chat_models import BaseChatModel
import structlog
import uvicorn

from freeagent.application.api.route.sessions import router as sessions_router
from freeagent.application.api.session_manager import SessionManager
from freeagent.application.websocket.ws_server import router as websocket_router
from freeagent.domain.context.state.session_store import SessionStore
from freeagent.domain.errors import (
    InvalidSessionStateError, SessionBusyError, SessionNotFoundError,
)
from freeagent.domain.llm.model_client import ChatModelClient, ModelClient
from freeagent.domain.tool.tool_executor import ToolDispatcher
from freeagent.infrastructure.config.settings import FreeAgentSettings, get_settings
from freeagent.infrastructure.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


def create_app(
    model_client: Union[ModelClient, BaseChatModel],
    settings: Optional[FreeAgentSettings] = None,
    store: Optional[SessionStore] = None,
    dispatcher: Optional[ToolDispatcher] = None
) -> FastAPI:
    """Build the HTTP and WebSocket surface around a model client"""

    settings = settings or get_settings()
    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        environment=settings.environment,
        version=settings.service_version,
    )

    if isinstance(model_client, BaseChatModel):
        model_client = ChatModelClient(model_client, timeout=settings.llm_timeout_seconds)

    manager = SessionManager(settings, model_client, store=store, dispatcher=dispatcher)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Agent server started", environment=settings.environment)
        yield
        await manager.shutdown()
        logger.info("Agent server shutdown")

    app = FastAPI(title="FreeAgent", version=settings.service_version, lifespan=lifespan)
    app.state.session_manager = manager
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found(request: Request, exc: SessionNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(SessionBusyError)
    async def session_busy(request: Request, exc: SessionBusyError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(InvalidSessionStateError)
    async def invalid_state(request: Request, exc: InvalidSessionStateError):
        return JSONResponse(status_code=409, content={"detail": str(exc), "status": exc.status})

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "active_connections": len(manager.streaming_handler.connection_manager.get_active_sessions()),
            "sessions": len(manager.engines),
            "tracing": manager.tracer.enabled,
            "timestamp": datetime.utcnow().isoformat()
        }

    app.include_router(sessions_router)
    app.include_router(websocket_router)
    return app


def serve(model_client: Union[ModelClient, BaseChatModel], settings: Optional[FreeAgentSettings] = None):
    """Run the server with uvicorn"""

    settings = settings or get_settings()
    app = create_app(model_client, settings=settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
