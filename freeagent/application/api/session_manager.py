from typing import Dict, List, Optional, Set
import asyncio

import structlog

from freeagent.domain.context.memory.tool_result_cache import ToolResultCache
from freeagent.domain.context.state.session_store import SessionStore, create_session_store
from freeagent.domain.llm.model_client import ModelClient
from freeagent.domain.models.session import AssistanceResponse, Session, SessionFile, SessionStatus
from freeagent.domain.orchestration.core.session_engine import SessionEngine
from freeagent.domain.streaming.streaming_handler import StreamingHandler
from freeagent.domain.tool.remote_executor import RemoteToolExecutor
from freeagent.domain.tool.tool_executor import ToolDispatcher
from freeagent.infrastructure.config.settings import FreeAgentSettings
from freeagent.infrastructure.observability.langfuse_tracing import SessionTracer

logger = structlog.get_logger(__name__)


class SessionManager:
    """Owns one engine per live session and runs loops in the background"""

    def __init__(
        self,
        settings: FreeAgentSettings,
        model_client: ModelClient,
        store: Optional[SessionStore] = None,
        dispatcher: Optional[ToolDispatcher] = None,
        streaming_handler: Optional[StreamingHandler] = None,
        tracer: Optional[SessionTracer] = None
    ):
        self.settings = settings
        self.model_client = model_client
        self.store = store or create_session_store(settings.session_store_path)
        self.dispatcher = dispatcher or ToolDispatcher(
            remote_executor=RemoteToolExecutor(
                settings.tool_base_url,
                auth_token=settings.tool_auth_token,
                timeout=settings.tool_timeout_seconds,
            ),
            cache=ToolResultCache(ttl=settings.tool_cache_ttl_seconds),
        )
        self.streaming_handler = streaming_handler or StreamingHandler()
        self.tracer = tracer or SessionTracer.from_settings(settings)

        self.engines: Dict[str, SessionEngine] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

    async def create_session(
        self,
        prompt: str,
        model: Optional[str] = None,
        max_iterations: Optional[int] = None,
        files: Optional[List[SessionFile]] = None
    ) -> Session:
        """Create a session and start its loop"""

        session = Session(
            prompt=prompt,
            model=model or self.settings.default_model,
            max_iterations=max_iterations or self.settings.max_iterations,
            session_files=files or [],
        )
        session.add_message("user", prompt)
        await self.store.save(session)

        engine = await self._engine_for(session.id, session)
        logger.info("Session created", session_id=session.id, model=session.model)
        self._launch(engine)
        return session

    async def get_session(self, session_id: str) -> Session:
        """Current state of a session"""

        engine = self.engines.get(session_id)
        if engine is not None:
            return engine.session.model_copy(deep=True)
        return await self.store.load(session_id)

    async def submit_assistance(self, session_id: str, response: AssistanceResponse) -> Session:
        engine = await self._engine_for(session_id)
        session = await engine.submit_assistance(response)
        self._launch(engine)
        return session

    async def resume(self, session_id: str) -> Session:
        engine = await self._engine_for(session_id)
        session = await engine.prepare_resume()
        self._launch(engine)
        return session

    async def retry(self, session_id: str) -> Session:
        engine = await self._engine_for(session_id)
        session = await engine.prepare_retry()
        self._launch(engine)
        return session

    async def cancel(self, session_id: str) -> Session:
        engine = await self._engine_for(session_id)
        engine.cancel()
        logger.info("Cancellation requested", session_id=session_id, running=engine.is_running)
        return engine.session

    async def raise_iteration_cap(self, session_id: str, max_iterations: int) -> Session:
        engine = await self._engine_for(session_id)
        return await engine.raise_iteration_cap(max_iterations)

    async def shutdown(self):
        """Cancel background loops and release the tool client"""

        for engine in self.engines.values():
            engine.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self.dispatcher.remote_executor is not None:
            await self.dispatcher.remote_executor.close()
        self.tracer.flush()
        logger.info("Session manager stopped", sessions=len(self.engines))

    async def _engine_for(self, session_id: str, session: Optional[Session] = None) -> SessionEngine:
        async with self._lock:
            engine = self.engines.get(session_id)
            if engine is None:
                if session is None:
                    session = await self.store.load(session_id)
                engine = SessionEngine(
                    session,
                    self.model_client,
                    self.dispatcher,
                    self.store,
                    settings=self.settings,
                    streaming_handler=self.streaming_handler,
                    tracer=self.tracer,
                )
                self.engines[session_id] = engine
            return engine

    async def _run(self, engine: SessionEngine):
        try:
            await engine.run()
        finally:
            await self._evict_if_idle(engine)

    async def _evict_if_idle(self, engine: SessionEngine):
        """Forget an engine whose session has finished; the store still holds it"""

        session = engine.session
        if engine.is_running or not session.status.is_terminal:
            return

        async with self._lock:
            if self.engines.get(session.id) is not engine:
                return
            del self.engines[session.id]

        # An errored session keeps its cached results for a retry
        dropped = 0
        if session.status == SessionStatus.COMPLETED:
            dropped = await self.dispatcher.cache.clear_scope(session.id)
        logger.info(
            "Engine evicted",
            session_id=session.id,
            status=session.status.value,
            cached_results=dropped,
        )

    def _launch(self, engine: SessionEngine):
        task = asyncio.create_task(self._run(engine))
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Background session run failed", error=str(error), error_type=type(error).__name__)
