from typing import TypedDict, List, Dict, Any, Optional, Literal, Tuple
from langgraph.graph import StateGraph, END
import asyncio
from datetime import datetime

import structlog

from freeagent.domain.context.context_manager import ContextManager
from freeagent.domain.context.memory.memory_store import MemoryStore, MemoryView
from freeagent.domain.context.reference_resolver import resolve_references, summarize_resolutions
from freeagent.domain.context.state.session_store import SessionStore
from freeagent.domain.errors import (
    InvalidSessionStateError, IterationLimitExceeded, SessionBusyError,
    ToolExecutionError, TransportError,
)
from freeagent.domain.guard.loop_guard import IterationActivity, LoopGuard
from freeagent.domain.llm.model_client import ModelClient, ModelRequest
from freeagent.domain.models.agent_response import (
    AgentResponse, FinalReportDraft, ParseFailure, ResponseStatus, ToolCallRequest,
    decode_agent_response,
)
from freeagent.domain.models.session import (
    Artifact, AssistanceRequest, AssistanceResponse, BlackboardEntry, EntrySource,
    FinalReport, IterationRecord, ReportedArtifact, Session, SessionStatus, StopReason,
    ToolCallRecord, ToolResult, ToolStatus,
)
from freeagent.domain.orchestration.subagent.child_coordinator import ChildCoordinator
from freeagent.domain.streaming.streaming_handler import StreamingHandler
from freeagent.domain.tool.local_handlers import ToolContext
from freeagent.domain.tool.mutations import (
    AddArtifact, AppendBlackboard, ChildSpec, RequestAssistance, SetScratchpad, SpawnChildren,
)
from freeagent.domain.tool.tool_executor import DispatchResult, ToolDispatcher
from freeagent.infrastructure.config.settings import FreeAgentSettings, get_settings
from freeagent.infrastructure.observability.langfuse_tracing import SessionTracer
from freeagent.infrastructure.observability.logging import agent_logger

logger = structlog.get_logger(__name__)

CONTINUE = "continue"
STOP = "stop"
NODES_PER_ITERATION = 8


class IterationState(TypedDict):
    """Transient data of the iteration in flight"""
    iteration: int
    system_prompt: str
    task_text: str
    consumed_assistance_id: Optional[str]
    scratchpad_before: str
    raw_response: Optional[str]
    response: Optional[AgentResponse]
    failure: Optional[str]
    parse_diagnostics: Optional[Dict[str, Any]]
    dispatch_results: List[DispatchResult]
    tool_results: List[ToolResult]
    assistance_request: Optional[AssistanceRequest]
    duplicate_entry: bool
    message_to_user: Optional[str]
    status: str
    stop_reason: Optional[str]
    error: Optional[str]
    outcome: str


class SessionEngine:
    """Drives one session through the iteration loop"""

    def __init__(
        self,
        session: Session,
        model_client: ModelClient,
        dispatcher: ToolDispatcher,
        store: SessionStore,
        settings: Optional[FreeAgentSettings] = None,
        streaming_handler: Optional[StreamingHandler] = None,
        tracer: Optional[SessionTracer] = None,
        is_child: bool = False
    ):
        self.session = session
        self.model_client = model_client
        self.dispatcher = dispatcher
        self.store = store
        self.settings = settings or get_settings()
        self.streaming_handler = streaming_handler
        self.tracer = tracer or SessionTracer()
        self.is_child = is_child

        self.memory = MemoryStore(session.memory, session.artifacts)
        self.context_manager = ContextManager(
            dispatcher.registry,
            blackboard_window=self.settings.blackboard_window,
            scratchpad_chars=self.settings.scratchpad_context_chars,
            result_chars=self.settings.tool_result_context_chars,
        )
        self.loop_guard = LoopGuard(
            window=self.settings.loop_guard_window,
            similarity_threshold=self.settings.loop_guard_similarity,
            min_entry_chars=self.settings.loop_guard_min_entry_chars,
        )
        self.child_coordinator: Optional[ChildCoordinator] = None
        if not is_child and self.settings.spawn_enabled:
            self.child_coordinator = ChildCoordinator(
                self._create_child_engine,
                max_concurrent=self.settings.max_concurrent_children,
                max_children=self.settings.max_children,
                child_max_iterations=self.settings.child_max_iterations,
            )

        self._cancel_event = asyncio.Event()
        self._run_lock = asyncio.Lock()
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the iteration graph"""

        workflow = StateGraph(IterationState)

        workflow.add_node("check_limits", self.check_limits_node)
        workflow.add_node("build_input", self.build_input_node)
        workflow.add_node("call_model", self.call_model_node)
        workflow.add_node("parse_response", self.parse_response_node)
        workflow.add_node("record_failure", self.record_failure_node)
        workflow.add_node("dispatch_tools", self.dispatch_tools_node)
        workflow.add_node("apply_memory", self.apply_memory_node)
        workflow.add_node("evaluate", self.evaluate_node)
        workflow.add_node("finish_iteration", self.finish_iteration_node)

        workflow.set_entry_point("check_limits")

        workflow.add_conditional_edges(
            "check_limits",
            self.route_on_outcome,
            {CONTINUE: "build_input", STOP: END}
        )
        workflow.add_edge("build_input", "call_model")
        workflow.add_conditional_edges(
            "call_model",
            self.route_on_failure,
            {"ok": "parse_response", "failure": "record_failure"}
        )
        workflow.add_conditional_edges(
            "parse_response",
            self.route_on_failure,
            {"ok": "dispatch_tools", "failure": "record_failure"}
        )
        workflow.add_edge("record_failure", "finish_iteration")
        workflow.add_edge("dispatch_tools", "apply_memory")
        workflow.add_edge("apply_memory", "evaluate")
        workflow.add_edge("evaluate", "finish_iteration")
        workflow.add_conditional_edges(
            "finish_iteration",
            self.route_on_outcome,
            {CONTINUE: "check_limits", STOP: END}
        )

        return workflow.compile()

    # Public operations

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    async def start(self) -> Session:
        """Run a new session from its first iteration"""

        if not self.session.messages:
            self.session.add_message("user", self.session.prompt)
        return await self.run()

    async def run(self) -> Session:
        """Advance the session until it stops"""

        if self._run_lock.locked():
            raise SessionBusyError(self.session.id)

        async with self._run_lock:
            session = self.session
            if session.status != SessionStatus.RUNNING:
                raise InvalidSessionStateError(session.id, session.status.value, SessionStatus.RUNNING.value)

            self._cancel_event.clear()
            session.stop_reason = None
            await self.store.save(session)

            remaining = max(session.max_iterations - session.current_iteration, 0)
            config = {"recursion_limit": (remaining + 1) * NODES_PER_ITERATION + 5}

            with structlog.contextvars.bound_contextvars(session_id=session.id, child_name=session.child_name):
                logger.info(
                    "Starting loop",
                    iteration=session.current_iteration,
                    max_iterations=session.max_iterations,
                )
                try:
                    async for chunk in self.workflow.astream(
                        self._fresh_state(session.current_iteration),
                        config=config,
                        stream_mode="updates",
                    ):
                        if self.streaming_handler is not None:
                            await self.streaming_handler.handle_update(session.id, chunk)
                except Exception as e:
                    logger.exception("Iteration loop failed")
                    session.error = f"Internal engine error: {e}"
                    self._transition(SessionStatus.ERROR, StopReason.ERROR)

                logger.info(
                    "Loop stopped",
                    status=session.status.value,
                    stop_reason=session.stop_reason.value if session.stop_reason else None,
                    iteration=session.current_iteration,
                )

            await self.store.save(session)
            self.tracer.flush()
            return session

    async def submit_assistance(self, response: AssistanceResponse) -> Session:
        """Record the user's answer and make the session runnable"""

        session = self.session
        self._ensure_idle()
        request = session.assistance_request
        if session.status != SessionStatus.NEEDS_ASSISTANCE or request is None or request.is_answered:
            raise InvalidSessionStateError(session.id, session.status.value, SessionStatus.NEEDS_ASSISTANCE.value)

        request.response = response.response
        request.selected_choice = response.selected_choice
        request.file_id = response.file_id
        request.responded_at = datetime.utcnow()

        session.add_message("user", response.as_text(), session.current_iteration)
        self._transition(SessionStatus.RUNNING, None, reason="assistance answered")
        await self.store.save(session)
        return session

    async def respond_to_assistance(self, response: AssistanceResponse) -> Session:
        await self.submit_assistance(response)
        return await self.run()

    async def prepare_resume(self) -> Session:
        """Make a paused or capped session runnable again"""

        session = self.session
        self._ensure_idle()
        if session.status == SessionStatus.PAUSED:
            self._transition(SessionStatus.RUNNING, None, reason="resumed")
        elif session.status != SessionStatus.RUNNING:
            raise InvalidSessionStateError(session.id, session.status.value, SessionStatus.PAUSED.value)

        await self.store.save(session)
        return session

    async def resume(self) -> Session:
        await self.prepare_resume()
        return await self.run()

    async def prepare_retry(self) -> Session:
        """Clear an error so the failed iteration can run again"""

        session = self.session
        self._ensure_idle()
        if session.status != SessionStatus.ERROR:
            raise InvalidSessionStateError(session.id, session.status.value, SessionStatus.ERROR.value)

        session.error = None
        self._transition(SessionStatus.RUNNING, None, reason="retry")
        await self.store.save(session)
        return session

    async def retry(self) -> Session:
        await self.prepare_retry()
        return await self.run()

    async def raise_iteration_cap(self, max_iterations: int) -> Session:
        """Raise the session's iteration cap"""

        session = self.session
        if max_iterations <= session.max_iterations:
            raise ValueError(
                f"New cap {max_iterations} must exceed the current cap {session.max_iterations}"
            )
        session.max_iterations = max_iterations
        session.touch()
        await self.store.save(session)
        logger.info("Raised iteration cap", session_id=session.id, max_iterations=max_iterations)
        return session

    def cancel(self):
        """Ask the running loop to stop before its next model call"""
        self._cancel_event.set()

    # Graph nodes

    async def check_limits_node(self, state: IterationState) -> Dict[str, Any]:
        """Stop on cancellation or when the cap is reached"""

        session = self.session

        if self._cancel_event.is_set():
            logger.info("Cancellation requested")
            self._transition(SessionStatus.PAUSED, StopReason.CANCELLED, reason="cancelled")
            return self._stop_update()

        if session.status != SessionStatus.RUNNING:
            return self._stop_update()

        try:
            self._check_iteration_cap()
        except IterationLimitExceeded as e:
            logger.info("Iteration limit reached", iteration=e.iteration, max_iterations=e.max_iterations)
            session.stop_reason = StopReason.ITERATION_LIMIT
            session.touch()
            return self._stop_update()

        update = self._fresh_state(session.current_iteration + 1)
        update["outcome"] = CONTINUE
        return update

    async def build_input_node(self, state: IterationState) -> Dict[str, Any]:
        """Assemble the model input for this iteration"""

        session = self.session
        iteration = state["iteration"]

        assistance = None
        consumed_id = None
        request = session.assistance_request
        if request is not None and request.is_answered:
            assistance = AssistanceResponse(
                response=request.response,
                selected_choice=request.selected_choice,
                file_id=request.file_id,
            )
            consumed_id = request.id

        spawn_hidden = self.child_coordinator is None
        data = self.context_manager.build_input(
            task=session.prompt,
            iteration=iteration,
            max_iterations=session.max_iterations,
            view=self.memory.snapshot(),
            previous_results=session.previous_results,
            assistance_response=assistance,
            loop_warning=session.loop_guard.pending_warning,
            session_files=session.session_files,
            exclude_tools=["spawn"] if spawn_hidden else None,
        )

        return {
            "system_prompt": self.context_manager.render_system_prompt(data),
            "task_text": self.context_manager.render_task(data),
            "consumed_assistance_id": consumed_id,
            "scratchpad_before": self.memory.scratchpad,
        }

    async def call_model_node(self, state: IterationState) -> Dict[str, Any]:
        """Invoke the language model"""

        session = self.session
        request = ModelRequest(system=state["system_prompt"], task=state["task_text"], model=session.model)

        try:
            with self.tracer.iteration_span(session.id, state["iteration"], session.model) as span:
                raw = await asyncio.wait_for(
                    self.model_client.complete(request),
                    timeout=self.settings.llm_timeout_seconds,
                )
                self.tracer.record_output(span, raw[:2000], response_length=len(raw))
        except asyncio.TimeoutError:
            timeout = self.settings.llm_timeout_seconds
            logger.warning("Model call timed out", iteration=state["iteration"], timeout=timeout)
            return {"failure": f"Model call timed out after {timeout}s"}
        except TransportError as e:
            logger.warning("Model transport failure", iteration=state["iteration"], error=str(e))
            return {"failure": str(e)}
        except Exception as e:
            logger.exception("Model call raised", iteration=state["iteration"])
            return {"failure": f"Model call failed: {e}"}

        return {"raw_response": raw}

    async def parse_response_node(self, state: IterationState) -> Dict[str, Any]:
        """Decode the raw model text"""

        decoded = decode_agent_response(state["raw_response"] or "")
        if isinstance(decoded, ParseFailure):
            error = decoded.as_error()
            logger.warning("Failed to parse model response", iteration=state["iteration"], reason=decoded.reason)
            return {
                "failure": str(error),
                "parse_diagnostics": decoded.diagnostics(),
            }

        response = decoded.response
        limit = self.settings.max_tool_calls_per_iteration
        if len(response.tool_calls) > limit:
            logger.warning(
                "Truncating tool calls",
                iteration=state["iteration"],
                requested=len(response.tool_calls),
                limit=limit,
            )
            response.tool_calls = response.tool_calls[:limit]

        return {"response": response}

    async def record_failure_node(self, state: IterationState) -> Dict[str, Any]:
        """Terminal error for a transport or decode failure"""

        session = self.session
        session.error = state["failure"]
        session.raw_data.append(IterationRecord(
            iteration=state["iteration"],
            model=session.model,
            system_prompt_length=len(state["system_prompt"]),
            scratchpad_length=len(self.memory.scratchpad),
            blackboard_entries=self.memory.blackboard_size,
            previous_results_count=len(session.previous_results),
            raw_response=state.get("raw_response") or "",
            parsed=False,
            parse_error=state.get("parse_diagnostics"),
            error_message=state["failure"],
        ))
        self._transition(SessionStatus.ERROR, StopReason.ERROR, reason=state["failure"])
        return self._stop_update()

    async def dispatch_tools_node(self, state: IterationState) -> Dict[str, Any]:
        """Dispatch the response's tool calls

        Consecutive remote calls run concurrently. A local call runs alone and
        its mutations are applied before the next call is resolved.
        """

        session = self.session
        iteration = state["iteration"]
        calls = state["response"].tool_calls

        records = [ToolCallRecord(tool=c.tool, params=c.params, iteration=iteration) for c in calls]
        session.tool_calls.extend(records)

        results: List[Optional[DispatchResult]] = [None] * len(calls)
        assistance_request: Optional[AssistanceRequest] = None

        index = 0
        while index < len(calls):
            if self.dispatcher.is_local(calls[index].tool):
                result, requested = await self._run_local(calls[index], records[index], iteration)
                results[index] = result
                assistance_request = assistance_request or requested
                index += 1
                continue

            end = index
            while end < len(calls) and not self.dispatcher.is_local(calls[end].tool):
                end += 1
            view = self.memory.snapshot()
            batch = await asyncio.gather(*(
                self._run_remote(calls[k], records[k], iteration, view) for k in range(index, end)
            ))
            results[index:end] = batch
            index = end

        tool_results = []
        for call, result in zip(calls, results):
            tool_results.append(await self._to_tool_result(call, result, iteration))

        return {
            "dispatch_results": results,
            "tool_results": tool_results,
            "assistance_request": assistance_request,
        }

    async def apply_memory_node(self, state: IterationState) -> Dict[str, Any]:
        """Write artifacts and the blackboard entry, then run the Loop Guard"""

        session = self.session
        iteration = state["iteration"]
        response = state["response"]

        # The warning was shown to this iteration
        LoopGuard.take_warning(session.loop_guard)

        titles = []
        for draft in response.artifacts:
            await self.memory.add_artifact(Artifact(
                type=draft.type,
                title=draft.title,
                content=draft.content,
                description=draft.description,
                size=len(draft.content),
                iteration=iteration,
            ))
            titles.append(draft.title)

        activity = IterationActivity(
            tool_names=[c.tool for c in response.tool_calls],
            artifact_titles=titles,
            scratchpad_changed=self.memory.scratchpad != state["scratchpad_before"],
        )
        history = [e for e in session.memory.blackboard if e.iteration < iteration]
        outcome = self.loop_guard.evaluate(
            response.blackboard_entry, history, iteration, activity, session.loop_guard
        )
        for entry in outcome.entries:
            await self.memory.append_blackboard(entry)

        agent_logger.log_context_update(
            session_id=session.id,
            context_type="blackboard",
            action="append",
            details={
                "iteration": iteration,
                "entries": len(outcome.entries),
                "duplicate": outcome.duplicate_of is not None,
                "auto": outcome.auto_added,
            },
        )

        text = response.reasoning or response.message_to_user
        if text:
            session.add_message("assistant", text, iteration)

        return {
            "duplicate_entry": outcome.duplicate_of is not None,
            "message_to_user": response.message_to_user,
        }

    async def evaluate_node(self, state: IterationState) -> Dict[str, Any]:
        """Advance the counter and apply the response status"""

        session = self.session
        iteration = state["iteration"]
        response = state["response"]

        session.current_iteration = iteration
        session.previous_results = state["tool_results"]
        session.raw_data.append(IterationRecord(
            iteration=iteration,
            model=session.model,
            system_prompt_length=len(state["system_prompt"]),
            scratchpad_length=len(self.memory.scratchpad),
            blackboard_entries=self.memory.blackboard_size,
            previous_results_count=len(state["tool_results"]),
            raw_response=state["raw_response"] or "",
            parsed=True,
            tool_results=state["tool_results"],
        ))
        agent_logger.log_iteration(
            session_id=session.id,
            iteration=iteration,
            max_iterations=session.max_iterations,
            status=response.status.value,
            tool_calls=[c.tool for c in response.tool_calls],
            duplicate_entry=state["duplicate_entry"],
        )

        requested = state["assistance_request"]
        if requested is not None:
            session.assistance_request = requested
            self._transition(SessionStatus.NEEDS_ASSISTANCE, StopReason.NEEDS_ASSISTANCE, reason="tool request")
            return self._stop_update()

        if response.status == ResponseStatus.COMPLETED:
            await self._complete(response)
            return self._stop_update()

        if response.status == ResponseStatus.NEEDS_ASSISTANCE:
            session.assistance_request = AssistanceRequest(
                question=response.message_to_user or response.reasoning or "The agent needs your input to continue.",
                context=response.reasoning or None,
            )
            self._transition(SessionStatus.NEEDS_ASSISTANCE, StopReason.NEEDS_ASSISTANCE, reason="model request")
            return self._stop_update()

        if response.status == ResponseStatus.ERROR:
            session.error = response.message_to_user or response.reasoning or "Agent reported an error"
            self._transition(SessionStatus.ERROR, StopReason.ERROR, reason="model error")
            return self._stop_update()

        return {"outcome": CONTINUE, "status": session.status.value}

    async def finish_iteration_node(self, state: IterationState) -> Dict[str, Any]:
        """Clear the consumed assistance answer and persist"""

        session = self.session
        consumed = state.get("consumed_assistance_id")
        request = session.assistance_request
        if consumed and request is not None and request.id == consumed:
            session.assistance_request = None

        session.touch()
        await self.store.save(session)
        return {}

    # Routing

    def route_on_outcome(self, state: IterationState) -> Literal["continue", "stop"]:
        return CONTINUE if state.get("outcome") == CONTINUE else STOP

    def route_on_failure(self, state: IterationState) -> Literal["ok", "failure"]:
        return "failure" if state.get("failure") else "ok"

    # Helpers

    def _fresh_state(self, iteration: int) -> Dict[str, Any]:
        return {
            "iteration": iteration,
            "system_prompt": "",
            "task_text": "",
            "consumed_assistance_id": None,
            "scratchpad_before": "",
            "raw_response": None,
            "response": None,
            "failure": None,
            "parse_diagnostics": None,
            "dispatch_results": [],
            "tool_results": [],
            "assistance_request": None,
            "duplicate_entry": False,
            "message_to_user": None,
            "status": self.session.status.value,
            "stop_reason": None,
            "error": None,
            "outcome": STOP,
        }

    def _stop_update(self) -> Dict[str, Any]:
        session = self.session
        update = {
            "outcome": STOP,
            "status": session.status.value,
            "stop_reason": session.stop_reason.value if session.stop_reason else None,
            "error": session.error,
        }
        if session.status == SessionStatus.NEEDS_ASSISTANCE:
            update["assistance_request"] = session.assistance_request
        return update

    def _check_iteration_cap(self):
        session = self.session
        if session.current_iteration >= session.max_iterations:
            raise IterationLimitExceeded(session.current_iteration, session.max_iterations)

    def _ensure_idle(self):
        if self.is_running:
            raise SessionBusyError(self.session.id)

    def _transition(self, status: SessionStatus, stop_reason: Optional[StopReason], reason: Optional[str] = None):
        session = self.session
        previous = session.status
        session.update_status(status)
        session.stop_reason = stop_reason
        agent_logger.log_workflow_transition(
            session_id=session.id,
            from_status=previous.value,
            to_status=status.value,
            reason=reason,
            state_summary={"iteration": session.current_iteration},
        )

    def _tool_context(self, iteration: int, view: MemoryView) -> ToolContext:
        session = self.session
        return ToolContext(
            session_id=session.id,
            cache_scope=session.parent_id or session.id,
            prompt=session.prompt,
            iteration=iteration,
            view=view,
            session_files=session.session_files,
            is_child=self.is_child,
            spawn_enabled=self.child_coordinator is not None,
            max_children=self.settings.max_children,
            child_max_iterations=self.settings.child_max_iterations,
        )

    async def _execute_call(
        self,
        call: ToolCallRequest,
        record: ToolCallRecord,
        iteration: int,
        view: MemoryView
    ) -> DispatchResult:
        record.status = ToolStatus.EXECUTING
        resolved = resolve_references(call.params, view)
        for line in summarize_resolutions(call.params, resolved):
            logger.debug("Resolved reference", tool=call.tool, detail=line)

        with self.tracer.tool_span(call.tool, call.params) as span:
            result = await self.dispatcher.dispatch(call.tool, resolved, self._tool_context(iteration, view))
            self.tracer.record_output(
                span, result.result if result.success else result.error,
                success=result.success, cached=result.cached,
            )
        return result

    async def _run_remote(
        self,
        call: ToolCallRequest,
        record: ToolCallRecord,
        iteration: int,
        view: MemoryView
    ) -> DispatchResult:
        result = await self._execute_call(call, record, iteration, view)
        self._finish_record(record, result)
        return result

    async def _run_local(
        self,
        call: ToolCallRequest,
        record: ToolCallRecord,
        iteration: int
    ) -> Tuple[DispatchResult, Optional[AssistanceRequest]]:
        result = await self._execute_call(call, record, iteration, self.memory.snapshot())
        requested = None

        for mutation in result.mutations:
            if isinstance(mutation, AddArtifact):
                artifact = mutation.artifact.model_copy(update={"iteration": iteration})
                await self.memory.add_artifact(artifact)
            elif isinstance(mutation, AppendBlackboard):
                await self.memory.append_blackboard(BlackboardEntry(
                    category=mutation.category,
                    content=mutation.content,
                    data=mutation.data,
                    iteration=iteration,
                    tools=[call.tool],
                    source=EntrySource.TOOL,
                ))
            elif isinstance(mutation, SetScratchpad):
                await self.memory.set_scratchpad(mutation.content)
            elif isinstance(mutation, RequestAssistance):
                requested = requested or mutation.request
            elif isinstance(mutation, SpawnChildren):
                try:
                    result.result = await self._spawn(mutation.children)
                except ToolExecutionError as e:
                    result.success = False
                    result.error = e.message

        self._finish_record(record, result)
        return result, requested

    async def _spawn(self, children: List[ChildSpec]) -> Dict[str, Any]:
        if self.child_coordinator is None:
            raise ToolExecutionError("spawn", "Child agents are not available in this session")

        infos = await self.child_coordinator.run_children(self.session, self.memory, children)
        completed = sum(1 for info in infos if info.status == SessionStatus.COMPLETED)
        return {
            "spawned": len(infos),
            "completed": completed,
            "children": [info.get_info() for info in infos],
        }

    def _create_child_engine(self, child: Session) -> "SessionEngine":
        return SessionEngine(
            child,
            self.model_client,
            self.dispatcher,
            self.store,
            settings=self.settings,
            tracer=self.tracer,
            is_child=True,
        )

    @staticmethod
    def _finish_record(record: ToolCallRecord, result: DispatchResult):
        record.status = ToolStatus.COMPLETED if result.success else ToolStatus.ERROR
        record.result = result.result if result.success else None
        record.error = result.error
        record.end_time = datetime.utcnow()

    async def _to_tool_result(self, call: ToolCallRequest, result: DispatchResult, iteration: int) -> ToolResult:
        """Tool result as shown to the next iteration, saving ``saveAs`` results"""

        save_as = call.params.get("saveAs")
        if not result.success or not isinstance(save_as, str) or not save_as.strip():
            return ToolResult(tool=call.tool, success=result.success, result=result.result, error=result.error)

        name = save_as.strip()
        params = {k: v for k, v in call.params.items() if k != "saveAs"}
        attribute = await self.memory.set_attribute(name, call.tool, result.result, params, iteration)
        await self.memory.append_scratchpad(f"## {name} (from {call.tool})\n{{{{attribute:{name}}}}}")

        return ToolResult(
            tool=call.tool,
            success=True,
            result={
                "_savedAsAttribute": name,
                "_message": (
                    f"Result saved as attribute '{name}' ({attribute.size} chars). "
                    f"Use read_attribute or {{{{attribute:{name}}}}} to access it."
                ),
            },
        )

    async def _complete(self, response: AgentResponse):
        """Build the final report and mark the session completed"""

        session = self.session
        draft = response.final_report or FinalReportDraft()

        if not session.artifacts:
            content = self._summary_content(response, draft)
            if len(content) > 20:
                await self.memory.add_artifact(Artifact(
                    title="Task Summary",
                    content=content,
                    description="Auto-generated summary from agent completion",
                    size=len(content),
                    iteration=session.current_iteration,
                ))
                logger.info("Created summary artifact")

        ids_by_title = {a.title: a.id for a in session.artifacts}
        if draft.artifacts_created:
            reported = [
                ReportedArtifact(title=a.title, description=a.description, artifact_id=ids_by_title.get(a.title, ""))
                for a in draft.artifacts_created
            ]
        else:
            reported = [
                ReportedArtifact(title=a.title, description=a.description or "", artifact_id=a.id)
                for a in session.artifacts
            ]

        tools_used = draft.tools_used or list(dict.fromkeys(r.tool for r in session.tool_calls))
        elapsed = datetime.utcnow() - session.start_time

        session.final_report = FinalReport(
            summary=draft.summary or "Task completed",
            tools_used=tools_used,
            artifacts_created=reported,
            key_findings=draft.key_findings,
            recommendations=draft.recommendations,
            total_iterations=session.current_iteration,
            total_time_ms=int(elapsed.total_seconds() * 1000),
        )
        self._transition(SessionStatus.COMPLETED, StopReason.COMPLETED, reason="model completed")

    @staticmethod
    def _summary_content(response: AgentResponse, draft: FinalReportDraft) -> str:
        parts = []
        if draft.summary:
            parts.append(f"## Summary\n\n{draft.summary}")
        if draft.key_findings:
            parts.append("## Key Findings\n\n" + "\n".join(f"- {f}" for f in draft.key_findings))
        if response.message_to_user:
            parts.append(f"## Agent Response\n\n{response.message_to_user}")
        return "\n\n".join(parts) or response.reasoning or "Task completed successfully."
