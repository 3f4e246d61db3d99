from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
import time

import structlog

from freeagent.domain.context.memory.tool_result_cache import ToolResultCache
from freeagent.domain.errors import ToolExecutionError
from freeagent.domain.tool.binary_content import base_tool_name
from freeagent.domain.tool.local_handlers import LocalToolHandlers, ToolContext
from freeagent.domain.tool.mutations import MemoryMutation
from freeagent.domain.tool.remote_executor import RemoteToolExecutor
from freeagent.domain.tool.tool_registry import ToolDefinition, ToolKind, ToolRegistry
from freeagent.domain.tool.tool_validator import ToolParameterValidator
from freeagent.infrastructure.observability.logging import MetricsCollector, agent_logger, metrics

logger = structlog.get_logger(__name__)


class DispatchResult(BaseModel):
    """Uniform outcome of one tool call"""
    tool: str
    success: bool
    result: Any = None
    error: Optional[str] = None
    mutations: List[MemoryMutation] = Field(default_factory=list)
    cached: bool = False
    duration_ms: float = 0.0


class ToolDispatcher:
    """Routes tool calls to the remote executor or a local handler"""

    def __init__(
        self,
        registry: Optional[ToolRegistry] = None,
        remote_executor: Optional[RemoteToolExecutor] = None,
        local_handlers: Optional[LocalToolHandlers] = None,
        cache: Optional[ToolResultCache] = None,
        metrics_collector: Optional[MetricsCollector] = None
    ):
        self.registry = registry or ToolRegistry()
        self.remote_executor = remote_executor
        self.local_handlers = local_handlers or LocalToolHandlers()
        self.cache = cache if cache is not None else ToolResultCache()
        self.metrics = metrics_collector or metrics

    def is_local(self, name: str) -> bool:
        return self.registry.is_local(name)

    async def dispatch(self, name: str, params: Dict[str, Any], context: ToolContext) -> DispatchResult:
        """Execute one tool call with already-resolved parameters"""

        started = time.perf_counter()
        result = await self._dispatch(name, params, context)
        result.duration_ms = round((time.perf_counter() - started) * 1000, 2)

        self.metrics.record_latency("tool_dispatch", result.duration_ms, {"tool": base_tool_name(name)})
        self.metrics.increment_counter(
            "tool_calls", tags={"tool": base_tool_name(name), "success": str(result.success).lower()}
        )
        agent_logger.log_tool_execution(
            tool_name=name,
            session_id=context.session_id,
            iteration=context.iteration,
            params=params,
            duration_ms=result.duration_ms,
            success=result.success,
            cached=result.cached,
            error=result.error,
        )
        return result

    async def _dispatch(self, name: str, params: Dict[str, Any], context: ToolContext) -> DispatchResult:
        tool = self.registry.get_tool(name)
        if tool is None:
            return DispatchResult(tool=name, success=False, error=f"Unknown tool: {name}")

        validation = ToolParameterValidator.validate_tool_call(tool, params)
        if not validation.is_valid:
            return DispatchResult(tool=name, success=False, error="; ".join(validation.errors))

        try:
            if tool.kind == ToolKind.LOCAL:
                return await self._execute_local(name, tool, params, context)
            return await self._execute_remote(name, tool, params, context)
        except ToolExecutionError as e:
            return DispatchResult(tool=name, success=False, error=e.message)
        except Exception as e:
            logger.exception("Tool execution raised", tool=name)
            return DispatchResult(tool=name, success=False, error=str(e) or type(e).__name__)

    async def _execute_local(
        self,
        name: str,
        tool: ToolDefinition,
        params: Dict[str, Any],
        context: ToolContext
    ) -> DispatchResult:
        handler = self.local_handlers.get(tool.name)
        if handler is None:
            return DispatchResult(tool=name, success=False, error=f"No handler registered for local tool: {tool.name}")

        outcome = await handler(params, context)
        return DispatchResult(
            tool=name,
            success=outcome.success,
            result=outcome.result,
            error=outcome.error,
            mutations=outcome.mutations if outcome.success else [],
        )

    async def _execute_remote(
        self,
        name: str,
        tool: ToolDefinition,
        params: Dict[str, Any],
        context: ToolContext
    ) -> DispatchResult:
        if self.remote_executor is None or not tool.operation:
            return DispatchResult(tool=name, success=False, error=f"Remote execution is not configured for {tool.name}")

        body = tool.build_request(params)
        scope = context.cache_scope or context.session_id

        if tool.cacheable:
            cached = await self.cache.get(scope, tool.name, body)
            if cached is not None:
                logger.info("Serving tool result from cache", tool=name)
                return DispatchResult(tool=name, success=True, result=cached, cached=True)

        outcome = await self.remote_executor.execute(tool.operation, body)
        if outcome.success and tool.cacheable:
            await self.cache.set(scope, tool.name, body, outcome.result)

        return DispatchResult(tool=name, success=outcome.success, result=outcome.result, error=outcome.error)
