"""Shared fixtures: a scripted model, a fake remote executor and engine wiring."""

import json
from typing import Any, Callable, Dict, List, Optional, Union
from unittest.mock import AsyncMock

import pytest

from freeagent.domain.context.memory.tool_result_cache import ToolResultCache
from freeagent.domain.context.state.session_store import InMemorySessionStore
from freeagent.domain.llm.model_client import ModelRequest
from freeagent.domain.models.session import Session
from freeagent.domain.orchestration.core.session_engine import SessionEngine
from freeagent.domain.tool.remote_executor import ExecutorResult
from freeagent.domain.tool.tool_executor import ToolDispatcher
from freeagent.infrastructure.config.settings import FreeAgentSettings


def agent_reply(
    status: str = "in_progress",
    tool_calls: Optional[List[Dict[str, Any]]] = None,
    entry: Optional[str] = "Looked at the task and planned the next step",
    category: str = "plan",
    **extra: Any
) -> str:
    """Serialized model response"""
    payload: Dict[str, Any] = {
        "reasoning": extra.pop("reasoning", "Working on it"),
        "tool_calls": tool_calls or [],
        "status": status,
    }
    if entry is not None:
        payload["blackboard_entry"] = {"category": category, "content": entry}
    payload.update(extra)
    return json.dumps(payload)


class ScriptedModelClient:
    """Returns queued replies in order; an exception in the queue is raised"""

    def __init__(self, replies: List[Union[str, Exception]]):
        self.replies = list(replies)
        self.requests: List[ModelRequest] = []
        self.on_complete: Optional[Callable[[], None]] = None

    async def complete(self, request: ModelRequest) -> str:
        self.requests.append(request)
        if not self.replies:
            raise AssertionError("Model called more times than scripted")
        reply = self.replies.pop(0)
        if self.on_complete is not None:
            self.on_complete()
        if isinstance(reply, Exception):
            raise reply
        return reply


class RoutingModelClient:
    """Answers each request through a function of the request"""

    def __init__(self, route: Callable[[ModelRequest], str]):
        self.route = route
        self.requests: List[ModelRequest] = []

    async def complete(self, request: ModelRequest) -> str:
        self.requests.append(request)
        return self.route(request)


@pytest.fixture
def settings():
    return FreeAgentSettings(
        _env_file=None,
        tool_base_url="http://tools.test/functions/v1",
        max_iterations=10,
        child_max_iterations=3,
        log_format="console",
    )


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def remote_executor():
    """Fake RemoteToolExecutor; every call succeeds unless reconfigured"""
    mock = AsyncMock()
    mock.execute.return_value = ExecutorResult(success=True, result={"ok": True})
    return mock


@pytest.fixture
def dispatcher(remote_executor):
    return ToolDispatcher(remote_executor=remote_executor, cache=ToolResultCache(ttl=60))


@pytest.fixture
def make_engine(settings, store, dispatcher):
    """Build an engine for a new session around a model client"""

    def _make(model_client, prompt: str = "Find the answer", **session_fields) -> SessionEngine:
        session = Session(prompt=prompt, model="test-model", **session_fields)
        return SessionEngine(session, model_client, dispatcher, store, settings=settings)

    return _make
