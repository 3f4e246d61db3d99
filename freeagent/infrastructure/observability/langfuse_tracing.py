from typing import Dict, Any, Iterator, Optional
from contextlib import contextmanager

from langfuse import Langfuse
import structlog

logger = structlog.get_logger(__name__)


class SessionTracer:
    """Langfuse spans per iteration and per tool call, no-op without a client"""

    def __init__(self, client: Optional[Langfuse] = None):
        self.langfuse = client

    @classmethod
    def from_settings(cls, settings) -> "SessionTracer":
        if not settings.tracing_enabled:
            return cls()

        client = Langfuse(
            public_key=settings.langfuse_public_key,
            secret_key=settings.langfuse_secret_key,
            host=settings.langfuse_host,
        )
        logger.info("Langfuse tracing enabled", host=settings.langfuse_host)
        return cls(client)

    @property
    def enabled(self) -> bool:
        return self.langfuse is not None

    @contextmanager
    def iteration_span(self, session_id: str, iteration: int, model: str) -> Iterator[Optional[Any]]:
        """Span covering one loop iteration"""

        if self.langfuse is None:
            yield None
            return

        with self.langfuse.start_as_current_span(
            name="agent_iteration",
            metadata={"iteration": iteration, "model": model},
        ) as span:
            span.update_trace(
                session_id=session_id,
                tags=["freeagent", "iteration"],
            )
            yield span

    @contextmanager
    def tool_span(self, tool: str, params: Dict[str, Any]) -> Iterator[Optional[Any]]:
        """Span covering one tool dispatch"""

        if self.langfuse is None:
            yield None
            return

        with self.langfuse.start_as_current_span(
            name="tool_execution",
            input=params,
            metadata={"tool_name": tool},
        ) as span:
            yield span

    @staticmethod
    def record_output(span: Optional[Any], output: Any, **metadata):
        if span is not None:
            span.update(output=output, metadata=metadata or None)

    def flush(self):
        if self.langfuse is not None:
            self.langfuse.flush()
