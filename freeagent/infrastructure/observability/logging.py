import structlog
import logging
import sys
from typing import Dict, Any, List, Optional
from datetime import datetime

MAX_LOGGED_VALUE_CHARS = 1000


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "freeagent",
    environment: str = "development",
    version: str = "unknown"
) -> None:
    """Setup structured logging configuration"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    # Engine context (session, iteration, child) comes in through contextvars
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        add_service_context,
        truncate_long_values,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=environment,
        version=version
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Drop empty engine context keys, keep a timestamp on every entry"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.utcnow().isoformat()

    for key in ("child_name", "iteration"):
        if key in event_dict and event_dict[key] is None:
            del event_dict[key]

    return event_dict


def truncate_long_values(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Cap string fields so tool payloads and model text stay readable"""

    for key, value in event_dict.items():
        if key != "event" and isinstance(value, str) and len(value) > MAX_LOGGED_VALUE_CHARS:
            event_dict[key] = f"{value[:MAX_LOGGED_VALUE_CHARS]}...[{len(value)} chars]"
    return event_dict


class AgentLogger:
    """Structured events for engine operations"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_iteration(
        self,
        session_id: str,
        iteration: int,
        max_iterations: int,
        status: str,
        tool_calls: List[str],
        duplicate_entry: bool = False
    ):
        """Log the outcome of one decoded iteration"""

        self.logger.info(
            "iteration_complete",
            session_id=session_id,
            iteration=iteration,
            max_iterations=max_iterations,
            status=status,
            tool_calls=tool_calls,
            duplicate_entry=duplicate_entry
        )

    def log_tool_execution(
        self,
        tool_name: str,
        session_id: str,
        iteration: int,
        params: Dict[str, Any],
        duration_ms: Optional[float] = None,
        success: bool = True,
        cached: bool = False,
        error: Optional[str] = None
    ):
        """Log one tool dispatch"""

        self.logger.info(
            "tool_execution",
            tool_name=tool_name,
            session_id=session_id,
            iteration=iteration,
            param_keys=sorted(params.keys()),
            duration_ms=duration_ms,
            success=success,
            cached=cached,
            error=error
        )

    def log_workflow_transition(
        self,
        session_id: str,
        from_status: str,
        to_status: str,
        reason: Optional[str] = None,
        state_summary: Optional[Dict[str, Any]] = None
    ):
        """Log session status transitions"""

        self.logger.info(
            "workflow_transition",
            session_id=session_id,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
            state_summary=state_summary or {}
        )

    def log_context_update(
        self,
        session_id: str,
        context_type: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log memory tier updates"""

        self.logger.info(
            "context_update",
            session_id=session_id,
            context_type=context_type,
            action=action,
            details=details or {}
        )

    def log_child_merge(
        self,
        parent_id: str,
        child_name: str,
        child_status: str,
        entries: int,
        attributes: int,
        artifacts: int
    ):
        """Log what a finished child contributed to its parent"""

        self.logger.info(
            "child_merge",
            session_id=parent_id,
            child=child_name,
            child_status=child_status,
            entries=entries,
            attributes=attributes,
            artifacts=artifacts
        )


agent_logger = AgentLogger("freeagent")


class MetricsCollector:
    """Tool latency and counters, emitted as debug log events"""

    def __init__(self):
        self.latency_counts: Dict[str, int] = {}
        self.latency_totals_ms: Dict[str, float] = {}
        self.counters: Dict[str, int] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        """Record operation latency"""

        samples = self.latency_counts.get(operation, 0) + 1
        self.latency_counts[operation] = samples
        self.latency_totals_ms[operation] = self.latency_totals_ms.get(operation, 0.0) + duration_ms

        agent_logger.logger.debug(
            "metric",
            metric_type="latency",
            operation=operation,
            duration_ms=duration_ms,
            samples=samples,
            mean_ms=self.latency_totals_ms[operation] / samples,
            tags=tags or {}
        )

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        """Increment a counter metric"""

        key = name
        if tags:
            key += "{" + ",".join(f"{k}={v}" for k, v in sorted(tags.items())) + "}"
        self.counters[key] = self.counters.get(key, 0) + value

        agent_logger.logger.debug(
            "metric",
            metric_type="counter",
            name=key,
            value=self.counters[key]
        )


metrics = MetricsCollector()
