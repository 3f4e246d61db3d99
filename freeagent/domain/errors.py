from typing import Optional


class FreeAgentError(Exception):
    """Base error for the agent engine"""


class TransportError(FreeAgentError):
    """Language-model or remote tool call failed at the network layer"""

    def __init__(self, message: str, source: str = "llm"):
        super().__init__(message)
        self.source = source


class ParseError(FreeAgentError):
    """Model response could not be decoded into an agent response"""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class ToolExecutionError(FreeAgentError):
    """A single tool call failed"""

    def __init__(self, tool: str, message: str):
        super().__init__(f"{tool}: {message}")
        self.tool = tool
        self.message = message


class IterationLimitExceeded(FreeAgentError):
    """Iteration counter reached the session's cap"""

    def __init__(self, iteration: int, max_iterations: int):
        super().__init__(f"Iteration limit reached ({iteration}/{max_iterations})")
        self.iteration = iteration
        self.max_iterations = max_iterations


class SessionNotFoundError(FreeAgentError):
    """No session stored under the given identifier"""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionBusyError(FreeAgentError):
    """Another loop is already advancing this session"""

    def __init__(self, session_id: str):
        super().__init__(f"Session is already running: {session_id}")
        self.session_id = session_id


class InvalidSessionStateError(FreeAgentError):
    """Operation not allowed in the session's current status"""

    def __init__(self, session_id: str, status: str, expected: Optional[str] = None):
        message = f"Session {session_id} is '{status}'"
        if expected:
            message += f", expected '{expected}'"
        super().__init__(message)
        self.session_id = session_id
        self.status = status
