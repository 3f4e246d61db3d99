"""
Runtime configuration loaded from the environment.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class FreeAgentSettings(BaseSettings):
    """Engine and service settings with environment variable support."""

    # Model
    default_model: str = Field(default="gemini-2.5-flash", description="Model used when a session names none")
    llm_timeout_seconds: float = Field(default=120.0, description="Timeout for one model call")

    # Iteration loop
    max_iterations: int = Field(default=50, description="Default per-session iteration cap")
    max_tool_calls_per_iteration: int = Field(default=5, description="Tool calls dispatched per iteration")
    blackboard_window: Optional[int] = Field(default=None, description="Iterations of blackboard shown to the model, None for all")
    scratchpad_context_chars: int = Field(default=50000, description="Scratchpad characters included in context")
    tool_result_context_chars: int = Field(default=8000, description="Characters per previous tool result in context")

    # Tools
    tool_base_url: str = Field(default="http://localhost:54321/functions/v1", description="Base URL of remote tool operations")
    tool_auth_token: Optional[str] = Field(default=None, description="Bearer token for remote tools")
    tool_timeout_seconds: float = Field(default=60.0, description="Timeout for one remote tool call")
    tool_cache_ttl_seconds: int = Field(default=300, description="TTL of cached tool results")

    # Loop Guard
    loop_guard_window: int = Field(default=5, description="Earlier entries compared against a new one")
    loop_guard_similarity: float = Field(default=0.8, description="Word overlap treated as a duplicate")
    loop_guard_min_entry_chars: int = Field(default=10, description="Shorter entries are replaced by auto entries")

    # Child agents
    spawn_enabled: bool = Field(default=True, description="Allow the spawn tool")
    max_children: int = Field(default=100, description="Children allowed per spawn call")
    max_concurrent_children: int = Field(default=5, description="Children running at once")
    child_max_iterations: int = Field(default=20, description="Iteration cap of a child without its own")

    # Server
    host: str = Field(default="0.0.0.0", description="Bind address of the HTTP server")
    port: int = Field(default=8000, description="Port of the HTTP server")

    # Storage
    session_store_path: Optional[str] = Field(default=None, description="Directory for JSON session files, None for memory")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="json or console")
    environment: str = Field(default="development", description="Deployment environment name")
    service_version: str = Field(default="0.1.0", description="Reported service version")

    # Langfuse
    langfuse_public_key: Optional[str] = Field(default=None, description="Langfuse public key")
    langfuse_secret_key: Optional[str] = Field(default=None, description="Langfuse secret key")
    langfuse_host: Optional[str] = Field(default=None, description="Langfuse host URL")

    model_config = {
        "env_file": ".env",
        "env_prefix": "FREEAGENT_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @property
    def tracing_enabled(self) -> bool:
        return bool(self.langfuse_public_key and self.langfuse_secret_key)


@lru_cache()
def get_settings() -> FreeAgentSettings:
    """Process-wide settings instance."""
    return FreeAgentSettings()
