from typing import Protocol
from pydantic import BaseModel
import asyncio

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
import structlog

from freeagent.domain.errors import TransportError

logger = structlog.get_logger(__name__)


class ModelRequest(BaseModel):
    """One model call"""
    system: str
    task: str
    model: str


class ModelClient(Protocol):
    """Language-model boundary: returns the raw response text"""

    async def complete(self, request: ModelRequest) -> str: ...


class ChatModelClient:
    """Adapts a LangChain chat model to ModelClient"""

    def __init__(self, chat_model: BaseChatModel, timeout: float = 120.0):
        self.chat_model = chat_model
        self.timeout = timeout

    async def complete(self, request: ModelRequest) -> str:
        messages = [
            SystemMessage(content=request.system),
            HumanMessage(content=request.task),
        ]

        try:
            message = await asyncio.wait_for(self.chat_model.ainvoke(messages), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise TransportError(f"Model call timed out after {self.timeout}s")
        except Exception as e:
            logger.warning("Model call failed", model=request.model, error=str(e))
            raise TransportError(f"Model call failed: {e}") from e

        content = message.content
        if isinstance(content, list):
            # Multi-part content: keep the text parts
            content = "".join(
                part if isinstance(part, str) else part.get("text", "")
                for part in content
            )
        if not content:
            raise TransportError("No response from model")
        return content
