from typing import Dict, Any, Optional
from pydantic import BaseModel

import httpx
import structlog

logger = structlog.get_logger(__name__)


class ExecutorResult(BaseModel):
    """Normalized executor outcome"""
    success: bool
    result: Any = None
    error: Optional[str] = None


class RemoteToolExecutor:
    """Invokes remote tool operations over HTTP"""

    def __init__(
        self,
        base_url: str,
        auth_token: Optional[str] = None,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def execute(self, operation: str, body: Dict[str, Any]) -> ExecutorResult:
        """POST a request body to a remote operation"""

        url = f"{self.base_url}/{operation}"

        try:
            response = await self._get_client().post(
                url, json=body, headers=self._headers(), timeout=self.timeout
            )
        except httpx.TimeoutException:
            logger.warning("Remote tool timed out", operation=operation, timeout=self.timeout)
            return ExecutorResult(success=False, error=f"Tool call timed out after {self.timeout}s")
        except httpx.HTTPError as e:
            logger.warning("Remote tool request failed", operation=operation, error=str(e))
            return ExecutorResult(success=False, error=f"Tool request failed: {e}")

        return self._normalize(operation, response)

    def _normalize(self, operation: str, response: httpx.Response) -> ExecutorResult:
        try:
            payload = response.json()
        except ValueError:
            payload = response.text

        if response.status_code >= 400:
            message = payload.get("error") if isinstance(payload, dict) else None
            return ExecutorResult(
                success=False,
                error=message or f"HTTP {response.status_code}: {str(payload)[:200]}",
            )

        if isinstance(payload, dict):
            if payload.get("success") is False or ("error" in payload and payload["error"] and "success" not in payload):
                return ExecutorResult(success=False, error=str(payload.get("error") or "Tool reported failure"))
            if "success" in payload and "result" in payload:
                return ExecutorResult(success=True, result=payload["result"])

        logger.debug("Remote tool completed", operation=operation, status_code=response.status_code)
        return ExecutorResult(success=True, result=payload)

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
