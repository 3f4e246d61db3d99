from typing import Dict, Any, Optional
import asyncio
from datetime import datetime, timedelta
import json


def cache_key(tool: str, params: Dict[str, Any]) -> str:
    """Exact-match key for a tool call"""
    return f"{tool}:{json.dumps(params, sort_keys=True, default=str)}"


class ToolResultCache:
    """In-memory cache of expensive tool results with TTL

    Entries are grouped by scope, the id of the root session that produced
    them, so one session never sees another's results.
    """

    def __init__(self, ttl: int = 300):
        self.ttl = ttl
        self.cache: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def set(self, scope: str, tool: str, params: Dict[str, Any], value: Any) -> None:
        """Store a successful result"""

        async with self._lock:
            self.cache.setdefault(scope, {})[cache_key(tool, params)] = {
                "value": value,
                "expires_at": datetime.utcnow() + timedelta(seconds=self.ttl)
            }

    async def get(self, scope: str, tool: str, params: Dict[str, Any]) -> Optional[Any]:
        """Get a cached result if not expired"""

        async with self._lock:
            entries = self.cache.get(scope)
            if not entries:
                return None

            key = cache_key(tool, params)
            entry = entries.get(key)
            if entry is None:
                return None

            if datetime.utcnow() > entry["expires_at"]:
                del entries[key]
                return None

            return entry["value"]

    async def clear_scope(self, scope: str) -> int:
        """Drop everything cached for a session, returning how many entries went"""

        async with self._lock:
            return len(self.cache.pop(scope, {}))
