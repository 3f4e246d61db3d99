from typing import Dict, List, Optional, Protocol
from pathlib import Path
import asyncio

import structlog

from freeagent.domain.errors import SessionNotFoundError
from freeagent.domain.models.session import Session

logger = structlog.get_logger(__name__)


class SessionStore(Protocol):
    """Persistence boundary for sessions"""

    async def save(self, session: Session) -> None: ...

    async def load(self, session_id: str) -> Session: ...

    async def list_ids(self) -> List[str]: ...

    async def delete(self, session_id: str) -> None: ...


class InMemorySessionStore:
    """Keeps session snapshots in process memory"""

    def __init__(self):
        self.sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def save(self, session: Session) -> None:
        """Store a snapshot of the session"""

        async with self._lock:
            self.sessions[session.id] = session.model_copy(deep=True)

    async def load(self, session_id: str) -> Session:
        """Load an independent copy of a stored session"""

        async with self._lock:
            session = self.sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            return session.model_copy(deep=True)

    async def list_ids(self) -> List[str]:
        async with self._lock:
            return list(self.sessions.keys())

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            self.sessions.pop(session_id, None)


class FileSessionStore:
    """One JSON document per session in a directory"""

    def __init__(self, directory: str):
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _path(self, session_id: str) -> Path:
        return self.directory / f"{session_id}.json"

    async def save(self, session: Session) -> None:
        """Write the session atomically"""

        payload = session.model_dump_json(indent=2)
        path = self._path(session.id)
        tmp_path = path.with_suffix(".json.tmp")

        def _write():
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(path)

        async with self._lock:
            await asyncio.to_thread(_write)

    async def load(self, session_id: str) -> Session:
        path = self._path(session_id)

        async with self._lock:
            if not path.exists():
                raise SessionNotFoundError(session_id)
            payload = await asyncio.to_thread(path.read_text, encoding="utf-8")

        return Session.model_validate_json(payload)

    async def list_ids(self) -> List[str]:
        async with self._lock:
            return sorted(p.stem for p in self.directory.glob("*.json"))

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            self._path(session_id).unlink(missing_ok=True)


def create_session_store(path: Optional[str] = None) -> SessionStore:
    """File-backed store when a path is configured, in-memory otherwise"""

    if path:
        logger.info("Using file session store", path=path)
        return FileSessionStore(path)
    return InMemorySessionStore()
