"""In-memory registry of live pairing sessions."""

import asyncio
from dataclasses import dataclass

from pairlink.domain.errors import DuplicateSessionError, NotFoundError
from pairlink.domain.sessions import PairingSession


@dataclass
class SessionRegistry:
    """Source of truth for session state.

    Inserts and removals are serialized by a registry-wide lock. Reads are
    lock-free; callers that mutate a record take the record's own lock.
    """

    _sessions: dict[str, PairingSession]
    _lock: asyncio.Lock

    def __init__(self) -> None:
        self._sessions = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    async def add(self, session: PairingSession) -> None:
        """Register a new session; ids must be unique among live sessions."""
        async with self._lock:
            if session.id in self._sessions:
                raise DuplicateSessionError(f"Session {session.id} already exists")
            self._sessions[session.id] = session

    def get(self, session_id: str) -> PairingSession | None:
        """Return a session by id, if present."""
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> PairingSession:
        """Return a session by id or raise ``NotFoundError``."""
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError("Session not found")
        return session

    async def remove(self, session_id: str) -> PairingSession | None:
        """Remove and return a session; ``None`` when it was already gone."""
        async with self._lock:
            return self._sessions.pop(session_id, None)

    def sessions(self) -> list[PairingSession]:
        """Return a stable copy of the live sessions."""
        return list(self._sessions.values())
