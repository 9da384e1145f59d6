"""
SessionRepository interface for pluggable session storage.

The round processor never reaches into ambient global state: it takes a
session value in and returns a session value out. Keeping sessions between
rounds is the job of a repository owned by the caller.

Persisted layout per session id:
- one ClassroomSession snapshot (overwritten after every round)
- one append-only list of RoundEntry records (the round history)

Two included implementations:
1. InMemorySessionRepository - dict-based, data lost on exit (testing, notebooks)
2. JsonSessionRepository - one directory per session, human-readable files

Usage pattern:
    repository = InMemorySessionRepository()
    await repository.initialize()
    await repository.save_session(session)
    await repository.append_round(session.session_id, entry)
    await repository.close()
"""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from .schemas import ClassroomSession, RoundEntry


class SessionRepository(ABC):
    """Abstract base class for classroom session storage.

    All methods are async so database or network backends can be dropped in
    without changing the runner. Implementations must hand out copies: a
    session returned by ``get_session`` is the caller's to mutate.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (open connections, create directories)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[ClassroomSession]:
        """
        Retrieve the latest snapshot for a session.

        Args:
            session_id: Session identifier

        Returns:
            ClassroomSession if found, None otherwise
        """
        pass

    @abstractmethod
    async def save_session(self, session: ClassroomSession) -> None:
        """
        Store (create or overwrite) the snapshot for ``session.session_id``.

        Args:
            session: Snapshot to store
        """
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """
        Delete a session snapshot and its round history.

        Deleting an unknown session is a no-op.
        """
        pass

    @abstractmethod
    async def append_round(self, session_id: str, entry: RoundEntry) -> None:
        """
        Append one record to the session's round history.

        Args:
            session_id: Session identifier
            entry: Completed round summary
        """
        pass

    @abstractmethod
    async def get_history(self, session_id: str) -> List[RoundEntry]:
        """
        Return the session's round history, oldest first.

        Unknown sessions have an empty history.
        """
        pass

    @abstractmethod
    async def list_sessions(self) -> List[str]:
        """Return the ids of all stored sessions."""
        pass


class InMemorySessionRepository(SessionRepository):
    """Session storage in process memory.

    Storage structure:
    - sessions: Dict[session_id, ClassroomSession]
    - histories: Dict[session_id, List[RoundEntry]]

    Snapshots are deep-copied on the way in and out so callers can never
    mutate the stored copy by accident.
    """

    def __init__(self):
        self.sessions: Dict[str, ClassroomSession] = {}
        self.histories: Dict[str, List[RoundEntry]] = {}

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        # Data is kept so callers can read results after the run
        pass

    async def get_session(self, session_id: str) -> Optional[ClassroomSession]:
        session = self.sessions.get(session_id)
        return session.model_copy(deep=True) if session is not None else None

    async def save_session(self, session: ClassroomSession) -> None:
        self.sessions[session.session_id] = session.model_copy(deep=True)

    async def delete_session(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)
        self.histories.pop(session_id, None)

    async def append_round(self, session_id: str, entry: RoundEntry) -> None:
        self.histories.setdefault(session_id, []).append(entry)

    async def get_history(self, session_id: str) -> List[RoundEntry]:
        return list(self.histories.get(session_id, []))

    async def list_sessions(self) -> List[str]:
        return list(self.sessions)


class JsonSessionRepository(SessionRepository):
    """File-based session storage.

    Directory layout::

        {base_path}/
          {session_id}/
            session.json    # latest ClassroomSession snapshot
            history.jsonl   # one RoundEntry per line, append-only

    File I/O runs in a worker thread so the event loop is never blocked.
    """

    SESSION_FILE = "session.json"
    HISTORY_FILE = "history.jsonl"

    def __init__(self, base_path: Path | str = "classroom_sessions"):
        self.base_path = Path(base_path)

    async def initialize(self) -> None:
        await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)

    async def close(self) -> None:
        pass

    def _session_dir(self, session_id: str) -> Path:
        if not session_id or "/" in session_id or "\\" in session_id or session_id in (".", ".."):
            raise ValueError(f"Unsafe session id for file storage: {session_id!r}")
        return self.base_path / session_id

    async def get_session(self, session_id: str) -> Optional[ClassroomSession]:
        path = self._session_dir(session_id) / self.SESSION_FILE
        if not path.exists():
            return None
        raw = await asyncio.to_thread(path.read_text, "utf-8")
        return ClassroomSession.model_validate_json(raw)

    async def save_session(self, session: ClassroomSession) -> None:
        session_dir = self._session_dir(session.session_id)
        await asyncio.to_thread(session_dir.mkdir, parents=True, exist_ok=True)
        payload = session.model_dump_json(indent=2)
        tmp_path = session_dir / f"{self.SESSION_FILE}.tmp"
        await asyncio.to_thread(tmp_path.write_text, payload, "utf-8")
        # Replace in one step so readers never see a partially written snapshot
        await asyncio.to_thread(tmp_path.replace, session_dir / self.SESSION_FILE)

    async def delete_session(self, session_id: str) -> None:
        session_dir = self._session_dir(session_id)

        def _remove() -> None:
            if not session_dir.exists():
                return
            for child in session_dir.iterdir():
                child.unlink()
            session_dir.rmdir()

        await asyncio.to_thread(_remove)

    async def append_round(self, session_id: str, entry: RoundEntry) -> None:
        session_dir = self._session_dir(session_id)
        line = entry.model_dump_json() + "\n"

        def _append() -> None:
            session_dir.mkdir(parents=True, exist_ok=True)
            with open(session_dir / self.HISTORY_FILE, "a", encoding="utf-8") as handle:
                handle.write(line)

        await asyncio.to_thread(_append)

    async def get_history(self, session_id: str) -> List[RoundEntry]:
        path = self._session_dir(session_id) / self.HISTORY_FILE
        if not path.exists():
            return []
        raw = await asyncio.to_thread(path.read_text, "utf-8")
        return [
            RoundEntry.model_validate(json.loads(line))
            for line in raw.splitlines()
            if line.strip()
        ]

    async def list_sessions(self) -> List[str]:
        if not self.base_path.exists():
            return []
        return sorted(
            child.name
            for child in self.base_path.iterdir()
            if (child / self.SESSION_FILE).exists()
        )
