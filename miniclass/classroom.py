"""
Classroom runner: session lifecycle around the round processor.

The round processor is a pure snapshot-in, snapshot-out core. Classroom adds
the parts a teaching session needs around it:
- creating a baseline session from a roster of personas
- loading and saving snapshots through a SessionRepository
- serializing rounds per session (one round at a time for a given id)
- appending a RoundEntry to the history after every round
- notifying optional round listeners
"""

import asyncio
from typing import Callable, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from .history import build_round_entry
from .kpis import calculate_kpis
from .logging_utils import Color, colored, log_error, log_info
from .persistence import InMemorySessionRepository, SessionRepository
from .round_processor import MiniclassError, RoundProcessor, RoundResult
from .schemas import (
    KPIs,
    ClassroomSession,
    Persona,
    RoundEntry,
    Student,
    StudentState,
)

RoundListener = Callable[[ClassroomSession, RoundResult, RoundEntry], None]


class SessionNotFoundError(MiniclassError):
    """Raised when a session id has no stored snapshot."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' not found")


def create_session(
    personas: Mapping[str, Persona | dict],
    topic: Optional[str] = None,
    session_id: Optional[str] = None,
) -> ClassroomSession:
    """Build the round-0 session for a roster.

    Args:
        personas: Student id -> Persona (or a dict that validates into one).
            Roster order is preserved and used for every tie-break.
        topic: Optional opening topic; blank values leave the topic unset
        session_id: Optional explicit id; a random UUID is used otherwise

    Returns:
        ClassroomSession with every student listening at the baseline
        attention and understanding
    """
    students: Dict[str, Student] = {}
    for student_id, raw_persona in personas.items():
        if not isinstance(student_id, str) or not student_id.strip():
            raise ValueError(f"Student ids must be non-empty strings, got {student_id!r}")
        persona = raw_persona if isinstance(raw_persona, Persona) else Persona.model_validate(raw_persona)
        students[student_id] = Student(
            persona=persona,
            state=StudentState(
                mood=persona.initial_state.mood_label,
                energy=persona.initial_state.energy,
            ),
        )

    return ClassroomSession(
        session_id=session_id or str(uuid4()),
        topic=(topic or "").strip(),
        students=students,
    )


class Classroom:
    """
    Drives teaching sessions through a RoundProcessor and a SessionRepository.

    Rounds for the same session are serialized with a per-session lock;
    different sessions run independently.

    Usage:
        classroom = Classroom(RoundProcessor(RuleBasedSelector(), RuleBasedReactor()))
        session = await classroom.start(personas, topic="Fractions")
        result, entry = await classroom.teach(session.session_id, "What is 1/2 + 1/4?")
        print(await classroom.kpis(session.session_id))
    """

    def __init__(
        self,
        processor: RoundProcessor,
        repository: Optional[SessionRepository] = None,
        round_listeners: Optional[List[RoundListener]] = None,
    ):
        """Initialize the runner.

        Args:
            processor: Round processor with its selector and reactor injected
            repository: Session storage (defaults to in-memory)
            round_listeners: Optional callables invoked after each round with
                (previous_session, result, entry)
        """
        self.processor = processor
        self.repository = repository or InMemorySessionRepository()
        self.round_listeners = round_listeners or []
        self._locks: Dict[str, asyncio.Lock] = {}

    async def __aenter__(self) -> "Classroom":
        await self.repository.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.repository.close()

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def _require_session(self, session_id: str) -> ClassroomSession:
        session = await self.repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def start(
        self,
        personas: Mapping[str, Persona | dict],
        topic: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> ClassroomSession:
        """Create and store a new session. Returns the stored snapshot."""
        session = create_session(personas, topic, session_id)
        if await self.repository.get_session(session.session_id) is not None:
            raise ValueError(f"Session '{session.session_id}' already exists")
        await self.repository.save_session(session)
        log_info(
            f"Session {session.session_id} started with {len(session.students)} students"
            + (f" (topic: {session.topic})" if session.topic else "")
        )
        return session

    async def teach(self, session_id: str, utterance: str) -> Tuple[RoundResult, RoundEntry]:
        """Run one round for a stored session and persist the outcome.

        The snapshot is saved only after the round completes, so a failed
        round leaves the stored session and history untouched.

        Raises:
            SessionNotFoundError: If no session is stored under ``session_id``
            InvalidRoundInputError: If the utterance is missing or empty
        """
        async with self._lock_for(session_id):
            previous = await self._require_session(session_id)
            result = await self.processor.process_round(utterance, previous)
            entry = build_round_entry(previous, result)

            await self.repository.save_session(result.session)
            await self.repository.append_round(session_id, entry)

        for listener in self.round_listeners:
            try:
                listener(previous, result, entry)
            except Exception as exc:
                log_error(f"[Listener] Round listener failed: {exc}")

        return result, entry

    async def get_session(self, session_id: str) -> ClassroomSession:
        return await self._require_session(session_id)

    async def history(self, session_id: str) -> List[RoundEntry]:
        await self._require_session(session_id)
        return await self.repository.get_history(session_id)

    async def kpis(self, session_id: str) -> KPIs:
        """Compute KPIs from the latest snapshot and full round history."""
        session = await self._require_session(session_id)
        history = await self.repository.get_history(session_id)
        return calculate_kpis(session, history)

    async def end(self, session_id: str) -> KPIs:
        """Finish a session: report final KPIs, then delete its snapshot and history."""
        async with self._lock_for(session_id):
            final = await self.kpis(session_id)
            await self.repository.delete_session(session_id)
        self._locks.pop(session_id, None)
        print(
            colored(
                f"Session {session_id} ended: engagement {final.engagement:.1f}, "
                f"inclusion {final.inclusion_score:.1f}%",
                Color.CYAN,
            )
        )
        return final
