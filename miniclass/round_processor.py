"""
Round processor: the per-turn orchestration core.

Takes a teacher utterance and a session snapshot, and returns the next
session snapshot plus the sanitized selector decision. All dependencies
(selector, reactor, policy) are injected by the caller.

Each round:
1. Validate input (reject before touching any state)
2. Ask the selector once which students react; sanitize the answer
3. Run the reactor for every selected student concurrently
4. Merge the selected students' reactions
5. Apply passive decay and hand-raise escalation to idle students
6. Append the teacher (and called-on student) log entries
7. Advance the round and question counters
"""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .config import DEFAULT_POLICY, RoundPolicy
from .kpis import derive_class_mood
from .logging_utils import (
    Color,
    colored,
    is_verbose,
    log_deterministic,
    log_error,
    log_llm,
    log_success,
)
from .reactor import Reactor, ReactorContext
from .sanitize import (
    clamp,
    neutral_reaction,
    sanitize_reactor_output,
    sanitize_selector_output,
)
from .schemas import (
    ClassroomSession,
    LogEntry,
    ReactorOutput,
    SelectorOutput,
    StudentStatus,
)
from .selector import Selector


# =============================
# Module-level Exceptions
# =============================

class MiniclassError(Exception):
    """Base class for errors surfaced to callers of the simulation core."""


class InvalidRoundInputError(MiniclassError):
    """Raised when a round is requested with a missing or malformed input.

    Nothing has been mutated when this is raised; the caller may fix the input
    and retry the identical round.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid round input: {reason}")


SELECTOR_FALLBACK = {
    "students_to_simulate": [],
    "teacher_asked_question": False,
    "bloom_level": 1,
    "called_on_student_id": None,
    "teacher_tip": None,
    "topic_update": None,
    "debug_reason": "selector_error_fallback",
}


@dataclass
class RoundResult:
    """Outcome of one completed round."""

    session: ClassroomSession
    selection: SelectorOutput
    reactions: Dict[str, ReactorOutput] = field(default_factory=dict)


# =============================
# State transition rules
# =============================
# These functions are the only code paths that touch ``hand_queue``.


def apply_reaction(
    session: ClassroomSession,
    student_id: str,
    reaction: ReactorOutput,
    new_round: int,
    policy: RoundPolicy = DEFAULT_POLICY,
) -> None:
    """Merge one selected student's reaction into the session."""

    state = session.students[student_id].state
    state.attention = clamp(state.attention + reaction.attention_delta, 0.0, 100.0)
    state.understanding = clamp(state.understanding + reaction.understanding_delta, 0.0, 100.0)
    state.status = reaction.next_status
    state.pending_question = reaction.pending_question
    state.last_interacted_round = new_round
    # The escalation counter only measures consecutive idle rounds
    state.rounds_hand_raised = 0 if state.status == StudentStatus.HAND_RAISED else None

    if reaction.memory_note:
        state.memory.append(reaction.memory_note)
        state.memory = state.memory[-policy.memory_capacity:]

    if state.status == StudentStatus.HAND_RAISED:
        if student_id not in session.hand_queue:
            session.hand_queue.append(student_id)
    elif student_id in session.hand_queue:
        session.hand_queue.remove(student_id)


def decay_idle_student(
    session: ClassroomSession,
    student_id: str,
    policy: RoundPolicy = DEFAULT_POLICY,
) -> None:
    """Passive decay for a student who was not simulated this round.

    Only a listening student drifts into zoned_out. A raised hand that goes
    unanswered for ``policy.hand_raise_escalation_rounds`` idle rounds turns
    into frustration and leaves the queue.
    """

    state = session.students[student_id].state
    state.attention = clamp(state.attention - policy.idle_attention_decay, 0.0, 100.0)

    if state.attention < policy.zoned_out_threshold and state.status == StudentStatus.LISTENING:
        state.status = StudentStatus.ZONED_OUT

    if state.status == StudentStatus.HAND_RAISED:
        state.rounds_hand_raised = (state.rounds_hand_raised or 0) + 1
        if state.rounds_hand_raised >= policy.hand_raise_escalation_rounds:
            state.status = StudentStatus.FRUSTRATED
            state.rounds_hand_raised = None
            if student_id in session.hand_queue:
                session.hand_queue.remove(student_id)


def record_round_log(
    session: ClassroomSession,
    utterance: str,
    selection: SelectorOutput,
    new_round: int,
) -> None:
    """Append the teacher's line and, if someone was called on, their answer."""

    session.class_log.append(
        LogEntry(round=new_round, type="teacher", speaker="Teacher", content=utterance)
    )

    called_on = selection.called_on_student_id
    if not called_on or called_on not in session.students:
        return

    student = session.students[called_on]
    session.class_log.append(
        LogEntry(
            round=new_round,
            type="student",
            speaker=student.name,
            content=student.state.pending_question or "",
        )
    )
    student.state.pending_question = None
    if called_on in session.hand_queue:
        session.hand_queue.remove(called_on)
    # Having spoken, the student lowers their hand
    if student.state.status == StudentStatus.HAND_RAISED:
        student.state.status = StudentStatus.LISTENING
        student.state.rounds_hand_raised = None


def advance_counters(session: ClassroomSession, selection: SelectorOutput) -> None:
    session.round_num += 1
    if selection.teacher_asked_question:
        session.time_since_question = 0
    else:
        session.time_since_question += 1
    if selection.topic_update:
        session.topic = selection.topic_update


# =============================
# Orchestrator
# =============================


class RoundProcessor:
    """
    Runs one classroom round at a time.

    The processor never mutates the session it is given: it works on a deep
    copy and hands that copy back only once the round has fully completed, so
    no reader can observe a half-merged round and a failed round leaves the
    caller's snapshot untouched. Callers must still serialize rounds for the
    same session.
    """

    def __init__(
        self,
        selector: Selector,
        reactor: Reactor,
        policy: Optional[RoundPolicy] = None,
    ):
        """Initialize the processor with its injected capabilities.

        Args:
            selector: Chooses the students to simulate and extracts pedagogical signals
            reactor: Computes one student's reaction; called once per selected student
            policy: Tunable constants for caps, decay and escalation
        """
        self.selector = selector
        self.reactor = reactor
        self.policy = policy or DEFAULT_POLICY

    async def process_round(self, utterance: Any, session: Any) -> RoundResult:
        """Run one round for ``session``.

        Args:
            utterance: What the teacher just said (trimmed, must be non-empty)
            session: ClassroomSession, or a mapping that validates into one

        Returns:
            RoundResult with the advanced session copy and sanitized selection

        Raises:
            InvalidRoundInputError: If the utterance or session is missing or malformed
        """
        text, working = self._validate(utterance, session)
        new_round = working.round_num + 1

        print(colored(f"=== Round {new_round} (session {working.session_id}) ===", Color.CYAN))

        selection = await self._select(text, working)
        reactions = await self._gather_reactions(text, working, selection)

        log_deterministic(f"[Merge] Applying {len(reactions)} reactions...")
        for student_id, reaction in reactions.items():
            apply_reaction(working, student_id, reaction, new_round, self.policy)

        idle_ids = [sid for sid in working.students if sid not in reactions]
        for student_id in idle_ids:
            decay_idle_student(working, student_id, self.policy)

        record_round_log(working, text, selection, new_round)
        advance_counters(working, selection)

        log_success(
            f"Round {new_round} complete: {len(reactions)} reacted, "
            f"{len(idle_ids)} idle, hand queue={working.hand_queue}"
        )
        return RoundResult(session=working, selection=selection, reactions=reactions)

    def _validate(self, utterance: Any, session: Any) -> tuple[str, ClassroomSession]:
        if not isinstance(utterance, str) or not utterance.strip():
            raise InvalidRoundInputError("teacher utterance is missing or empty")

        if session is None:
            raise InvalidRoundInputError("session snapshot is missing")
        if isinstance(session, ClassroomSession):
            # Instances may have been edited in place since construction
            data: Any = session.model_dump()
        elif isinstance(session, Mapping):
            data = session
        else:
            raise InvalidRoundInputError(
                f"session snapshot has unsupported type {type(session).__name__}"
            )

        try:
            validated = ClassroomSession.model_validate(data)
        except ValidationError as exc:
            raise InvalidRoundInputError(f"session snapshot is malformed: {exc}") from exc

        capacity = self.policy.memory_capacity
        for student_id, student in validated.students.items():
            if len(student.state.memory) > capacity:
                raise InvalidRoundInputError(
                    f"student {student_id!r} holds {len(student.state.memory)} memory notes "
                    f"(capacity {capacity})"
                )
        # Nested model instances in a mapping are reused by validation
        return utterance.strip(), validated.model_copy(deep=True)

    async def _select(self, utterance: str, session: ClassroomSession) -> SelectorOutput:
        """Call the selector once and sanitize its answer.

        Selector failures never abort the round; they degrade to an empty
        selection which the sanitizer then fills from raised hands or the
        deterministic fallback pick.
        """
        announce = log_llm if _uses_llm(self.selector) else log_deterministic
        announce("[Selector] Choosing students...")

        try:
            snapshot = session.model_copy(deep=True)
            raw = await self.selector.select(utterance, snapshot, list(snapshot.class_log))
        except Exception as exc:
            log_error(f"[Selector] Failed ({type(exc).__name__}: {exc}); using fallback selection")
            raw = SELECTOR_FALLBACK

        selection = sanitize_selector_output(raw, session, self.policy)

        names = [session.students[sid].name for sid in selection.students_to_simulate]
        log_deterministic(
            f"[Selector] simulate={names or 'none'}, "
            f"question={selection.teacher_asked_question}, bloom={selection.bloom_level}, "
            f"called_on={selection.called_on_student_id}"
        )
        if selection.teacher_tip and is_verbose():
            print(colored(f"    Tip: {selection.teacher_tip}", Color.CYAN))
        return selection

    async def _gather_reactions(
        self,
        utterance: str,
        session: ClassroomSession,
        selection: SelectorOutput,
    ) -> Dict[str, ReactorOutput]:
        """Run every selected student's reactor concurrently and join on all of them.

        Each task catches its own failure, so one slow or broken reactor
        degrades only that student to a neutral reaction.
        """
        ids: List[str] = [sid for sid in selection.students_to_simulate if sid in session.students]
        if not ids:
            return {}

        class_mood = derive_class_mood(session)
        last_student_entry = session.last_student_entry()
        contexts = [
            ReactorContext(
                student_id=sid,
                persona=session.students[sid].persona,
                state=session.students[sid].state.model_copy(deep=True),
                utterance=utterance,
                class_log=list(session.class_log),
                class_mood=class_mood,
                last_student_entry=last_student_entry,
                teacher_asked_question=selection.teacher_asked_question,
            )
            for sid in ids
        ]

        announce = log_llm if _uses_llm(self.reactor) else log_deterministic
        announce(f"[Reactor] Simulating {len(ids)} students...")

        results = await asyncio.gather(*[self._react_single(context) for context in contexts])
        return dict(zip(ids, results))

    async def _react_single(self, context: ReactorContext) -> ReactorOutput:
        try:
            raw = await asyncio.wait_for(
                self.reactor.react(context),
                timeout=self.policy.reactor_timeout_seconds,
            )
        except Exception as exc:
            reason = "timed out" if isinstance(exc, asyncio.TimeoutError) else f"{type(exc).__name__}: {exc}"
            log_error(f"[{context.name}] Reactor failed ({reason}); using neutral reaction")
            return neutral_reaction(context.state)

        reaction = sanitize_reactor_output(raw, self.policy)

        if is_verbose():
            print(
                colored(
                    f"    {context.name}: {context.state.status.value} -> {reaction.next_status.value}, "
                    f"attention {reaction.attention_delta:+.1f}, understanding {reaction.understanding_delta:+.1f}",
                    Color.CYAN,
                )
            )
            if reaction.pending_question:
                print(colored(f'    Wants to ask: "{reaction.pending_question}"', Color.CYAN))
            if reaction.chat_message:
                print(colored(f'    Chat: "{reaction.chat_message}"', Color.CYAN))
        return reaction


def _uses_llm(capability: Any) -> bool:
    check = getattr(capability, "uses_llm", None)
    if not callable(check):
        return False
    try:
        return bool(check())
    except Exception:
        return False
