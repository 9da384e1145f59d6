"""Tests covering the round processor flow with scripted capabilities."""

import asyncio
from typing import Any, Dict, Optional

import pytest

from miniclass.config import RoundPolicy
from miniclass.reactor import ReactorContext
from miniclass.round_processor import (
    InvalidRoundInputError,
    MiniclassError,
    RoundProcessor,
    apply_reaction,
    decay_idle_student,
)
from miniclass.schemas import (
    ClassroomSession,
    Identity,
    Persona,
    ReactorOutput,
    Student,
    StudentState,
    StudentStatus,
)


class ScriptedSelector:
    """Selector that returns a fixed raw record (or raises) and records its inputs."""

    def __init__(self, response: Any = None, error: Optional[Exception] = None):
        self.response = response if response is not None else {}
        self.error = error
        self.calls: list[tuple[str, int]] = []

    def uses_llm(self) -> bool:
        return False

    async def select(self, utterance, session, class_log):
        self.calls.append((utterance, session.round_num))
        if self.error is not None:
            raise self.error
        return self.response


class ScriptedReactor:
    """Reactor with per-student behaviour: a raw record, an exception, or "hang"."""

    def __init__(self, behaviours: Optional[Dict[str, Any]] = None, default: Any = None):
        self.behaviours = behaviours or {}
        self.default = default if default is not None else {"next_status": "listening"}
        self.contexts: list[ReactorContext] = []

    def uses_llm(self) -> bool:
        return False

    async def react(self, context: ReactorContext):
        self.contexts.append(context)
        behaviour = self.behaviours.get(context.student_id, self.default)
        if isinstance(behaviour, Exception):
            raise behaviour
        if behaviour == "hang":
            await asyncio.sleep(10)
        return behaviour


def make_student(name: str, **state) -> Student:
    return Student(persona=Persona(identity=Identity(name=name)), state=StudentState(**state))


def three_student_session() -> ClassroomSession:
    return ClassroomSession(
        session_id="algebra-1",
        students={
            "a": make_student("Ana", attention=80),
            "b": make_student(
                "Ben",
                attention=60,
                status=StudentStatus.HAND_RAISED,
                pending_question="Does this work for negatives?",
                rounds_hand_raised=0,
            ),
            "c": make_student("Cai", attention=10),
        },
        hand_queue=["b"],
    )


@pytest.mark.asyncio
async def test_forced_hand_raise_round_with_idle_decay():
    session = three_student_session()
    selector = ScriptedSelector(
        {
            "students_to_simulate": [],
            "teacher_asked_question": False,
            "bloom_level": 2,
            "called_on_student_id": None,
            "teacher_tip": None,
        }
    )
    reactor = ScriptedReactor(
        {"b": {"attention_delta": 5, "understanding_delta": 0, "next_status": "listening"}}
    )
    processor = RoundProcessor(selector, reactor)

    result = await processor.process_round("Today we balance equations.", session)
    updated = result.session

    assert result.selection.students_to_simulate == ["b"]
    assert [ctx.student_id for ctx in reactor.contexts] == ["b"]
    assert list(result.reactions) == ["b"]

    assert updated.students["a"].state.attention == pytest.approx(79.5)
    assert updated.students["a"].state.status == StudentStatus.LISTENING
    assert updated.students["c"].state.attention == pytest.approx(9.5)
    assert updated.students["c"].state.status == StudentStatus.ZONED_OUT

    assert updated.students["b"].state.attention == pytest.approx(65)
    assert updated.students["b"].state.last_interacted_round == 1
    assert updated.hand_queue == []
    assert updated.hand_queue_consistent()

    assert updated.round_num == 1
    assert updated.time_since_question == 1
    assert len(updated.class_log) == 1
    entry = updated.class_log[0]
    assert (entry.round, entry.type, entry.speaker) == (1, "teacher", "Teacher")
    assert entry.content == "Today we balance equations."

    # The caller's snapshot is untouched
    assert session.round_num == 0
    assert session.students["c"].state.attention == 10
    assert session.hand_queue == ["b"]


@pytest.mark.asyncio
async def test_extreme_deltas_are_clamped_to_bounds():
    session = ClassroomSession(
        session_id="s",
        students={"a": make_student("Ana", attention=90, understanding=10)},
    )
    selector = ScriptedSelector({"students_to_simulate": ["a"]})
    reactor = ScriptedReactor(
        {"a": {"attention_delta": 1000, "understanding_delta": -1000, "next_status": "confused"}}
    )

    result = await RoundProcessor(selector, reactor).process_round("Pay attention.", session)
    state = result.session.students["a"].state

    assert state.attention == 100
    assert state.understanding == 0
    assert state.status == StudentStatus.CONFUSED


def test_apply_reaction_clamps_unsanitized_deltas():
    session = ClassroomSession(session_id="s", students={"a": make_student("Ana", attention=50)})
    apply_reaction(session, "a", ReactorOutput(attention_delta=1000, understanding_delta=-1000), 1)
    assert session.students["a"].state.attention == 100
    assert session.students["a"].state.understanding == 0


@pytest.mark.asyncio
async def test_memory_keeps_five_most_recent_notes():
    session = ClassroomSession(
        session_id="s",
        students={"a": make_student("Ana", memory=["m1", "m2", "m3", "m4", "m5"])},
    )
    selector = ScriptedSelector({"students_to_simulate": ["a"]})
    reactor = ScriptedReactor({"a": {"next_status": "listening", "memory_note": "m6"}})

    result = await RoundProcessor(selector, reactor).process_round("Recap time.", session)

    assert result.session.students["a"].state.memory == ["m2", "m3", "m4", "m5", "m6"]


@pytest.mark.asyncio
async def test_unanswered_hand_escalates_on_third_idle_round():
    session = ClassroomSession(
        session_id="s",
        students={
            "a": make_student("Ana", status=StudentStatus.HAND_RAISED, pending_question="Me?"),
            "b": make_student("Ben", status=StudentStatus.HAND_RAISED, pending_question="Me too?"),
        },
        hand_queue=["a", "b"],
    )
    selector = ScriptedSelector({"students_to_simulate": []})
    # Ana keeps a hand up; with a cap of one, Ben is never simulated
    reactor = ScriptedReactor(
        {"a": {"next_status": "hand_raised", "pending_question": "Me?"}}
    )
    processor = RoundProcessor(selector, reactor, RoundPolicy(max_students=1))

    for expected_count in (1, 2):
        result = await processor.process_round("Keep going.", session)
        session = result.session
        assert result.selection.students_to_simulate == ["a"]
        assert session.students["b"].state.status == StudentStatus.HAND_RAISED
        assert session.students["b"].state.rounds_hand_raised == expected_count
        assert session.hand_queue == ["a", "b"]

    result = await processor.process_round("Keep going.", session)
    session = result.session

    assert session.students["b"].state.status == StudentStatus.FRUSTRATED
    assert session.students["b"].state.rounds_hand_raised is None
    assert session.hand_queue == ["a"]
    assert session.hand_queue_consistent()


def test_decay_idle_student_only_zones_out_listeners():
    session = ClassroomSession(
        session_id="s",
        students={
            "listening": make_student("Lee", attention=20.2),
            "confused": make_student("Cat", attention=20.2, status=StudentStatus.CONFUSED),
        },
    )
    for sid in ("listening", "confused"):
        decay_idle_student(session, sid)

    assert session.students["listening"].state.status == StudentStatus.ZONED_OUT
    assert session.students["confused"].state.status == StudentStatus.CONFUSED
    assert session.students["confused"].state.attention == pytest.approx(19.7)


def test_decay_never_goes_below_zero():
    session = ClassroomSession(session_id="s", students={"a": make_student("Ana", attention=0.2)})
    decay_idle_student(session, "a", RoundPolicy(idle_attention_decay=5))
    assert session.students["a"].state.attention == 0


@pytest.mark.asyncio
async def test_reactor_failures_are_isolated_per_student():
    session = ClassroomSession(
        session_id="s",
        students={
            "a": make_student("Ana", attention=50),
            "b": make_student("Ben", attention=50, status=StudentStatus.CONFUSED),
            "c": make_student(
                "Cai",
                attention=50,
                status=StudentStatus.HAND_RAISED,
                pending_question="Can I go?",
            ),
        },
        hand_queue=["c"],
    )
    selector = ScriptedSelector({"students_to_simulate": ["a", "b", "c"]})
    reactor = ScriptedReactor(
        {
            "a": {"attention_delta": 10, "next_status": "listening"},
            "b": RuntimeError("model exploded"),
            "c": "hang",
        }
    )
    processor = RoundProcessor(selector, reactor, RoundPolicy(reactor_timeout_seconds=0.05))

    result = await processor.process_round("Let's try an example.", session)
    updated = result.session

    assert list(result.reactions) == ["c", "a", "b"]
    assert updated.students["a"].state.attention == 60
    assert updated.students["b"].state.attention == 50
    assert updated.students["b"].state.status == StudentStatus.CONFUSED
    assert updated.students["c"].state.attention == 50
    assert updated.students["c"].state.status == StudentStatus.HAND_RAISED
    assert updated.students["c"].state.pending_question == "Can I go?"
    assert updated.hand_queue == ["c"]
    assert updated.round_num == 1


@pytest.mark.asyncio
async def test_selector_failure_uses_fallback_selection():
    session = ClassroomSession(
        session_id="s",
        students={
            "a": make_student("Ana", attention=70),
            "b": make_student("Ben", attention=40, status=StudentStatus.ZONED_OUT),
        },
    )
    selector = ScriptedSelector(error=ValueError("bad JSON"))
    reactor = ScriptedReactor()

    result = await RoundProcessor(selector, reactor).process_round("Okay class.", session)

    assert result.selection.debug_reason == "selector_error_fallback"
    assert result.selection.students_to_simulate == ["b"]
    assert result.selection.teacher_asked_question is False
    assert result.selection.bloom_level == 1
    assert result.session.round_num == 1


@pytest.mark.asyncio
async def test_invalid_input_is_rejected_without_mutation():
    session = three_student_session()
    before = session.model_dump()
    selector = ScriptedSelector({"students_to_simulate": ["a"]})
    processor = RoundProcessor(selector, ScriptedReactor())

    for utterance in ("", "   ", None, 42):
        with pytest.raises(InvalidRoundInputError):
            await processor.process_round(utterance, session)

    with pytest.raises(InvalidRoundInputError):
        await processor.process_round("Hello", None)

    malformed = session.model_dump()
    malformed["hand_queue"] = ["ghost"]
    with pytest.raises(InvalidRoundInputError) as excinfo:
        await processor.process_round("Hello", malformed)

    assert isinstance(excinfo.value, MiniclassError)
    assert selector.calls == []
    assert session.model_dump() == before


@pytest.mark.asyncio
async def test_snapshot_breaking_session_invariants_is_rejected():
    selector = ScriptedSelector({"students_to_simulate": ["b"]})
    processor = RoundProcessor(selector, ScriptedReactor())

    # Queued student whose hand is not raised
    stale_queue = {
        "session_id": "s",
        "students": {
            "a": {"persona": {"identity": {"name": "Ana"}}},
            "b": {"persona": {"identity": {"name": "Ben"}}},
        },
        "hand_queue": ["a"],
    }
    with pytest.raises(InvalidRoundInputError, match="hand_queue"):
        await processor.process_round("Who can explain?", stale_queue)

    # Raised hand missing from the queue, introduced by an in-place edit
    session = ClassroomSession(
        session_id="s",
        students={"a": make_student("Ana"), "b": make_student("Ben")},
    )
    session.students["a"].state.status = StudentStatus.HAND_RAISED
    with pytest.raises(InvalidRoundInputError, match="hand_queue"):
        await processor.process_round("Who can explain?", session)

    overfull = ClassroomSession(
        session_id="s",
        students={"a": make_student("Ana", memory=["m1", "m2", "m3"])},
    )
    with pytest.raises(InvalidRoundInputError, match="memory"):
        await RoundProcessor(selector, ScriptedReactor(), RoundPolicy(memory_capacity=2)).process_round(
            "Recap time.", overfull
        )

    assert selector.calls == []
    assert session.students["a"].state.status == StudentStatus.HAND_RAISED
    assert session.hand_queue == []


@pytest.mark.asyncio
async def test_mapping_snapshot_is_accepted():
    session = three_student_session()
    processor = RoundProcessor(ScriptedSelector(), ScriptedReactor())

    result = await processor.process_round("  Good morning!  ", session.model_dump())

    assert isinstance(result.session, ClassroomSession)
    assert result.session.class_log[0].content == "Good morning!"


@pytest.mark.asyncio
async def test_round_numbers_increase_monotonically_and_queue_stays_consistent():
    session = three_student_session()
    selector = ScriptedSelector({"students_to_simulate": ["a", "c"], "teacher_asked_question": True})
    reactor = ScriptedReactor(
        {
            "a": {"next_status": "hand_raised", "pending_question": "Is it 4?"},
            "b": {"next_status": "hand_raised", "pending_question": "Negatives?"},
            "c": {"next_status": "chatting", "chat_message": "lol"},
        }
    )
    processor = RoundProcessor(selector, reactor)

    for expected_round in (1, 2, 3):
        result = await processor.process_round("What is x if 2x = 8?", session)
        session = result.session
        assert session.round_num == expected_round
        assert session.time_since_question == 0
        assert session.hand_queue_consistent()
        assert len(set(session.hand_queue)) == len(session.hand_queue)

    assert session.hand_queue == ["b", "a"]


@pytest.mark.asyncio
async def test_called_on_student_speaks_and_leaves_the_queue():
    session = three_student_session()
    selector = ScriptedSelector(
        {
            "students_to_simulate": ["b"],
            "teacher_asked_question": True,
            "called_on_student_id": "Ben",
            "topic_update": "Negative numbers",
        }
    )
    reactor = ScriptedReactor(
        {"b": {"next_status": "hand_raised", "pending_question": "Does this work for negatives?"}}
    )

    result = await RoundProcessor(selector, reactor).process_round("Yes Ben?", session)
    updated = result.session

    assert [(e.type, e.speaker, e.content) for e in updated.class_log] == [
        ("teacher", "Teacher", "Yes Ben?"),
        ("student", "Ben", "Does this work for negatives?"),
    ]
    assert updated.students["b"].state.pending_question is None
    assert updated.students["b"].state.status == StudentStatus.LISTENING
    assert updated.hand_queue == []
    assert updated.topic == "Negative numbers"
    assert updated.time_since_question == 0


@pytest.mark.asyncio
async def test_reactors_receive_copies_and_shared_context():
    session = three_student_session()
    session.class_log = []
    seen_moods: list[str] = []

    class MutatingReactor(ScriptedReactor):
        async def react(self, context):
            seen_moods.append(context.class_mood)
            context.state.attention = 0
            context.state.memory.append("tampered")
            return {"next_status": context.state.status.value, "pending_question": context.state.pending_question}

    selector = ScriptedSelector({"students_to_simulate": ["a"], "teacher_asked_question": True})
    result = await RoundProcessor(selector, MutatingReactor()).process_round("Who knows?", session)

    assert result.session.students["a"].state.attention == 80
    assert result.session.students["a"].state.memory == []
    assert result.session.students["b"].state.memory == []
    assert seen_moods == ["neutral", "neutral"]
