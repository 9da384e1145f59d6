"""Unit tests for the core schema building blocks and configuration."""

from dataclasses import FrozenInstanceError

import pytest
from pydantic import ValidationError

from miniclass.config import Config, RoundPolicy
from miniclass.schemas import (
    ClassroomSession,
    Identity,
    LogEntry,
    Persona,
    Personality,
    Student,
    StudentState,
    StudentStatus,
)


def _student(name: str, **state) -> Student:
    return Student(persona=Persona(identity=Identity(name=name)), state=StudentState(**state))


def test_student_state_defaults():
    state = StudentState()
    assert state.attention == 75
    assert state.understanding == 50
    assert state.status == StudentStatus.LISTENING
    assert state.memory == []
    assert state.rounds_hand_raised is None


def test_personas_are_immutable_and_bounded():
    persona = Persona(identity=Identity(name="Maya"))
    with pytest.raises(ValidationError):
        persona.identity = Identity(name="Other")
    with pytest.raises(ValidationError):
        Personality(extraversion=1.5)


def test_log_entry_type_is_restricted():
    with pytest.raises(ValidationError):
        LogEntry(round=1, type="narrator", speaker="?", content="...")


def test_hand_queue_must_reference_known_unique_students():
    with pytest.raises(ValidationError):
        ClassroomSession(session_id="s", students={"a": _student("Ana")}, hand_queue=["b"])
    with pytest.raises(ValidationError):
        ClassroomSession(
            session_id="s",
            students={"a": _student("Ana", status=StudentStatus.HAND_RAISED)},
            hand_queue=["a", "a"],
        )


def test_hand_queue_must_match_raised_hands():
    with pytest.raises(ValidationError, match="does not match"):
        ClassroomSession(
            session_id="s",
            students={"a": _student("Ana"), "b": _student("Ben")},
            hand_queue=["a"],
        )
    with pytest.raises(ValidationError, match="does not match"):
        ClassroomSession(
            session_id="s",
            students={"a": _student("Ana", status=StudentStatus.HAND_RAISED)},
        )


def test_session_helpers():
    session = ClassroomSession(
        session_id="s",
        students={
            "a": _student("Ana"),
            "b": _student("Ben"),
            "c": _student("Cai", status=StudentStatus.HAND_RAISED),
        },
        hand_queue=["c"],
        class_log=[
            LogEntry(round=1, type="student", speaker="Ben", content="Hi"),
            LogEntry(round=2, type="teacher", speaker="Teacher", content="Hello"),
        ],
    )
    assert session.hand_queue_consistent() is True

    session.students["a"].state.status = StudentStatus.HAND_RAISED

    assert session.hands_raised() == ["a", "c"]
    assert session.hand_queue_consistent() is False
    assert session.last_student_entry().speaker == "Ben"


def test_round_policy_is_frozen_and_config_validates(monkeypatch):
    policy = RoundPolicy(max_students=2)
    with pytest.raises(FrozenInstanceError):
        policy.max_students = 3  # type: ignore[misc]

    monkeypatch.setattr(Config, "LLM_PROVIDER", "openai")
    monkeypatch.setattr(Config, "OPENAI_API_KEY", None)
    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        Config.validate()

    monkeypatch.setattr(Config, "LLM_PROVIDER", "ollama")
    Config.validate()
    assert "Max Students Per Round" in Config.display()
