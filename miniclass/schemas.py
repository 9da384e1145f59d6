"""
Pydantic schemas for the Miniclass simulation.

All data structures shared by the round processor, the pluggable selector and
reactor capabilities, persistence, and KPI reporting are defined here.

Design Philosophy:
- The session is a plain value: the core takes one in and hands one back
- Personas, log entries and round entries are frozen once created
- Selector/Reactor outputs have two shapes: permissive "raw" models accepted
  from untrusted generative sources, and strict sanitized models the core uses
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ============================================================================
# Student Schemas
# ============================================================================


class StudentStatus(str, Enum):
    """Visible classroom status of one student."""

    LISTENING = "listening"
    CONFUSED = "confused"
    HAND_RAISED = "hand_raised"
    ZONED_OUT = "zoned_out"
    CHATTING = "chatting"
    FRUSTRATED = "frustrated"


# Statuses counted by the confusion index
DISENGAGED_STATUSES = frozenset(
    {StudentStatus.CONFUSED, StudentStatus.ZONED_OUT, StudentStatus.FRUSTRATED}
)


class Identity(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Display name used in prompts and the class log")
    age: Optional[int] = Field(None, description="Age in years")
    grade: Optional[str] = Field(None, description="School grade or year")
    current_class: Optional[str] = Field(None, description="Class the student is enrolled in")
    background_summary: str = Field("", description="Short biography for prompts")


class Personality(BaseModel):
    """Big Five style traits, each in [0, 1]."""

    model_config = ConfigDict(frozen=True)

    openness: float = Field(0.5, ge=0.0, le=1.0)
    conscientiousness: float = Field(0.5, ge=0.0, le=1.0)
    extraversion: float = Field(0.5, ge=0.0, le=1.0)
    agreeableness: float = Field(0.5, ge=0.0, le=1.0)
    emotionality: float = Field(0.5, ge=0.0, le=1.0)


class InitialState(BaseModel):
    """Emotional starting point copied into StudentState at session creation."""

    model_config = ConfigDict(frozen=True)

    mood_label: str = "neutral"
    mood_valence: float = 0.0
    main_concern: str = ""
    energy: float = 0.7
    motivation: float = 0.5
    stress: float = 0.3
    focus: float = 0.5
    engagement_with_lesson: float = 0.5


class CommunicationStyle(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: str = ""
    example_phrases: List[str] = Field(default_factory=list)
    confidence: float = 0.5
    willingness_to_speak_up: float = 0.5
    verbosity: float = 0.5
    formality: float = 0.5


class Persona(BaseModel):
    """Immutable descriptive profile of a student (who the student IS).

    Set once when the session is created; the round processor never mutates it.
    """

    model_config = ConfigDict(frozen=True)

    identity: Identity
    personality: Personality = Field(default_factory=Personality)
    skills: Dict[str, float] = Field(default_factory=dict, description="Skill name -> level")
    initial_state: InitialState = Field(default_factory=InitialState)
    communication_style: CommunicationStyle = Field(default_factory=CommunicationStyle)


class StudentState(BaseModel):
    """Mutable simulation state of a student (what the student IS DOING)."""

    attention: float = Field(75.0, ge=0.0, le=100.0)
    understanding: float = Field(50.0, ge=0.0, le=100.0)
    status: StudentStatus = StudentStatus.LISTENING
    # Oldest first; bounded by RoundPolicy.memory_capacity
    memory: List[str] = Field(default_factory=list)
    pending_question: Optional[str] = None
    last_interacted_round: int = Field(0, ge=0)
    # Consecutive idle rounds spent with a raised hand
    rounds_hand_raised: Optional[int] = None
    mood: str = "neutral"
    energy: float = 0.7


class Student(BaseModel):
    persona: Persona
    state: StudentState = Field(default_factory=StudentState)

    @property
    def name(self) -> str:
        return self.persona.identity.name


# ============================================================================
# Session Schemas
# ============================================================================


class LogEntry(BaseModel):
    """One line of the class transcript."""

    model_config = ConfigDict(frozen=True)

    round: int = Field(..., ge=0)
    type: str = Field(..., pattern="^(teacher|student)$")
    speaker: str
    content: str


class ClassroomSession(BaseModel):
    """Root aggregate for one classroom simulation.

    Invariant at quiescent points (after every completed round):
    ``students[id].state.status == hand_raised`` iff ``id in hand_queue``.
    It is checked on validation only; in-place edits during a round are not
    re-validated.
    """

    session_id: str = Field(..., min_length=1)
    round_num: int = Field(0, ge=0)
    topic: str = ""
    class_log: List[LogEntry] = Field(default_factory=list)
    hand_queue: List[str] = Field(default_factory=list)
    time_since_question: int = Field(0, ge=0)
    students: Dict[str, Student] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_hand_queue(self) -> "ClassroomSession":
        if len(set(self.hand_queue)) != len(self.hand_queue):
            raise ValueError("hand_queue contains duplicate student ids")
        unknown = [sid for sid in self.hand_queue if sid not in self.students]
        if unknown:
            raise ValueError(f"hand_queue references unknown students: {unknown}")
        if not self.hand_queue_consistent():
            raise ValueError(
                f"hand_queue {self.hand_queue} does not match hand-raised students "
                f"{self.hands_raised()}"
            )
        return self

    def hands_raised(self) -> List[str]:
        """Return ids whose status is hand_raised, in roster order."""
        return [
            sid
            for sid, student in self.students.items()
            if student.state.status == StudentStatus.HAND_RAISED
        ]

    def hand_queue_consistent(self) -> bool:
        return set(self.hands_raised()) == set(self.hand_queue)

    def last_student_entry(self) -> Optional[LogEntry]:
        for entry in reversed(self.class_log):
            if entry.type == "student":
                return entry
        return None


class RoundEntry(BaseModel):
    """History record for one completed round, consumed by KPI reporting."""

    model_config = ConfigDict(frozen=True)

    round: int
    sentence: str
    bloom_level: int = 1
    teacher_asked_question: bool = False
    student_spoke: bool = False
    student_spoke_id: Optional[str] = None
    new_hands_raised: int = 0
    teacher_tip: Optional[str] = None
    engagement_snapshot: float = 0.0


# ============================================================================
# Selector / Reactor Schemas
# ============================================================================


class RawSelectorResponse(BaseModel):
    """Untrusted selector output exactly as a generative source produced it.

    Every field is loosely typed so that malformed values reach the sanitizer
    instead of failing at parse time.
    """

    model_config = ConfigDict(extra="allow")

    students_to_simulate: Any = None
    teacher_asked_question: Any = None
    bloom_level: Any = None
    called_on_student_id: Any = None
    teacher_tip: Any = None
    topic_update: Any = None
    debug_reason: Any = None


class SelectorOutput(BaseModel):
    """Sanitized selector decision for one round."""

    model_config = ConfigDict(frozen=True)

    students_to_simulate: List[str] = Field(default_factory=list)
    teacher_asked_question: bool = False
    bloom_level: int = 1
    called_on_student_id: Optional[str] = None
    teacher_tip: Optional[str] = None
    topic_update: Optional[str] = None
    debug_reason: Optional[str] = None


class RawReactorResponse(BaseModel):
    """Untrusted per-student reaction exactly as a generative source produced it."""

    model_config = ConfigDict(extra="allow")

    attention_delta: Any = None
    understanding_delta: Any = None
    next_status: Any = None
    pending_question: Any = None
    chat_message: Any = None
    memory_note: Any = None


class ReactorOutput(BaseModel):
    """Sanitized state delta for one student."""

    model_config = ConfigDict(frozen=True)

    attention_delta: float = 0.0
    understanding_delta: float = 0.0
    next_status: StudentStatus = StudentStatus.LISTENING
    pending_question: Optional[str] = None
    chat_message: Optional[str] = None
    memory_note: Optional[str] = None


# ============================================================================
# KPI Schemas
# ============================================================================


class TalkRatio(BaseModel):
    teacher: float = 100.0
    students: float = 0.0


class KPIs(BaseModel):
    """Derived session metrics. Ratios are percentages in [0, 100]."""

    engagement: float = 0.0
    engagement_trend: float = 0.0
    talk_ratio: TalkRatio = Field(default_factory=TalkRatio)
    bloom_level: float = 1.0
    confusion_index: float = 0.0
    hand_raise_rate: int = 0
    ignored_hands: int = 0
    cold_call_risk: int = 0
    inclusion_score: float = 0.0
    latest_tip: Optional[str] = None
