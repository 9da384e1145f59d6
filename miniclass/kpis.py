"""Session analytics: class mood and end-of-session KPIs.

Everything in this module is a pure function of a session snapshot and its
round history. Nothing here mutates state, so reporting code may call it at
any point after session creation, including before the first round.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence

from .schemas import (
    DISENGAGED_STATUSES,
    ClassroomSession,
    KPIs,
    RoundEntry,
    StudentStatus,
    TalkRatio,
)

TREND_WINDOW = 5
BLOOM_WINDOW = 5
HAND_RAISE_WINDOW = 10
COLD_CALL_ROUNDS = 5


def _avg(values: Iterable[float]) -> float:
    items = list(values)
    if not items:
        return 0.0
    return sum(items) / len(items)


def calculate_average_attention(session: ClassroomSession) -> float:
    return _avg(student.state.attention for student in session.students.values())


def derive_class_mood(session: ClassroomSession) -> str:
    """Summarize the room as one of engaged / confused / restless / neutral."""

    students = list(session.students.values())
    if not students:
        return "neutral"

    avg_attention = calculate_average_attention(session)
    confused = sum(1 for s in students if s.state.status == StudentStatus.CONFUSED)
    confused_ratio = confused / len(students)

    if avg_attention > 70 and confused_ratio < 0.2:
        return "engaged"
    if confused_ratio > 0.4:
        return "confused"
    if avg_attention < 40:
        return "restless"
    return "neutral"


def _engagement_trend(history: Sequence[RoundEntry]) -> float:
    if len(history) < TREND_WINDOW * 2:
        return 0.0
    recent = [entry.engagement_snapshot for entry in history[-TREND_WINDOW:]]
    previous = [
        entry.engagement_snapshot
        for entry in history[-TREND_WINDOW * 2 : -TREND_WINDOW]
    ]
    return _avg(recent) - _avg(previous)


def _talk_ratio(session: ClassroomSession, history: Sequence[RoundEntry]) -> TalkRatio:
    total_rounds = session.round_num
    if total_rounds <= 0:
        return TalkRatio(teacher=100.0, students=0.0)
    spoke = min(sum(1 for entry in history if entry.student_spoke), total_rounds)
    return TalkRatio(
        teacher=(total_rounds - spoke) / total_rounds * 100,
        students=spoke / total_rounds * 100,
    )


def _latest_tip(history: Sequence[RoundEntry]) -> str | None:
    for entry in reversed(history):
        if entry.teacher_tip:
            return entry.teacher_tip
    return None


def calculate_kpis(session: ClassroomSession, history: Sequence[RoundEntry]) -> KPIs:
    """Compute the full KPI record for a session and its round history.

    With an empty history every trend and rate is 0, Bloom level is 1 and the
    talk ratio is entirely the teacher's.
    """

    history = list(history)
    students = list(session.students.values())
    roster_size = len(students)

    bloom_recent: List[float] = [entry.bloom_level for entry in history[-BLOOM_WINDOW:]]
    disengaged = sum(1 for s in students if s.state.status in DISENGAGED_STATUSES)

    cold_call_risk = sum(
        1
        for s in students
        if s.state.status == StudentStatus.ZONED_OUT
        and session.round_num - s.state.last_interacted_round > COLD_CALL_ROUNDS
    )

    speakers = {
        entry.student_spoke_id
        for entry in history
        if entry.student_spoke_id and entry.student_spoke_id in session.students
    }

    return KPIs(
        engagement=calculate_average_attention(session),
        engagement_trend=_engagement_trend(history),
        talk_ratio=_talk_ratio(session, history),
        bloom_level=_avg(bloom_recent) if bloom_recent else 1.0,
        confusion_index=(disengaged / roster_size * 100) if roster_size else 0.0,
        hand_raise_rate=sum(
            1 for entry in history[-HAND_RAISE_WINDOW:] if entry.new_hands_raised > 0
        ),
        ignored_hands=sum(
            1 for s in students if s.state.status == StudentStatus.FRUSTRATED
        ),
        cold_call_risk=cold_call_risk,
        inclusion_score=(len(speakers) / roster_size * 100) if roster_size else 0.0,
        latest_tip=_latest_tip(history),
    )
