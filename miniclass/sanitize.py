"""Boundary validation for selector and reactor outputs.

Selector and reactor decisions come from non-deterministic generative sources,
so the round processor never trusts them directly. The functions here turn an
arbitrary raw record (mapping, pydantic model, or garbage) into the strict
SelectorOutput / ReactorOutput types. They are pure and never raise: invalid
shapes degrade to safe defaults.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from .config import DEFAULT_POLICY, RoundPolicy
from .schemas import (
    ClassroomSession,
    ReactorOutput,
    SelectorOutput,
    StudentState,
    StudentStatus,
)


# Fallback pick order when the selector chose nobody
FALLBACK_STATUS_PRIORITY: List[StudentStatus] = [
    StudentStatus.CONFUSED,
    StudentStatus.FRUSTRATED,
    StudentStatus.ZONED_OUT,
    StudentStatus.CHATTING,
    StudentStatus.LISTENING,
]


def _as_dict(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, BaseModel):
        return raw.model_dump()
    if isinstance(raw, Mapping):
        return dict(raw)
    return {}


def _as_number(value: Any) -> Optional[float]:
    """Coerce a loosely typed numeric value; bools and non-finite values are rejected."""

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def _optional_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value if value.strip() else None


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def resolve_student_id(token: Any, session: ClassroomSession) -> Optional[str]:
    """Map a roster id or a display name (case-insensitive) to a roster id.

    Generative selectors often answer with "Maya Chen" where the roster is keyed
    by "maya". Unresolvable tokens return None.
    """

    if not isinstance(token, str):
        return None
    token = token.strip()
    if not token:
        return None
    if token in session.students:
        return token
    lowered = token.lower()
    for student_id, student in session.students.items():
        if student.name.strip().lower() == lowered:
            return student_id
    return None


def pick_fallback_student(session: ClassroomSession) -> Optional[str]:
    """Deterministically choose one student when the selection came back empty.

    Status priority first, then lowest attention, then lowest understanding,
    then roster order.
    """

    if not session.students:
        return None
    priority = {status: index for index, status in enumerate(FALLBACK_STATUS_PRIORITY)}
    ranked = sorted(
        enumerate(session.students.items()),
        key=lambda item: (
            priority.get(item[1][1].state.status, len(priority)),
            item[1][1].state.attention,
            item[1][1].state.understanding,
            item[0],
        ),
    )
    return ranked[0][1][0]


def _hand_raised_in_priority_order(session: ClassroomSession) -> List[str]:
    """Hand-raised ids in queue (FIFO) order, then any unqueued ones in roster order."""

    raised = set(session.hands_raised())
    ordered = [sid for sid in session.hand_queue if sid in raised]
    ordered.extend(sid for sid in session.hands_raised() if sid not in ordered)
    return ordered


def sanitize_selector_output(
    raw: Any,
    session: ClassroomSession,
    policy: RoundPolicy = DEFAULT_POLICY,
) -> SelectorOutput:
    """Validate a raw selector decision against the current roster.

    Cap policy is prioritize-then-truncate: every raised hand is placed ahead of
    the selector's own picks before the list is cut to ``policy.max_students``.
    Raised hands beyond the cap stay idle this round and keep escalating.
    """

    data = _as_dict(raw)

    raw_list = data.get("students_to_simulate")
    if not isinstance(raw_list, (list, tuple)):
        raw_list = []

    suggested: List[str] = []
    for token in raw_list:
        student_id = resolve_student_id(token, session)
        if student_id is not None and student_id not in suggested:
            suggested.append(student_id)

    selected = _hand_raised_in_priority_order(session)
    selected.extend(sid for sid in suggested if sid not in selected)

    debug_reason = _optional_text(data.get("debug_reason"))
    if not selected:
        fallback = pick_fallback_student(session)
        if fallback is not None:
            selected = [fallback]

    selected = selected[: max(policy.max_students, 0)]

    bloom = _as_number(data.get("bloom_level"))
    bloom_level = (
        policy.min_bloom_level
        if bloom is None
        else int(clamp(round(bloom), policy.min_bloom_level, policy.max_bloom_level))
    )

    asked = data.get("teacher_asked_question")
    topic_update = _optional_text(data.get("topic_update"))

    return SelectorOutput(
        students_to_simulate=selected,
        teacher_asked_question=asked if isinstance(asked, bool) else False,
        bloom_level=bloom_level,
        called_on_student_id=resolve_student_id(data.get("called_on_student_id"), session),
        teacher_tip=_optional_text(data.get("teacher_tip")),
        topic_update=topic_update.strip() if topic_update else None,
        debug_reason=debug_reason,
    )


def _parse_status(value: Any) -> StudentStatus:
    if isinstance(value, StudentStatus):
        return value
    if isinstance(value, str):
        try:
            return StudentStatus(value.strip().lower())
        except ValueError:
            pass
    return StudentStatus.LISTENING


def sanitize_reactor_output(
    raw: Any,
    policy: RoundPolicy = DEFAULT_POLICY,
) -> ReactorOutput:
    """Validate a raw student reaction.

    Deltas are clamped to +/- ``policy.max_delta``; an unknown status falls back
    to listening; an overlong memory note is dropped rather than truncated.
    """

    data = _as_dict(raw)

    def _delta(key: str) -> float:
        value = _as_number(data.get(key))
        if value is None:
            return 0.0
        return clamp(value, -policy.max_delta, policy.max_delta)

    memory_note = _optional_text(data.get("memory_note"))
    if memory_note is not None and len(memory_note) >= policy.max_memory_note_length:
        memory_note = None

    return ReactorOutput(
        attention_delta=_delta("attention_delta"),
        understanding_delta=_delta("understanding_delta"),
        next_status=_parse_status(data.get("next_status")),
        pending_question=_optional_text(data.get("pending_question")),
        chat_message=_optional_text(data.get("chat_message")),
        memory_note=memory_note,
    )


def neutral_reaction(state: StudentState) -> ReactorOutput:
    """No-op reaction substituted when a reactor fails or times out."""

    return ReactorOutput(
        attention_delta=0.0,
        understanding_delta=0.0,
        next_status=state.status,
        pending_question=state.pending_question,
    )
