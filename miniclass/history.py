"""Round history records used for session analytics."""

from __future__ import annotations

from .kpis import calculate_average_attention
from .round_processor import RoundResult
from .schemas import ClassroomSession, RoundEntry


def build_round_entry(previous: ClassroomSession, result: RoundResult) -> RoundEntry:
    """Summarize a completed round for the append-only history.

    ``previous`` is the snapshot the round started from; the sentence is the
    teacher line appended for the new round.
    """

    session = result.session
    selection = result.selection

    sentence = ""
    for entry in reversed(session.class_log):
        if entry.type == "teacher" and entry.round == session.round_num:
            sentence = entry.content
            break

    return RoundEntry(
        round=session.round_num,
        sentence=sentence,
        bloom_level=selection.bloom_level,
        teacher_asked_question=selection.teacher_asked_question,
        student_spoke=selection.called_on_student_id is not None,
        student_spoke_id=selection.called_on_student_id,
        new_hands_raised=max(0, len(session.hand_queue) - len(previous.hand_queue)),
        teacher_tip=selection.teacher_tip,
        engagement_snapshot=calculate_average_attention(session),
    )
