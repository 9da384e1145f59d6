"""Selector capability: who reacts this round, and what did the teacher do.

A selector sees the teacher's utterance, the current session and the class
log, and returns a raw decision record. The round processor treats that record
as untrusted and sanitizes it (see ``miniclass.sanitize``), so implementations
may return a RawSelectorResponse, a plain dict, or anything else.
"""

from __future__ import annotations

import re
from typing import Any, List, Optional, Protocol, Sequence

from .config import Config, DEFAULT_POLICY, RoundPolicy
from .llm_utils import call_llm_with_retries
from .logging_utils import is_debug_llm
from .prompts import DEFAULT_PROMPTS, PromptLibrary, format_class_log, render_prompt
from .schemas import (
    ClassroomSession,
    LogEntry,
    RawSelectorResponse,
    StudentStatus,
)


class Selector(Protocol):
    """Protocol for selection strategies."""

    async def select(
        self,
        utterance: str,
        session: ClassroomSession,
        class_log: Sequence[LogEntry],
    ) -> Any:
        """Return a raw selector decision for this round.

        ``session`` and ``class_log`` are read-only; implementations must not
        mutate them.
        """

        ...

    def uses_llm(self) -> bool:
        """Return True if this selector performs an LLM call."""
        ...


# ============================================================================
# Deterministic selector
# ============================================================================

_QUESTION_OPENERS = (
    "what", "why", "how", "who", "when", "where", "which",
    "can", "could", "would", "does", "is", "are", "anyone",
)

# Checked from the highest level down; first match wins
_BLOOM_KEYWORDS = [
    (6, ("create", "design", "invent", "compose", "build your own", "come up with")),
    (5, ("evaluate", "judge", "justify", "argue", "defend", "which is better", "critique")),
    (4, ("analyze", "analyse", "compare", "contrast", "why do", "why does", "what if")),
    (3, ("apply", "use this", "solve", "calculate", "try it", "example of")),
    (2, ("explain", "describe", "summarize", "in your own words", "what does")),
]


def looks_like_question(utterance: str) -> bool:
    text = utterance.strip().lower()
    if text.endswith("?"):
        return True
    first_word = text.split(maxsplit=1)[0] if text else ""
    return first_word.strip(",.!") in _QUESTION_OPENERS


def estimate_bloom_level(utterance: str) -> int:
    text = utterance.lower()
    for level, keywords in _BLOOM_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return level
    return 1


def find_called_on_student(utterance: str, session: ClassroomSession) -> Optional[str]:
    """Return the id of a student addressed by full or first name, if any."""

    text = utterance.lower()
    for student_id, student in session.students.items():
        name = student.name.strip().lower()
        if not name:
            continue
        candidates = {name, name.split()[0]}
        for candidate in candidates:
            if re.search(rf"\b{re.escape(candidate)}\b", text):
                return student_id
    return None


class RuleBasedSelector:
    """Heuristic selector with no LLM calls.

    Questions pull in disengaged students (cold-call opportunities); lecture
    segments pull in the students who are visibly struggling.
    """

    def __init__(self, policy: RoundPolicy = DEFAULT_POLICY) -> None:
        self.policy = policy

    def uses_llm(self) -> bool:
        return False

    async def select(
        self,
        utterance: str,
        session: ClassroomSession,
        class_log: Sequence[LogEntry],
    ) -> RawSelectorResponse:
        asked = looks_like_question(utterance)
        called_on = find_called_on_student(utterance, session)

        picks: List[str] = list(session.hands_raised())
        if called_on and called_on not in picks:
            picks.append(called_on)

        if asked:
            wanted = (StudentStatus.ZONED_OUT, StudentStatus.CONFUSED, StudentStatus.CHATTING)
        else:
            wanted = (StudentStatus.CONFUSED, StudentStatus.FRUSTRATED)
        for student_id, student in session.students.items():
            if student.state.status in wanted and student_id not in picks:
                picks.append(student_id)

        bloom_level = estimate_bloom_level(utterance)
        tip = None
        if not asked and session.time_since_question >= 4:
            tip = "Check for understanding with a quick question."
        elif asked and bloom_level <= 2:
            tip = "Try a follow-up that asks students to apply or analyze the idea."
        elif session.hand_queue and called_on is None:
            tip = "Students are waiting with raised hands; consider calling on one."

        return RawSelectorResponse(
            students_to_simulate=picks[: self.policy.max_students],
            teacher_asked_question=asked,
            bloom_level=bloom_level,
            called_on_student_id=called_on,
            teacher_tip=tip,
            topic_update=None,
            debug_reason="rule_based",
        )


# ============================================================================
# LLM-backed selector
# ============================================================================


def summarize_students(session: ClassroomSession) -> str:
    lines = []
    for student_id, student in session.students.items():
        state = student.state
        lines.append(
            f"- {student.name} ({student_id}): {state.status.value}, "
            f"attention={state.attention:.1f}, understanding={state.understanding:.1f}"
        )
    return "\n".join(lines) if lines else "(empty room)"


class LLMSelector:
    """Selector that delegates the decision to a chat model returning JSON."""

    def __init__(
        self,
        *,
        llm_provider: Optional[str] = None,
        llm_model: Optional[str] = None,
        template_name: str = "select_students",
        prompt_library: Optional[PromptLibrary] = None,
        log_window: Optional[int] = None,
        policy: RoundPolicy = DEFAULT_POLICY,
    ) -> None:
        self.llm_provider = llm_provider or Config.LLM_PROVIDER
        self.llm_model = llm_model or Config.LLM_MODEL
        self.template_name = template_name
        self.prompt_library = prompt_library or DEFAULT_PROMPTS
        self.log_window = log_window if log_window is not None else Config.SELECTOR_LOG_WINDOW
        self.policy = policy

    def uses_llm(self) -> bool:
        return True

    async def select(
        self,
        utterance: str,
        session: ClassroomSession,
        class_log: Sequence[LogEntry],
    ) -> RawSelectorResponse:
        try:
            template = self.prompt_library.get(self.template_name)
        except KeyError:
            template = DEFAULT_PROMPTS.get("select_students")

        rendered = render_prompt(
            template,
            {
                "utterance": utterance,
                "topic": session.topic or "not set yet",
                "time_since_question": str(session.time_since_question),
                "class_log": format_class_log(class_log, self.log_window),
                "student_summaries": summarize_students(session),
                "max_students": str(self.policy.max_students),
            },
        )

        if is_debug_llm():
            print(f"\n{'=' * 80}")
            print(f"[LLM SELECTOR] Round {session.round_num + 1}")
            print(f"{'-' * 80}")
            print(rendered.user)
            print(f"{'=' * 80}\n")

        response = await call_llm_with_retries(
            system_prompt=rendered.system,
            user_prompt=rendered.user,
            llm_provider=self.llm_provider,
            llm_model=self.llm_model,
            response_model=RawSelectorResponse,
            base_url=Config.OLLAMA_BASE_URL,
        )

        if is_debug_llm():
            print(f"[LLM SELECTOR RESPONSE] {response.model_dump_json()}\n")

        return response
