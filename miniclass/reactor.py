"""Reactor capability: how one student responds to the teacher this round.

The round processor invokes one reactor call per selected student, all
concurrently. Each call receives only read-only copies of that student's data
plus shared round context, so no call can observe another's result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol

from .config import Config
from .llm_utils import call_llm_with_retries
from .logging_utils import is_debug_llm
from .prompts import DEFAULT_PROMPTS, PromptLibrary, format_class_log, render_prompt
from .schemas import (
    LogEntry,
    Persona,
    RawReactorResponse,
    StudentState,
    StudentStatus,
)


@dataclass
class ReactorContext:
    """Everything a reactor may look at for one student in one round."""

    student_id: str
    persona: Persona
    state: StudentState
    utterance: str
    class_log: List[LogEntry] = field(default_factory=list)
    class_mood: str = "neutral"
    last_student_entry: Optional[LogEntry] = None
    teacher_asked_question: bool = False

    @property
    def name(self) -> str:
        return self.persona.identity.name


class Reactor(Protocol):
    """Protocol for per-student reaction strategies."""

    async def react(self, context: ReactorContext) -> Any:
        """Return a raw reaction record for ``context.student_id``."""
        ...

    def uses_llm(self) -> bool:
        """Return True if this reactor performs an LLM call."""
        ...


class RuleBasedReactor:
    """Deterministic reactor driven by status, traits and the question flag."""

    def uses_llm(self) -> bool:
        return False

    async def react(self, context: ReactorContext) -> RawReactorResponse:
        persona = context.persona
        state = context.state
        traits = persona.personality
        willingness = persona.communication_style.willingness_to_speak_up

        if context.teacher_asked_question:
            attention_delta = 4.0 + 6.0 * traits.extraversion
            understanding_delta = 2.0
        else:
            attention_delta = -4.0 + 4.0 * traits.conscientiousness
            understanding_delta = 4.0 if state.attention >= 50 else -3.0

        attention = state.attention + attention_delta
        understanding = state.understanding + understanding_delta
        pending_question: Optional[str] = None
        chat_message: Optional[str] = None

        if state.status == StudentStatus.HAND_RAISED and state.pending_question:
            next_status = StudentStatus.HAND_RAISED
            pending_question = state.pending_question
        elif understanding < 35:
            if willingness >= 0.6:
                next_status = StudentStatus.HAND_RAISED
                pending_question = "Could you go over that part again?"
            elif traits.emotionality > 0.6:
                next_status = StudentStatus.FRUSTRATED
            else:
                next_status = StudentStatus.CONFUSED
        elif attention < 30:
            if traits.extraversion > 0.6:
                next_status = StudentStatus.CHATTING
                chat_message = "is this going to be on the test?"
            else:
                next_status = StudentStatus.ZONED_OUT
        elif context.teacher_asked_question and willingness >= 0.5:
            next_status = StudentStatus.HAND_RAISED
            pending_question = "I think I know this one. Can I answer?"
        else:
            next_status = StudentStatus.LISTENING

        memory_note = None
        if context.teacher_asked_question:
            memory_note = f"Teacher asked: {context.utterance[:60]}"

        return RawReactorResponse(
            attention_delta=attention_delta,
            understanding_delta=understanding_delta,
            next_status=next_status.value,
            pending_question=pending_question,
            chat_message=chat_message,
            memory_note=memory_note,
        )


def _personality_lines(persona: Persona) -> str:
    traits = persona.personality
    return "\n".join(
        [
            f"- Openness: {traits.openness}",
            f"- Conscientiousness: {traits.conscientiousness}",
            f"- Extraversion: {traits.extraversion}",
            f"- Agreeableness: {traits.agreeableness}",
            f"- Emotionality: {traits.emotionality}",
        ]
    )


class LLMReactor:
    """Reactor that role-plays the student through a chat model."""

    def __init__(
        self,
        *,
        llm_provider: Optional[str] = None,
        llm_model: Optional[str] = None,
        template_name: str = "react",
        prompt_library: Optional[PromptLibrary] = None,
        log_window: Optional[int] = None,
    ) -> None:
        self.llm_provider = llm_provider or Config.LLM_PROVIDER
        self.llm_model = llm_model or Config.LLM_MODEL
        self.template_name = template_name
        self.prompt_library = prompt_library or DEFAULT_PROMPTS
        self.log_window = log_window if log_window is not None else Config.REACTOR_LOG_WINDOW

    def uses_llm(self) -> bool:
        return True

    def build_values(self, context: ReactorContext) -> dict[str, str]:
        persona = context.persona
        state = context.state
        style = persona.communication_style

        if context.last_student_entry is not None:
            last_student = (
                f"Last student who spoke: {context.last_student_entry.speaker}\n"
                f'What they said: "{context.last_student_entry.content}"'
            )
        else:
            last_student = "No student has spoken yet."

        return {
            "name": persona.identity.name,
            "age": str(persona.identity.age) if persona.identity.age is not None else "unknown",
            "background": persona.identity.background_summary or "(none given)",
            "personality": _personality_lines(persona),
            "communication_style": style.summary or "(none given)",
            "example_phrases": ", ".join(style.example_phrases) or "(none)",
            "mood": state.mood,
            "energy": f"{state.energy}",
            "utterance": context.utterance,
            "teacher_asked_question": "yes" if context.teacher_asked_question else "no",
            "class_log": format_class_log(context.class_log, self.log_window),
            "last_student": last_student,
            "attention": f"{state.attention:.1f}",
            "understanding": f"{state.understanding:.1f}",
            "status": state.status.value,
            "memory": " | ".join(state.memory[-3:]) or "nothing yet",
            "class_mood": context.class_mood,
        }

    async def react(self, context: ReactorContext) -> RawReactorResponse:
        try:
            template = self.prompt_library.get(self.template_name)
        except KeyError:
            template = DEFAULT_PROMPTS.get("react")

        rendered = render_prompt(template, self.build_values(context))

        if is_debug_llm():
            print(f"\n[LLM REACTOR] {context.name} ({context.student_id})")
            print(rendered.user)

        return await call_llm_with_retries(
            system_prompt=rendered.system,
            user_prompt=rendered.user,
            llm_provider=self.llm_provider,
            llm_model=self.llm_model,
            response_model=RawReactorResponse,
            base_url=Config.OLLAMA_BASE_URL,
        )
