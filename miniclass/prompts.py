"""Prompt templates for the LLM-backed selector and student reactor."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Mapping

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


@dataclass
class PromptTemplate:
    """Represents a templated prompt with ``{{placeholder}}`` slots."""

    name: str
    system: str
    user: str
    description: str = ""


@dataclass
class RenderedPrompt:
    system: str
    user: str


class PromptLibrary:
    """Container for named prompt templates."""

    def __init__(self) -> None:
        self.templates: Dict[str, PromptTemplate] = {}

    def register(self, template: PromptTemplate) -> None:
        self.templates[template.name] = template

    def get(self, name: str) -> PromptTemplate:
        return self.templates[name]


def render_prompt(template: PromptTemplate, values: Mapping[str, str]) -> RenderedPrompt:
    """Replace ``{{key}}`` placeholders in both prompt halves in a single pass.

    Substituted values are never rescanned, so an utterance that contains
    ``{{class_log}}`` stays literal. Unknown placeholders are left untouched;
    double braces never collide with the JSON examples embedded in the templates.
    """

    def substitute(match: re.Match) -> str:
        key = match.group(1)
        return values[key] if key in values else match.group(0)

    return RenderedPrompt(
        system=_PLACEHOLDER.sub(substitute, template.system),
        user=_PLACEHOLDER.sub(substitute, template.user),
    )


DEFAULT_PROMPTS = PromptLibrary()

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="select_students",
        system=(
            "You are a classroom orchestrator. Decide which students should be actively "
            "simulated this round based on what the teacher said.\n\n"
            "Be strategic (simulate students likely to have a visible reaction), efficient "
            "(0-{{max_students}} students per round) and pedagogically aware.\n\n"
            "Bloom's taxonomy levels:\n"
            "1 = Remembering, 2 = Understanding, 3 = Applying, 4 = Analyzing, "
            "5 = Evaluating, 6 = Creating\n\n"
            "Student statuses: listening, confused, hand_raised, zoned_out, chatting, frustrated.\n\n"
            "Guidelines:\n"
            "- Always simulate students with hand_raised.\n"
            "- Choose at least one student when the room is not empty.\n"
            "- Simulate confused or frustrated students while the teacher explains.\n"
            "- Simulate zoned_out students when the teacher asks a question.\n"
            "- After a lecture segment simulate 1-2 students; after a question, 3-{{max_students}}.\n"
            "- teacher_tip: optional one-sentence coaching advice.\n"
            "- called_on_student_id: set when the teacher calls on someone by name.\n"
            "- topic_update: set only when the subject clearly changed.\n\n"
            "Return JSON only:\n"
            "{\n"
            '  "students_to_simulate": ["<student id>", ...],\n'
            '  "teacher_asked_question": <boolean>,\n'
            '  "bloom_level": <number 1-6>,\n'
            '  "called_on_student_id": <string or null>,\n'
            '  "teacher_tip": <string or null>,\n'
            '  "topic_update": <string or null>,\n'
            '  "debug_reason": <string or null>\n'
            "}"
        ),
        user=(
            'Teacher just said: "{{utterance}}"\n\n'
            "Current topic: {{topic}}\n"
            "Rounds since the teacher last asked a question: {{time_since_question}}\n\n"
            "Recent class activity:\n{{class_log}}\n\n"
            "Current student states:\n{{student_summaries}}\n\n"
            "Decide which students to simulate. Return JSON only."
        ),
        description="Chooses the students to simulate and extracts pedagogical signals.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="react",
        system=(
            "You are {{name}}, age {{age}}.\n\n"
            "Background: {{background}}\n\n"
            "Personality (0-1 scale):\n{{personality}}\n\n"
            "Communication style: {{communication_style}}\n"
            "Phrases you naturally use: {{example_phrases}}\n\n"
            "Current mood: {{mood}}; energy: {{energy}}\n\n"
            "React to what the teacher just said. Return JSON only:\n"
            "{\n"
            '  "attention_delta": <number from -20 to 20>,\n'
            '  "understanding_delta": <number from -20 to 20>,\n'
            '  "next_status": "listening" | "confused" | "hand_raised" | "zoned_out" | "chatting" | "frustrated",\n'
            '  "pending_question": <string or null>,\n'
            '  "chat_message": <string or null>,\n'
            '  "memory_note": <string under 100 characters or null>\n'
            "}\n\n"
            "Be realistic for your personality: extraverts speak up more, low "
            "conscientiousness distracts easily, high emotionality reacts strongly to confusion."
        ),
        user=(
            'Teacher just said: "{{utterance}}"\n'
            "Teacher asked a question: {{teacher_asked_question}}\n\n"
            "What you heard recently:\n{{class_log}}\n\n"
            "{{last_student}}\n\n"
            "Your current state:\n"
            "- Attention: {{attention}}/100\n"
            "- Understanding: {{understanding}}/100\n"
            "- Status: {{status}}\n"
            "- Recent memory: {{memory}}\n\n"
            "Class mood right now: {{class_mood}}\n\n"
            "React to the teacher. Return JSON only."
        ),
        description="Computes one student's reaction to the teacher's utterance.",
    )
)


def format_class_log(entries, limit: int | None = None) -> str:
    """Render log entries as ``[Round n] Speaker: "content"`` lines."""

    items = list(entries)
    if limit is not None:
        items = items[-limit:] if limit > 0 else []
    if not items:
        return "(nothing yet)"
    return "\n".join(f'[Round {e.round}] {e.speaker}: "{e.content}"' for e in items)
