"""
Miniclass - classroom simulation core for teacher practice.

Each round the teacher says something; a selector picks which students react,
the reactors run concurrently, and the round processor merges their reactions
with passive decay and hand-raise escalation for everyone else.

No file I/O required. No database required.
Selector, reactor, policy and storage are all injected by the caller.
"""

__version__ = "0.1.0"

# Round processing
from .round_processor import (
    RoundProcessor,
    RoundResult,
    MiniclassError,
    InvalidRoundInputError,
)
from .classroom import Classroom, SessionNotFoundError, create_session
from .config import Config, RoundPolicy, DEFAULT_POLICY

# Pluggable capabilities
from .selector import Selector, RuleBasedSelector, LLMSelector
from .reactor import Reactor, ReactorContext, RuleBasedReactor, LLMReactor
from .prompts import PromptTemplate, PromptLibrary, DEFAULT_PROMPTS

# Storage
from .persistence import (
    SessionRepository,
    InMemorySessionRepository,
    JsonSessionRepository,
)

# Analytics
from .kpis import calculate_kpis, derive_class_mood
from .history import build_round_entry

# Core schemas
from .schemas import (
    StudentStatus,
    Identity,
    Personality,
    InitialState,
    CommunicationStyle,
    Persona,
    StudentState,
    Student,
    LogEntry,
    ClassroomSession,
    RoundEntry,
    SelectorOutput,
    ReactorOutput,
    KPIs,
    TalkRatio,
)

# Scenario loader helpers
from .scenario import load_classroom, ScenarioLoader

__all__ = [
    # Round processing
    "RoundProcessor",
    "RoundResult",
    "MiniclassError",
    "InvalidRoundInputError",
    "Classroom",
    "SessionNotFoundError",
    "create_session",
    "Config",
    "RoundPolicy",
    "DEFAULT_POLICY",
    # Capabilities
    "Selector",
    "RuleBasedSelector",
    "LLMSelector",
    "Reactor",
    "ReactorContext",
    "RuleBasedReactor",
    "LLMReactor",
    "PromptTemplate",
    "PromptLibrary",
    "DEFAULT_PROMPTS",
    # Storage
    "SessionRepository",
    "InMemorySessionRepository",
    "JsonSessionRepository",
    # Analytics
    "calculate_kpis",
    "derive_class_mood",
    "build_round_entry",
    # Student schemas
    "StudentStatus",
    "Identity",
    "Personality",
    "InitialState",
    "CommunicationStyle",
    "Persona",
    "StudentState",
    "Student",
    # Session schemas
    "LogEntry",
    "ClassroomSession",
    "RoundEntry",
    "SelectorOutput",
    "ReactorOutput",
    "KPIs",
    "TalkRatio",
    # Scenario helpers
    "load_classroom",
    "ScenarioLoader",
]
