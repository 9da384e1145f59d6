"""
Miniclass Configuration

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


class Config:
    """Application configuration loaded from environment variables."""

    # LLM Provider Configuration
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "openai")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-5-mini")

    # API Keys
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")

    # Ollama server used when LLM_PROVIDER=ollama
    OLLAMA_BASE_URL: str | None = os.getenv("OLLAMA_BASE_URL")

    # Round policy
    SELECTOR_MAX_STUDENTS: int = int(os.getenv("SELECTOR_MAX_STUDENTS", "5"))
    IDLE_ATTENTION_DECAY: float = float(os.getenv("IDLE_ATTENTION_DECAY", "0.5"))
    ZONED_OUT_THRESHOLD: float = float(os.getenv("ZONED_OUT_THRESHOLD", "20"))
    HAND_RAISE_ESCALATION_ROUNDS: int = int(os.getenv("HAND_RAISE_ESCALATION_ROUNDS", "3"))
    MEMORY_CAPACITY: int = int(os.getenv("MEMORY_CAPACITY", "5"))
    REACTOR_TIMEOUT_SECONDS: float = float(os.getenv("REACTOR_TIMEOUT_SECONDS", "60"))

    # How much of the class log each prompt sees
    SELECTOR_LOG_WINDOW: int = int(os.getenv("SELECTOR_LOG_WINDOW", "30"))
    REACTOR_LOG_WINDOW: int = int(os.getenv("REACTOR_LOG_WINDOW", "10"))

    # Project Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent
    SCENARIOS_DIR: Path = PROJECT_ROOT / "examples" / "scenarios"

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if required values are missing."""
        if cls.LLM_PROVIDER == "anthropic" and not cls.ANTHROPIC_API_KEY:
            raise ValueError(
                "ANTHROPIC_API_KEY is required when using the 'anthropic' provider"
            )

        if cls.LLM_PROVIDER == "openai" and not cls.OPENAI_API_KEY:
            raise ValueError(
                "OPENAI_API_KEY is required when using the 'openai' provider. "
                "For local models, set LLM_PROVIDER=ollama instead."
            )

        if cls.SELECTOR_MAX_STUDENTS < 1:
            raise ValueError("SELECTOR_MAX_STUDENTS must be at least 1")

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "Miniclass Configuration:",
            f"  LLM Provider: {cls.LLM_PROVIDER}",
            f"  LLM Model: {cls.LLM_MODEL}",
            f"  Max Students Per Round: {cls.SELECTOR_MAX_STUDENTS}",
            f"  Idle Attention Decay: {cls.IDLE_ATTENTION_DECAY}",
            f"  Zoned-Out Threshold: {cls.ZONED_OUT_THRESHOLD}",
            f"  Hand-Raise Escalation: {cls.HAND_RAISE_ESCALATION_ROUNDS} rounds",
            f"  Reactor Timeout: {cls.REACTOR_TIMEOUT_SECONDS}s",
        ]
        return "\n".join(lines)


@dataclass(frozen=True)
class RoundPolicy:
    """Tunable constants for selection, idle decay, and escalation.

    Defaults come from Config so deployments tune them through the environment,
    while tests construct explicit policies.
    """

    max_students: int = Config.SELECTOR_MAX_STUDENTS
    idle_attention_decay: float = Config.IDLE_ATTENTION_DECAY
    zoned_out_threshold: float = Config.ZONED_OUT_THRESHOLD
    hand_raise_escalation_rounds: int = Config.HAND_RAISE_ESCALATION_ROUNDS
    memory_capacity: int = Config.MEMORY_CAPACITY
    reactor_timeout_seconds: float = Config.REACTOR_TIMEOUT_SECONDS
    min_bloom_level: int = 1
    max_bloom_level: int = 6
    max_delta: float = 20.0
    max_memory_note_length: int = 100


DEFAULT_POLICY = RoundPolicy()
