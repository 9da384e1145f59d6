"""Logging utilities for Miniclass sessions.

Provides color-coded output to distinguish deterministic round bookkeeping from
LLM calls made by the selector and the student reactors.
"""

import os
from enum import Enum


class Color(Enum):
    """ANSI color codes for terminal output."""

    BLUE = "\033[94m"      # Deterministic steps (merge, decay, KPIs)
    YELLOW = "\033[93m"    # LLM calls (selector, reactors)
    RED = "\033[91m"       # Degradations and errors
    GREEN = "\033[92m"     # Round completion
    CYAN = "\033[96m"      # Info/metadata

    # Formatting
    BOLD = "\033[1m"
    RESET = "\033[0m"


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes if colors are enabled.

    Args:
        text: Text to colorize
        color: Color to apply
        bold: Whether to make text bold

    Returns:
        Colorized text if MINICLASS_NO_COLOR is not set, otherwise plain text
    """
    if os.getenv("MINICLASS_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


def is_verbose() -> bool:
    return os.getenv("MINICLASS_VERBOSE", "").lower() in ("1", "true", "yes")


def is_debug_llm() -> bool:
    return os.getenv("DEBUG_LLM", "").lower() in ("1", "true", "yes")


def log_deterministic(message: str) -> None:
    """Log a deterministic operation (blue)."""
    print(colored(f"  {LOG_TAG_DETERMINISTIC} {message}", Color.BLUE))


def log_llm(message: str) -> None:
    """Log an LLM operation (yellow)."""
    print(colored(f"  {LOG_TAG_LLM} {message}", Color.YELLOW))


def log_error(message: str) -> None:
    """Log a degradation or error (red)."""
    print(colored(f"  {LOG_TAG_ERROR} {message}", Color.RED))


def log_success(message: str) -> None:
    """Log a success (green)."""
    print(colored(f"  {LOG_TAG_SUCCESS} {message}", Color.GREEN))


def log_info(message: str) -> None:
    """Log metadata/info (cyan)."""
    print(colored(f"  {LOG_TAG_INFO} {message}", Color.CYAN))


# Markers for operation types (color-blind accessible)
LOG_TAG_DETERMINISTIC = "[•]"
LOG_TAG_LLM = "[LLM]"
LOG_TAG_ERROR = "[!]"
LOG_TAG_SUCCESS = "[✓]"
LOG_TAG_INFO = "[i]"
