"""Structured LLM calls for the selector and student reactors.

Both capabilities ask a chat model for a JSON object and parse it into a
pydantic model. A reply that fails validation is sent back to the model with
the list of problems so it can correct itself; any other failure (timeout,
provider error) is raised on first occurrence and handled by the round
processor as a degradation.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Type, TypeVar

from mirascope import llm
from pydantic import BaseModel, ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from .local_llm import LocalLLMError, call_ollama_chat
from .logging_utils import log_error


ResponseT = TypeVar("ResponseT", bound=BaseModel)
LLM_TIMEOUT_SECONDS = 120.0
MAX_RECEIVED_CHARS = 80

Invoker = Callable[[str, str], Awaitable[ResponseT]]


@dataclass(slots=True)
class RetryFeedback:
    """Correction appended to the user prompt on the next attempt."""

    prompt_suffix: str
    issues: List[str]


def _shorten(value: object) -> str:
    text = "null" if value is None else repr(value)
    if len(text) <= MAX_RECEIVED_CHARS:
        return text
    return text[: MAX_RECEIVED_CHARS - 3] + "..."


def build_retry_feedback(error: ValidationError) -> RetryFeedback:
    """Describe each validation problem as ``field: message | received=...``."""

    issues = []
    for problem in error.errors(include_url=False):
        field_path = ".".join(str(part) for part in problem.get("loc", ())) or "root"
        line = f"{field_path}: {problem.get('msg', 'invalid value')}"
        if "input" in problem:
            line += f" | received={_shorten(problem['input'])}"
        issues.append(line)
    if not issues:
        issues = ["root: reply did not match the expected JSON object"]

    suffix = "\n".join(
        [
            "Your last reply could not be parsed into the required JSON object.",
            "Fix these problems and reply with the JSON object only (no prose, no code fences):",
            *(f"- {issue}" for issue in issues),
        ]
    )
    return RetryFeedback(prompt_suffix=suffix, issues=issues)


def _remote_invoker(provider: str, model: str, response_model: Type[ResponseT]) -> Invoker:
    """Hosted providers take one combined prompt through mirascope."""

    @llm.call(provider=provider, model=model, response_model=response_model)
    async def _call(prompt: str) -> str:
        return prompt

    async def invoke(system: str, user: str) -> ResponseT:
        return await _call("\n\n".join(part for part in (system, user) if part))

    return invoke


def _ollama_invoker(model: str, response_model: Type[ResponseT], base_url: str | None) -> Invoker:
    async def invoke(system: str, user: str) -> ResponseT:
        try:
            text = await call_ollama_chat(
                system_prompt=system,
                user_prompt=user,
                llm_model=model,
                base_url=base_url,
            )
        except LocalLLMError as exc:
            raise RuntimeError(f"Local LLM provider error (ollama): {exc}") from exc
        return response_model.model_validate_json(text)

    return invoke


async def call_llm_with_retries(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_provider: str,
    llm_model: str,
    response_model: Type[ResponseT],
    max_attempts: int = 3,
    timeout: float = LLM_TIMEOUT_SECONDS,
    base_url: str | None = None,
) -> ResponseT:
    """Ask ``llm_provider`` for a ``response_model`` reply.

    Only ValidationError triggers another attempt, up to ``max_attempts``;
    the last one is re-raised when attempts run out.
    """

    if llm_provider.lower() == "ollama":
        invoke = _ollama_invoker(llm_model, response_model, base_url)
    else:
        invoke = _remote_invoker(llm_provider, llm_model, response_model)

    system = system_prompt.strip()
    user = user_prompt.strip()
    feedback: RetryFeedback | None = None
    label = response_model.__name__

    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(ValidationError),
        stop=stop_after_attempt(max_attempts),
        reraise=True,
    ):
        with attempt:
            number = attempt.retry_state.attempt_number
            prompt = user if feedback is None else f"{user}\n\n{feedback.prompt_suffix}"
            try:
                return await asyncio.wait_for(invoke(system, prompt), timeout=timeout)
            except ValidationError as exc:
                feedback = build_retry_feedback(exc)
                log_error(f"{label} reply failed validation (attempt {number}/{max_attempts})")
                for issue in feedback.issues:
                    print(f"    - {issue}")
                raise
            except asyncio.TimeoutError:
                log_error(f"{label} call timed out after {timeout:g}s")
                raise

    raise RuntimeError("LLM retry loop ended without a result")
