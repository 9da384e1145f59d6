"""Minimal client for a locally hosted Ollama chat server.

Used when ``LLM_PROVIDER=ollama`` so classrooms can be simulated offline.
Requests are plain HTTP through urllib, run in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Dict, List
from urllib import error, request

DEFAULT_OLLAMA_BASE_URL = "http://127.0.0.1:11434"


class LocalLLMError(RuntimeError):
    """The local model server could not produce a reply."""


def _chat_messages(system_prompt: str, user_prompt: str) -> List[Dict[str, str]]:
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": user_prompt})
    return messages


def _post_chat(payload: dict, base_url: str, timeout: float) -> str:
    endpoint = base_url.rstrip("/") + "/api/chat"
    http_request = request.Request(
        endpoint,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
    )

    try:
        with request.urlopen(http_request, timeout=timeout) as response:
            raw_body = response.read()
    except error.HTTPError as exc:
        raise LocalLLMError(f"Ollama returned HTTP {exc.code} for {endpoint}") from exc
    except error.URLError as exc:
        raise LocalLLMError(f"Ollama is unreachable at {endpoint}: {exc.reason}") from exc

    try:
        reply = json.loads(raw_body)
    except ValueError as exc:
        raise LocalLLMError("Ollama reply body was not JSON") from exc

    content = reply.get("message", {}).get("content") if isinstance(reply, dict) else None
    if not content:
        raise LocalLLMError("Ollama reply had no message content")
    return content


async def call_ollama_chat(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_model: str,
    base_url: str | None = None,
    timeout: float = 120.0,
) -> str:
    """Send one non-streaming chat turn in JSON mode and return the reply text."""

    if not user_prompt.strip():
        raise LocalLLMError("Refusing to send an empty user prompt to Ollama")

    payload = {
        "model": llm_model,
        "messages": _chat_messages(system_prompt.strip(), user_prompt.strip()),
        "stream": False,
        "format": "json",
    }
    server = base_url or os.getenv("OLLAMA_BASE_URL") or DEFAULT_OLLAMA_BASE_URL
    return await asyncio.to_thread(_post_chat, payload, server, timeout)
