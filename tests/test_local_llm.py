import pytest

from miniclass.local_llm import LocalLLMError, call_ollama_chat


@pytest.mark.asyncio
async def test_call_ollama_chat_builds_payload(monkeypatch):
    captured: dict[str, object] = {}

    def fake_post(payload, base_url, timeout):
        captured["payload"] = payload
        captured["base_url"] = base_url
        captured["timeout"] = timeout
        return '{"next_status":"confused"}'

    monkeypatch.setattr("miniclass.local_llm._post_chat", fake_post)

    result = await call_ollama_chat(
        system_prompt="System context",
        user_prompt="User payload",
        llm_model="llama3.1",
        base_url="http://localhost:11434",
        timeout=30,
    )

    assert result == '{"next_status":"confused"}'
    payload = captured["payload"]
    assert payload["model"] == "llama3.1"
    assert payload["format"] == "json"
    assert payload["stream"] is False
    assert payload["messages"][0] == {"role": "system", "content": "System context"}
    assert payload["messages"][1] == {"role": "user", "content": "User payload"}
    assert captured["base_url"] == "http://localhost:11434"
    assert captured["timeout"] == 30


@pytest.mark.asyncio
async def test_call_ollama_chat_rejects_empty_user_prompt():
    with pytest.raises(LocalLLMError):
        await call_ollama_chat(system_prompt="System", user_prompt="   ", llm_model="llama3.1")
