import json

import httpx
import pytest

from stagecraft.config import ProviderSettings
from stagecraft.exceptions import ProviderError
from stagecraft.runtime.providers import (
    ChatMessage,
    OllamaProvider,
    ProviderTool,
    ScriptedProvider,
    get_provider,
)
from stagecraft.utils.retry import is_retryable_error


def _provider(handler):
    client = httpx.AsyncClient(
        base_url="http://ollama.test", transport=httpx.MockTransport(handler)
    )
    return OllamaProvider(host="http://ollama.test", model="llama3.1", client=client)


@pytest.mark.asyncio
async def test_chat_sends_tools_and_parses_tool_calls():
    requests = []

    def handler(request):
        requests.append(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "message": {
                    "role": "assistant",
                    "content": "Reading",
                    "tool_calls": [
                        {"function": {"name": "read_file", "arguments": {"path": "a.ts"}}},
                        {"function": {"name": "list_files", "arguments": '{"path": "src"}'}},
                    ],
                },
                "prompt_eval_count": 120,
                "eval_count": 30,
            },
        )

    provider = _provider(handler)
    response = await provider.chat(
        [ChatMessage(role="system", content="sys"), ChatMessage(role="user", content="go")],
        [ProviderTool(name="read_file", description="Read", parameters={"type": "object"})],
    )
    await provider.close()

    payload = requests[0]
    assert payload["model"] == "llama3.1"
    assert payload["stream"] is False
    assert payload["tools"][0]["function"]["name"] == "read_file"
    assert [m["role"] for m in payload["messages"]] == ["system", "user"]

    assert response.stop_reason == "tool_use"
    assert response.content == "Reading"
    assert [(c.name, c.arguments) for c in response.tool_calls] == [
        ("read_file", {"path": "a.ts"}),
        ("list_files", {"path": "src"}),
    ]
    assert response.usage.input_tokens == 120
    assert response.usage.output_tokens == 30


@pytest.mark.asyncio
async def test_plain_reply_ends_turn():
    provider = _provider(
        lambda request: httpx.Response(200, json={"message": {"content": "Done"}})
    )
    response = await provider.chat([ChatMessage(role="user", content="hi")], [])
    assert response.stop_reason == "end_turn"
    assert response.tool_calls == []
    assert response.usage.input_tokens == 0


@pytest.mark.asyncio
async def test_http_errors_carry_status():
    provider = _provider(lambda request: httpx.Response(503, text="loading model"))
    with pytest.raises(ProviderError) as exc_info:
        await provider.chat([ChatMessage(role="user", content="hi")], [])
    assert exc_info.value.status_code == 503
    assert is_retryable_error(exc_info.value)

    provider = _provider(lambda request: httpx.Response(400, text="bad"))
    with pytest.raises(ProviderError) as exc_info:
        await provider.chat([ChatMessage(role="user", content="hi")], [])
    assert not is_retryable_error(exc_info.value)


@pytest.mark.asyncio
async def test_connection_errors_are_retryable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    provider = _provider(handler)
    with pytest.raises(ProviderError) as exc_info:
        await provider.chat([ChatMessage(role="user", content="hi")], [])
    assert exc_info.value.code == "ECONNREFUSED"
    assert is_retryable_error(exc_info.value)


def test_get_provider(tmp_path):
    with pytest.raises(ProviderError, match="requires a script file"):
        get_provider(ProviderSettings(name="scripted"))
    script = tmp_path / "replies.yaml"
    script.write_text("- content: hi\n")
    scripted = get_provider(ProviderSettings(name="scripted", script=str(script)))
    assert isinstance(scripted, ScriptedProvider)

    assert get_provider().model == "llama3.1"
    ollama = get_provider(ProviderSettings(host="http://gpu:11434/", model="qwen"))
    assert isinstance(ollama, OllamaProvider)
    assert ollama.host == "http://gpu:11434"
    assert ollama.model == "qwen"
