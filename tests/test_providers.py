"""Tests for the HTTP structured-completion client."""

import json

import anyio
import httpx
import pytest
from pydantic import BaseModel, Field

from codebrief.models import CompletionRequest
from codebrief.providers import (
    HttpModelClient,
    ModelClientError,
    ModelOutputError,
    parse_structured,
    strip_code_fence,
)


class Answer(BaseModel):
    summary: str
    files: list[str] = Field(default_factory=list)


ANSWER = json.dumps({"summary": "ok", "files": ["src/a.py"]})
REQUEST = CompletionRequest(system_prompt="system prompt", user_prompt="user prompt",
                            temperature=0.1, max_tokens=8192)


def _anthropic_body(text=ANSWER, usage=None):
    return {
        "content": [{"type": "text", "text": text}],
        "usage": usage or {"input_tokens": 120, "output_tokens": 30},
    }


@pytest.fixture
def sleeps(monkeypatch):
    """Record backoff delays instead of waiting."""
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(anyio, "sleep", fake_sleep)
    return delays


# --- Request formats ---

@pytest.mark.asyncio
async def test_anthropic_request_format(httpx_mock):
    """Anthropic: correct headers, body and schema-bearing system prompt."""
    httpx_mock.add_response(json=_anthropic_body())
    client = HttpModelClient("anthropic", "claude-sonnet-4-5", "sk-test")
    result = await client.complete(REQUEST, Answer)

    assert result.data == {"summary": "ok", "files": ["src/a.py"]}
    assert result.model == "claude-sonnet-4-5"
    req = httpx_mock.get_request()
    assert req.headers["x-api-key"] == "sk-test"
    assert req.headers["anthropic-version"] == "2023-06-01"
    body = json.loads(req.content)
    assert body["model"] == "claude-sonnet-4-5"
    assert body["max_tokens"] == 8192
    assert body["temperature"] == 0.1
    assert body["system"].startswith("system prompt")
    assert '"summary"' in body["system"]
    assert body["messages"][0]["content"] == "user prompt"


@pytest.mark.asyncio
async def test_openai_request_format(httpx_mock):
    """OpenAI: Bearer token, system/user messages, JSON response format."""
    httpx_mock.add_response(json={
        "choices": [{"message": {"content": ANSWER}}],
        "usage": {"prompt_tokens": 100, "completion_tokens": 20},
    })
    client = HttpModelClient("openai", "gpt-4o", "sk-oai")
    result = await client.complete(REQUEST, Answer)

    assert result.data["summary"] == "ok"
    req = httpx_mock.get_request()
    assert "Bearer sk-oai" in req.headers["authorization"]
    body = json.loads(req.content)
    assert body["messages"][0]["role"] == "system"
    assert body["messages"][1]["role"] == "user"
    assert body["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
async def test_google_request_format(httpx_mock):
    """Google: model in URL, key in header, usage metadata parsed."""
    httpx_mock.add_response(json={
        "candidates": [{"content": {"parts": [{"text": ANSWER}]}}],
        "usageMetadata": {"promptTokenCount": 90, "candidatesTokenCount": 10},
    })
    client = HttpModelClient("google", "gemini-2.5-flash", "AIza-key")
    result = await client.complete(REQUEST, Answer)

    assert result.usage.input_tokens == 90
    req = httpx_mock.get_request()
    assert "gemini-2.5-flash" in str(req.url)
    assert req.headers["x-goog-api-key"] == "AIza-key"


@pytest.mark.asyncio
@pytest.mark.parametrize("provider,host", [("glm", "bigmodel.cn"), ("deepseek", "deepseek.com")])
async def test_openai_compatible_providers(httpx_mock, provider, host):
    """GLM and DeepSeek use the OpenAI wire format at their own endpoints."""
    httpx_mock.add_response(json={"choices": [{"message": {"content": ANSWER}}]})
    client = HttpModelClient(provider, "some-model", "k")
    await client.complete(REQUEST, Answer)
    req = httpx_mock.get_request()
    assert host in str(req.url)
    assert "Bearer k" in req.headers["authorization"]


@pytest.mark.asyncio
async def test_base_url_override(httpx_mock):
    """A custom base_url replaces the provider endpoint."""
    httpx_mock.add_response(url="http://localhost:8080/v1/chat", json={
        "choices": [{"message": {"content": ANSWER}}],
    })
    client = HttpModelClient("openai", "local", "k", base_url="http://localhost:8080/v1/chat")
    result = await client.complete(REQUEST, Answer)
    assert result.data["summary"] == "ok"


def test_unknown_provider_raises():
    """Unknown provider without base_url → ValueError."""
    with pytest.raises(ValueError, match="[Uu]nknown"):
        HttpModelClient("azure", "model", "key")


def test_context_window_defaults():
    assert HttpModelClient("anthropic", "m", "k").max_context_tokens() == 200_000
    assert HttpModelClient("deepseek", "m", "k").max_context_tokens() == 64_000
    assert HttpModelClient("anthropic", "m", "k", max_context=50_000).max_context_tokens() == 50_000


# --- Usage ---

@pytest.mark.asyncio
async def test_anthropic_cache_usage(httpx_mock):
    """Cache read and creation counts come through."""
    httpx_mock.add_response(json=_anthropic_body(usage={
        "input_tokens": 10, "output_tokens": 5,
        "cache_read_input_tokens": 900, "cache_creation_input_tokens": 40,
    }))
    result = await HttpModelClient("anthropic", "m", "k").complete(REQUEST, Answer)
    assert result.usage.input_tokens == 10
    assert result.usage.cache_read_tokens == 900
    assert result.usage.cache_creation_tokens == 40


@pytest.mark.asyncio
async def test_openai_cached_tokens_split_out(httpx_mock):
    """Cached prompt tokens are reported separately from fresh input."""
    httpx_mock.add_response(json={
        "choices": [{"message": {"content": ANSWER}}],
        "usage": {
            "prompt_tokens": 1000, "completion_tokens": 50,
            "prompt_tokens_details": {"cached_tokens": 800},
        },
    })
    result = await HttpModelClient("openai", "gpt-4o", "k").complete(REQUEST, Answer)
    assert result.usage.input_tokens == 200
    assert result.usage.cache_read_tokens == 800


# --- Output parsing ---

def test_strip_code_fence():
    raw = "```json\n{\"a\": 1}\n```"
    assert strip_code_fence(raw) == '{"a": 1}'
    assert strip_code_fence('  {"a": 1} ') == '{"a": 1}'


@pytest.mark.asyncio
async def test_fenced_answer_parsed(httpx_mock):
    """A ```json fenced answer is accepted."""
    httpx_mock.add_response(json=_anthropic_body(text=f"```json\n{ANSWER}\n```"))
    result = await HttpModelClient("anthropic", "m", "k").complete(REQUEST, Answer)
    assert result.data["files"] == ["src/a.py"]


def test_not_json_raises():
    with pytest.raises(ModelOutputError, match="not valid JSON"):
        parse_structured("Sure! Here is the analysis.", Answer)


def test_wrong_shape_raises():
    with pytest.raises(ModelOutputError, match="Answer"):
        parse_structured('{"files": "not-a-list"}', Answer)


# --- Retry ---

@pytest.mark.asyncio
async def test_retry_on_timeout(httpx_mock, sleeps):
    """Two timeouts then success; backoff 1s, 2s; on_retry told each time."""
    httpx_mock.add_exception(httpx.ReadTimeout("timeout"))
    httpx_mock.add_exception(httpx.ReadTimeout("timeout"))
    httpx_mock.add_response(json=_anthropic_body())
    retries = []

    client = HttpModelClient("anthropic", "m", "k")
    result = await client.complete(REQUEST, Answer, on_retry=lambda *a: retries.append(a))

    assert result.data["summary"] == "ok"
    assert sleeps == [1.0, 2.0]
    assert retries == [(1, 1.0, "ReadTimeout"), (2, 2.0, "ReadTimeout")]


@pytest.mark.asyncio
async def test_retry_exhausted_raises(httpx_mock, sleeps):
    """Four timeouts (1 + 3 retries) → ModelClientError."""
    for _ in range(4):
        httpx_mock.add_exception(httpx.ReadTimeout("timeout"))
    with pytest.raises(ModelClientError):
        await HttpModelClient("anthropic", "m", "k").complete(REQUEST, Answer)
    assert len(sleeps) == 3


@pytest.mark.asyncio
async def test_429_rate_limit_retry(httpx_mock, sleeps):
    """429 triggers a retry."""
    httpx_mock.add_response(status_code=429, json={"error": "rate limited"})
    httpx_mock.add_response(json=_anthropic_body())
    retries = []
    result = await HttpModelClient("anthropic", "m", "k").complete(
        REQUEST, Answer, on_retry=lambda *a: retries.append(a)
    )
    assert result.data["summary"] == "ok"
    assert retries == [(1, 1.0, "HTTP 429")]


@pytest.mark.asyncio
async def test_500_raises_after_retry(httpx_mock, sleeps):
    """500 on every attempt → ModelClientError."""
    for _ in range(4):
        httpx_mock.add_response(status_code=500, json={"error": "internal"})
    with pytest.raises(ModelClientError, match="HTTP 500"):
        await HttpModelClient("anthropic", "m", "k").complete(REQUEST, Answer)


@pytest.mark.asyncio
async def test_400_not_retried(httpx_mock, sleeps):
    """Client errors fail immediately."""
    httpx_mock.add_response(status_code=400, json={"error": "bad request"})
    with pytest.raises(ModelClientError, match="HTTP 400"):
        await HttpModelClient("anthropic", "m", "k").complete(REQUEST, Answer)
    assert sleeps == []
