"""Structured completions over HTTP: Anthropic, OpenAI-compatible, Google."""

from __future__ import annotations

import json
import time
from collections.abc import Callable

import anyio
import httpx
from pydantic import BaseModel, ValidationError

from ..models import CompletionRequest, CompletionResult, CompletionUsage
from ..tokens import estimate_tokens

ENDPOINTS: dict[str, str] = {
    "anthropic": "https://api.anthropic.com/v1/messages",
    "openai": "https://api.openai.com/v1/chat/completions",
    "google": "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
    # OpenAI-compatible providers
    "glm": "https://open.bigmodel.cn/api/paas/v4/chat/completions",
    "deepseek": "https://api.deepseek.com/v1/chat/completions",
}

CONTEXT_WINDOWS: dict[str, int] = {
    "anthropic": 200_000,
    "openai": 128_000,
    "google": 1_000_000,
    "glm": 128_000,
    "deepseek": 64_000,
}

_MAX_RETRIES = 3
_RETRY_STATUSES = {429, 500, 502, 503, 529}

_JSON_INSTRUCTIONS = """

Respond with a single JSON object only (no markdown, no commentary) that
conforms to this JSON schema:
{schema}"""


class ModelClientError(Exception):
    """Transport or HTTP failure after retries were exhausted."""


class ModelOutputError(Exception):
    """The model answered, but not with JSON matching the expected shape."""


def strip_code_fence(raw: str) -> str:
    """Drop a surrounding ```json ... ``` block if the model added one."""
    text = raw.strip()
    if not text.startswith("```"):
        return text
    lines: list[str] = []
    inside = False
    for line in text.splitlines():
        if line.strip().startswith("```") and not inside:
            inside = True
            continue
        elif line.strip() == "```" and inside:
            break
        elif inside:
            lines.append(line)
    return "\n".join(lines)


def parse_structured(raw: str, shape: type[BaseModel]) -> dict:
    try:
        payload = json.loads(strip_code_fence(raw))
    except json.JSONDecodeError as exc:
        raise ModelOutputError(f"Model response is not valid JSON: {exc}") from exc
    try:
        return shape.model_validate(payload).model_dump(by_alias=True)
    except ValidationError as exc:
        raise ModelOutputError(
            f"Model response does not match {shape.__name__}: {exc.error_count()} error(s)"
        ) from exc


class HttpModelClient:
    """HTTP-based structured completion with exponential-backoff retry."""

    def __init__(
        self,
        provider: str,
        model: str,
        api_key: str,
        max_context: int | None = None,
        base_url: str = "",
        timeout: float = 120,
    ):
        if provider not in ENDPOINTS and not base_url:
            raise ValueError(f"Unknown provider: {provider}")
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self._max_context = max_context or CONTEXT_WINDOWS.get(provider, 128_000)

    def max_context_tokens(self) -> int:
        return self._max_context

    def estimate_tokens(self, text: str) -> int:
        return estimate_tokens(text)

    async def complete(
        self,
        request: CompletionRequest,
        shape: type[BaseModel],
        on_retry: Callable[[int, float, str], None] | None = None,
    ) -> CompletionResult:
        """Send the request, parse the answer into shape, report usage."""
        system = request.system_prompt + _JSON_INSTRUCTIONS.format(
            schema=json.dumps(shape.model_json_schema(by_alias=True))
        )
        start = time.monotonic()
        if self.provider == "anthropic":
            text, usage = await self._call_anthropic(system, request, on_retry)
        elif self.provider == "google":
            text, usage = await self._call_google(system, request, on_retry)
        else:
            url = self.base_url or ENDPOINTS[self.provider]
            text, usage = await self._call_openai_compat(system, request, url, on_retry)

        return CompletionResult(
            data=parse_structured(text, shape),
            usage=usage,
            model=self.model,
            duration_sec=time.monotonic() - start,
        )

    async def _call_with_retry(
        self,
        method: str,
        url: str,
        on_retry: Callable[[int, float, str], None] | None,
        **kwargs,
    ) -> dict:
        """Run one request with exponential-backoff retry. Creates a fresh
        httpx.AsyncClient per call so there is no shared state to clean up."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(_MAX_RETRIES + 1):
                delay = float(2 ** attempt)
                try:
                    resp = await client.request(method, url, **kwargs)
                except (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.ConnectError) as exc:
                    if attempt < _MAX_RETRIES:
                        if on_retry:
                            on_retry(attempt + 1, delay, type(exc).__name__)
                        await anyio.sleep(delay)
                        continue
                    raise ModelClientError(f"{self.provider} request failed: {exc}") from exc

                if resp.status_code in _RETRY_STATUSES and attempt < _MAX_RETRIES:
                    await resp.aclose()  # Release connection before sleeping
                    if on_retry:
                        on_retry(attempt + 1, delay, f"HTTP {resp.status_code}")
                    await anyio.sleep(delay)
                    continue
                try:
                    resp.raise_for_status()
                except httpx.HTTPStatusError as exc:
                    raise ModelClientError(
                        f"{self.provider} returned HTTP {resp.status_code}"
                    ) from exc
                return resp.json()
        raise ModelClientError(f"{self.provider} request failed")  # pragma: no cover

    async def _call_anthropic(self, system, request, on_retry):
        body = await self._call_with_retry(
            "POST",
            self.base_url or ENDPOINTS["anthropic"],
            on_retry,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": "2023-06-01",
                "content-type": "application/json",
            },
            json={
                "model": self.model,
                "max_tokens": request.max_tokens,
                "temperature": request.temperature,
                "system": system,
                "messages": [{"role": "user", "content": request.user_prompt}],
            },
        )
        text = "".join(
            block.get("text", "") for block in body.get("content", [])
            if block.get("type", "text") == "text"
        )
        raw = body.get("usage", {})
        return text, CompletionUsage(
            input_tokens=raw.get("input_tokens", 0),
            output_tokens=raw.get("output_tokens", 0),
            cache_read_tokens=raw.get("cache_read_input_tokens") or 0,
            cache_creation_tokens=raw.get("cache_creation_input_tokens") or 0,
        )

    async def _call_openai_compat(self, system, request, url, on_retry):
        body = await self._call_with_retry(
            "POST",
            url,
            on_retry,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": self.model,
                "temperature": request.temperature,
                "max_tokens": request.max_tokens,
                "response_format": {"type": "json_object"},
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": request.user_prompt},
                ],
            },
        )
        text = body["choices"][0]["message"]["content"]
        raw = body.get("usage", {})
        cached = (raw.get("prompt_tokens_details") or {}).get("cached_tokens", 0)
        return text, CompletionUsage(
            input_tokens=raw.get("prompt_tokens", 0) - cached,
            output_tokens=raw.get("completion_tokens", 0),
            cache_read_tokens=cached,
        )

    async def _call_google(self, system, request, on_retry):
        url = (self.base_url or ENDPOINTS["google"]).format(model=self.model)
        body = await self._call_with_retry(
            "POST",
            url,
            on_retry,
            headers={"x-goog-api-key": self.api_key},
            json={
                "system_instruction": {"parts": [{"text": system}]},
                "contents": [{"parts": [{"text": request.user_prompt}]}],
                "generationConfig": {
                    "temperature": request.temperature,
                    "maxOutputTokens": request.max_tokens,
                    "responseMimeType": "application/json",
                },
            },
        )
        text = body["candidates"][0]["content"]["parts"][0]["text"]
        raw = body.get("usageMetadata", {})
        cached = raw.get("cachedContentTokenCount", 0)
        return text, CompletionUsage(
            input_tokens=raw.get("promptTokenCount", 0) - cached,
            output_tokens=raw.get("candidatesTokenCount", 0),
            cache_read_tokens=cached,
        )
