"""Model-calling collaborators."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from pydantic import BaseModel

from ..models import CompletionRequest, CompletionResult
from .http_model import (
    ENDPOINTS,
    HttpModelClient,
    ModelClientError,
    ModelOutputError,
    parse_structured,
    strip_code_fence,
)


class ModelClient(Protocol):
    """What the round engine needs from a model backend.

    complete() may raise anything; callers treat that as a failed call.
    """

    async def complete(
        self,
        request: CompletionRequest,
        shape: type[BaseModel],
        on_retry: Callable[[int, float, str], None] | None = None,
    ) -> CompletionResult: ...

    def max_context_tokens(self) -> int: ...

    def estimate_tokens(self, text: str) -> int: ...


__all__ = [
    "ENDPOINTS",
    "HttpModelClient",
    "ModelClient",
    "ModelClientError",
    "ModelOutputError",
    "parse_structured",
    "strip_code_fence",
]
