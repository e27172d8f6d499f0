"""Round execution engine.

One round: build prompt -> model call -> record usage -> validate claims ->
quality gate -> retry at most once -> compress for later rounds. Any
exception on the way degrades the round to its static fallback; this never
raises to the caller.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from pydantic import BaseModel

from .compressor import compress_round_output
from .events import PipelineEvents
from .models import (
    CompletionRequest,
    CompletionResult,
    QualityMetrics,
    RoundExecutionResult,
    RoundStatus,
    TokenUsage,
    ValidationResult,
)
from .providers import ModelClient
from .quality import check_quality
from .tokens import estimate_tokens as default_estimate_tokens
from .tracker import TokenUsageTracker

DEFAULT_CONTEXT_BUDGET = 2000
DEFAULT_DROP_RATE_THRESHOLD = 0.3


@dataclass
class RoundOptions:
    round_number: int
    client: ModelClient
    shape: type[BaseModel]
    build_prompt: Callable[[bool], CompletionRequest]
    validate: Callable[[dict], ValidationResult]
    build_fallback: Callable[[], dict]
    tracker: TokenUsageTracker
    estimate_tokens: Callable[[str], int] = default_estimate_tokens
    events: PipelineEvents | None = None
    context_budget: int = DEFAULT_CONTEXT_BUDGET
    drop_rate_threshold: float = DEFAULT_DROP_RATE_THRESHOLD
    file_content_tokens: int = 0


def record_completion(
    tracker: TokenUsageTracker,
    round_number: int,
    request: CompletionRequest,
    completion: CompletionResult,
    client: ModelClient,
    estimate_tokens: Callable[[str], int],
    file_content_tokens: int = 0,
) -> None:
    tracker.record_round(TokenUsage(
        round=round_number,
        input_tokens=completion.usage.input_tokens,
        output_tokens=completion.usage.output_tokens,
        context_tokens=estimate_tokens(request.system_prompt + request.user_prompt),
        file_content_tokens=file_content_tokens,
        budget_tokens=client.max_context_tokens(),
        cache_read_tokens=completion.usage.cache_read_tokens,
        cache_creation_tokens=completion.usage.cache_creation_tokens,
        model=completion.model,
    ))


def degraded_result(
    round_number: int,
    fallback_data: dict,
    tracker: TokenUsageTracker,
    estimate_tokens: Callable[[str], int],
    context_budget: int = DEFAULT_CONTEXT_BUDGET,
) -> RoundExecutionResult:
    """Static-fallback result; token figures come from whatever was already recorded."""
    usage = tracker.get_round_usage(round_number)
    return RoundExecutionResult(
        data=fallback_data,
        validation=ValidationResult(),
        quality=QualityMetrics(),
        context=compress_round_output(
            round_number, fallback_data, context_budget, estimate_tokens
        ),
        status=RoundStatus.DEGRADED,
        tokens=usage.input_tokens + usage.output_tokens if usage else 0,
        cost=tracker.get_round_cost(round_number),
    )


async def execute_round(options: RoundOptions) -> RoundExecutionResult:
    events = options.events or PipelineEvents()
    number = options.round_number
    retried = False

    def on_client_retry(attempt: int, delay_sec: float, reason: str) -> None:
        events.on_client_retry(number, attempt, delay_sec, reason)

    async def attempt(is_retry: bool) -> RoundExecutionResult:
        nonlocal retried

        request = options.build_prompt(is_retry)
        completion = await options.client.complete(
            request, options.shape, on_retry=on_client_retry
        )
        record_completion(
            options.tracker, number, request, completion, options.client,
            options.estimate_tokens, options.file_content_tokens,
        )

        validation = options.validate(completion.data)
        if validation.drop_rate > options.drop_rate_threshold and not retried:
            retried = True
            events.on_round_retry(
                number, f"{validation.corrected}/{validation.total} claims dropped"
            )
            return await attempt(True)

        quality = check_quality(completion.data, number)
        if not quality.is_acceptable and not retried:
            retried = True
            events.on_round_retry(number, "output failed quality gate")
            return await attempt(True)

        return RoundExecutionResult(
            data=completion.data,
            validation=validation,
            quality=quality,
            context=compress_round_output(
                number, completion.data, options.context_budget, options.estimate_tokens
            ),
            status=RoundStatus.RETRIED if retried else RoundStatus.SUCCESS,
            tokens=completion.usage.input_tokens + completion.usage.output_tokens,
            cost=options.tracker.get_round_cost(number),
        )

    try:
        return await attempt(False)
    except Exception as exc:
        events.on_round_degraded(number, exc)
        return degraded_result(
            number,
            options.build_fallback(),
            options.tracker,
            options.estimate_tokens,
            options.context_budget,
        )
