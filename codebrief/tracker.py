"""Per-round token usage ledger with cost accounting and budget warnings."""

from __future__ import annotations

from dataclasses import dataclass, replace

from .events import PipelineEvents
from .models import TokenUsage

# USD per million tokens: (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-opus-4-6": (15.0, 75.0),
    "claude-opus-4-5": (15.0, 75.0),
    "claude-sonnet-4-5": (3.0, 15.0),
    "claude-haiku-4-5": (1.0, 5.0),
    "gpt-4o": (2.5, 10.0),
    "gpt-4o-mini": (0.15, 0.6),
    "gemini-2.5-pro": (1.25, 10.0),
    "gemini-2.5-flash": (0.3, 2.5),
    "deepseek-chat": (0.28, 0.42),
}

# Unknown models are billed at the most expensive known rate.
DEFAULT_PRICING = max(MODEL_PRICING.values(), key=lambda rates: rates[0] + rates[1])

CACHE_READ_MULTIPLIER = 0.1
CACHE_WRITE_MULTIPLIER = 1.25


@dataclass(frozen=True)
class CacheSavings:
    tokens_saved: int
    dollars_saved: float
    percent_saved: float


def pricing_for(model: str) -> tuple[float, float]:
    return MODEL_PRICING.get(model, DEFAULT_PRICING)


def usage_cost(usage: TokenUsage, model: str = "") -> float:
    """Dollar cost of one recorded call."""
    input_rate, output_rate = pricing_for(usage.model or model)
    return (
        usage.input_tokens * input_rate
        + usage.cache_read_tokens * input_rate * CACHE_READ_MULTIPLIER
        + usage.cache_creation_tokens * input_rate * CACHE_WRITE_MULTIPLIER
        + usage.output_tokens * output_rate
    ) / 1_000_000


class TokenUsageTracker:
    """Append-only log of per-call usage.

    Several records may share a round number (retries, fan-out module calls);
    per-round queries aggregate them.
    """

    def __init__(
        self,
        model: str = "",
        warn_threshold: float = 0.85,
        events: PipelineEvents | None = None,
    ):
        self.model = model
        self.warn_threshold = warn_threshold
        self.events = events or PipelineEvents()
        self._records: list[TokenUsage] = []

    def record_round(self, usage: TokenUsage) -> None:
        """Append one usage record. Warns past the utilization threshold."""
        self._records.append(usage)
        utilization = usage.input_tokens / usage.budget_tokens if usage.budget_tokens > 0 else 0
        if utilization >= self.warn_threshold:
            self.events.on_budget_warning(usage, utilization)

    @property
    def records(self) -> list[TokenUsage]:
        return list(self._records)

    def get_total_usage(self) -> dict[str, int]:
        return {
            "input": sum(r.input_tokens for r in self._records),
            "output": sum(r.output_tokens for r in self._records),
        }

    def get_round_count(self) -> int:
        return len({r.round for r in self._records})

    def get_last_round(self) -> TokenUsage | None:
        return self._records[-1] if self._records else None

    def get_round_usage(self, round_number: int) -> TokenUsage | None:
        """Sum of every record for the round, or None if none were recorded."""
        matching = [r for r in self._records if r.round == round_number]
        if not matching:
            return None
        total = matching[0]
        for r in matching[1:]:
            total = replace(
                total,
                input_tokens=total.input_tokens + r.input_tokens,
                output_tokens=total.output_tokens + r.output_tokens,
                context_tokens=total.context_tokens + r.context_tokens,
                file_content_tokens=total.file_content_tokens + r.file_content_tokens,
                cache_read_tokens=total.cache_read_tokens + r.cache_read_tokens,
                cache_creation_tokens=total.cache_creation_tokens + r.cache_creation_tokens,
                budget_tokens=max(total.budget_tokens, r.budget_tokens),
            )
        return total

    def get_round_cost(self, round_number: int) -> float:
        return sum(
            usage_cost(r, self.model) for r in self._records if r.round == round_number
        )

    def get_total_cost(self) -> float:
        return sum(usage_cost(r, self.model) for r in self._records)

    def get_round_cache_savings(self, round_number: int) -> CacheSavings | None:
        usage = self.get_round_usage(round_number)
        if usage is None or (usage.cache_read_tokens == 0 and usage.cache_creation_tokens == 0):
            return None

        input_rate, output_rate = pricing_for(usage.model or self.model)
        uncached = (
            (usage.input_tokens + usage.cache_read_tokens + usage.cache_creation_tokens)
            * input_rate
            + usage.output_tokens * output_rate
        ) / 1_000_000
        dollars_saved = (
            usage.cache_read_tokens * input_rate * (1 - CACHE_READ_MULTIPLIER)
            - usage.cache_creation_tokens * input_rate * (CACHE_WRITE_MULTIPLIER - 1)
        ) / 1_000_000
        return CacheSavings(
            tokens_saved=usage.cache_read_tokens,
            dollars_saved=dollars_saved,
            percent_saved=dollars_saved / uncached * 100 if uncached > 0 else 0.0,
        )

    def to_summary(self) -> str:
        """Multi-line summary for terminal display."""
        if not self._records:
            return "No rounds recorded."

        lines = ["Token Usage Summary", ""]
        for number in sorted({r.round for r in self._records}):
            usage = self.get_round_usage(number)
            util = (
                f"{round(usage.input_tokens / usage.budget_tokens * 100)}%"
                if usage.budget_tokens > 0 else "N/A"
            )
            line = (
                f"  Round {number}: {usage.input_tokens:,} input, "
                f"{usage.output_tokens:,} output ({util} budget), "
                f"${self.get_round_cost(number):.4f}"
            )
            savings = self.get_round_cache_savings(number)
            if savings is not None:
                line += f", cache saved ${savings.dollars_saved:.4f}"
            lines.append(line)

        total = self.get_total_usage()
        lines.append("")
        lines.append(
            f"  Total: {total['input']:,} input, {total['output']:,} output "
            f"across {self.get_round_count()} round(s), ${self.get_total_cost():.4f}"
        )
        return "\n".join(lines)
