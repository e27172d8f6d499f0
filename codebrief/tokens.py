"""Token estimation and context-window budgeting."""

from __future__ import annotations

import math
from dataclasses import dataclass


def estimate_tokens(text: str) -> int:
    """chars/4 heuristic; good enough for budgeting."""
    return math.ceil(len(text) / 4)


@dataclass(frozen=True)
class TokenBudget:
    total: int
    prompt_overhead: int
    output_reserve: int
    file_content_budget: int


def compute_token_budget(
    max_tokens: int,
    prompt_overhead: int = 3000,
    output_reserve: int = 4096,
    safety_margin: float = 0.9,
) -> TokenBudget:
    """Reserve room for prompt scaffolding and output; the rest is for files."""
    available = max(max_tokens - prompt_overhead - output_reserve, 0)
    return TokenBudget(
        total=max_tokens,
        prompt_overhead=prompt_overhead,
        output_reserve=output_reserve,
        file_content_budget=math.floor(available * safety_margin),
    )
