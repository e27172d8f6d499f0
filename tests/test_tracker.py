"""Tests for token usage accounting, cost, cache savings and budget warnings."""

import pytest

from codebrief.events import PipelineEvents
from codebrief.models import TokenUsage
from codebrief.tracker import DEFAULT_PRICING, TokenUsageTracker, pricing_for, usage_cost


def _usage(round_number, inp, out, **kw):
    kw.setdefault("budget_tokens", 200_000)
    return TokenUsage(round=round_number, input_tokens=inp, output_tokens=out, **kw)


# --- Totals ---

def test_total_usage_three_rounds():
    """Inputs 100/200/300, outputs 50/100/150 → 600 in, 300 out."""
    t = TokenUsageTracker()
    t.record_round(_usage(1, 100, 50))
    t.record_round(_usage(2, 200, 100))
    t.record_round(_usage(3, 300, 150))
    assert t.get_total_usage() == {"input": 600, "output": 300}
    assert t.get_round_count() == 3
    assert t.get_last_round().round == 3


def test_round_usage_aggregates_multiple_calls():
    """Retries and fan-out calls share a round; per-round queries sum them."""
    t = TokenUsageTracker()
    t.record_round(_usage(5, 100, 10))
    t.record_round(_usage(5, 300, 30))
    usage = t.get_round_usage(5)
    assert usage.input_tokens == 400
    assert usage.output_tokens == 40


def test_round_usage_missing_is_none():
    """Unrecorded round → None, cost 0."""
    t = TokenUsageTracker()
    assert t.get_round_usage(4) is None
    assert t.get_round_cost(4) == 0.0
    assert t.get_last_round() is None


# --- Cost ---

def test_cost_known_model():
    """Sonnet: 1M in @ $3 + 1M out @ $15."""
    t = TokenUsageTracker(model="claude-sonnet-4-5")
    t.record_round(_usage(1, 1_000_000, 1_000_000))
    assert t.get_round_cost(1) == pytest.approx(18.0)
    assert t.get_total_cost() == pytest.approx(18.0)


def test_unknown_model_uses_most_expensive_rate():
    """Unknown model is billed at the top rate."""
    assert pricing_for("mystery-model") == DEFAULT_PRICING
    assert DEFAULT_PRICING == (15.0, 75.0)


def test_per_record_model_overrides_tracker_model():
    """A record's own model name wins over the tracker default."""
    usage = _usage(1, 1_000_000, 0, model="claude-haiku-4-5")
    assert usage_cost(usage, "claude-opus-4-5") == pytest.approx(1.0)


def test_cache_read_and_write_multipliers():
    """Cache reads at 0.1x input rate, writes at 1.25x."""
    usage = _usage(1, 0, 0, cache_read_tokens=1_000_000, cache_creation_tokens=1_000_000)
    assert usage_cost(usage, "claude-sonnet-4-5") == pytest.approx(3.0 * 0.1 + 3.0 * 1.25)


# --- Cache savings ---

def test_cache_savings_none_without_cache_activity():
    """No cache tokens → None."""
    t = TokenUsageTracker(model="claude-sonnet-4-5")
    t.record_round(_usage(1, 100, 10))
    assert t.get_round_cache_savings(1) is None
    assert t.get_round_cache_savings(2) is None


def test_cache_savings_reported():
    """900k cache-read tokens save 90% of their standard input price."""
    t = TokenUsageTracker(model="claude-sonnet-4-5")
    t.record_round(_usage(1, 100_000, 0, cache_read_tokens=900_000))
    savings = t.get_round_cache_savings(1)
    assert savings.tokens_saved == 900_000
    assert savings.dollars_saved == pytest.approx(0.9 * 3.0 * 0.9)
    assert 0 < savings.percent_saved < 100


# --- Budget warning ---

class Warnings(PipelineEvents):
    def __init__(self):
        self.seen = []

    def on_budget_warning(self, usage, utilization):
        self.seen.append((usage.round, utilization))


def test_budget_warning_over_threshold():
    """90% utilization warns; 50% does not."""
    events = Warnings()
    t = TokenUsageTracker(events=events)
    t.record_round(_usage(1, 50, 0, budget_tokens=100))
    t.record_round(_usage(2, 90, 0, budget_tokens=100))
    assert events.seen == [(2, pytest.approx(0.9))]


def test_zero_budget_never_warns():
    """No budget ceiling → no utilization, no warning."""
    events = Warnings()
    t = TokenUsageTracker(events=events)
    t.record_round(_usage(1, 10_000, 0, budget_tokens=0))
    assert events.seen == []


# --- Summary ---

def test_summary_lists_rounds_and_total():
    """Summary has a line per round and a total line."""
    t = TokenUsageTracker(model="claude-sonnet-4-5")
    t.record_round(_usage(1, 1000, 100))
    t.record_round(_usage(2, 2000, 200))
    text = t.to_summary()
    assert "Round 1: 1,000 input" in text
    assert "Round 2: 2,000 input" in text
    assert "Total: 3,000 input, 300 output across 2 round(s)" in text


def test_summary_empty():
    assert TokenUsageTracker().to_summary() == "No rounds recorded."
