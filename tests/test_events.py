"""Tests for event sinks."""

import logging

from codebrief.events import LoggingEvents, MultiEvents, PipelineEvents
from codebrief.models import StepResult, StepStatus, TokenUsage


class Collect(PipelineEvents):
    def __init__(self):
        self.seen = []

    def on_round_retry(self, round_number, reason):
        self.seen.append(("retry", round_number))

    def on_module_failed(self, round_number, module_name, error):
        self.seen.append(("module", module_name))


def test_multi_events_forwards_to_every_sink():
    a, b = Collect(), Collect()
    sink = MultiEvents(a, b)
    sink.on_round_retry(2, "drop rate")
    sink.on_module_failed(5, "api", RuntimeError("x"))
    sink.on_step_start("s", "S")  # not overridden: no-op
    assert a.seen == b.seen == [("retry", 2), ("module", "api")]


def test_logging_events(caplog):
    events = LoggingEvents(logging.getLogger("codebrief.test"))
    with caplog.at_level(logging.INFO, logger="codebrief.test"):
        events.on_step_fail(StepResult("ai-round-3", StepStatus.FAILED, error=ValueError("bad")))
        events.on_round_degraded(3, TimeoutError("slow"))
        events.on_budget_warning(
            TokenUsage(round=1, input_tokens=90_000, output_tokens=0, budget_tokens=100_000), 0.9
        )

    messages = [r.getMessage() for r in caplog.records]
    assert "ai-round-3: failed: bad" in messages
    assert "Round 3 failed: slow -- falling back to static data" in messages
    assert "Round 1: 90% of token budget used (90,000/100,000 tokens)" in messages
    assert caplog.records[0].levelno == logging.ERROR
