"""Run event sink: one object passed to the scheduler, engine and tracker."""

from __future__ import annotations

import logging

from .models import StepResult, TokenUsage


class PipelineEvents:
    """No-op base. Subclass and override what you care about."""

    def on_step_start(self, step_id: str, name: str) -> None:
        pass

    def on_step_complete(self, result: StepResult) -> None:
        pass

    def on_step_fail(self, result: StepResult) -> None:
        pass

    def on_step_skip(self, result: StepResult) -> None:
        pass

    def on_round_retry(self, round_number: int, reason: str) -> None:
        pass

    def on_client_retry(
        self, round_number: int, attempt: int, delay_sec: float, reason: str
    ) -> None:
        pass

    def on_round_degraded(self, round_number: int, error: BaseException) -> None:
        pass

    def on_module_failed(
        self, round_number: int, module_name: str, error: BaseException
    ) -> None:
        pass

    def on_budget_warning(self, usage: TokenUsage, utilization: float) -> None:
        pass


class LoggingEvents(PipelineEvents):
    """Writes every event to the logger it was constructed with."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("codebrief")

    def on_step_start(self, step_id: str, name: str) -> None:
        self.logger.info("%s: started", name)

    def on_step_complete(self, result: StepResult) -> None:
        self.logger.info("%s: completed in %.1fs", result.step_id, result.duration_sec)

    def on_step_fail(self, result: StepResult) -> None:
        self.logger.error("%s: failed: %s", result.step_id, result.error)

    def on_step_skip(self, result: StepResult) -> None:
        self.logger.warning("%s: skipped (upstream step did not complete)", result.step_id)

    def on_round_retry(self, round_number: int, reason: str) -> None:
        self.logger.info("Round %d: retrying with stricter prompt (%s)", round_number, reason)

    def on_client_retry(
        self, round_number: int, attempt: int, delay_sec: float, reason: str
    ) -> None:
        self.logger.info(
            "Round %d: model call attempt %d failed (%s), waiting %.0fs",
            round_number, attempt, reason, delay_sec,
        )

    def on_round_degraded(self, round_number: int, error: BaseException) -> None:
        self.logger.warning(
            "Round %d failed: %s -- falling back to static data", round_number, error
        )

    def on_module_failed(
        self, round_number: int, module_name: str, error: BaseException
    ) -> None:
        self.logger.warning(
            "Round %d: module %s analysis failed: %s", round_number, module_name, error
        )

    def on_budget_warning(self, usage: TokenUsage, utilization: float) -> None:
        self.logger.warning(
            "Round %d: %d%% of token budget used (%s/%s tokens)",
            usage.round, round(utilization * 100),
            f"{usage.input_tokens:,}", f"{usage.budget_tokens:,}",
        )


class MultiEvents(PipelineEvents):
    """Forwards every event to each sink in order."""

    def __init__(self, *sinks: PipelineEvents):
        self.sinks = sinks

    def on_step_start(self, step_id: str, name: str) -> None:
        for sink in self.sinks:
            sink.on_step_start(step_id, name)

    def on_step_complete(self, result: StepResult) -> None:
        for sink in self.sinks:
            sink.on_step_complete(result)

    def on_step_fail(self, result: StepResult) -> None:
        for sink in self.sinks:
            sink.on_step_fail(result)

    def on_step_skip(self, result: StepResult) -> None:
        for sink in self.sinks:
            sink.on_step_skip(result)

    def on_round_retry(self, round_number: int, reason: str) -> None:
        for sink in self.sinks:
            sink.on_round_retry(round_number, reason)

    def on_client_retry(
        self, round_number: int, attempt: int, delay_sec: float, reason: str
    ) -> None:
        for sink in self.sinks:
            sink.on_client_retry(round_number, attempt, delay_sec, reason)

    def on_round_degraded(self, round_number: int, error: BaseException) -> None:
        for sink in self.sinks:
            sink.on_round_degraded(round_number, error)

    def on_module_failed(
        self, round_number: int, module_name: str, error: BaseException
    ) -> None:
        for sink in self.sinks:
            sink.on_module_failed(round_number, module_name, error)

    def on_budget_warning(self, usage: TokenUsage, utilization: float) -> None:
        for sink in self.sinks:
            sink.on_budget_warning(usage, utilization)
