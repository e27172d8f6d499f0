"""Pipeline assembly: static analysis, six rounds and rendering on one scheduler."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import anyio

from .config import Config
from .dag import DAGScheduler
from .events import MultiEvents, PipelineEvents
from .facts import scan_project
from .models import RoundExecutionResult, Step, StepContext, StepResult, create_step
from .packer import pack_context
from .providers import HttpModelClient, ModelClient
from .render import FileRenderer, Renderer
from .rounds import (
    RENDER_STEP_ID,
    STATIC_STEP_ID,
    RoundEnv,
    StaticAnalysis,
    create_round_steps,
    round_step_id,
)
from .store import RoundStore
from .summary import (
    ValidationSummary,
    build_failure_report,
    build_validation_summary,
    format_validation_line,
)
from .tokens import compute_token_budget
from .tracker import TokenUsageTracker

if TYPE_CHECKING:
    from .history import RunHistory

log = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_client(config: Config) -> HttpModelClient:
    p = config.provider
    return HttpModelClient(
        p.name,
        p.model,
        p.api_key,
        max_context=p.max_context_tokens or None,
        base_url=p.base_url,
    )


@dataclass
class PipelineRun:
    """Everything one finished run produced."""

    id: str
    started_at: str
    finished_at: str
    model: str
    steps: dict[str, StepResult]
    rounds: dict[int, RoundExecutionResult]
    summary: ValidationSummary
    failure_report: str
    status_line: str
    tracker: TokenUsageTracker
    written: list[Path] = field(default_factory=list)

    @property
    def total_cost(self) -> float:
        return self.tracker.get_total_cost()

    @property
    def token_summary(self) -> str:
        return self.tracker.to_summary()


class _FailureRecorder(PipelineEvents):
    """Keeps the reason each round degraded or its step failed."""

    def __init__(self):
        self.reasons: dict[int, str] = {}

    def on_round_degraded(self, round_number: int, error: BaseException) -> None:
        self.reasons[round_number] = (
            f"Fell back to static data: {type(error).__name__}: {error}"
        )

    def on_step_fail(self, result: StepResult) -> None:
        if result.step_id.startswith("ai-round-"):
            number = int(result.step_id.rsplit("-", 1)[1])
            self.reasons[number] = f"Step failed: {result.error}"


def create_static_step(env: RoundEnv) -> Step:
    """Scan the tree and pack file content for the prompts."""

    async def run(ctx: StepContext) -> StaticAnalysis:
        root = Path(env.config.project_root or ".")
        budget = compute_token_budget(env.client.max_context_tokens())
        facts = await anyio.to_thread.run_sync(scan_project, root, env.config)
        packed = await anyio.to_thread.run_sync(
            pack_context, facts, root, budget.file_content_budget, env.client.estimate_tokens
        )
        log.info(
            "Static analysis: %d files, %d packed tokens", len(facts.files), packed.used_tokens
        )
        env.analysis = StaticAnalysis(facts=facts, packed=packed, budget=budget)
        return env.analysis

    return create_step(id=STATIC_STEP_ID, name="Static Analysis", run=run)


def create_render_step(env: RoundEnv, renderer: Renderer, reasons: dict[int, str]) -> Step:
    async def run(ctx: StepContext) -> list[Path]:
        results = env.store.as_dict()
        summary = build_validation_summary(results)
        return renderer(results, summary, build_failure_report(results, reasons))

    return create_step(
        id=RENDER_STEP_ID,
        name="Render Documents",
        run=run,
        deps=[round_step_id(4), round_step_id(5), round_step_id(6)],
    )


def build_steps(env: RoundEnv, renderer: Renderer, reasons: dict[int, str]) -> list[Step]:
    return [
        create_static_step(env),
        *create_round_steps(env),
        create_render_step(env, renderer, reasons),
    ]


def plan_steps(config: Config, client: ModelClient) -> list[Step]:
    """The step list a run would register, for inspection without running it."""
    env = RoundEnv(
        client=client, config=config, tracker=TokenUsageTracker(), store=RoundStore()
    )
    renderer = FileRenderer(Path(config.project_root or ".") / config.output_dir)
    return build_steps(env, renderer, {})


async def run_pipeline(
    config: Config,
    client: ModelClient,
    *,
    events: PipelineEvents | None = None,
    renderer: Renderer | None = None,
    history: RunHistory | None = None,
) -> PipelineRun:
    """Run every step once on a fresh scheduler, tracker and store."""
    recorder = _FailureRecorder()
    sink = MultiEvents(events or PipelineEvents(), recorder)
    tracker = TokenUsageTracker(
        model=config.provider.model,
        warn_threshold=config.rounds.warn_threshold,
        events=sink,
    )
    env = RoundEnv(
        client=client, config=config, tracker=tracker, store=RoundStore(), events=sink
    )
    if renderer is None:
        renderer = FileRenderer(Path(config.project_root or ".") / config.output_dir)

    scheduler = DAGScheduler(events=sink, config=config)
    scheduler.register(build_steps(env, renderer, recorder.reasons))

    started_at = _now()
    steps = await scheduler.execute()
    finished_at = _now()

    rounds = env.store.as_dict()
    summary = build_validation_summary(rounds)
    render_result = steps.get(RENDER_STEP_ID)
    run = PipelineRun(
        id=uuid.uuid4().hex[:12],
        started_at=started_at,
        finished_at=finished_at,
        model=config.provider.model,
        steps=steps,
        rounds=rounds,
        summary=summary,
        failure_report=build_failure_report(rounds, recorder.reasons),
        status_line=format_validation_line(summary),
        tracker=tracker,
        written=list(render_result.value or []) if render_result else [],
    )

    if history is not None:
        await history.record_run(run)
    return run
