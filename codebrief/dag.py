"""DAG validation and the reactive step scheduler.

Steps start as soon as every dependency has completed. A failed step skips
everything downstream of it in one pass; branches with no path to the
failure keep running.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable, Iterable
from types import MappingProxyType
from typing import Any

import anyio

from .events import PipelineEvents
from .models import Step, StepContext, StepResult, StepStatus

log = logging.getLogger(__name__)


class DAGError(Exception):
    """Raised when the step graph is invalid. Nothing runs."""


class DuplicateStepError(DAGError):
    pass


class MissingDependencyError(DAGError):
    pass


class CycleError(DAGError):
    def __init__(self, nodes: list[str]):
        self.nodes = nodes
        super().__init__(f"Dependency cycle detected involving: {', '.join(nodes)}")


class SchedulerReuseError(DAGError):
    """A scheduler instance is good for exactly one execute() call."""


# -------------------------------------------------------------------
# Graph helpers
# -------------------------------------------------------------------

def build_dag(steps: Iterable[Step]) -> dict[str, set[str]]:
    """Map step id -> set of dependency ids."""
    return {step.id: set(step.deps) for step in steps}


def build_dependents(graph: dict[str, set[str]]) -> dict[str, list[str]]:
    """Reverse edges: step id -> ids that depend on it."""
    dependents: dict[str, list[str]] = {node: [] for node in graph}
    for node, deps in graph.items():
        for dep in deps:
            dependents.setdefault(dep, []).append(node)
    return dependents


def topological_order(graph: dict[str, set[str]]) -> list[str]:
    """Kahn's algorithm. Raises CycleError if the queue never drains every node."""
    in_degree = {node: len(deps) for node, deps in graph.items()}
    dependents = build_dependents(graph)
    queue = deque(node for node, degree in in_degree.items() if degree == 0)

    order: list[str] = []
    while queue:
        current = queue.popleft()
        order.append(current)
        for dep in dependents.get(current, []):
            in_degree[dep] -= 1
            if in_degree[dep] == 0:
                queue.append(dep)

    if len(order) < len(graph):
        raise CycleError([node for node, degree in in_degree.items() if degree > 0])
    return order


def check_graph(graph: dict[str, set[str]]) -> None:
    """Validate: every dependency is known, and there is no cycle."""
    known = set(graph)
    for node, deps in graph.items():
        missing = deps - known
        if missing:
            raise MissingDependencyError(
                f"Step '{node}' depends on unknown steps: {sorted(missing)}"
            )
    topological_order(graph)


def downstream_of(node: str, dependents: dict[str, list[str]]) -> list[str]:
    """All transitive dependents of node, breadth first."""
    seen: set[str] = set()
    order: list[str] = []
    queue = deque(dependents.get(node, []))
    while queue:
        nid = queue.popleft()
        if nid in seen:
            continue
        seen.add(nid)
        order.append(nid)
        queue.extend(dependents.get(nid, []))
    return order


def _notify(step: Step, callback: Callable[..., Any], *args: Any) -> None:
    """Call an event sink method or step hook; a raising observer is logged, not fatal."""
    try:
        callback(*args)
    except Exception:
        log.exception(
            "Observer %s for step '%s' failed", getattr(callback, "__name__", callback), step.id
        )


# -------------------------------------------------------------------
# Scheduler
# -------------------------------------------------------------------

class DAGScheduler:
    """Runs registered steps in dependency order, concurrently where allowed.

    Construct one per run: execute() may only be called once.
    """

    def __init__(self, events: PipelineEvents | None = None, config: Any = None):
        self.events = events or PipelineEvents()
        self.config = config
        self._steps: dict[str, Step] = {}
        self._executed = False

    @property
    def steps(self) -> list[Step]:
        return list(self._steps.values())

    def add_step(self, step: Step) -> None:
        if self._executed:
            raise SchedulerReuseError("Cannot register steps after execute()")
        if step.id in self._steps:
            raise DuplicateStepError(f"Step '{step.id}' already registered")
        self._steps[step.id] = step

    def register(self, steps: Iterable[Step]) -> None:
        for step in steps:
            self.add_step(step)

    def validate(self) -> None:
        check_graph(build_dag(self._steps.values()))

    async def execute(self) -> dict[str, StepResult]:
        if self._executed:
            raise SchedulerReuseError("Scheduler already executed; build a new one per run")
        self._executed = True
        self.validate()

        graph = build_dag(self._steps.values())
        dependents = build_dependents(graph)
        in_degree = {node: len(deps) for node, deps in graph.items()}
        results: dict[str, StepResult] = {}
        context = StepContext(results=MappingProxyType(results), config=self.config)

        async with anyio.create_task_group() as tg:

            def start(step: Step) -> None:
                _notify(step, self.events.on_step_start, step.id, step.name)
                if step.hooks and step.hooks.on_start:
                    _notify(step, step.hooks.on_start, step)
                tg.start_soon(run_step, step)

            async def run_step(step: Step) -> None:
                started = time.monotonic()
                try:
                    value = await step.run(context)
                except Exception as exc:
                    result = StepResult(
                        step_id=step.id,
                        status=StepStatus.FAILED,
                        error=exc,
                        duration_sec=time.monotonic() - started,
                    )
                    results[step.id] = result
                    _notify(step, self.events.on_step_fail, result)
                    if step.hooks and step.hooks.on_fail:
                        _notify(step, step.hooks.on_fail, result)
                    skip_downstream(step.id)
                    return

                result = StepResult(
                    step_id=step.id,
                    status=StepStatus.COMPLETED,
                    value=value,
                    duration_sec=time.monotonic() - started,
                )
                results[step.id] = result
                _notify(step, self.events.on_step_complete, result)
                if step.hooks and step.hooks.on_complete:
                    _notify(step, step.hooks.on_complete, result)


                for dep_id in dependents[step.id]:
                    in_degree[dep_id] -= 1
                    if in_degree[dep_id] == 0 and dep_id not in results:
                        start(self._steps[dep_id])

            def skip_downstream(failed_id: str) -> None:
                for node in downstream_of(failed_id, dependents):
                    if node not in results:
                        self._skip(self._steps[node], results)

            for node, degree in in_degree.items():
                if degree == 0:
                    start(self._steps[node])

        return results

    def _skip(self, step: Step, results: dict[str, StepResult]) -> None:
        value = None
        if step.on_skip is not None:
            try:
                value = step.on_skip()
            except Exception:
                log.exception("Fallback for skipped step '%s' failed", step.id)
        result = StepResult(step_id=step.id, status=StepStatus.SKIPPED, value=value)
        results[step.id] = result
        _notify(step, self.events.on_step_skip, result)
        if step.hooks and step.hooks.on_skip:
            _notify(step, step.hooks.on_skip, result)
