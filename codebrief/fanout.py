"""Per-module fan-out for rounds that analyze one module at a time.

Modules run in fixed-size batches; calls within a batch run concurrently and
a failing module never takes its siblings down. Failed modules get one
stricter retry when too many failed or the merged output fails its checks.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import anyio

from .compressor import compress_round_output
from .events import PipelineEvents
from .facts import StaticFacts
from .fallbacks import top_level_modules
from .models import ModuleInfo, RoundExecutionResult, RoundStatus, ValidationResult
from .quality import check_quality
from .runner import DEFAULT_CONTEXT_BUDGET, DEFAULT_DROP_RATE_THRESHOLD, degraded_result
from .tokens import estimate_tokens as default_estimate_tokens
from .tracker import TokenUsageTracker

MAX_MODULE_FANOUT = 20
MODULE_BATCH_SIZE = 10


def find_cross_cutting_conventions(modules: list[dict]) -> list[dict]:
    """Conventions reported by two or more distinct modules, matched case-insensitively."""
    seen: dict[str, dict] = {}
    for mod in modules:
        keys_in_module = set()
        for conv in mod.get("conventions") or []:
            key = str(conv.get("pattern", "")).strip().lower()
            if not key or key in keys_in_module:
                continue
            keys_in_module.add(key)
            if key in seen:
                seen[key]["count"] += 1
            else:
                seen[key] = {
                    "pattern": conv["pattern"].strip(),
                    "description": conv.get("description", ""),
                    "count": 1,
                }

    return [
        {
            "pattern": entry["pattern"],
            "description": entry["description"],
            "frequency": f"Found in {entry['count']} of {len(modules)} modules",
        }
        for entry in seen.values()
        if entry["count"] >= 2
    ]


def build_aggregated_findings(modules: list[dict], failed_count: int, total: int) -> list[str]:
    severities = {"critical": 0, "warning": 0, "info": 0}
    for mod in modules:
        for edge in mod.get("edge_cases") or []:
            sev = edge.get("severity")
            severities[sev if sev in severities else "info"] += 1

    findings = [f"Analyzed {len(modules)}/{total} modules successfully"]
    if sum(severities.values()):
        findings.append(
            f"Edge cases found: {severities['critical']} critical, "
            f"{severities['warning']} warning, {severities['info']} info"
        )
    if failed_count:
        findings.append(f"{failed_count} module analyses failed and were excluded")
    return findings


def aggregate_module_results(modules: list[dict], failed_count: int, total: int) -> dict:
    return {
        "modules": modules,
        "cross_cutting_conventions": find_cross_cutting_conventions(modules),
        "findings": build_aggregated_findings(modules, failed_count, total),
    }


def modules_for_analysis(round2_data: dict | None, facts: StaticFacts) -> list[ModuleInfo]:
    """Modules detected by the module round, else top-level directories."""
    detected = (round2_data or {}).get("modules") or []
    if detected:
        return [
            ModuleInfo(name=m["name"], path=m.get("path", m["name"]), files=list(m.get("files") or []))
            for m in detected
        ]
    return [ModuleInfo(**m) for m in top_level_modules(facts)]


@dataclass
class FanOutOptions:
    round_number: int
    modules: list[ModuleInfo]
    analyze_module: Callable[[ModuleInfo, bool], Awaitable[dict]]
    validate: Callable[[dict], ValidationResult]
    build_fallback: Callable[[], dict]
    tracker: TokenUsageTracker
    aggregate: Callable[[list[dict], int, int], dict] = aggregate_module_results
    estimate_tokens: Callable[[str], int] = default_estimate_tokens
    events: PipelineEvents | None = None
    max_modules: int = MAX_MODULE_FANOUT
    batch_size: int = MODULE_BATCH_SIZE
    context_budget: int = DEFAULT_CONTEXT_BUDGET
    drop_rate_threshold: float = DEFAULT_DROP_RATE_THRESHOLD


async def run_module_batches(
    options: FanOutOptions,
    modules: list[ModuleInfo],
    is_retry: bool,
    events: PipelineEvents,
) -> list[tuple[ModuleInfo, dict | None]]:
    """Analyze modules batch by batch. A failed module yields None."""
    results: list[tuple[ModuleInfo, dict | None]] = []

    for start in range(0, len(modules), options.batch_size):
        batch = modules[start:start + options.batch_size]
        slots: list[dict | None] = [None] * len(batch)

        async def _analyze(index: int, module: ModuleInfo) -> None:
            try:
                slots[index] = await options.analyze_module(module, is_retry)
            except Exception as exc:
                events.on_module_failed(options.round_number, module.name, exc)

        async with anyio.create_task_group() as tg:
            for index, module in enumerate(batch):
                tg.start_soon(_analyze, index, module)

        results.extend(zip(batch, slots))

    return results


async def execute_fan_out(options: FanOutOptions) -> RoundExecutionResult:
    """Run the fan-out; degrade to the static fallback if it throws as a whole."""
    events = options.events or PipelineEvents()
    try:
        return await _fan_out(options, events)
    except Exception as exc:
        events.on_round_degraded(options.round_number, exc)
        return degraded_result(
            options.round_number,
            options.build_fallback(),
            options.tracker,
            options.estimate_tokens,
            options.context_budget,
        )


async def _fan_out(options: FanOutOptions, events: PipelineEvents) -> RoundExecutionResult:
    number = options.round_number
    modules = options.modules[:options.max_modules]
    total = len(modules)

    results = await run_module_batches(options, modules, False, events)
    succeeded = [data for _, data in results if data is not None]
    failed = [module for module, data in results if data is None]

    output = options.aggregate(succeeded, len(failed), total)
    validation = options.validate(output)
    quality = check_quality(output, number)
    status = RoundStatus.SUCCESS

    failed_fraction = len(failed) / max(total, 1)
    if failed and (
        failed_fraction > options.drop_rate_threshold
        or validation.drop_rate > options.drop_rate_threshold
        or not quality.is_acceptable
    ):
        events.on_round_retry(number, f"retrying {len(failed)}/{total} failed modules")
        retried = await run_module_batches(options, failed, True, events)
        succeeded.extend(data for _, data in retried if data is not None)
        still_failed = sum(1 for _, data in retried if data is None)

        output = options.aggregate(succeeded, still_failed, total)
        validation = options.validate(output)
        quality = check_quality(output, number)
        status = RoundStatus.RETRIED

    usage = options.tracker.get_round_usage(number)
    return RoundExecutionResult(
        data=output,
        validation=validation,
        quality=quality,
        context=compress_round_output(
            number, output, options.context_budget, options.estimate_tokens
        ),
        status=status,
        tokens=usage.input_tokens + usage.output_tokens if usage else 0,
        cost=options.tracker.get_round_cost(number),
    )
