"""The six analysis rounds as scheduler steps.

Rounds 1-4 and 6 share one execute-validate-retry-compress step built by
create_round_step(). Round 5 fans out per module and has its own factory.
Every round reads its inputs from two explicit places: the static-analysis
step's result in the step context, and the run's RoundStore.
"""

from __future__ import annotations

import posixpath
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from .config import Config
from .events import PipelineEvents
from .facts import StaticFacts
from .fallbacks import ROUND_FALLBACKS, detect_deployment
from .fanout import FanOutOptions, execute_fan_out, modules_for_analysis
from .models import (
    CompletionRequest,
    ModuleInfo,
    PackedContext,
    RoundExecutionResult,
    Step,
    StepContext,
    create_step,
)
from .prompts import ROUND_NAMES, build_round_prompt, system_prompt_for
from .providers import ModelClient
from .runner import RoundOptions, execute_round, record_completion
from .schemas import ROUND_SHAPES, Round5Module
from .store import RoundStore
from .tokens import TokenBudget
from .tracker import TokenUsageTracker
from .validator import validate_claims

STATIC_STEP_ID = "static-analysis"
RENDER_STEP_ID = "render"

BASE_TEMPERATURE = 0.3
RETRY_TEMPERATURE = 0.1


def round_step_id(round_number: int) -> str:
    return f"ai-round-{round_number}"


@dataclass(frozen=True)
class StaticAnalysis:
    """Output of the static-analysis step."""

    facts: StaticFacts
    packed: PackedContext
    budget: TokenBudget


@dataclass
class RoundEnv:
    """Per-run collaborators shared by every round step."""

    client: ModelClient
    config: Config
    tracker: TokenUsageTracker
    store: RoundStore
    events: PipelineEvents = field(default_factory=PipelineEvents)
    analysis: StaticAnalysis | None = None  # set by the static-analysis step

    def static(self, ctx: StepContext) -> StaticAnalysis:
        return ctx.results[STATIC_STEP_ID].value


# -------------------------------------------------------------------
# Round data builders
# -------------------------------------------------------------------

def _round1_data(facts: StaticFacts, config: Config, store: RoundStore) -> str:
    largest = sorted(facts.files, key=lambda f: f.lines, reverse=True)[:10]
    sections = [
        "## File Tree Summary",
        f"Total files: {len(facts.files)}",
        f"Total directories: {len(facts.directories)}",
        f"Total lines: {facts.total_lines}",
        "",
        "Extension breakdown:",
        *(f"  {ext}: {n}" for ext, n in list(facts.files_by_extension().items())[:15]),
        "",
        "Largest files:",
        *(f"  {f.path} ({f.lines} lines, {f.size} bytes)" for f in largest),
    ]
    if facts.manifests:
        sections += ["", "## Dependency Manifests", *(f"  {m}" for m in facts.manifests)]

    readmes = [p for p in sorted(facts.known_files) if posixpath.basename(p).lower().startswith("readme")]
    sections += ["", "## Documentation", f"READMEs found: {', '.join(readmes) or 'none'}"]

    if facts.todos:
        sections += ["", f"## TODO/FIXME markers: {len(facts.todos)}"]

    if config.context:
        sections += ["", "## Business Context (from project configuration)", config.context]
    project = config.project
    if project.name or project.description or project.domain:
        sections += ["", "## Project Metadata"]
        if project.name:
            sections.append(f"Project name: {project.name}")
        if project.description:
            sections.append(f"Description: {project.description}")
        if project.domain:
            sections.append(f"Domain: {project.domain}")
    return "\n".join(sections)


def _local_imports(facts: StaticFacts) -> dict[str, list[str]]:
    return {
        f.path: sorted(i for i in f.imports if i in facts.known_files)
        for f in facts.files
        if any(i in facts.known_files for i in f.imports)
    }


def _round2_data(facts: StaticFacts, config: Config, store: RoundStore) -> str:
    sections = ["## Files by Extension"]
    sections += [f"  {ext}: {n} files" for ext, n in facts.files_by_extension().items()]

    sections += ["", "## Directory Structure"]
    for d in facts.directories[:60]:
        sections.append(f"  {d}/ ({len(facts.files_under(d))} files)")

    graph = _local_imports(facts)
    if graph:
        sections += ["", "## Import Graph (top files by import count)"]
        for path, imports in sorted(graph.items(), key=lambda kv: -len(kv[1]))[:30]:
            sections.append(f"  {path}:")
            sections += [f"    -> {imp}" for imp in imports[:10]]
            if len(imports) > 10:
                sections.append(f"    ... and {len(imports) - 10} more")

        fan_in = Counter(imp for imports in graph.values() for imp in imports)
        sections += ["", "## Most-Imported Files (likely module entry points)"]
        sections += [f"  {path} (imported by {n} files)" for path, n in fan_in.most_common(15)]

    with_symbols = sorted(
        (f for f in facts.files if f.functions or f.classes),
        key=lambda f: -(len(f.functions) + len(f.classes)),
    )
    if with_symbols:
        sections += ["", "## Files with Most Symbols"]
        for f in with_symbols[:20]:
            sections.append(f"  {f.path}: {', '.join((*f.classes, *f.functions)[:10])}")
    return "\n".join(sections)


def _round3_data(facts: StaticFacts, config: Config, store: RoundStore) -> str:
    sections: list[str] = []
    r2 = store.data(2) or {}
    if r2.get("modules"):
        sections.append("## Detected Modules")
        for mod in r2["modules"]:
            sections.append(f"### {mod['name']} ({mod.get('path', '')})")
            sections.append(f"Purpose: {mod.get('purpose', '')}")
            if mod.get("public_api"):
                sections.append(f"Public API: {', '.join(mod['public_api'])}")
            files = mod.get("files") or []
            if files:
                more = f" ... and {len(files) - 20} more" if len(files) > 20 else ""
                sections.append(f"Files: {', '.join(files[:20])}{more}")
            sections.append("")

    r1 = store.data(1) or {}
    if r1.get("entry_points"):
        sections.append("## Entry Points")
        for ep in r1["entry_points"]:
            sections.append(f"- {ep['path']} ({ep['type']}): {ep['description']}")
        sections.append("")

    graph = _local_imports(facts)
    if graph:
        sections.append("## Import Map")
        for path, imports in sorted(graph.items(), key=lambda kv: -len(kv[1]))[:20]:
            sections.append(f"  {path}:")
            sections += [f"    -> {imp}" for imp in imports[:8]]
        sections.append("")

    if facts.test_files:
        sections.append("## Test Files")
        sections += [f"  {t}" for t in facts.test_files[:20]]
        sections.append("")

    sections += [
        "## Analysis Instructions",
        "Give each cross-module flow as an ordered list of file paths, where each file "
        "imports the next one.",
    ]
    return "\n".join(sections)


_LAYER_KEYWORDS = (
    "api", "routes", "controllers", "handlers", "services", "domain", "models",
    "repositories", "db", "storage", "adapters", "infra", "ui", "views", "cli",
)


def _round4_data(facts: StaticFacts, config: Config, store: RoundStore) -> str:
    sections: list[str] = []
    r2 = store.data(2) or {}
    if r2.get("relationships"):
        sections.append("## Module Relationships (from Round 2)")
        for rel in r2["relationships"]:
            sections.append(f"  {rel['from']} -> {rel['to']} ({rel['type']}): {rel.get('evidence', '')}")
        sections.append("")
    if r2.get("modules"):
        sections.append("## Module Boundaries")
        for mod in r2["modules"]:
            sections.append(f"  {mod['name']} ({mod.get('path', '')}): {mod.get('purpose', '')}")
        sections.append("")

    r3 = store.data(3) or {}
    if r3.get("cross_module_flows"):
        sections.append("## Cross-Module Flows (from Round 3)")
        for flow in r3["cross_module_flows"]:
            sections.append(f"  {flow['name']}: {' -> '.join(flow.get('path') or [])}")
            if flow.get("description"):
                sections.append(f"    {flow['description']}")
        sections.append("")
    if r3.get("features"):
        sections.append("## Features (from Round 3)")
        for feature in r3["features"]:
            sections.append(f"  {feature['name']}: {', '.join(feature.get('modules') or [])}")
        sections.append("")

    layered = [
        d for d in facts.directories
        if posixpath.basename(d).lower() in _LAYER_KEYWORDS
    ]
    if layered:
        sections.append("## Directories Suggesting Architecture Layers")
        sections += [f"  {d} (suggests: {posixpath.basename(d).lower()})" for d in layered]
        sections.append("")

    top = facts.top_level_directories()
    if top:
        sections.append("## Files by Top-Level Directory")
        sections += [f"  {d}/: {len(facts.files_under(d))} files" for d in top]
        sections.append("")

    sections += [
        "## Analysis Instructions",
        "Only report patterns with concrete file evidence. Omit anything uncertain.",
    ]
    return "\n".join(sections)


def _round6_data(facts: StaticFacts, config: Config, store: RoundStore) -> str:
    sections: list[str] = []
    if facts.env_vars:
        sections.append("## Environment Variables")
        for path, names in facts.env_vars.items():
            sections.append(f"### {path}")
            sections += [f"  {n}" for n in names[:30]]
            if len(names) > 30:
                sections.append(f"  ... and {len(names) - 30} more")
        sections.append("")

    deployment = detect_deployment(facts)
    sections.append("## Deployment Signals")
    sections += [f"  {e}" for e in deployment["evidence"]]
    sections.append("")

    if facts.manifests:
        sections.append("## Build Manifests")
        sections += [f"  {m}" for m in facts.manifests]
        sections.append("")
    return "\n".join(sections)


def module_data(module: ModuleInfo, facts: StaticFacts) -> str:
    """Round data for one module: its symbols, TODOs and tests."""
    members = set(module.files)
    prefix = module.path.rstrip("/") + "/"
    sections = [
        f"## Module: {module.name}",
        f"Path: {module.path}",
        f"Files: {len(module.files)}",
        "",
    ]

    sources = [f for f in facts.files if f.path in members and (f.functions or f.classes)]
    if sources:
        sections.append("## Module Source Files")
        for f in sources[:20]:
            sections.append(f"  {f.path}:")
            if f.classes:
                sections.append(f"    Classes: {', '.join(f.classes[:10])}")
            if f.functions:
                sections.append(f"    Functions: {', '.join(f.functions[:10])}")
        sections.append("")

    todos = [t for t in facts.todos if t.file in members]
    if todos:
        sections.append("## TODO/FIXME Items in Module")
        sections += [f"  [{t.marker}] {t.text} ({t.file}:{t.line})" for t in todos[:15]]
        sections.append("")

    tests = [t for t in facts.test_files if t.startswith(prefix) or module.name in t]
    if tests:
        sections.append("## Test Files for Module")
        sections += [f"  {t}" for t in tests[:10]]
        sections.append("")

    sections += [
        "## Analysis Instructions",
        "Only flag issues you can point to specific evidence in the code. Every edge case "
        "MUST cite a file path and ideally a line number.",
    ]
    return "\n".join(sections)


# -------------------------------------------------------------------
# Round specs
# -------------------------------------------------------------------

@dataclass(frozen=True)
class RoundSpec:
    number: int
    deps: tuple[str, ...]
    prior_rounds: tuple[int, ...]
    build_data: Callable[[StaticFacts, Config, RoundStore], str]
    max_tokens: int = 4096

    @property
    def name(self) -> str:
        return ROUND_NAMES[self.number]


ROUND_SPECS: dict[int, RoundSpec] = {
    1: RoundSpec(1, (STATIC_STEP_ID,), (), _round1_data),
    2: RoundSpec(2, (round_step_id(1),), (1,), _round2_data, max_tokens=8192),
    3: RoundSpec(3, (round_step_id(2),), (1, 2), _round3_data),
    4: RoundSpec(4, (round_step_id(3),), (1, 2, 3), _round4_data),
    6: RoundSpec(6, (round_step_id(2),), (1, 2), _round6_data),
}

ROUND_5_DEPS = (round_step_id(2),)
ROUND_5_PRIOR = (2,)


def _finalize_request(request: CompletionRequest, is_retry: bool, max_tokens: int) -> CompletionRequest:
    return replace(
        request,
        temperature=RETRY_TEMPERATURE if is_retry else BASE_TEMPERATURE,
        max_tokens=max_tokens,
    )


def create_round_step(spec: RoundSpec, env: RoundEnv) -> Step:
    """Step for a standard round: execute, validate, retry once, compress, store."""
    number = spec.number
    shape = ROUND_SHAPES[number]
    fallback = ROUND_FALLBACKS[number]

    async def run(ctx: StepContext) -> RoundExecutionResult:
        static = env.static(ctx)
        prior = env.store.contexts(*spec.prior_rounds)

        def build_prompt(is_retry: bool) -> CompletionRequest:
            request = build_round_prompt(
                number,
                system_prompt_for(number, is_retry),
                static.packed,
                prior,
                spec.build_data(static.facts, env.config, env.store),
            )
            return _finalize_request(request, is_retry, spec.max_tokens)

        result = await execute_round(RoundOptions(
            round_number=number,
            client=env.client,
            shape=shape,
            build_prompt=build_prompt,
            validate=lambda data: validate_claims(number, data, static.facts),
            build_fallback=lambda: fallback(static.facts),
            tracker=env.tracker,
            estimate_tokens=env.client.estimate_tokens,
            events=env.events,
            context_budget=env.config.rounds.context_tokens_per_round,
            drop_rate_threshold=env.config.rounds.drop_rate_threshold,
            file_content_tokens=static.packed.used_tokens,
        ))
        env.store.put(number, result)
        return result

    return create_step(
        id=round_step_id(number),
        name=f"AI Round {number}: {spec.name}",
        run=run,
        deps=spec.deps,
        on_skip=lambda: _skipped_fallback(number, env),
    )


def _skipped_fallback(number: int, env: RoundEnv) -> dict | None:
    """Fallback data for a skipped round, when static facts exist at all."""
    if env.analysis is None:
        return None
    return ROUND_FALLBACKS[number](env.analysis.facts)


def create_round5_step(env: RoundEnv) -> Step:
    """Per-module edge case and convention analysis, fanned out over modules."""
    number = 5

    async def run(ctx: StepContext) -> RoundExecutionResult:
        static = env.static(ctx)
        facts = static.facts
        prior = env.store.contexts(*ROUND_5_PRIOR)
        modules = modules_for_analysis(env.store.data(2), facts)

        async def analyze_module(module: ModuleInfo, is_retry: bool) -> dict:
            request = _finalize_request(
                build_round_prompt(
                    number,
                    system_prompt_for(number, is_retry),
                    static.packed.scoped_to(module),
                    prior,
                    module_data(module, facts),
                ),
                is_retry,
                4096,
            )
            completion = await env.client.complete(
                request,
                Round5Module,
                on_retry=lambda attempt, delay, reason: env.events.on_client_retry(
                    number, attempt, delay, reason
                ),
            )
            record_completion(
                env.tracker, number, request, completion, env.client, env.client.estimate_tokens
            )
            return completion.data

        result = await execute_fan_out(FanOutOptions(
            round_number=number,
            modules=modules,
            analyze_module=analyze_module,
            validate=lambda data: validate_claims(number, data, facts),
            build_fallback=lambda: ROUND_FALLBACKS[number](facts),
            tracker=env.tracker,
            estimate_tokens=env.client.estimate_tokens,
            events=env.events,
            max_modules=env.config.rounds.max_modules,
            batch_size=env.config.rounds.module_batch_size,
            context_budget=env.config.rounds.context_tokens_per_round,
            drop_rate_threshold=env.config.rounds.drop_rate_threshold,
        ))
        env.store.put(number, result)
        return result

    return create_step(
        id=round_step_id(number),
        name=f"AI Round {number}: {ROUND_NAMES[number]}",
        run=run,
        deps=ROUND_5_DEPS,
        on_skip=lambda: _skipped_fallback(number, env),
    )


def create_round_steps(env: RoundEnv) -> list[Step]:
    steps = [create_round_step(ROUND_SPECS[n], env) for n in (1, 2, 3, 4)]
    steps.append(create_round5_step(env))
    steps.append(create_round_step(ROUND_SPECS[6], env))
    return steps
