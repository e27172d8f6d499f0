"""codebrief CLI: typer-based command interface."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

app = typer.Typer(
    name="codebrief",
    help="codebrief: validated, multi-round codebase handover docs",
    no_args_is_help=True,
)

# -------------------------------------------------------------------
# Templates
# -------------------------------------------------------------------

DEFAULT_CONFIG_TEMPLATE = """\
# .codebrief/config.yaml: team-shared configuration
provider:
  name: anthropic
  model: claude-sonnet-4-5
  # max_context_tokens: 200000
  # base_url: ""

rounds:
  context_tokens_per_round: 2000
  warn_threshold: 0.85
  drop_rate_threshold: 0.3
  max_modules: 20
  module_batch_size: 10

project:
  name: ""
  description: ""
  domain: ""

# Free-form business context handed to the overview round
context: ""

scan:
  exclude:
    - "node_modules/**"
    - "dist/**"
    - "build/**"
    - "*.lock"

output_dir: docs/codebrief
"""

DEFAULT_LOCAL_CONFIG_TEMPLATE = """\
# .codebrief/local.config.yaml: personal overrides (DO NOT commit)
# provider:
#   api_key: sk-ant-xxx
"""

GITIGNORE_ENTRIES = [
    ".codebrief/local.config.yaml",
    ".codebrief/history.db",
    ".codebrief/history.db-wal",
    ".codebrief/history.db-shm",
]


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------

def _get_project_root() -> Path:
    return Path.cwd()


def _run_async(coro):
    """Run an async coroutine from sync context."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None
    if loop and loop.is_running():
        import concurrent.futures
        with concurrent.futures.ThreadPoolExecutor() as pool:
            return pool.submit(asyncio.run, coro).result()
    return asyncio.run(coro)


def _load(root: Path):
    from .config import ConfigError, load_config
    try:
        return load_config(root)
    except ConfigError as e:
        typer.echo(f"  Config error: {e}", err=True)
        raise typer.Exit(1)


async def _get_history(root: Path, config):
    from .history import RunHistory
    db_path = root / config.history_db
    db_path.parent.mkdir(parents=True, exist_ok=True)
    history = RunHistory(str(db_path))
    await history.init()
    return history


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# -------------------------------------------------------------------
# Commands
# -------------------------------------------------------------------

@app.command()
def init():
    """Initialize codebrief in the current project."""
    root = _get_project_root()

    config_dir = root / ".codebrief"
    config_dir.mkdir(exist_ok=True)

    config_path = config_dir / "config.yaml"
    if not config_path.exists():
        config_path.write_text(DEFAULT_CONFIG_TEMPLATE)
        typer.echo(f"  Created {config_path.relative_to(root)}")
    else:
        typer.echo(f"  Exists  {config_path.relative_to(root)}")

    local_path = config_dir / "local.config.yaml"
    if not local_path.exists():
        local_path.write_text(DEFAULT_LOCAL_CONFIG_TEMPLATE)
        typer.echo(f"  Created {local_path.relative_to(root)}")

    gitignore_path = root / ".gitignore"
    existing = ""
    if gitignore_path.exists():
        existing = gitignore_path.read_text()
    additions = [e for e in GITIGNORE_ENTRIES if e not in existing]
    if additions:
        with open(gitignore_path, "a") as f:
            if existing and not existing.endswith("\n"):
                f.write("\n")
            f.write("# codebrief\n")
            for entry in additions:
                f.write(f"{entry}\n")
        typer.echo("  Updated .gitignore")

    typer.echo("\n  codebrief initialized. Run `codebrief plan` to preview.")


@app.command()
def plan():
    """Show the step graph in execution order (dry-run)."""
    root = _get_project_root()

    from .dag import DAGError, build_dag, check_graph, topological_order
    from .pipeline import create_client, plan_steps

    config = _load(root)
    steps = plan_steps(config, create_client(config))
    graph = build_dag(steps)
    try:
        check_graph(graph)
    except DAGError as e:
        typer.echo(f"  DAG Error: {e}", err=True)
        raise typer.Exit(1)

    by_id = {s.id: s for s in steps}
    typer.echo("")
    typer.echo("  codebrief: analysis pipeline")
    typer.echo(f"  Steps: {len(steps)} · DAG: valid")
    typer.echo("")
    typer.echo(f"  {'#':<3} {'ID':<18} {'Name':<42} {'Deps'}")
    typer.echo(f"  {'---':<3} {'---':<18} {'---':<42} {'---'}")
    for i, step_id in enumerate(topological_order(graph), 1):
        step = by_id[step_id]
        deps_str = ", ".join(step.deps) if step.deps else "—"
        typer.echo(f"  {i:<3} {step.id:<18} {step.name:<42} {deps_str}")

    typer.echo("")
    typer.echo(f"  Provider: {config.provider.name} ({config.provider.model})")
    typer.echo(f"  Output:   {config.output_dir}")
    typer.echo("")


@app.command()
def generate(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every step and retry"),
    no_history: bool = typer.Option(False, "--no-history", help="Do not record this run"),
):
    """Run static analysis and all six AI rounds, then write the documents."""
    root = _get_project_root()
    config = _load(root)
    _configure_logging("INFO" if verbose else config.log_level)

    if not config.provider.api_key:
        typer.echo(
            f"  No API key for provider '{config.provider.name}'. "
            "Set it in .codebrief/local.config.yaml or the environment.",
            err=True,
        )
        raise typer.Exit(1)

    from .events import LoggingEvents
    from .pipeline import create_client, run_pipeline

    async def _generate():
        history = None if no_history else await _get_history(root, config)
        try:
            return await run_pipeline(
                config,
                create_client(config),
                events=LoggingEvents(),
                history=history,
            )
        finally:
            if history:
                await history.close()

    run = _run_async(_generate())

    typer.echo("")
    typer.echo("  " + run.token_summary.replace("\n", "\n  "))
    typer.echo("")
    typer.echo(f"  {run.status_line}")
    if any(r.status in ("degraded", "skipped") for r in run.summary.round_summaries):
        typer.echo("")
        typer.echo(run.failure_report)
    if run.written:
        typer.echo(f"\n  Wrote {len(run.written)} file(s) to {config.output_dir}")
    if not no_history:
        typer.echo(f"  Run id: {run.id}")
    typer.echo("")


@app.command()
def estimate():
    """Scan and pack the project without calling any model."""
    root = _get_project_root()

    from .facts import scan_project
    from .packer import pack_context
    from .pipeline import create_client
    from .tokens import compute_token_budget
    from .tracker import pricing_for

    config = _load(root)
    client = create_client(config)
    facts = scan_project(root, config)
    budget = compute_token_budget(client.max_context_tokens())
    packed = pack_context(facts, root, budget.file_content_budget, client.estimate_tokens)

    tiers = {"full": 0, "signatures": 0, "skip": 0}
    for f in packed.files:
        tiers[f.tier] += 1

    per_round = packed.used_tokens + budget.prompt_overhead
    # Five standard rounds see the whole pack; the per-module round is roughly one more.
    input_tokens = per_round * 6
    input_rate, _ = pricing_for(config.provider.model)

    typer.echo("")
    typer.echo(f"  Files:        {len(facts.files)} ({facts.total_lines:,} lines)")
    typer.echo(
        f"  Packed:       {tiers['full']} full, {tiers['signatures']} signatures, "
        f"{tiers['skip']} skipped"
    )
    typer.echo(f"  File tokens:  {packed.used_tokens:,} / {budget.file_content_budget:,}")
    typer.echo(f"  Input tokens: ~{input_tokens:,} across 6 rounds")
    typer.echo(f"  Input cost:   ~${input_tokens * input_rate / 1_000_000:.2f} ({config.provider.model})")
    typer.echo("")


@app.command()
def history(
    run_id: str = typer.Argument(None, help="Show per-round details for one run"),
):
    """Show previous runs."""
    root = _get_project_root()
    config = _load(root)

    async def _history():
        db = await _get_history(root, config)
        try:
            if run_id:
                run = await db.get_run(run_id)
                if not run:
                    typer.echo(f"  Run '{run_id}' not found.")
                    return
                typer.echo(f"\n  {run.id}  {run.started_at}  {run.model}")
                typer.echo(f"  {run.status_line}")
                typer.echo(f"\n  {'Round':<7} {'Name':<28} {'Status':<10} {'Valid':<7} {'Fixed':<7} {'Cost'}")
                for r in await db.get_rounds(run_id):
                    typer.echo(
                        f"  {r.round:<7} {r.name:<28} {r.status:<10} "
                        f"{r.validated:<7} {r.corrected:<7} ${r.cost:.4f}"
                    )
                typer.echo("")
                return

            runs = await db.list_runs()
            if not runs:
                typer.echo("  No runs recorded.")
                return
            typer.echo("\n  codebrief: Run History")
            typer.echo("  " + "─" * 50)
            for run in runs:
                typer.echo(f"  {run.id}  {run.started_at[:19]}  ${run.cost:.4f}  {run.status_line}")
            typer.echo("")
        finally:
            await db.close()

    _run_async(_history())


@app.command("config")
def config_show():
    """Show merged configuration with API keys masked."""
    root = _get_project_root()

    import yaml
    from dataclasses import asdict

    config = _load(root)
    data = asdict(config)
    key = data["provider"].get("api_key")
    if key:
        data["provider"]["api_key"] = key[:8] + "..."

    typer.echo("\n  codebrief: Merged Configuration")
    typer.echo("  " + "─" * 40)
    typer.echo(yaml.dump(data, default_flow_style=False, allow_unicode=True))


if __name__ == "__main__":
    app()
