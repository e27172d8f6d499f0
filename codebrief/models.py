"""Core data models for codebrief."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class StepStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class RoundStatus(str, Enum):
    SUCCESS = "success"
    RETRIED = "retried"
    DEGRADED = "degraded"


# ---------------------------------------------------------------------------
# Scheduler units
# ---------------------------------------------------------------------------

@dataclass
class StepResult:
    """Terminal state of one step in one run."""

    step_id: str
    status: StepStatus
    value: Any = None
    error: BaseException | None = None
    duration_sec: float = 0.0


@dataclass(frozen=True)
class StepContext:
    """What a running step may see: results of steps that already finished."""

    results: Mapping[str, StepResult]
    config: Any = None


@dataclass(frozen=True)
class StepHooks:
    on_start: Callable[[Step], None] | None = None
    on_complete: Callable[[StepResult], None] | None = None
    on_fail: Callable[[StepResult], None] | None = None
    on_skip: Callable[[StepResult], None] | None = None


@dataclass(frozen=True)
class Step:
    """A named unit of work with declared dependencies."""

    id: str
    name: str
    run: Callable[[StepContext], Awaitable[Any]]
    deps: tuple[str, ...] = ()
    on_skip: Callable[[], Any] | None = None
    hooks: StepHooks | None = None


def create_step(
    id: str,
    name: str,
    run: Callable[[StepContext], Awaitable[Any]],
    deps: list[str] | tuple[str, ...] = (),
    on_skip: Callable[[], Any] | None = None,
    hooks: StepHooks | None = None,
) -> Step:
    """Build a validated, immutable Step."""
    if not id or not id.strip():
        raise ValueError("Step id is required")
    if not name or not name.strip():
        raise ValueError("Step name is required")
    if not callable(run):
        raise ValueError(f"Step '{id}' run must be callable")
    return Step(id=id, name=name, run=run, deps=tuple(deps), on_skip=on_skip, hooks=hooks)


# ---------------------------------------------------------------------------
# Round results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationResult:
    validated: int = 0
    corrected: int = 0
    total: int = 0
    drop_rate: float = 0.0


@dataclass(frozen=True)
class QualityMetrics:
    text_length: int = 0
    code_references: int = 0
    specificity: float = 0.0
    is_acceptable: bool = False


@dataclass(frozen=True)
class RoundContext:
    """Compressed digest of one round, handed to later rounds."""

    round_number: int
    modules: list[str] = field(default_factory=list)
    findings: list[str] = field(default_factory=list)
    relationships: list[str] = field(default_factory=list)
    open_questions: list[str] = field(default_factory=list)
    token_count: int = 0


@dataclass(frozen=True)
class RoundExecutionResult:
    data: dict
    validation: ValidationResult
    quality: QualityMetrics
    context: RoundContext
    status: RoundStatus
    tokens: int = 0
    cost: float = 0.0


@dataclass(frozen=True)
class TokenUsage:
    """One recorded model call for a round."""

    round: int
    input_tokens: int
    output_tokens: int
    context_tokens: int = 0
    file_content_tokens: int = 0
    budget_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    model: str = ""


@dataclass(frozen=True)
class ModuleInfo:
    name: str
    path: str
    files: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Model client I/O
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CompletionRequest:
    system_prompt: str
    user_prompt: str
    temperature: float = 0.3
    max_tokens: int = 4096


@dataclass(frozen=True)
class CompletionUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0


@dataclass(frozen=True)
class CompletionResult:
    data: dict
    usage: CompletionUsage
    model: str = ""
    duration_sec: float = 0.0


# ---------------------------------------------------------------------------
# Packed file content
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PackedFile:
    path: str
    tier: str  # "full" | "signatures" | "skip"
    content: str
    tokens: int = 0
    score: float = 0.0


@dataclass
class PackedContext:
    files: list[PackedFile] = field(default_factory=list)
    budget_tokens: int = 0
    used_tokens: int = 0

    def scoped_to(self, module: ModuleInfo) -> PackedContext:
        """Files under the module path, else the module's own file list."""
        prefix = module.path.rstrip("/") + "/"
        files = [f for f in self.files if f.path.startswith(prefix) or f.path == module.path]
        if not files:
            files = [
                f for f in self.files
                if any(f.path == mf or f.path.startswith(mf) for mf in module.files)
            ]
        return PackedContext(
            files=files,
            budget_tokens=self.budget_tokens,
            used_tokens=sum(f.tokens for f in files if f.tier != "skip"),
        )
