"""Expected output shapes for each analysis round."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Shape(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# --- Round 1: Project Overview ---

class KeyDependency(_Shape):
    name: str
    role: str


class EntryPoint(_Shape):
    path: str
    type: str
    description: str


class ProjectScale(_Shape):
    file_count: int
    estimated_complexity: Literal["small", "medium", "large"]
    main_concerns: list[str] = Field(default_factory=list)


class Round1Output(_Shape):
    project_name: str
    primary_language: str
    framework: Optional[str] = None
    purpose: str
    technical_landscape: str
    key_dependencies: list[KeyDependency] = Field(default_factory=list)
    entry_points: list[EntryPoint] = Field(default_factory=list)
    project_scale: ProjectScale
    tech_debt: list[str] = Field(default_factory=list)
    findings: list[str] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)


# --- Round 2: Module Detection ---

class DetectedModule(_Shape):
    name: str
    path: str
    purpose: str
    public_api: list[str] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)
    concerns: list[str] = Field(default_factory=list)


class Relationship(_Shape):
    from_: str = Field(alias="from")
    to: str
    type: str
    evidence: str = ""


class Round2Output(_Shape):
    modules: list[DetectedModule] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)
    boundary_issues: list[str] = Field(default_factory=list)
    findings: list[str] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)


# --- Round 3: Feature Extraction ---

class Feature(_Shape):
    name: str
    description: str
    modules: list[str] = Field(default_factory=list)
    entry_point: str = ""
    files: list[str] = Field(default_factory=list)
    user_facing: bool = False


class CrossModuleFlow(_Shape):
    name: str
    path: list[str] = Field(default_factory=list)
    description: str = ""


class Round3Output(_Shape):
    features: list[Feature] = Field(default_factory=list)
    cross_module_flows: list[CrossModuleFlow] = Field(default_factory=list)
    findings: list[str] = Field(default_factory=list)


# --- Round 4: Architecture Detection ---

class ArchitecturePattern(_Shape):
    name: str
    confidence: Literal["high"] = "high"
    evidence: list[str] = Field(default_factory=list)
    modules: list[str] = Field(default_factory=list)
    description: str = ""


class Layer(_Shape):
    name: str
    modules: list[str] = Field(default_factory=list)
    responsibility: str = ""


class Layering(_Shape):
    layers: list[Layer] = Field(default_factory=list)


class DataFlow(_Shape):
    from_: str = Field(alias="from")
    to: str
    data: str
    mechanism: str


class Round4Output(_Shape):
    patterns: list[ArchitecturePattern] = Field(default_factory=list)
    layering: Optional[Layering] = None
    data_flow: list[DataFlow] = Field(default_factory=list)
    findings: list[str] = Field(default_factory=list)


# --- Round 5: Edge Cases & Conventions (per module) ---

class EdgeCase(_Shape):
    description: str
    file: str
    line: Optional[int] = None
    severity: Literal["critical", "warning", "info"]
    evidence: str = ""


class Convention(_Shape):
    pattern: str
    examples: list[str] = Field(default_factory=list)
    description: str = ""


class ErrorHandling(_Shape):
    strategy: str
    gaps: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)


class Round5Module(_Shape):
    module_name: str
    edge_cases: list[EdgeCase] = Field(default_factory=list)
    conventions: list[Convention] = Field(default_factory=list)
    error_handling: ErrorHandling
    findings: list[str] = Field(default_factory=list)


class CrossCuttingConvention(_Shape):
    pattern: str
    description: str
    frequency: str


class Round5Output(_Shape):
    modules: list[Round5Module] = Field(default_factory=list)
    cross_cutting_conventions: list[CrossCuttingConvention] = Field(default_factory=list)
    findings: list[str] = Field(default_factory=list)


# --- Round 6: Deployment Inference ---

class Deployment(_Shape):
    platform: Optional[str] = None
    containerized: bool = False
    ci_provider: Optional[str] = None
    evidence: list[str] = Field(default_factory=list)


class EnvVar(_Shape):
    name: str
    purpose: str
    required: bool = True
    source: str = ""


class BuildProcess(_Shape):
    commands: list[str] = Field(default_factory=list)
    artifacts: list[str] = Field(default_factory=list)
    scripts: dict[str, str] = Field(default_factory=dict)


class Infrastructure(_Shape):
    service: str
    purpose: str
    evidence: str = ""


class Round6Output(_Shape):
    deployment: Deployment
    env_vars: list[EnvVar] = Field(default_factory=list)
    build_process: BuildProcess = Field(default_factory=BuildProcess)
    infrastructure: list[Infrastructure] = Field(default_factory=list)
    findings: list[str] = Field(default_factory=list)


ROUND_SHAPES: dict[int, type[BaseModel]] = {
    1: Round1Output,
    2: Round2Output,
    3: Round3Output,
    4: Round4Output,
    5: Round5Output,
    6: Round6Output,
}
