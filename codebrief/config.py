"""Three-layer config loading and merging."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigError(ValueError):
    """Raised when a config file is malformed."""


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ProviderConfig:
    name: str = "anthropic"
    model: str = "claude-sonnet-4-5"
    api_key: str = ""
    max_context_tokens: int = 0  # 0 = provider default
    base_url: str = ""


@dataclass
class RoundsConfig:
    context_tokens_per_round: int = 2000
    warn_threshold: float = 0.85
    drop_rate_threshold: float = 0.3
    max_modules: int = 20
    module_batch_size: int = 10


@dataclass
class ProjectConfig:
    name: str = ""
    description: str = ""
    domain: str = ""


@dataclass
class ScanConfig:
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=lambda: [
        "node_modules/**", "dist/**", "build/**", "*.lock",
    ])
    max_file_bytes: int = 200_000


@dataclass
class Config:
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    rounds: RoundsConfig = field(default_factory=RoundsConfig)
    project: ProjectConfig = field(default_factory=ProjectConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    context: str = ""  # free-form business context handed to round 1
    output_dir: str = "docs/codebrief"
    history_db: str = ".codebrief/history.db"
    log_level: str = "WARNING"
    project_root: str = ""


_ENV_KEYS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "glm": "GLM_API_KEY",
}


# ---------------------------------------------------------------------------
# Deep merge
# ---------------------------------------------------------------------------

def deep_merge(base: dict, override: dict) -> dict:
    """Field-level deep merge. Lists are replaced, None values ignored."""
    result = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# ---------------------------------------------------------------------------
# Dict -> Config mapping
# ---------------------------------------------------------------------------

def _section(data: dict, key: str) -> dict:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping, got {type(value).__name__}")
    return value


def _dict_to_config(data: dict, project_root: str) -> Config:
    cfg = Config(project_root=project_root)

    p = _section(data, "provider")
    cfg.provider = ProviderConfig(
        name=p.get("name", cfg.provider.name),
        model=p.get("model", cfg.provider.model),
        api_key=p.get("api_key", ""),
        max_context_tokens=int(p.get("max_context_tokens", 0)),
        base_url=p.get("base_url", ""),
    )

    r = _section(data, "rounds")
    defaults = RoundsConfig()
    cfg.rounds = RoundsConfig(
        context_tokens_per_round=int(
            r.get("context_tokens_per_round", defaults.context_tokens_per_round)
        ),
        warn_threshold=float(r.get("warn_threshold", defaults.warn_threshold)),
        drop_rate_threshold=float(r.get("drop_rate_threshold", defaults.drop_rate_threshold)),
        max_modules=int(r.get("max_modules", defaults.max_modules)),
        module_batch_size=int(r.get("module_batch_size", defaults.module_batch_size)),
    )
    if cfg.rounds.module_batch_size < 1 or cfg.rounds.max_modules < 1:
        raise ConfigError("rounds.max_modules and rounds.module_batch_size must be >= 1")

    pr = _section(data, "project")
    cfg.project = ProjectConfig(
        name=pr.get("name", ""),
        description=pr.get("description", ""),
        domain=pr.get("domain", ""),
    )

    s = _section(data, "scan")
    cfg.scan = ScanConfig(
        include=s.get("include", []),
        exclude=s.get("exclude", cfg.scan.exclude),
        max_file_bytes=int(s.get("max_file_bytes", cfg.scan.max_file_bytes)),
    )

    for key in ("context", "output_dir", "history_db", "log_level"):
        if key in data:
            setattr(cfg, key, data[key])

    return cfg


def _read_yaml(path: Path, strict: bool) -> dict:
    if not path.exists():
        return {}
    try:
        parsed = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        if strict:
            raise ConfigError(f"Invalid {path.name}: {e}") from e
        return {}
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        if strict:
            raise ConfigError(
                f"Invalid {path.name}: expected mapping, got {type(parsed).__name__}"
            )
        return {}
    return parsed


# ---------------------------------------------------------------------------
# Load config (3-layer)
# ---------------------------------------------------------------------------

def load_config(project_root: str | Path) -> Config:
    """Load and merge config from up to 3 layers.

    Priority (highest first):
      1. Environment variables (API keys, CODEBRIEF_MODEL)
      2. .codebrief/local.config.yaml
      3. .codebrief/config.yaml
    """
    project_root = Path(project_root)
    config_dir = project_root / ".codebrief"

    base_data = _read_yaml(config_dir / "config.yaml", strict=True)
    local_data = _read_yaml(config_dir / "local.config.yaml", strict=False)

    merged = deep_merge(base_data, local_data)
    cfg = _dict_to_config(merged, str(project_root))

    env_key = os.environ.get(_ENV_KEYS.get(cfg.provider.name, ""), "")
    if env_key:
        cfg.provider.api_key = env_key

    env_model = os.environ.get("CODEBRIEF_MODEL")
    if env_model:
        cfg.provider.model = env_model

    return cfg
