"""Deterministic round output built from static facts alone.

Used when a round degrades or is skipped, so downstream consumers always
get data in the round's usual shape.
"""

from __future__ import annotations

import posixpath
from collections import defaultdict

from .facts import StaticFacts

UNAVAILABLE = "(AI analysis unavailable)"

_LANGUAGES = {
    ".py": "Python", ".ts": "TypeScript", ".tsx": "TypeScript", ".js": "JavaScript",
    ".jsx": "JavaScript", ".mjs": "JavaScript", ".go": "Go", ".rs": "Rust",
    ".java": "Java", ".rb": "Ruby",
}

_CI_MARKERS = {
    ".github/workflows": "GitHub Actions",
    ".gitlab-ci.yml": "GitLab CI",
    "Jenkinsfile": "Jenkins",
    ".circleci": "CircleCI",
}
_CONTAINER_MARKERS = ("Dockerfile", "docker-compose", "compose.yaml", "compose.yml")


def primary_language(facts: StaticFacts) -> str:
    counts: dict[str, int] = defaultdict(int)
    for f in facts.files:
        lang = _LANGUAGES.get(f.extension)
        if lang:
            counts[lang] += 1
    if not counts:
        return "unknown"
    return max(counts.items(), key=lambda kv: kv[1])[0]


def top_level_modules(facts: StaticFacts) -> list[dict]:
    """Top-level directories as module approximations."""
    return [
        {"name": d, "path": d, "files": facts.files_under(d)}
        for d in facts.top_level_directories()
    ]


def round1_fallback(facts: StaticFacts) -> dict:
    file_count = len(facts.files)
    extensions = ", ".join(
        f"{ext}: {count} files"
        for ext, count in list(facts.files_by_extension().items())[:10]
    )
    if file_count < 50:
        complexity = "small"
    elif file_count < 200:
        complexity = "medium"
    else:
        complexity = "large"

    return {
        "project_name": facts.root_name,
        "primary_language": primary_language(facts),
        "framework": None,
        "purpose": "(AI analysis unavailable -- showing static data)",
        "technical_landscape": (
            f"Total files: {file_count}. Total lines: {facts.total_lines}. "
            f"Extensions: {extensions}"
        ),
        "key_dependencies": [],
        "entry_points": [],
        "project_scale": {
            "file_count": file_count,
            "estimated_complexity": complexity,
            "main_concerns": [],
        },
        "tech_debt": [
            f"[{t.marker}] {t.text} ({t.file}:{t.line})" for t in facts.todos[:20]
        ],
        "findings": ["AI analysis unavailable; showing raw static analysis data"],
        "open_questions": [],
    }


def round2_fallback(facts: StaticFacts) -> dict:
    modules = [
        {**m, "purpose": UNAVAILABLE, "public_api": [], "concerns": []}
        for m in top_level_modules(facts)
    ]
    return {
        "modules": modules,
        "relationships": [],
        "boundary_issues": [
            "Module boundaries approximated from directory structure -- AI analysis unavailable"
        ],
        "findings": [
            "Module detection based on directory structure only; no semantic analysis performed"
        ],
        "open_questions": [],
    }


def round3_fallback(facts: StaticFacts) -> dict:
    return {
        "features": [],
        "cross_module_flows": [],
        "findings": [
            "Feature extraction unavailable -- AI analysis required for feature identification"
        ],
    }


def round4_fallback(facts: StaticFacts) -> dict:
    return {
        "patterns": [],
        "layering": None,
        "data_flow": [],
        "findings": [
            "Architecture detection unavailable -- AI analysis required for pattern identification"
        ],
    }


def round5_fallback(facts: StaticFacts) -> dict:
    """TODO/FIXME markers grouped by top-level directory stand in for edge cases."""
    by_dir: dict[str, list] = {}
    for item in facts.todos:
        top = item.file.split("/", 1)[0] if "/" in item.file else "root"
        by_dir.setdefault(top, []).append(item)

    modules = []
    for name, items in list(by_dir.items())[:10]:
        modules.append({
            "module_name": name,
            "edge_cases": [
                {
                    "description": item.text,
                    "file": item.file,
                    "line": item.line,
                    "severity": "info",
                    "evidence": f"{item.marker}: {item.text}",
                }
                for item in items[:5]
            ],
            "conventions": [],
            "error_handling": {"strategy": UNAVAILABLE, "gaps": [], "patterns": []},
            "findings": ["Edge case detection based on TODO/FIXME markers only"],
        })

    return {
        "modules": modules,
        "cross_cutting_conventions": [],
        "findings": [
            "Edge case and convention analysis unavailable -- showing TODO/FIXME markers only"
        ],
    }


def detect_deployment(facts: StaticFacts) -> dict:
    evidence: list[str] = []
    ci_provider = None
    containerized = False
    for path in sorted(set(facts.directories) | facts.known_files):
        for marker, provider in _CI_MARKERS.items():
            if marker in path:
                evidence.append(f"Found: {path}")
                ci_provider = provider
        if any(marker in posixpath.basename(path) for marker in _CONTAINER_MARKERS):
            evidence.append(f"Found: {path}")
            containerized = True
    return {
        "platform": None,
        "containerized": containerized,
        "ci_provider": ci_provider,
        "evidence": evidence or ["No CI/CD configuration files detected"],
    }


def round6_fallback(facts: StaticFacts) -> dict:
    env_vars = [
        {"name": name, "purpose": UNAVAILABLE, "required": True, "source": path}
        for path, names in facts.env_vars.items()
        for name in names
    ]
    return {
        "deployment": detect_deployment(facts),
        "env_vars": env_vars,
        "build_process": {
            "commands": [f"See {m} for build configuration" for m in facts.manifests],
            "artifacts": [],
            "scripts": {},
        },
        "infrastructure": [],
        "findings": [
            "Deployment inference based on file detection only -- AI analysis unavailable"
        ],
    }


ROUND_FALLBACKS = {
    1: round1_fallback,
    2: round2_fallback,
    3: round3_fallback,
    4: round4_fallback,
    5: round5_fallback,
    6: round6_fallback,
}
