"""Score project files and pack their content into a token budget."""

from __future__ import annotations

import logging
import posixpath
import re
from collections import Counter
from collections.abc import Callable
from pathlib import Path

from .facts import MANIFEST_NAMES, FileFact, StaticFacts
from .models import PackedContext, PackedFile
from .tokens import estimate_tokens as default_estimate_tokens

log = logging.getLogger(__name__)

LOCK_FILES = {
    "package-lock.json", "yarn.lock", "pnpm-lock.yaml", "Cargo.lock", "go.sum",
    "poetry.lock", "uv.lock",
}

_ENTRY_POINT_RE = re.compile(
    r"(?:^|/)(?:index|main|app|server|cli|__main__|manage)\.[^/]+$"
)
_CONFIG_RE = re.compile(
    r"(?:\.config\.[^/]+$|^\.env|(?:^|/)(?:Makefile|Dockerfile|tsconfig\.json)$)"
)

# Score weights
ENTRY_POINT_SCORE = 30
IMPORTER_SCORE, IMPORTER_CAP = 3, 30
SYMBOL_SCORE, SYMBOL_CAP = 2, 20
TODO_SCORE = 10
CONFIG_SCORE = 15
TEST_PENALTY = 15

_SIGNATURE_LINES = 20


def score_files(facts: StaticFacts) -> list[tuple[str, float]]:
    """(path, score) for every non-lock file, highest first, ties alphabetical."""
    importers: Counter[str] = Counter()
    for f in facts.files:
        for imp in f.imports:
            if imp in facts.known_files and imp != f.path:
                importers[imp] += 1
    todo_files = {t.file for t in facts.todos}
    test_files = set(facts.test_files)

    scored = []
    for f in facts.files:
        name = posixpath.basename(f.path)
        if name in LOCK_FILES:
            continue
        score = 0
        if _ENTRY_POINT_RE.search(f.path):
            score += ENTRY_POINT_SCORE
        score += min(importers[f.path] * IMPORTER_SCORE, IMPORTER_CAP)
        score += min((len(f.functions) + len(f.classes)) * SYMBOL_SCORE, SYMBOL_CAP)
        if f.path in todo_files:
            score += TODO_SCORE
        if name in MANIFEST_NAMES or _CONFIG_RE.search(f.path):
            score += CONFIG_SCORE
        if f.path in test_files:
            score = max(score - TEST_PENALTY, 0)
        scored.append((f.path, float(score)))

    scored.sort(key=lambda item: (-item[1], item[0]))
    return scored


def signature_summary(fact: FileFact, content: str) -> str:
    """Symbol list if the file has any, else its first lines."""
    lines = []
    if fact.classes:
        lines.append(f"classes: {', '.join(fact.classes)}")
    if fact.functions:
        lines.append(f"functions: {', '.join(fact.functions)}")
    if lines:
        return "\n".join(lines)
    return "\n".join(content.splitlines()[:_SIGNATURE_LINES])


def pack_context(
    facts: StaticFacts,
    project_root: str | Path,
    budget_tokens: int,
    estimate_tokens: Callable[[str], int] = default_estimate_tokens,
) -> PackedContext:
    """Greedy tier assignment by score: full content, then signatures, then skip.

    If everything fits, every readable file goes in full.
    """
    root = Path(project_root)
    contents: dict[str, str] = {}
    scored = score_files(facts)
    for path, _ in scored:
        try:
            contents[path] = (root / path).read_text(encoding="utf-8")
        except (UnicodeDecodeError, OSError) as exc:
            log.debug("Skipping unreadable file %s: %s", path, exc)

    estimates = {path: estimate_tokens(text) for path, text in contents.items()}
    everything_fits = sum(estimates.values()) <= budget_tokens

    remaining = budget_tokens
    files: list[PackedFile] = []
    for path, score in scored:
        content = contents.get(path)
        if content is None:
            files.append(PackedFile(path=path, tier="skip", content="", score=score))
            continue

        full_tokens = estimates[path]
        if everything_fits or full_tokens <= remaining:
            files.append(PackedFile(path, "full", content, full_tokens, score))
            remaining -= full_tokens
            continue

        summary = signature_summary(facts.get(path), content)
        sig_tokens = estimate_tokens(summary)
        if sig_tokens <= remaining:
            files.append(PackedFile(path, "signatures", summary, sig_tokens, score))
            remaining -= sig_tokens
        else:
            files.append(PackedFile(path=path, tier="skip", content="", score=score))

    used = sum(f.tokens for f in files if f.tier != "skip")
    log.debug(
        "Packed %d files (%d full, %d signatures) into %d/%d tokens",
        len(files),
        sum(1 for f in files if f.tier == "full"),
        sum(1 for f in files if f.tier == "signatures"),
        used,
        budget_tokens,
    )
    return PackedContext(files=files, budget_tokens=budget_tokens, used_tokens=used)
