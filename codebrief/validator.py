"""Check a round's file and import claims against static analysis facts.

Claims are pulled out of the serialized output with a pattern match rather
than by walking typed fields, so any path-shaped substring counts. Only file
references and import edges are checked; prose observations are not.
"""

from __future__ import annotations

import json
import re
from typing import Protocol

from .models import ValidationResult


class GroundTruth(Protocol):
    known_files: frozenset[str]

    def imports_of(self, path: str) -> frozenset[str] | None: ...


_PATH_RE = re.compile(
    r"""(?:^|[\s"',\[\(])"""
    r"([a-zA-Z0-9_./-]+\.(?:ts|js|tsx|jsx|py|rs|go|json|yml|yaml|toml|md|css|html|sh|Dockerfile))\b"
)

# Which rounds carry import-edge claims, and where.
RELATIONSHIP_ROUNDS = {2}
FLOW_ROUNDS = {3}


# -------------------------------------------------------------------
# Claim extraction
# -------------------------------------------------------------------

def extract_file_claims(output: dict) -> list[str]:
    """Path-shaped strings in the output, first occurrence order, deduplicated."""
    text = json.dumps(output, separators=(",", ":"), ensure_ascii=False)
    paths: dict[str, None] = {}
    for match in _PATH_RE.finditer(text):
        candidate = match.group(1)
        if "/" in candidate or candidate.startswith("src/"):
            paths.setdefault(candidate, None)
    return list(paths)


def extract_import_claims(round_number: int, output: dict) -> list[tuple[str, str]]:
    claims: list[tuple[str, str]] = []

    if round_number in RELATIONSHIP_ROUNDS:
        for rel in output.get("relationships") or []:
            if not isinstance(rel, dict):
                continue
            src, dst = rel.get("from"), rel.get("to")
            if isinstance(src, str) and isinstance(dst, str) and "/" in src and "/" in dst:
                claims.append((src, dst))

    if round_number in FLOW_ROUNDS:
        for flow in output.get("cross_module_flows") or []:
            path = flow.get("path") if isinstance(flow, dict) else None
            if not isinstance(path, list):
                continue
            for src, dst in zip(path, path[1:]):
                if isinstance(src, str) and isinstance(dst, str) and "/" in src and "/" in dst:
                    claims.append((src, dst))

    return claims


# -------------------------------------------------------------------
# Validation
# -------------------------------------------------------------------

def validate_file_claims(
    claimed: list[str], facts: GroundTruth
) -> tuple[list[str], list[str]]:
    """Split claimed paths into (valid, dropped) by whether the file exists."""
    valid = [p for p in claimed if p in facts.known_files]
    dropped = [p for p in claimed if p not in facts.known_files]
    return valid, dropped


def validate_import_claims(
    claims: list[tuple[str, str]], facts: GroundTruth
) -> tuple[list[tuple[str, str]], list[tuple[str, str]]]:
    """A claim holds only if the 'from' file is known and actually imports 'to'."""
    valid: list[tuple[str, str]] = []
    dropped: list[tuple[str, str]] = []
    for src, dst in claims:
        imports = facts.imports_of(src)
        if imports is not None and dst in imports:
            valid.append((src, dst))
        else:
            dropped.append((src, dst))
    return valid, dropped


def validate_claims(round_number: int, output: dict, facts: GroundTruth) -> ValidationResult:
    file_claims = extract_file_claims(output)
    _, dropped_files = validate_file_claims(file_claims, facts)

    import_claims = extract_import_claims(round_number, output)
    _, dropped_imports = validate_import_claims(import_claims, facts)

    total = len(file_claims) + len(import_claims)
    corrected = len(dropped_files) + len(dropped_imports)
    return ValidationResult(
        validated=total - corrected,
        corrected=corrected,
        total=total,
        drop_rate=corrected / total if total > 0 else 0.0,
    )
