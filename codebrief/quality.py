"""Heuristic quality gate for round output."""

from __future__ import annotations

import json
import re

from .models import QualityMetrics

# round -> (min serialized length, min code references)
ROUND_THRESHOLDS: dict[int, tuple[int, int]] = {
    1: (500, 3),
    2: (500, 5),
    3: (500, 5),
    4: (500, 5),
    5: (500, 5),
    6: (200, 2),
}
DEFAULT_THRESHOLDS = (500, 5)

_CODE_REF_RE = re.compile(
    r"(?:src/|\.ts\b|\.js\b|\.py\b|\.rs\b|\.go\b|function\s+\w+|class\s+\w+|def\s+\w+)"
)
_FILE_PATH_RE = re.compile(r"(?:src/|[a-zA-Z0-9_-]+/[a-zA-Z0-9_.-]+\.\w+)")


def check_quality(output: dict, round_number: int) -> QualityMetrics:
    """Score output length and code-reference density against the round's thresholds.

    Output with no file path at all fails regardless of the other numbers.
    """
    text = json.dumps(output, separators=(",", ":"), ensure_ascii=False)
    text_length = len(text)
    code_references = len(_CODE_REF_RE.findall(text))
    specificity = code_references / max(text_length / 100, 1)

    min_length, min_refs = ROUND_THRESHOLDS.get(round_number, DEFAULT_THRESHOLDS)
    has_file_paths = _FILE_PATH_RE.search(text) is not None

    return QualityMetrics(
        text_length=text_length,
        code_references=code_references,
        specificity=specificity,
        is_acceptable=(
            text_length >= min_length and code_references >= min_refs and has_file_paths
        ),
    )
