"""Tests for the heuristic output quality gate."""

import json

from codebrief.quality import ROUND_THRESHOLDS, check_quality


RICH = {
    "purpose": "x" * 600,
    "findings": [
        "Entry point is src/app/main.py",
        "Orders handled in src/app/service.py via def place_order",
        "Persistence in src/app/repo.py",
        "Errors raised as class OrderError",
    ],
}


def test_rich_output_acceptable():
    """Long, code-dense output with paths passes."""
    metrics = check_quality(RICH, 1)
    assert metrics.is_acceptable
    assert metrics.code_references >= ROUND_THRESHOLDS[1][1]
    assert metrics.text_length >= 500
    assert metrics.specificity > 0


def test_short_output_rejected():
    """Under the length floor fails even with references."""
    metrics = check_quality({"f": "src/a.py src/b.py src/c.py"}, 1)
    assert not metrics.is_acceptable


def test_no_file_paths_rejected():
    """Long text with symbol references but no path fails."""
    output = {"text": "y" * 800, "notes": ["def a", "def b", "class C", "function d", "def e"]}
    metrics = check_quality(output, 2)
    assert metrics.code_references >= 5
    assert not metrics.is_acceptable


def test_deployment_round_lower_thresholds():
    """Round 6 accepts shorter output than round 2."""
    output = {"ci": "z" * 200, "files": ["deploy/run.sh", "src/app/main.py"]}
    assert check_quality(output, 6).is_acceptable
    assert not check_quality(output, 2).is_acceptable


def test_unknown_round_uses_defaults():
    """Round numbers outside 1-6 fall back to default thresholds."""
    assert check_quality(RICH, 99).is_acceptable == check_quality(RICH, 2).is_acceptable


def test_length_measured_on_compact_json():
    """Length counts compact separators and unescaped non-ASCII text."""
    metrics = check_quality({"a": "é", "b": [1, 2]}, 1)
    assert metrics.text_length == len('{"a":"é","b":[1,2]}')


def test_just_under_length_floor_rejected():
    """Spaced separators would lift this output over the floor; compact JSON does not."""
    output = {"summary": "src/app/main.py def a def b class C function d ", "n": [0] * 200}
    assert len(json.dumps(output)) >= ROUND_THRESHOLDS[1][0]

    metrics = check_quality(output, 1)
    assert metrics.text_length < ROUND_THRESHOLDS[1][0]
    assert metrics.code_references >= ROUND_THRESHOLDS[1][1]
    assert not metrics.is_acceptable
