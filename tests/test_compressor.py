"""Tests for mechanical inter-round context compression."""

from codebrief.compressor import build_compact_text, compress_round_output, context_to_text
from codebrief.tokens import estimate_tokens


OUTPUT = {
    "modules": [{"name": "api", "path": "src/api"}, {"module_name": "db"}, "cli"],
    "findings": [f"finding number {i} about src/api/handler.py" for i in range(20)],
    "relationships": [
        {"from": "src/api", "to": "src/db", "type": "import"},
        {"from": "src/cli", "to": "src/api"},
    ],
    "open_questions": [f"question {i}?" for i in range(10)],
}


def test_extracts_all_fields_under_large_budget():
    """Generous budget keeps everything, in source order."""
    ctx = compress_round_output(2, OUTPUT, 10_000, estimate_tokens)
    assert ctx.round_number == 2
    assert ctx.modules == ["api", "db", "cli"]
    assert len(ctx.findings) == 20
    assert ctx.relationships == ["src/api -> src/db (import)", "src/cli -> src/api"]
    assert len(ctx.open_questions) == 10
    assert ctx.token_count == estimate_tokens(context_to_text(ctx))


def test_key_findings_alias():
    """Round 5 aggregate uses key_findings; it is read as findings."""
    ctx = compress_round_output(5, {"key_findings": ["a", "b"]}, 1000, estimate_tokens)
    assert ctx.findings == ["a", "b"]


def test_tight_budget_trims_questions_first():
    """Open questions go before findings; at least one finding survives."""
    ctx = compress_round_output(2, OUTPUT, 60, estimate_tokens)
    assert ctx.open_questions == []
    assert len(ctx.findings) >= 1
    assert ctx.findings[0] == OUTPUT["findings"][0]


def test_tiny_budget_keeps_one_finding():
    """Even an impossible budget leaves the first finding."""
    ctx = compress_round_output(2, OUTPUT, 1, estimate_tokens)
    assert ctx.findings == [OUTPUT["findings"][0]]
    assert ctx.modules == []
    assert ctx.relationships == []


def test_result_within_budget_when_possible():
    """Compressed text fits the budget when trimming can reach it."""
    ctx = compress_round_output(2, OUTPUT, 120, estimate_tokens)
    assert ctx.token_count <= 120


def test_empty_output():
    """Nothing to extract → header-only context."""
    ctx = compress_round_output(6, {}, 100, estimate_tokens)
    assert ctx.modules == ctx.findings == ctx.relationships == ctx.open_questions == []
    assert context_to_text(ctx) == "## Round 6 Context"


def test_compact_text_layout():
    text = build_compact_text(1, ["a", "b"], ["f1"], ["a -> b"], ["q?"])
    assert text.splitlines() == [
        "## Round 1 Context",
        "Modules: a, b",
        "Findings:",
        "- f1",
        "Relationships: a -> b",
        "Open questions: q?",
    ]
