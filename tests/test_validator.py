"""Tests for claim extraction and validation against static facts."""

import pytest

from codebrief.validator import (
    extract_file_claims,
    extract_import_claims,
    validate_claims,
    validate_file_claims,
    validate_import_claims,
)


# --- File claims ---

def test_one_real_two_fabricated(facts):
    """One real path, two invented ones → 1 valid, 2 dropped, drop rate 2/3."""
    output = {"findings": ["src/real.ts", "src/fake1.ts", "src/fake2.ts"]}
    claimed = extract_file_claims(output)
    valid, dropped = validate_file_claims(claimed, facts)

    assert valid == ["src/real.ts"]
    assert dropped == ["src/fake1.ts", "src/fake2.ts"]

    result = validate_claims(1, output, facts)
    assert result.total == 3
    assert result.validated == 1
    assert result.corrected == 2
    assert result.drop_rate == pytest.approx(2 / 3, abs=0.01)


def test_no_claims_zero_drop_rate(facts):
    """Prose with no paths: total 0 and drop rate exactly 0."""
    result = validate_claims(1, {"purpose": "A small service for orders"}, facts)
    assert result.total == 0
    assert result.drop_rate == 0.0


def test_file_claims_deduplicated_in_order():
    """Repeated mentions count once, first-seen order kept."""
    output = {"a": "see src/util.ts and lib/other.py", "b": ["src/util.ts"]}
    assert extract_file_claims(output) == ["src/util.ts", "lib/other.py"]


def test_claims_found_in_compact_lists_and_unicode_text():
    output = {"files": ["src/a.py", "lib/b.py"], "note": "flux → src/c.py"}
    assert extract_file_claims(output) == ["src/a.py", "lib/b.py", "src/c.py"]


def test_bare_filename_not_a_claim():
    """Names without a directory component are not path claims."""
    assert extract_file_claims({"x": "uses config.json and README.md"}) == []


# --- Import claims ---

def test_relationship_claims_round_two(facts):
    """Round 2 relationships become import-edge claims checked against real imports."""
    output = {
        "relationships": [
            {"from": "src/real.ts", "to": "src/util.ts", "type": "import"},
            {"from": "src/util.ts", "to": "src/real.ts", "type": "import"},
        ]
    }
    claims = extract_import_claims(2, output)
    valid, dropped = validate_import_claims(claims, facts)
    assert valid == [("src/real.ts", "src/util.ts")]
    assert dropped == [("src/util.ts", "src/real.ts")]


def test_relationships_ignored_outside_round_two():
    """Same payload in round 4 yields no import claims."""
    output = {"relationships": [{"from": "src/real.ts", "to": "src/util.ts"}]}
    assert extract_import_claims(4, output) == []


def test_flow_path_claims_round_three(facts):
    """Round 3 flow paths become consecutive import edges."""
    output = {
        "cross_module_flows": [
            {"name": "help", "path": ["src/real.ts", "src/util.ts", "lib/other.py"]}
        ]
    }
    claims = extract_import_claims(3, output)
    assert claims == [("src/real.ts", "src/util.ts"), ("src/util.ts", "lib/other.py")]
    valid, dropped = validate_import_claims(claims, facts)
    assert len(valid) == 1 and len(dropped) == 1


def test_import_claim_from_unknown_file_dropped(facts):
    """An edge whose source file does not exist is dropped."""
    valid, dropped = validate_import_claims([("src/ghost.ts", "src/util.ts")], facts)
    assert valid == []
    assert dropped == [("src/ghost.ts", "src/util.ts")]


def test_combined_counts(facts):
    """File and import claims add up in one result."""
    output = {
        "modules": [{"name": "src", "path": "src/", "files": ["src/real.ts", "src/util.ts"]}],
        "relationships": [{"from": "src/real.ts", "to": "src/util.ts", "type": "import"}],
    }
    result = validate_claims(2, output, facts)
    assert result.total == 3
    assert result.corrected == 0
    assert result.drop_rate == 0.0
