"""Tests for the per-run round result store."""

import pytest

from codebrief.models import (
    QualityMetrics,
    RoundContext,
    RoundExecutionResult,
    RoundStatus,
    ValidationResult,
)
from codebrief.store import RoundStore, RoundStoreError


def _result(n, status=RoundStatus.SUCCESS):
    return RoundExecutionResult(
        data={"round": n},
        validation=ValidationResult(),
        quality=QualityMetrics(),
        context=RoundContext(round_number=n, findings=[f"r{n}"]),
        status=status,
    )


def test_put_then_read():
    store = RoundStore()
    store.put(2, _result(2))
    assert 2 in store
    assert len(store) == 1
    assert store.data(2) == {"round": 2}
    assert store.get(2).status == RoundStatus.SUCCESS


def test_missing_round_reads_none():
    store = RoundStore()
    assert store.get(3) is None
    assert store.data(3) is None
    assert 3 not in store


def test_second_write_rejected():
    """Each round is written exactly once per run."""
    store = RoundStore()
    store.put(1, _result(1))
    with pytest.raises(RoundStoreError, match="Round 1"):
        store.put(1, _result(1, RoundStatus.DEGRADED))
    assert store.get(1).status == RoundStatus.SUCCESS


def test_contexts_in_requested_order_skipping_missing():
    store = RoundStore()
    store.put(2, _result(2))
    store.put(1, _result(1))
    contexts = store.contexts(1, 2, 3)
    assert [c.round_number for c in contexts] == [1, 2]


def test_as_dict_sorted_copy():
    store = RoundStore()
    for n in (3, 1, 2):
        store.put(n, _result(n))
    snapshot = store.as_dict()
    assert list(snapshot) == [1, 2, 3]
    snapshot.pop(1)
    assert 1 in store
