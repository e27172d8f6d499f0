"""Per-run round result store: each round written once, read any number of times."""

from __future__ import annotations

from .models import RoundContext, RoundExecutionResult


class RoundStoreError(Exception):
    """Raised on a second write for the same round."""


class RoundStore:
    def __init__(self):
        self._results: dict[int, RoundExecutionResult] = {}

    def put(self, round_number: int, result: RoundExecutionResult) -> None:
        if round_number in self._results:
            raise RoundStoreError(f"Round {round_number} result already stored")
        self._results[round_number] = result

    def get(self, round_number: int) -> RoundExecutionResult | None:
        return self._results.get(round_number)

    def data(self, round_number: int) -> dict | None:
        result = self._results.get(round_number)
        return result.data if result else None

    def contexts(self, *round_numbers: int) -> list[RoundContext]:
        """Compressed contexts of the requested rounds that have finished, in order."""
        return [
            self._results[n].context for n in round_numbers if n in self._results
        ]

    def as_dict(self) -> dict[int, RoundExecutionResult]:
        return dict(sorted(self._results.items()))

    def __contains__(self, round_number: int) -> bool:
        return round_number in self._results

    def __len__(self) -> int:
        return len(self._results)
