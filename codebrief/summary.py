"""Run-level validation summary, failure report and terminal status line."""

from __future__ import annotations

from dataclasses import dataclass, field

from .models import RoundExecutionResult, RoundStatus
from .prompts import ROUND_NAMES

ROUND_NUMBERS = tuple(range(1, 7))
SKIPPED = "skipped"

_DEGRADED_REASON = "Fell back to static data due to model failure"
_SKIPPED_REASON = "Round was not executed"


@dataclass(frozen=True)
class RoundSummary:
    round: int
    name: str
    status: str  # RoundStatus value, or "skipped"
    validated: int = 0
    corrected: int = 0


@dataclass(frozen=True)
class ValidationSummary:
    total_claims: int = 0
    validated_claims: int = 0
    corrected_claims: int = 0
    round_summaries: list[RoundSummary] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "totalClaims": self.total_claims,
            "validatedClaims": self.validated_claims,
            "correctedClaims": self.corrected_claims,
            "roundSummaries": [
                {
                    "round": r.round,
                    "name": r.name,
                    "status": r.status,
                    "validated": r.validated,
                    "corrected": r.corrected,
                }
                for r in self.round_summaries
            ],
        }


def build_validation_summary(results: dict[int, RoundExecutionResult]) -> ValidationSummary:
    """Sum validation counts over all six rounds. Missing rounds count as skipped."""
    total = validated = corrected = 0
    summaries = []
    for number in ROUND_NUMBERS:
        name = ROUND_NAMES[number]
        result = results.get(number)
        if result is None:
            summaries.append(RoundSummary(number, name, SKIPPED))
            continue
        v = result.validation
        total += v.total
        validated += v.validated
        corrected += v.corrected
        summaries.append(
            RoundSummary(number, name, RoundStatus(result.status).value, v.validated, v.corrected)
        )
    return ValidationSummary(total, validated, corrected, summaries)


def build_failure_report(
    results: dict[int, RoundExecutionResult],
    reasons: dict[int, str] | None = None,
) -> str:
    """Markdown report naming rounds that degraded or were skipped, and why."""
    reasons = reasons or {}
    summary = build_validation_summary(results)
    problems = [r for r in summary.round_summaries if r.status in (RoundStatus.DEGRADED.value, SKIPPED)]

    if not problems:
        return (
            f"All {len(ROUND_NUMBERS)} AI rounds completed successfully. "
            f"{summary.total_claims} claims validated, {summary.corrected_claims} corrected."
        )

    lines = ["## AI Analysis Pipeline Report", "", "### Round Status", ""]
    labels = {
        RoundStatus.SUCCESS.value: "OK",
        RoundStatus.RETRIED.value: "RETRIED (passed)",
        RoundStatus.DEGRADED.value: "DEGRADED",
    }
    for r in summary.round_summaries:
        if r.status == SKIPPED:
            lines.append(f"- **Round {r.round} ({r.name}):** SKIPPED")
        else:
            lines.append(
                f"- **Round {r.round} ({r.name}):** {labels[r.status]} -- "
                f"{r.validated} validated, {r.corrected} corrected"
            )

    lines += ["", "### Affected Documents", ""]
    for r in problems:
        default = _SKIPPED_REASON if r.status == SKIPPED else _DEGRADED_REASON
        lines.append(f"- **{r.name} document:** {r.status} -- {reasons.get(r.round, default)}")

    degraded = sum(1 for r in problems if r.status == RoundStatus.DEGRADED.value)
    skipped = len(problems) - degraded
    tail = f"{len(ROUND_NUMBERS) - len(problems)}/{len(ROUND_NUMBERS)} rounds completed successfully. "
    if degraded:
        tail += f"{degraded} degraded (using static fallback). "
    if skipped:
        tail += f"{skipped} skipped. "
    tail += f"{summary.total_claims} claims validated, {summary.corrected_claims} corrected."
    lines += ["", "### Summary", "", tail]
    return "\n".join(lines)


def format_validation_line(summary: ValidationSummary) -> str:
    complete = sum(
        1 for r in summary.round_summaries
        if r.status in (RoundStatus.SUCCESS.value, RoundStatus.RETRIED.value)
    )
    degraded = sum(1 for r in summary.round_summaries if r.status == RoundStatus.DEGRADED.value)
    status = f"{complete}/{len(summary.round_summaries)} rounds complete"
    if degraded:
        status += f" ({degraded} degraded)"
    return (
        f"AI analysis: {status}, {summary.validated_claims} claims validated, "
        f"{summary.corrected_claims} corrected"
    )
