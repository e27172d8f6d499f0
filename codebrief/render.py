"""Default renderer: one JSON file per round plus a markdown run report."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from pathlib import Path

from .models import RoundExecutionResult
from .prompts import ROUND_NAMES
from .summary import ValidationSummary, format_validation_line

log = logging.getLogger(__name__)

REPORT_FILENAME = "pipeline-report.md"

# (round results, validation summary, failure report) -> written paths
Renderer = Callable[[dict[int, RoundExecutionResult], ValidationSummary, str], list[Path]]


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def round_filename(round_number: int) -> str:
    return f"round-{round_number}-{slugify(ROUND_NAMES[round_number])}.json"


class FileRenderer:
    def __init__(self, output_dir: str | Path):
        self.output_dir = Path(output_dir)

    def __call__(
        self,
        results: dict[int, RoundExecutionResult],
        summary: ValidationSummary,
        failure_report: str,
    ) -> list[Path]:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        written: list[Path] = []

        for number, result in sorted(results.items()):
            path = self.output_dir / round_filename(number)
            payload = {
                "round": number,
                "name": ROUND_NAMES[number],
                "status": result.status.value,
                "validation": {
                    "validated": result.validation.validated,
                    "corrected": result.validation.corrected,
                    "total": result.validation.total,
                    "dropRate": result.validation.drop_rate,
                },
                "quality": {
                    "textLength": result.quality.text_length,
                    "codeReferences": result.quality.code_references,
                    "isAcceptable": result.quality.is_acceptable,
                },
                "data": result.data,
            }
            path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n")
            written.append(path)

        report = self.output_dir / REPORT_FILENAME
        report.write_text(
            f"# Pipeline Report\n\n{format_validation_line(summary)}\n\n{failure_report}\n"
        )
        written.append(report)

        log.info("Wrote %d files to %s", len(written), self.output_dir)
        return written
