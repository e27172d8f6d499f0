"""Mechanical inter-round context compression.

Pulls modules, findings, relationships and open questions out of a round's
output (no model call involved) and trims them to a token budget. Trimming
drops whole entries from the end of each list, in the order open questions,
findings (at least one kept), relationships, modules.
"""

from __future__ import annotations

from collections.abc import Callable

from .models import RoundContext


def compress_round_output(
    round_number: int,
    output: dict,
    max_tokens: int,
    estimate_tokens: Callable[[str], int],
) -> RoundContext:
    fields = {
        "modules": _extract_modules(output),
        "findings": _extract_strings(output, "findings", "key_findings"),
        "relationships": _extract_relationships(output),
        "open_questions": _extract_strings(output, "open_questions"),
    }

    def fits() -> bool:
        return estimate_tokens(build_compact_text(round_number, **fields)) <= max_tokens

    min_findings = 1 if fields["findings"] else 0
    for name, floor in (
        ("open_questions", 0),
        ("findings", min_findings),
        ("relationships", 0),
        ("modules", 0),
    ):
        while len(fields[name]) > floor and not fits():
            fields[name].pop()

    text = build_compact_text(round_number, **fields)
    return RoundContext(round_number=round_number, token_count=estimate_tokens(text), **fields)


def build_compact_text(
    round_number: int,
    modules: list[str],
    findings: list[str],
    relationships: list[str],
    open_questions: list[str],
) -> str:
    lines = [f"## Round {round_number} Context"]
    if modules:
        lines.append(f"Modules: {', '.join(modules)}")
    if findings:
        lines.append("Findings:")
        lines.extend(f"- {f}" for f in findings)
    if relationships:
        lines.append(f"Relationships: {'; '.join(relationships)}")
    if open_questions:
        lines.append(f"Open questions: {'; '.join(open_questions)}")
    return "\n".join(lines)


def context_to_text(context: RoundContext) -> str:
    return build_compact_text(
        context.round_number,
        context.modules,
        context.findings,
        context.relationships,
        context.open_questions,
    )


# -------------------------------------------------------------------
# Field extractors
# -------------------------------------------------------------------

def _extract_modules(output: dict) -> list[str]:
    modules = []
    for item in output.get("modules") or []:
        if isinstance(item, str):
            modules.append(item)
        elif isinstance(item, dict):
            name = item.get("name") or item.get("module_name")
            if name:
                modules.append(str(name))
    return modules


def _extract_strings(output: dict, *keys: str) -> list[str]:
    for key in keys:
        raw = output.get(key)
        if isinstance(raw, list):
            return [s for s in raw if isinstance(s, str)]
    return []


def _extract_relationships(output: dict) -> list[str]:
    relationships = []
    for item in output.get("relationships") or []:
        if isinstance(item, dict) and "from" in item and "to" in item:
            arrow = f"{item['from']} -> {item['to']}"
            relationships.append(f"{arrow} ({item['type']})" if item.get("type") else arrow)
    return relationships
