"""SQLite history of finished pipeline runs, with WAL mode."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import aiosqlite

if TYPE_CHECKING:
    from .pipeline import PipelineRun

_SCHEMA = """
CREATE TABLE IF NOT EXISTS runs (
    id TEXT PRIMARY KEY,
    started_at TEXT NOT NULL,
    finished_at TEXT NOT NULL,
    model TEXT NOT NULL,
    status_line TEXT NOT NULL,
    total_claims INTEGER DEFAULT 0,
    validated_claims INTEGER DEFAULT 0,
    corrected_claims INTEGER DEFAULT 0,
    input_tokens INTEGER DEFAULT 0,
    output_tokens INTEGER DEFAULT 0,
    cost REAL DEFAULT 0.0
);

CREATE TABLE IF NOT EXISTS round_results (
    run_id TEXT NOT NULL REFERENCES runs(id),
    round INTEGER NOT NULL,
    name TEXT NOT NULL,
    status TEXT NOT NULL,
    validated INTEGER DEFAULT 0,
    corrected INTEGER DEFAULT 0,
    input_tokens INTEGER DEFAULT 0,
    output_tokens INTEGER DEFAULT 0,
    cost REAL DEFAULT 0.0,
    PRIMARY KEY (run_id, round)
);

CREATE INDEX IF NOT EXISTS idx_runs_started ON runs(started_at);
"""


@dataclass(frozen=True)
class RunRecord:
    id: str
    started_at: str
    finished_at: str
    model: str
    status_line: str
    total_claims: int
    validated_claims: int
    corrected_claims: int
    input_tokens: int
    output_tokens: int
    cost: float


@dataclass(frozen=True)
class RoundRecord:
    round: int
    name: str
    status: str
    validated: int
    corrected: int
    input_tokens: int
    output_tokens: int
    cost: float


class RunHistory:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row
        if self.db_path != ":memory:":
            await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(_SCHEMA)
        await self._conn.commit()

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> RunHistory:
        await self.init()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ---------------------------------------------------------------
    # Writes
    # ---------------------------------------------------------------

    async def record_run(self, run: PipelineRun) -> None:
        totals = run.tracker.get_total_usage()
        summary = run.summary
        await self._conn.execute(
            """INSERT INTO runs
               (id, started_at, finished_at, model, status_line, total_claims,
                validated_claims, corrected_claims, input_tokens, output_tokens, cost)
               VALUES (?,?,?,?,?,?,?,?,?,?,?)""",
            (
                run.id, run.started_at, run.finished_at, run.model, run.status_line,
                summary.total_claims, summary.validated_claims, summary.corrected_claims,
                totals["input"], totals["output"], run.total_cost,
            ),
        )
        for rs in summary.round_summaries:
            usage = run.tracker.get_round_usage(rs.round)
            await self._conn.execute(
                """INSERT INTO round_results
                   (run_id, round, name, status, validated, corrected,
                    input_tokens, output_tokens, cost)
                   VALUES (?,?,?,?,?,?,?,?,?)""",
                (
                    run.id, rs.round, rs.name, rs.status, rs.validated, rs.corrected,
                    usage.input_tokens if usage else 0,
                    usage.output_tokens if usage else 0,
                    run.tracker.get_round_cost(rs.round),
                ),
            )
        await self._conn.commit()

    # ---------------------------------------------------------------
    # Reads
    # ---------------------------------------------------------------

    async def list_runs(self, limit: int = 20) -> list[RunRecord]:
        cursor = await self._conn.execute(
            "SELECT * FROM runs ORDER BY started_at DESC LIMIT ?", (limit,)
        )
        rows = await cursor.fetchall()
        return [self._row_to_run(r) for r in rows]

    async def get_run(self, run_id: str) -> RunRecord | None:
        cursor = await self._conn.execute("SELECT * FROM runs WHERE id = ?", (run_id,))
        row = await cursor.fetchone()
        return self._row_to_run(row) if row else None

    async def get_rounds(self, run_id: str) -> list[RoundRecord]:
        cursor = await self._conn.execute(
            "SELECT * FROM round_results WHERE run_id = ? ORDER BY round", (run_id,)
        )
        rows = await cursor.fetchall()
        return [
            RoundRecord(
                round=r["round"],
                name=r["name"],
                status=r["status"],
                validated=r["validated"],
                corrected=r["corrected"],
                input_tokens=r["input_tokens"],
                output_tokens=r["output_tokens"],
                cost=r["cost"],
            )
            for r in rows
        ]

    @staticmethod
    def _row_to_run(row) -> RunRecord:
        return RunRecord(
            id=row["id"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            model=row["model"],
            status_line=row["status_line"],
            total_claims=row["total_claims"],
            validated_claims=row["validated_claims"],
            corrected_claims=row["corrected_claims"],
            input_tokens=row["input_tokens"],
            output_tokens=row["output_tokens"],
            cost=row["cost"],
        )
