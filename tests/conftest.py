"""Shared fixtures for codebrief tests."""

from collections.abc import Callable

import pytest
import pytest_asyncio

from codebrief.facts import FileFact, StaticFacts, TodoItem
from codebrief.models import CompletionResult, CompletionUsage
from codebrief.tokens import estimate_tokens


class FakeClient:
    """Scripted model client.

    handler(request, shape) returns the payload dict or raises. Every call is
    recorded; the payload is validated against the shape like a real client.
    """

    def __init__(
        self,
        handler: Callable,
        max_context: int = 200_000,
        usage: CompletionUsage | None = None,
        model: str = "claude-sonnet-4-5",
    ):
        self.handler = handler
        self.max_context = max_context
        self.usage = usage or CompletionUsage(input_tokens=100, output_tokens=50)
        self.model = model
        self.calls = []

    async def complete(self, request, shape, on_retry=None):
        self.calls.append((request, shape))
        data = self.handler(request, shape)
        return CompletionResult(
            data=shape.model_validate(data).model_dump(by_alias=True),
            usage=self.usage,
            model=self.model,
        )

    def max_context_tokens(self) -> int:
        return self.max_context

    def estimate_tokens(self, text: str) -> int:
        return estimate_tokens(text)


@pytest.fixture
def fake_client():
    """Factory: fake_client(handler, **kw) -> FakeClient."""
    return FakeClient


@pytest.fixture
def tmp_project(tmp_path):
    """Small Python project: .codebrief/ config + src/ package + tests + deploy files."""
    cfg_dir = tmp_path / ".codebrief"
    cfg_dir.mkdir()
    (cfg_dir / "config.yaml").write_text("""\
provider:
  name: anthropic
  model: claude-sonnet-4-5
rounds:
  context_tokens_per_round: 2000
  max_modules: 20
  module_batch_size: 10
project:
  name: shop
  description: Tiny order service
output_dir: docs/codebrief
""")

    app = tmp_path / "src" / "app"
    app.mkdir(parents=True)
    (app / "__init__.py").write_text("")
    (app / "main.py").write_text("""\
from app.service import place_order


def main():
    print(place_order("sku-1", 2))
""")
    (app / "service.py").write_text("""\
from .repo import save


class OrderError(Exception):
    pass


def place_order(sku, qty):
    # TODO: validate qty against stock
    if qty <= 0:
        raise OrderError("qty")
    return save({"sku": sku, "qty": qty})
""")
    (app / "repo.py").write_text("""\
import sqlite3

_ROWS = []


def save(row):
    # FIXME: not persisted
    _ROWS.append(row)
    return len(_ROWS)
""")

    tests = tmp_path / "tests"
    tests.mkdir()
    (tests / "test_service.py").write_text("def test_place_order():\n    pass\n")

    (tmp_path / "pyproject.toml").write_text("[project]\nname = 'shop'\n")
    (tmp_path / ".env.example").write_text("DATABASE_URL=sqlite://\nexport API_TOKEN=x\n")
    (tmp_path / "Dockerfile").write_text("FROM python:3.12\n")
    wf = tmp_path / ".github" / "workflows"
    wf.mkdir(parents=True)
    (wf / "ci.yml").write_text("on: push\n")
    return tmp_path


@pytest.fixture
def facts():
    """Hand-built ground truth: three files, one import edge."""
    return StaticFacts(
        root_name="demo",
        files=[
            FileFact("src/real.ts", lines=10, imports=frozenset({"src/util.ts", "./util"})),
            FileFact("src/util.ts", lines=5, functions=("helper",)),
            FileFact("lib/other.py", lines=3),
        ],
        directories=["lib", "src"],
        todos=[TodoItem("TODO", "handle empty input", "src/real.ts", 3)],
    )


@pytest_asyncio.fixture
async def history(tmp_path):
    """Real SQLite file history database (WAL mode)."""
    from codebrief.history import RunHistory
    db = RunHistory(str(tmp_path / "history.db"))
    await db.init()
    yield db
    await db.close()
