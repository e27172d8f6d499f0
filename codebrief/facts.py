"""Static facts about a project tree: the ground truth model claims are checked against."""

from __future__ import annotations

import ast
import fnmatch
import posixpath
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

import pathspec

from .config import Config

_SKIP_DIRS = {
    ".git", ".hg", ".svn", ".venv", "venv", "__pycache__", "node_modules",
    ".mypy_cache", ".pytest_cache", ".ruff_cache", ".tox", ".idea", ".vscode",
    ".codebrief", "dist", "build", "coverage", ".next", "target", "vendor",
}

SOURCE_EXTENSIONS = {
    ".py", ".ts", ".tsx", ".js", ".jsx", ".mjs", ".go", ".rs", ".java", ".rb",
}

MANIFEST_NAMES = {
    "pyproject.toml", "setup.py", "setup.cfg", "requirements.txt", "package.json",
    "go.mod", "Cargo.toml", "Gemfile", "pom.xml",
}

_TODO_RE = re.compile(r"\b(TODO|FIXME|HACK|XXX)\b[:\s]*(.*)")
_JS_IMPORT_RE = re.compile(
    r"""(?:import\s[^'"]*?from\s*|import\s*\(?\s*|require\(\s*|export\s[^'"]*?from\s*)['"]([^'"]+)['"]"""
)
_JS_FUNC_RE = re.compile(r"\bfunction\s+(\w+)|\b(?:const|let)\s+(\w+)\s*=\s*(?:async\s*)?\(")
_JS_CLASS_RE = re.compile(r"\bclass\s+(\w+)")
_GO_IMPORT_RE = re.compile(r'^\s*(?:import\s+)?(?:\w+\s+)?"([^"]+)"', re.MULTILINE)
_GO_FUNC_RE = re.compile(r"^func\s+(?:\([^)]*\)\s*)?(\w+)", re.MULTILINE)
_ENV_LINE_RE = re.compile(r"^\s*(?:export\s+)?([A-Z][A-Z0-9_]*)\s*=", re.MULTILINE)
_JS_EXTENSIONS = ("", ".ts", ".tsx", ".js", ".jsx", "/index.ts", "/index.js")


@dataclass(frozen=True)
class TodoItem:
    marker: str
    text: str
    file: str
    line: int


@dataclass(frozen=True)
class FileFact:
    path: str
    lines: int = 0
    size: int = 0
    imports: frozenset[str] = frozenset()
    functions: tuple[str, ...] = ()
    classes: tuple[str, ...] = ()

    @property
    def extension(self) -> str:
        return posixpath.splitext(self.path)[1] or posixpath.basename(self.path)


@dataclass
class StaticFacts:
    """Read-only fact base for one project snapshot."""

    root_name: str
    files: list[FileFact] = field(default_factory=list)
    directories: list[str] = field(default_factory=list)
    todos: list[TodoItem] = field(default_factory=list)
    env_vars: dict[str, list[str]] = field(default_factory=dict)  # env file -> names
    manifests: list[str] = field(default_factory=list)
    test_files: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._by_path = {f.path: f for f in self.files}
        self.known_files = frozenset(self._by_path)

    def imports_of(self, path: str) -> frozenset[str] | None:
        fact = self._by_path.get(path)
        return fact.imports if fact else None

    def get(self, path: str) -> FileFact | None:
        return self._by_path.get(path)

    @property
    def total_lines(self) -> int:
        return sum(f.lines for f in self.files)

    def files_by_extension(self) -> dict[str, int]:
        return dict(Counter(f.extension for f in self.files).most_common())

    def top_level_directories(self) -> list[str]:
        return [d for d in self.directories if "/" not in d and not d.startswith(".")]

    def files_under(self, directory: str) -> list[str]:
        prefix = directory.rstrip("/") + "/"
        return [f.path for f in self.files if f.path.startswith(prefix)]

    def importers_of(self, path: str) -> list[str]:
        return [f.path for f in self.files if path in f.imports]


# -------------------------------------------------------------------
# Import resolution
# -------------------------------------------------------------------

def _resolve_python(module: str, level: int, importer: str, known: set[str]) -> str | None:
    if level:
        base = posixpath.dirname(importer)
        for _ in range(level - 1):
            base = posixpath.dirname(base)
        parts = [base] if base else []
        if module:
            parts.append(module.replace(".", "/"))
        stem = "/".join(parts)
    else:
        stem = module.replace(".", "/")
    stems = [stem] if level else [stem, f"src/{stem}"]
    for s in stems:
        for candidate in (f"{s}.py", f"{s}/__init__.py"):
            if candidate in known:
                return candidate
    return None


def _python_facts(source: str, path: str, known: set[str]):
    try:
        tree = ast.parse(source)
    except (SyntaxError, ValueError):
        return set(), (), ()

    imports: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                imports.add(alias.name)
                resolved = _resolve_python(alias.name, 0, path, known)
                if resolved:
                    imports.add(resolved)
        elif isinstance(node, ast.ImportFrom):
            module = node.module or ""
            imports.add("." * node.level + module)
            resolved = _resolve_python(module, node.level, path, known)
            if resolved:
                imports.add(resolved)
            for alias in node.names:
                # from pkg import submodule
                sub = f"{module}.{alias.name}" if module else alias.name
                resolved = _resolve_python(sub, node.level, path, known)
                if resolved:
                    imports.add(resolved)

    functions = tuple(
        n.name for n in tree.body if isinstance(n, (ast.FunctionDef, ast.AsyncFunctionDef))
    )
    classes = tuple(n.name for n in tree.body if isinstance(n, ast.ClassDef))
    return imports, functions, classes


def _js_facts(source: str, path: str, known: set[str]):
    imports: set[str] = set()
    for spec in _JS_IMPORT_RE.findall(source):
        imports.add(spec)
        if spec.startswith("."):
            stem = posixpath.normpath(posixpath.join(posixpath.dirname(path), spec))
            # ESM imports often say .js for a .ts source
            stems = [stem, re.sub(r"\.js$", "", stem)]
            for s in stems:
                for ext in _JS_EXTENSIONS:
                    if s + ext in known:
                        imports.add(s + ext)
    functions = tuple(a or b for a, b in _JS_FUNC_RE.findall(source))
    classes = tuple(_JS_CLASS_RE.findall(source))
    return imports, functions, classes


def _go_facts(source: str, path: str, known: set[str]):
    block = re.search(r"import\s*\((.*?)\)", source, re.DOTALL)
    imports = set(_GO_IMPORT_RE.findall(block.group(1))) if block else set()
    imports.update(re.findall(r'^import\s+(?:\w+\s+)?"([^"]+)"', source, re.MULTILINE))
    return imports, tuple(_GO_FUNC_RE.findall(source)), ()


def _is_test_file(path: str) -> bool:
    name = posixpath.basename(path)
    return (
        name.startswith("test_")
        or name.endswith("_test.py")
        or name.endswith("_test.go")
        or ".test." in name
        or ".spec." in name
        or "/tests/" in f"/{path}"
    )


# -------------------------------------------------------------------
# Tree walk
# -------------------------------------------------------------------

def _excluded(rel: str, patterns: list[str]) -> bool:
    return any(fnmatch.fnmatch(rel, p) for p in patterns)


def load_gitignore(root: Path) -> pathspec.PathSpec | None:
    """Patterns from the root .gitignore, or None when there is none."""
    path = root / ".gitignore"
    if not path.is_file():
        return None
    return pathspec.GitIgnoreSpec.from_lines(path.read_text(encoding="utf-8").splitlines())


def discover_files(root: Path, config: Config | None = None) -> tuple[list[str], list[str]]:
    """Return (files, directories) as sorted posix paths relative to root.

    Symlinked directories are not followed; paths matched by the root
    .gitignore are left out.
    """
    exclude = config.scan.exclude if config else []
    include = config.scan.include if config else []
    ignored = load_gitignore(root)
    files: list[str] = []
    directories: list[str] = []

    def walk(directory: Path) -> None:
        for entry in sorted(directory.iterdir()):
            rel = entry.relative_to(root).as_posix()
            if entry.is_dir():
                if entry.is_symlink() or entry.name in _SKIP_DIRS:
                    continue
                if _excluded(rel + "/", exclude):
                    continue
                if ignored is not None and ignored.match_file(rel + "/"):
                    continue
                directories.append(rel)
                walk(entry)
            elif entry.is_file():
                if _excluded(rel, exclude):
                    continue
                if ignored is not None and ignored.match_file(rel):
                    continue
                if include and not any(fnmatch.fnmatch(rel, p) for p in include):
                    continue
                files.append(rel)

    walk(root)
    return files, directories


def scan_project(project_root: str | Path, config: Config | None = None) -> StaticFacts:
    """Walk the tree and collect files, imports, symbols, TODOs, env vars and manifests."""
    root = Path(project_root)
    max_bytes = config.scan.max_file_bytes if config else 200_000
    paths, directories = discover_files(root, config)
    known = set(paths)

    files: list[FileFact] = []
    todos: list[TodoItem] = []
    env_vars: dict[str, list[str]] = {}
    manifests: list[str] = []

    for rel in paths:
        full = root / rel
        name = posixpath.basename(rel)
        size = full.stat().st_size
        ext = posixpath.splitext(rel)[1]

        if name in MANIFEST_NAMES:
            manifests.append(rel)

        if size > max_bytes:
            files.append(FileFact(path=rel, size=size))
            continue
        try:
            source = full.read_text(encoding="utf-8")
        except (UnicodeDecodeError, OSError):
            files.append(FileFact(path=rel, size=size))
            continue

        if name.startswith(".env"):
            env_vars[rel] = _ENV_LINE_RE.findall(source)

        imports: set[str] = set()
        functions: tuple[str, ...] = ()
        classes: tuple[str, ...] = ()
        if ext == ".py":
            imports, functions, classes = _python_facts(source, rel, known)
        elif ext in {".ts", ".tsx", ".js", ".jsx", ".mjs"}:
            imports, functions, classes = _js_facts(source, rel, known)
        elif ext == ".go":
            imports, functions, classes = _go_facts(source, rel, known)

        if ext in SOURCE_EXTENSIONS:
            for lineno, line in enumerate(source.splitlines(), 1):
                m = _TODO_RE.search(line)
                if m:
                    todos.append(TodoItem(m.group(1), m.group(2).strip(), rel, lineno))

        files.append(FileFact(
            path=rel,
            lines=source.count("\n") + (1 if source and not source.endswith("\n") else 0),
            size=size,
            imports=frozenset(imports),
            functions=functions,
            classes=classes,
        ))

    return StaticFacts(
        root_name=root.resolve().name,
        files=files,
        directories=directories,
        todos=todos,
        env_vars=env_vars,
        manifests=manifests,
        test_files=[f.path for f in files if _is_test_file(f.path)],
    )
