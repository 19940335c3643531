"""Workspace tools: symbol lookup, file outlines and file access under a project root."""

import ast
import asyncio
import logging
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from pydantic import BaseModel, Field

from ..errors import OutlineError
from .registry import Tool, ToolRegistry

logger = logging.getLogger(__name__)

EXCLUDED_DIRS = {
    ".git", ".hg", ".svn", ".venv", "venv", "env", "node_modules",
    "__pycache__", ".mypy_cache", ".pytest_cache", ".tox", "build", "dist",
}

MAX_SCANNED_FILES = 2000

DefinitionNode = Union[ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef]
DEFINITION_TYPES = (ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef)


class Workspace:
    """A directory tree the tools may read from."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()

    def resolve(self, path: str) -> Path:
        """Resolve a workspace-relative or absolute path, refusing escapes."""
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        candidate = candidate.resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise ValueError(f"Path '{path}' is outside the workspace")
        return candidate

    def relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def iter_files(self, pattern: str = "**/*.py") -> Iterator[Path]:
        for path in sorted(self.root.glob(pattern)):
            parts = path.relative_to(self.root).parts
            if any(part in EXCLUDED_DIRS or part.startswith(".") for part in parts[:-1]):
                continue
            if path.is_file():
                yield path

    def outline(self, path: str) -> list[dict[str, Any]]:
        """Symbol outline of one Python file.

        Raises OutlineError when the file is outside the workspace, missing,
        unparsable or defines nothing.
        """
        try:
            file = self.resolve(path)
        except ValueError as e:
            raise OutlineError(str(e)) from e
        if not file.is_file():
            raise OutlineError(f"No such file: {path}")
        try:
            tree = ast.parse(file.read_text(encoding="utf-8"), filename=str(file))
        except (OSError, SyntaxError, ValueError) as e:
            raise OutlineError(f"Cannot outline {path}: {e}") from e
        symbols = outline_symbols(tree.body)
        if not symbols:
            raise OutlineError(f"No symbols found in {path}")
        return symbols


def _definition_start(node: DefinitionNode) -> int:
    if node.decorator_list:
        return min(d.lineno for d in node.decorator_list)
    return node.lineno


def find_definitions(tree: ast.Module, symbol: str) -> list[DefinitionNode]:
    """Find class/function definitions for a plain or dotted symbol name.

    The first segment may be defined anywhere in the module; each further
    segment must be defined directly in the body of a matched class.
    """
    head, *rest = symbol.split(".")
    matches = [node for node in ast.walk(tree) if isinstance(node, DEFINITION_TYPES) and node.name == head]
    for part in rest:
        matches = [
            child
            for node in matches if isinstance(node, ast.ClassDef)
            for child in node.body if isinstance(child, DEFINITION_TYPES) and child.name == part
        ]
    return matches


def _assigned_names(node: Union[ast.Assign, ast.AnnAssign]) -> list[str]:
    targets = node.targets if isinstance(node, ast.Assign) else [node.target]
    return [target.id for target in targets if isinstance(target, ast.Name)]


def outline_symbols(body: list[ast.stmt], in_class: bool = False) -> list[dict[str, Any]]:
    """Nested outline of the classes, functions and variables in a module or class body."""
    symbols = []
    for node in body:
        if isinstance(node, (ast.Assign, ast.AnnAssign)):
            for name in _assigned_names(node):
                symbols.append({
                    "name": name,
                    "kind": "field" if in_class else "variable",
                    "start_line": node.lineno,
                    "end_line": node.end_lineno or node.lineno,
                })
            continue
        if not isinstance(node, DEFINITION_TYPES):
            continue

        if isinstance(node, ast.ClassDef):
            kind = "class"
        else:
            kind = "method" if in_class else "function"
        entry: dict[str, Any] = {
            "name": node.name,
            "kind": kind,
            "start_line": _definition_start(node),
            "end_line": node.end_lineno or node.lineno,
        }
        if isinstance(node, ast.ClassDef):
            bases = [ast.unparse(base) for base in node.bases]
            if bases:
                entry["bases"] = bases
            children = outline_symbols(node.body, in_class=True)
            if children:
                entry["children"] = children
        symbols.append(entry)
    return symbols


class GetSymbolDefinitionTool(Tool):
    name = "get_symbol_definition"
    description = (
        "Given a list of symbols and optionally the file they appear in, return the "
        "definition of each symbol and the file and line where it is actually defined. "
        "For example, if 'x.py' uses 'abc' the definition may come from 'y.py'. "
        "Dotted names such as 'Outer.Inner.method' are resolved through nested classes."
    )

    class Args(BaseModel):
        symbols: list[str] = Field(..., min_length=1, description="Symbols to look up")
        file_path: Optional[str] = Field(
            default=None,
            description="File where the symbols were seen, if known",
        )

    def __init__(self, workspace: Workspace):
        self.workspace = workspace

    def _parse(self, path: Path, cache: dict[Path, Optional[tuple[ast.Module, list[str]]]]):
        if path not in cache:
            try:
                source = path.read_text(encoding="utf-8")
                cache[path] = (ast.parse(source, filename=str(path)), source.splitlines())
            except (OSError, SyntaxError, UnicodeDecodeError, ValueError) as e:
                logger.debug("Skipping %s: %s", path, e)
                cache[path] = None
        return cache[path]

    def _candidate_files(self, file_path: Optional[str]) -> Iterator[Path]:
        if file_path:
            first = self.workspace.resolve(file_path)
            if first.is_file():
                yield first
        for index, path in enumerate(self.workspace.iter_files("**/*.py")):
            if index >= MAX_SCANNED_FILES:
                break
            yield path

    def _lookup(self, symbol: str, file_path: Optional[str], cache) -> str:
        for path in self._candidate_files(file_path):
            parsed = self._parse(path, cache)
            if parsed is None:
                continue
            tree, lines = parsed
            nodes = find_definitions(tree, symbol)
            if nodes:
                node = nodes[0]
                start = _definition_start(node)
                end = node.end_lineno or node.lineno
                body = "\n".join(lines[start - 1:end])
                location = f"{self.workspace.relative(path)}#L{node.lineno}"
                return f"Symbol: {symbol}\nLocation: {location}\n{body}"
        return f"Symbol: {symbol}\nNo definition found in the workspace."

    def _lookup_all(self, args: "GetSymbolDefinitionTool.Args") -> str:
        cache: dict[Path, Optional[tuple[ast.Module, list[str]]]] = {}
        sections = [self._lookup(symbol, args.file_path, cache) for symbol in args.symbols]
        return "\n\n".join(sections)

    async def run(self, args: "GetSymbolDefinitionTool.Args") -> str:
        return await asyncio.to_thread(self._lookup_all, args)


class ReadFileTool(Tool):
    name = "read_file"
    description = "Read lines of a workspace file. Lines are returned with their line numbers."

    class Args(BaseModel):
        path: str = Field(..., description="Workspace-relative file path")
        start_line: int = Field(default=1, ge=1)
        max_lines: int = Field(default=200, ge=1, le=2000)

    def __init__(self, workspace: Workspace):
        self.workspace = workspace

    def _read(self, args: "ReadFileTool.Args") -> str:
        path = self.workspace.resolve(args.path)
        if not path.is_file():
            raise FileNotFoundError(f"No such file: {args.path}")
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
        selected = lines[args.start_line - 1:args.start_line - 1 + args.max_lines]
        numbered = [f"{args.start_line + i:5d} | {line}" for i, line in enumerate(selected)]
        header = f"{self.workspace.relative(path)} ({len(lines)} lines)"
        return "\n".join([header, *numbered])

    async def run(self, args: "ReadFileTool.Args") -> str:
        return await asyncio.to_thread(self._read, args)


class ListFilesTool(Tool):
    name = "list_files"
    description = "List workspace files matching a glob pattern, e.g. '**/*.py'."

    class Args(BaseModel):
        pattern: str = Field(default="**/*.py")
        limit: int = Field(default=200, ge=1, le=2000)

    def __init__(self, workspace: Workspace):
        self.workspace = workspace

    def _list(self, args: "ListFilesTool.Args") -> str:
        if Path(args.pattern).is_absolute() or ".." in Path(args.pattern).parts:
            raise ValueError("Pattern must be relative to the workspace")
        files = []
        for path in self.workspace.iter_files(args.pattern):
            files.append(self.workspace.relative(path))
            if len(files) >= args.limit:
                break
        if not files:
            return f"No files match '{args.pattern}'."
        return "\n".join(files)

    async def run(self, args: "ListFilesTool.Args") -> str:
        return await asyncio.to_thread(self._list, args)


def build_workspace_registry(root: Union[str, Path]) -> ToolRegistry:
    """Registry with the built-in workspace tools bound to ``root``."""
    workspace = Workspace(root)
    return ToolRegistry([
        GetSymbolDefinitionTool(workspace),
        ReadFileTool(workspace),
        ListFilesTool(workspace),
    ])
