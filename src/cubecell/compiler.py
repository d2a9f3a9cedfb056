"""Cell compiler: lazy, exactly-once compilation of cell source.

Pipeline for one cell version:
    raw source -> ~placeholder~ ids -> shortcut expansion -> import hoisting
    -> generated ExecutionShim subclass -> compile back end -> artifact

The artifact (or the failure) is stored on the cell's current version. The
hot path is a single attribute read; only first-time compilation takes the
compiler-wide lock. A failed compile is sticky: the same CompilationError is
raised on every later call until the cell's source is edited.
"""

import ast
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from .backend import CompileBackend, CompiledArtifact, PythonBackend
from .cell import Cell, CellKind, CellVersion
from .config import CompilerConfig
from .dependencies import extract_imports, extract_references
from .errors import CellError, CompilationError, RuntimeInvocationError
from .ids import IdSource, SequentialIdSource
from .shim import Bindings, StackFrame, Structure, StructureRegistry
from .shortcuts import ShortcutExpander, fix_class_name, format_coordinate, string_spans, substitute_unique_ids

logger = structlog.get_logger(__name__)

SHIM_LOCALS = "input, output, stack, cube, registry = (self.input, self.output, self.stack, self.cube, self.registry)"


@dataclass
class GeneratedSource:
    """A generated cell module and the name of the class it defines."""

    class_name: str
    text: str


class CompiledArtifactCache:
    """Per-cell memo of compiled artifacts with first-compile-wins semantics."""

    def __init__(self, quote_source: Callable[[str], str] | None = None):
        self._lock = threading.Lock()
        self._quote_source = quote_source or (lambda source: source)
        self.compiles = 0
        self.failures = 0

    def get_or_compile(self, cell: Cell, compile_fn: Callable[[CellVersion], Any]) -> Any:
        version = cell.current
        artifact = version.artifact
        if artifact is not None:
            return artifact
        if version.error is not None:
            raise self._sticky_error(cell, version) from version.cause

        with self._lock:
            # Another thread may have finished while this one waited.
            if version.artifact is not None:
                return version.artifact
            if version.error is not None:
                raise self._sticky_error(cell, version) from version.cause

            version.compiling = True
            self.compiles += 1
            try:
                artifact = compile_fn(version)
            except Exception as e:
                self.failures += 1
                version.cause = e
                version.error = self.describe_failure(cell, version, e)
                raise self._sticky_error(cell, version) from e
            finally:
                version.compiling = False

            version.artifact = artifact
            return artifact

    def describe_failure(self, cell: Cell, version: CellVersion, exc: Exception) -> str:
        return (
            f"Failed to compile cell [{format_coordinate(cell.coordinate)}], "
            f"cube '{cell.cube}', source {self._quote_source(version.source)!r}: "
            f"{type(exc).__name__}: {exc}"
        )

    def _sticky_error(self, cell: Cell, version: CellVersion) -> CompilationError:
        return CompilationError(
            version.error,
            cube=cell.cube,
            coordinate=cell.coordinate,
            source=version.source,
        )


def _string_lines(text: str) -> set[int]:
    """Indexes of the lines of ``text`` that begin inside a string literal."""
    inside: set[int] = set()
    for start, end in string_spans(text):
        first = text.count("\n", 0, start)
        last = text.count("\n", 0, end - 1)
        inside.update(range(first + 1, last + 1))
    return inside


def indent_code(text: str, prefix: str) -> str:
    """Like ``textwrap.indent`` but leaves string literal continuation lines alone."""
    inside = _string_lines(text)
    lines = text.split("\n")
    return "\n".join(
        prefix + line if line.strip() and i not in inside else line for i, line in enumerate(lines)
    )


def dedent_code(text: str) -> str:
    """Like ``textwrap.dedent`` but leaves string literal continuation lines alone."""
    inside = _string_lines(text)
    lines = text.split("\n")
    code = [i for i, line in enumerate(lines) if line.strip() and i not in inside]
    margin = os.path.commonprefix([lines[i][: len(lines[i]) - len(lines[i].lstrip())] for i in code])
    for i, line in enumerate(lines):
        if i in inside:
            continue
        lines[i] = line[len(margin) :] if line.strip() else ""
    return "\n".join(lines)


def _char_offset(line: str, byte_offset: int) -> int:
    return len(line.encode("utf-8")[:byte_offset].decode("utf-8", errors="ignore"))


def expression_body(body: str) -> str:
    """Make the value of a trailing bare expression the function's result.

    Source that does not parse is returned unchanged so the back end reports
    the syntax error.
    """
    if not body.strip():
        return "return None"
    try:
        tree = ast.parse(body)
    except SyntaxError:
        return body

    last = tree.body[-1] if tree.body else None
    if not isinstance(last, ast.Expr):
        return body

    lines = body.splitlines()
    i = last.lineno - 1
    col = _char_offset(lines[i], last.col_offset)
    lines[i] = lines[i][:col] + "return " + lines[i][col:]
    return "\n".join(lines)


class CellCompiler:
    """Compiles and runs cells.

    Example:
        >>> compiler = CellCompiler()
        >>> cell = Cell("input['qty'] * 2", cube="Orders")
        >>> compiler.evaluate(cell, input={"qty": 3})
        6
    """

    def __init__(
        self,
        backend: CompileBackend | None = None,
        id_source: IdSource | None = None,
        config: CompilerConfig | None = None,
        expander: ShortcutExpander | None = None,
    ):
        self.backend = backend or PythonBackend()
        self.id_source = id_source or SequentialIdSource()
        self.config = config or CompilerConfig()
        self.expander = expander or ShortcutExpander()
        self.cache = CompiledArtifactCache(quote_source=self._quote)

    def get_or_compile(self, cell: Cell) -> CompiledArtifact:
        """Return the cell's artifact, compiling it on first use.

        Raises:
            CompilationError: If this source version failed to compile, now
                or on an earlier call
        """
        return self.cache.get_or_compile(cell, lambda version: self._compile(cell, version))

    def _compile(self, cell: Cell, version: CellVersion) -> CompiledArtifact:
        log = logger.bind(cube=cell.cube, coordinate=format_coordinate(cell.coordinate))
        generated = self.build_source(cell, self.id_source.next_id(), version.source)
        log.debug("cell_compile_started", class_name=generated.class_name, version=version.number)
        try:
            artifact = self.backend.compile(generated.text, generated.class_name)
        except Exception as e:
            log.warning(
                "cell_compile_failed",
                error=str(e),
                source=self._quote(version.source),
            )
            raise
        log.info("cell_compiled", class_name=generated.class_name, version=version.number)
        return artifact

    def build_source(self, cell: Cell, unique_id: int | str, source: str | None = None) -> GeneratedSource:
        """Generate the module text that is handed to the back end.

        Args:
            cell: The cell being compiled
            unique_id: Fresh id for ``~name~`` placeholders and the class name
            source: Source to compile (defaults to the cell's current source)
        """
        text = cell.source if source is None else source
        text = substitute_unique_ids(text, unique_id)
        text = self.expander.expand(text)
        text = dedent_code(text).strip("\n")

        imports: list[str] = []
        if self.config.hoist_imports:
            imports, text = extract_imports(text)

        class_name = fix_class_name(f"{self.config.class_prefix}_{cell.cube}_{unique_id}")

        if cell.kind is CellKind.METHOD:
            body = indent_code(text, " " * 4) if text.strip() else "    pass"
        else:
            run = indent_code(SHIM_LOCALS + "\n" + expression_body(text), " " * 8)
            body = "    def run(self):\n" + run

        header = "\n".join(imports)
        module = f"{header}\n\n\nclass {class_name}(ExecutionShim):\n{body}\n"
        return GeneratedSource(class_name, module.lstrip("\n"))

    def _quote(self, source: str) -> str:
        if not self.config.include_source_in_errors:
            return "<hidden>"
        limit = self.config.max_error_source_length
        return source if len(source) <= limit else source[:limit] + "..."

    def execute(self, cell: Cell, bindings: Bindings) -> Any:
        """Compile ``cell`` if needed and run it against ``bindings``.

        Cell errors raised while running (for example an unresolved
        reference) propagate unchanged; anything else is wrapped in
        RuntimeInvocationError with the original as ``__cause__``.
        """
        artifact = self.get_or_compile(cell)
        method = "run"
        if cell.kind is CellKind.METHOD:
            method = bindings.input.get("method", "run")
        try:
            return artifact.invoke(bindings, method)
        except CellError:
            raise
        except Exception as e:
            raise RuntimeInvocationError(
                f"Error running cell [{format_coordinate(cell.coordinate)}], "
                f"cube '{cell.cube}': {type(e).__name__}: {e}",
                cube=cell.cube,
                coordinate=cell.coordinate,
            ) from e

    def evaluate(
        self,
        cell: Cell,
        input: dict[str, Any] | None = None,
        output: dict[str, Any] | None = None,
        cube: Structure | None = None,
        registry: StructureRegistry | None = None,
        stack: list[StackFrame] | None = None,
    ) -> Any:
        """Convenience wrapper around ``execute`` that builds the bindings."""
        bindings = Bindings(
            input={} if input is None else input,
            output={} if output is None else output,
            cube=cube,
            registry=registry,
            stack=[] if stack is None else stack,
        )
        return self.execute(cell, bindings)

    def references(self, cell: Cell) -> set[str]:
        """Names of cubes the cell's raw source refers to."""
        return extract_references(cell.source)
