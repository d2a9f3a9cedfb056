"""Cells: source text at one coordinate of a cube, compiled lazily.

A cell's compile state lives on a ``CellVersion``. Editing the source swaps in
a fresh version, so the old artifact and error are dropped in a single
reference assignment and readers never see a new source paired with an old
artifact.
"""

from collections.abc import Mapping
from enum import Enum
from typing import Any

from .shortcuts import format_coordinate


class CellKind(str, Enum):
    """How a cell's source is wrapped before compilation.

    - EXPRESSION: an expression or statement block; a trailing bare
      expression is the cell's value
    - METHOD: method definitions; the ``method`` input binding picks the one
      to call
    """

    EXPRESSION = "expression"
    METHOD = "method"


class CompileState(str, Enum):
    UNCOMPILED = "uncompiled"
    COMPILING = "compiling"
    COMPILED = "compiled"
    FAILED = "failed"


class CellVersion:
    """Compile state for one version of a cell's source."""

    __slots__ = ("source", "number", "artifact", "error", "cause", "compiling")

    def __init__(self, source: str, number: int):
        self.source = source
        self.number = number
        self.artifact: Any = None
        self.error: str | None = None
        self.cause: BaseException | None = None
        self.compiling = False

    @property
    def state(self) -> CompileState:
        if self.artifact is not None:
            return CompileState.COMPILED
        if self.error is not None:
            return CompileState.FAILED
        if self.compiling:
            return CompileState.COMPILING
        return CompileState.UNCOMPILED


class Cell:
    """An executable cell.

    Example:
        >>> cell = Cell("$Tax(state: 'OH') * 2", cube="Pricing", coordinate={"state": "OH"})
        >>> cell.state
        <CompileState.UNCOMPILED: 'uncompiled'>
    """

    def __init__(
        self,
        source: str,
        cube: str = "",
        coordinate: Mapping[str, Any] | None = None,
        kind: CellKind = CellKind.EXPRESSION,
    ):
        self.cube = cube
        self.coordinate = dict(coordinate or {})
        self.kind = CellKind(kind)
        self.current = CellVersion(source, 1)

    @property
    def source(self) -> str:
        return self.current.source

    @source.setter
    def source(self, value: str) -> None:
        self.current = CellVersion(value, self.current.number + 1)

    @property
    def version(self) -> int:
        return self.current.number

    @property
    def compiled_artifact(self) -> Any:
        return self.current.artifact

    @property
    def compile_error(self) -> str | None:
        return self.current.error

    @property
    def state(self) -> CompileState:
        return self.current.state

    @property
    def identity(self) -> str:
        return f"{self.cube}[{format_coordinate(self.coordinate)}]"

    def __repr__(self) -> str:
        return f"Cell({self.identity}, v{self.version}, {self.state.value})"
