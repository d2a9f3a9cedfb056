"""In-memory reference cube.

A minimal lookup structure used to run cells end to end. Each cell is stored
under a partial coordinate (axis name -> value). A lookup matches every cell
whose coordinate is contained in the input; the most specific match wins and
ties go to the cell set first.

Code cells (``Cell`` values) are evaluated through a ``CellCompiler``; any
other value is returned as-is. Nested evaluations are recorded on a
per-thread call stack exposed to cells as ``stack``.
"""

import threading
from collections.abc import Mapping
from typing import Any

from .cell import Cell
from .compiler import CellCompiler
from .errors import CellError
from .shim import Bindings, StackFrame, StructureRegistry
from .shortcuts import format_coordinate

CoordinateKey = tuple[tuple[str, Any], ...]

_MISSING = object()
_local = threading.local()


class CoordinateNotFoundError(CellError, LookupError):
    def __init__(self, cube: str, coordinate: Mapping[str, Any]):
        super().__init__(f"No cell in cube '{cube}' matches: {format_coordinate(coordinate)}")
        self.cube = cube
        self.coordinate = coordinate


def coordinate_key(coordinate: Mapping[str, Any]) -> CoordinateKey:
    return tuple(sorted(coordinate.items()))


def current_stack() -> list[StackFrame]:
    """The calling thread's cell evaluation stack."""
    stack = getattr(_local, "stack", None)
    if stack is None:
        stack = _local.stack = []
    return stack


class Cube:
    """A named set of cells keyed by coordinate.

    Example:
        >>> cube = Cube("Tax")
        >>> cube.set_cell({"state": "OH"}, 0.0575)
        >>> cube.set_cell({"state": "OH", "year": 2024}, Cell("input['year'] - 2000"))
        >>> cube.get_cell({"state": "OH", "year": 2024})
        24
        >>> cube.get_cell({"state": "OH", "year": 2023})
        0.0575
    """

    def __init__(
        self,
        name: str,
        compiler: CellCompiler | None = None,
        registry: StructureRegistry | None = None,
        default: Any = _MISSING,
    ):
        self.name = name
        self.compiler = compiler or CellCompiler()
        self.registry = registry
        self.default = default
        self.cells: dict[CoordinateKey, Any] = {}

    def set_cell(self, coordinate: Mapping[str, Any], value: Any) -> None:
        """Store ``value`` at ``coordinate``.

        A Cell takes this cube's name and the coordinate as its identity.
        """
        if isinstance(value, Cell):
            value.cube = self.name
            value.coordinate = dict(coordinate)
        self.cells[coordinate_key(coordinate)] = value

    def remove_cell(self, coordinate: Mapping[str, Any]) -> Any:
        return self.cells.pop(coordinate_key(coordinate), None)

    def find_cell(self, coordinate: Mapping[str, Any]) -> Any:
        """Return the stored value best matching ``coordinate`` without running it."""
        best = _MISSING
        best_size = -1
        for key, value in self.cells.items():
            if len(key) <= best_size:
                continue
            if all(axis in coordinate and coordinate[axis] == v for axis, v in key):
                best, best_size = value, len(key)
        if best is _MISSING:
            if self.default is _MISSING:
                raise CoordinateNotFoundError(self.name, coordinate)
            return self.default
        return best

    def get_cell(self, coordinate: Mapping[str, Any], output: dict[str, Any] | None = None) -> Any:
        """Look ``coordinate`` up, running the cell if it holds code.

        ``coordinate`` becomes the cell's input binding as-is when it is a
        dict, so relative references made by the cell update it in place.
        """
        value = self.find_cell(coordinate)
        if not isinstance(value, Cell):
            return value

        input = coordinate if isinstance(coordinate, dict) else dict(coordinate)
        stack = current_stack()
        stack.append(StackFrame(self.name, dict(input)))
        try:
            bindings = Bindings(
                input=input,
                output={} if output is None else output,
                cube=self,
                registry=self.registry,
                stack=stack,
            )
            return self.compiler.execute(value, bindings)
        finally:
            stack.pop()

    def __repr__(self) -> str:
        return f"Cube({self.name!r}, {len(self.cells)} cells)"
