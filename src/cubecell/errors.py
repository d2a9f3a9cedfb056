"""Exceptions raised while expanding, compiling, and running cells.

Hierarchy:
- CellError (base)
- ShortcutSyntaxError: malformed shortcut in cell source
- UnresolvedReferenceError: a named shortcut points at an unregistered cube
- CompilationError: the compile back end rejected a cell (sticky per cell)
- RuntimeInvocationError: a compiled cell raised while running
"""

from typing import Any


class CellError(Exception):
    """Base class for all cell pipeline errors."""


class ShortcutSyntaxError(CellError):
    """A shortcut invocation could not be parsed (e.g. unbalanced parentheses)."""

    def __init__(self, msg: str, position: int, text: str):
        super().__init__(f"{msg} at offset {position}: {text!r}")
        self.position = position
        self.text = text


class UnresolvedReferenceError(CellError):
    """A ``$name(...)`` or ``@name(...)`` target is not a registered cube.

    Example:
        >>> try:
        ...     shim.get_fixed_cell("Tax", {"state": "OH"})
        ... except UnresolvedReferenceError as e:
        ...     print(e.target, e.coordinate)
    """

    def __init__(self, owner: str, target: str, coordinate: Any, kind: str = "fixed ($)"):
        from .shortcuts import format_coordinate

        super().__init__(
            f"Cube '{target}' is not registered, cube '{owner}' attempted a "
            f"{kind} reference to cell: {format_coordinate(coordinate)}"
        )
        self.owner = owner
        self.target = target
        self.coordinate = coordinate


class CompilationError(CellError):
    """The compile back end rejected a cell's rewritten source.

    The message is recorded on the cell and raised again, unchanged, on every
    later evaluation of the same source version.
    """

    def __init__(
        self,
        msg: str,
        *,
        cube: str | None = None,
        coordinate: Any = None,
        source: str | None = None,
    ):
        super().__init__(msg)
        self.cube = cube
        self.coordinate = coordinate
        self.source = source


class RuntimeInvocationError(CellError):
    """A compiled cell raised a non-cell exception while running.

    The original exception is kept as ``__cause__`` and its message is
    included verbatim.
    """

    def __init__(self, msg: str, *, cube: str | None = None, coordinate: Any = None):
        super().__init__(msg)
        self.cube = cube
        self.coordinate = coordinate
