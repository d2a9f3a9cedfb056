"""Execution shim: the base class of every generated cell class.

A compiled cell sees its evaluation context as attributes (``input``,
``output``, ``stack``, ``cube``, ``registry``) and reaches other cells through
the three callbacks that expanded shortcuts call. A callback whose target
cube is not registered raises ``UnresolvedReferenceError``; it never returns
``None``, which would be indistinguishable from an empty cell.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from .errors import UnresolvedReferenceError


@runtime_checkable
class Structure(Protocol):
    """A cube that resolves coordinates to values."""

    name: str

    def get_cell(self, coordinate: Mapping[str, Any], output: dict[str, Any]) -> Any: ...


@runtime_checkable
class StructureRegistry(Protocol):
    """Looks cubes up by name."""

    def get_cube(self, name: str) -> Structure | None: ...


@dataclass
class StackFrame:
    """One level of nested cell evaluation."""

    cube: str
    coordinate: dict[str, Any]


@dataclass
class Bindings:
    """Evaluation context handed to a compiled cell.

    ``input`` and ``output`` are used as-is, not copied: relative shortcuts
    merge into ``input`` in place and cells may write to ``output``.
    """

    input: dict[str, Any]
    output: dict[str, Any] = field(default_factory=dict)
    cube: Structure | None = None
    registry: StructureRegistry | None = None
    stack: list[StackFrame] = field(default_factory=list)


class ExecutionShim:
    """Callbacks available to cell source at run time."""

    def __init__(
        self,
        input: dict[str, Any],
        output: dict[str, Any],
        stack: list[StackFrame],
        cube: Structure | None,
        registry: StructureRegistry | None,
    ):
        self.input = input
        self.output = output
        self.stack = stack
        self.cube = cube
        self.registry = registry

    @classmethod
    def from_bindings(cls, bindings: Bindings) -> "ExecutionShim":
        return cls(
            input=bindings.input,
            output=bindings.output,
            stack=bindings.stack,
            cube=bindings.cube,
            registry=bindings.registry,
        )

    @property
    def cube_name(self) -> str:
        return getattr(self.cube, "name", "")

    def _find_cube(self, name: str, coord: Any, kind: str) -> Structure:
        target = self.registry.get_cube(name) if self.registry is not None else None
        if target is None:
            raise UnresolvedReferenceError(self.cube_name, name, coord, kind=kind)
        return target

    def get_fixed_cell(self, name: str, coord: Mapping[str, Any]) -> Any:
        """``$name(coord)``: look ``coord`` up in cube ``name``."""
        target = self._find_cube(name, coord, "fixed ($)")
        return target.get_cell(coord, self.output)

    def get_relative_cell(self, coord: Mapping[str, Any]) -> Any:
        """``$(coord)`` / ``@(coord)``: merge into input, re-look-up this cube."""
        self.input.update(coord)
        if self.cube is None:
            raise UnresolvedReferenceError("", "<current>", coord, kind="relative")
        return self.cube.get_cell(self.input, self.output)

    def get_relative_cube_cell(self, name: str, coord: Mapping[str, Any]) -> Any:
        """``@name(coord)``: merge into input, look the result up in cube ``name``."""
        self.input.update(coord)
        target = self._find_cube(name, coord, "relative (@)")
        return target.get_cell(self.input, self.output)

    def run(self) -> Any:
        raise NotImplementedError("generated cell classes override run()")
