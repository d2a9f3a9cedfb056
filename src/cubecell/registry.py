"""Cube registry - the name -> cube map that shortcuts resolve against.

Example usage:
    from cubecell import Cube, CubeRegistry

    registry = CubeRegistry()
    registry.register(Cube("Tax", registry=registry))

    registry.get_cube("Tax")      # the cube
    registry.get_cube("Missing")  # None

    # Which cubes does each cube's code reference?
    registry.dependency_graph()   # {"Pricing": {"Tax"}, "Tax": set()}
"""

import threading
from collections.abc import Iterator

import structlog

from .cell import Cell
from .dependencies import extract_references
from .shim import Structure

logger = structlog.get_logger(__name__)


class CubeRegistry:
    """Thread-safe registry of cubes addressable by name.

    Writers replace the whole map under a lock; readers do a plain dict
    lookup on whichever map is current, so ``get_cube`` never blocks.
    """

    def __init__(self):
        self._cubes: dict[str, Structure] = {}
        self._lock = threading.Lock()

    def register(self, cube: Structure) -> Structure:
        """Add ``cube`` under its name, replacing any cube of the same name."""
        with self._lock:
            cubes = dict(self._cubes)
            replaced = cube.name in cubes
            cubes[cube.name] = cube
            self._cubes = cubes
        logger.info("cube_registered", cube=cube.name, replaced=replaced)
        return cube

    def get_cube(self, name: str) -> Structure | None:
        """Get a cube by name.

        Returns:
            The cube, or None if nothing is registered under ``name``
        """
        return self._cubes.get(name)

    def remove(self, name: str) -> Structure | None:
        with self._lock:
            cubes = dict(self._cubes)
            cube = cubes.pop(name, None)
            self._cubes = cubes
        if cube is not None:
            logger.info("cube_removed", cube=name)
        return cube

    def clear(self) -> None:
        with self._lock:
            self._cubes = {}

    def list_cubes(self, prefix: str | None = None) -> Iterator[Structure]:
        """List registered cubes, optionally filtered by name prefix."""
        for name, cube in self._cubes.items():
            if prefix is None or name.startswith(prefix):
                yield cube

    def dependency_graph(self) -> dict[str, set[str]]:
        """Map each cube name to the cube names its code cells reference.

        Only cubes exposing a ``cells`` mapping contribute edges.
        """
        graph: dict[str, set[str]] = {}
        for name, cube in self._cubes.items():
            refs: set[str] = set()
            for value in getattr(cube, "cells", {}).values():
                if isinstance(value, Cell):
                    refs |= extract_references(value.source)
            graph[name] = refs
        return graph

    @property
    def names(self) -> list[str]:
        return list(self._cubes)

    def __contains__(self, name: object) -> bool:
        return name in self._cubes

    def __len__(self) -> int:
        return len(self._cubes)
