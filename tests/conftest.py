"""Shared fixtures for cubecell tests."""

import threading
import time

import pytest

from cubecell import CellCompiler, CompiledArtifact, Cube, CubeRegistry, PythonBackend


class CountingBackend:
    """Wraps PythonBackend, counting compile calls and optionally stalling."""

    def __init__(self, delay: float = 0.0):
        self.inner = PythonBackend()
        self.delay = delay
        self.calls = 0
        self.sources: list[str] = []
        self._lock = threading.Lock()

    def compile(self, source: str, class_name: str) -> CompiledArtifact:
        with self._lock:
            self.calls += 1
            self.sources.append(source)
        if self.delay:
            time.sleep(self.delay)
        return self.inner.compile(source, class_name)


class FailingBackend:
    """Rejects every source."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls = 0

    def compile(self, source: str, class_name: str) -> CompiledArtifact:
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        raise RuntimeError("back end rejected the source")


class RecordingCube:
    """Structure stub that records every lookup."""

    def __init__(self, name: str = "Zips", value: object = "found"):
        self.name = name
        self.value = value
        self.lookups: list[dict] = []

    def get_cell(self, coordinate, output):
        self.lookups.append(dict(coordinate))
        return self.value


@pytest.fixture
def backend():
    return CountingBackend()


@pytest.fixture
def compiler(backend):
    return CellCompiler(backend=backend)


@pytest.fixture
def registry():
    return CubeRegistry()


@pytest.fixture
def make_cube(compiler, registry):
    """Create and register a cube sharing the test compiler and registry."""

    def _make(name: str, **kwargs) -> Cube:
        return registry.register(Cube(name, compiler=compiler, registry=registry, **kwargs))

    return _make
