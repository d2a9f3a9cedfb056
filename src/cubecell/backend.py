"""Compile back ends: turn generated cell source into a callable artifact.

The orchestrator only needs ``compile(source, class_name) -> CompiledArtifact``.
``PythonBackend`` compiles with the built-in ``compile()``/``exec()`` pair and
pulls the generated ``ExecutionShim`` subclass out of the module namespace.
"""

import linecache
import threading
from collections import deque
from typing import Any, Protocol

from .shim import Bindings, ExecutionShim


class CompiledArtifact:
    """A compiled cell: the generated shim subclass plus its source."""

    def __init__(self, cell_class: type[ExecutionShim], source: str):
        self.cell_class = cell_class
        self.source = source

    @property
    def class_name(self) -> str:
        return self.cell_class.__name__

    def invoke(self, bindings: Bindings, method: str = "run") -> Any:
        """Run the cell against ``bindings``.

        Exceptions raised by the cell propagate unchanged.
        """
        instance = self.cell_class.from_bindings(bindings)
        return getattr(instance, method)()

    def __repr__(self) -> str:
        return f"CompiledArtifact({self.class_name})"


class CompileBackend(Protocol):
    def compile(self, source: str, class_name: str) -> CompiledArtifact: ...


class PythonBackend:
    """Compiles generated cell modules in-process.

    Generated text is registered with ``linecache`` so tracebacks show cell
    lines. Only the most recent ``source_cache_size`` modules are kept there.
    """

    def __init__(self, namespace: dict[str, Any] | None = None, source_cache_size: int = 256):
        # Extra names made visible to every compiled cell.
        self.namespace = dict(namespace or {})
        self.source_cache_size = source_cache_size
        self._cached_files: deque[str] = deque()
        self._lock = threading.Lock()

    def compile(self, source: str, class_name: str) -> CompiledArtifact:
        filename = f"<cell {class_name}>"
        code = compile(source, filename, "exec")

        self._remember_source(filename, source)

        namespace = {
            "__builtins__": __builtins__,
            "__name__": f"cubecell.generated.{class_name}",
            "ExecutionShim": ExecutionShim,
        }
        namespace.update(self.namespace)
        exec(code, namespace)

        cell_class = namespace.get(class_name)
        if not (isinstance(cell_class, type) and issubclass(cell_class, ExecutionShim)):
            raise TypeError(f"generated source does not define {class_name}(ExecutionShim)")
        return CompiledArtifact(cell_class, source)

    def _remember_source(self, filename: str, source: str) -> None:
        with self._lock:
            linecache.cache[filename] = (len(source), None, source.splitlines(True), filename)
            self._cached_files.append(filename)
            while len(self._cached_files) > self.source_cache_size:
                linecache.cache.pop(self._cached_files.popleft(), None)
