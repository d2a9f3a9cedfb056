"""cubecell: compile and cache executable cube cells.

Pipeline: cell source -> shortcut expansion -> generated shim class ->
compile back end -> cached artifact, exactly once per source version.

Example:
    from cubecell import Cell, CellCompiler, Cube, CubeRegistry

    compiler = CellCompiler()
    registry = CubeRegistry()
    tax = registry.register(Cube("Tax", compiler, registry))
    tax.set_cell({"state": "OH"}, 0.05)

    pricing = registry.register(Cube("Pricing", compiler, registry))
    pricing.set_cell({}, Cell("input['amount'] * $Tax(state: input['state'])"))
    pricing.get_cell({"amount": 100, "state": "OH"})  # 5.0
"""

__version__ = "0.1.0"

from .backend import CompileBackend, CompiledArtifact, PythonBackend
from .cell import Cell, CellKind, CellVersion, CompileState
from .compiler import CellCompiler, CompiledArtifactCache, GeneratedSource
from .config import CompilerConfig, load_config
from .cube import CoordinateNotFoundError, Cube, current_stack
from .dependencies import CellDependencies, ImportExtraction, analyze, extract_imports, extract_references
from .errors import (
    CellError,
    CompilationError,
    RuntimeInvocationError,
    ShortcutSyntaxError,
    UnresolvedReferenceError,
)
from .ids import IdSource, SequentialIdSource, UuidIdSource
from .registry import CubeRegistry
from .shim import Bindings, ExecutionShim, StackFrame, Structure, StructureRegistry
from .shortcuts import RULES, ShortcutExpander, ShortcutRule, expand, fix_class_name, substitute_unique_ids

__all__ = [
    # Shortcuts
    "expand",
    "ShortcutExpander",
    "ShortcutRule",
    "RULES",
    "substitute_unique_ids",
    "fix_class_name",
    # Dependencies
    "extract_references",
    "extract_imports",
    "analyze",
    "ImportExtraction",
    "CellDependencies",
    # Cells
    "Cell",
    "CellKind",
    "CellVersion",
    "CompileState",
    # Compile
    "CellCompiler",
    "CompiledArtifactCache",
    "GeneratedSource",
    "CompileBackend",
    "CompiledArtifact",
    "PythonBackend",
    "IdSource",
    "SequentialIdSource",
    "UuidIdSource",
    "CompilerConfig",
    "load_config",
    # Runtime
    "ExecutionShim",
    "Bindings",
    "StackFrame",
    "Structure",
    "StructureRegistry",
    "Cube",
    "CubeRegistry",
    "current_stack",
    # Errors
    "CellError",
    "ShortcutSyntaxError",
    "UnresolvedReferenceError",
    "CompilationError",
    "RuntimeInvocationError",
    "CoordinateNotFoundError",
]
