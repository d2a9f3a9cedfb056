"""Tests for the cell compiler and its artifact cache."""

import linecache
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from cubecell import (
    Cell,
    CellCompiler,
    CellKind,
    CompilationError,
    CompileState,
    CompilerConfig,
    PythonBackend,
    RuntimeInvocationError,
    ShortcutSyntaxError,
    UnresolvedReferenceError,
)

from .conftest import CountingBackend, FailingBackend


class TestEvaluate:
    def test_expression(self, compiler):
        cell = Cell("input['qty'] * 2", cube="Orders")
        assert compiler.evaluate(cell, input={"qty": 3}) == 6

    def test_statement_block_returns_trailing_expression(self, compiler):
        cell = Cell("x = input['a']\ny = x + 1\ny * 2")
        assert compiler.evaluate(cell, input={"a": 1}) == 4

    def test_explicit_return(self, compiler):
        cell = Cell("if input['a'] > 0:\n    return 'pos'\nreturn 'neg'")
        assert compiler.evaluate(cell, input={"a": 1}) == "pos"
        assert compiler.evaluate(cell, input={"a": -1}) == "neg"

    def test_trailing_assignment_returns_none(self, compiler):
        assert compiler.evaluate(Cell("x = 1")) is None

    def test_empty_source_returns_none(self, compiler):
        assert compiler.evaluate(Cell("")) is None

    def test_expression_after_semicolon(self, compiler):
        assert compiler.evaluate(Cell("x = 1; x + 1")) == 2

    def test_indented_source_is_dedented(self, compiler):
        cell = Cell("""
            total = input['a'] + input['b']
            total * 10
        """)
        assert compiler.evaluate(cell, input={"a": 1, "b": 2}) == 30

    def test_output_binding_is_writable(self, compiler):
        output = {}
        compiler.evaluate(Cell("output['seen'] = True"), output=output)
        assert output == {"seen": True}

    def test_hoisted_import(self, compiler):
        cell = Cell("import math\nmath.floor(input['v'])")
        assert compiler.evaluate(cell, input={"v": 2.7}) == 2

    def test_method_cell(self, compiler):
        source = (
            "def run(self):\n"
            "    return 'ran'\n"
            "\n"
            "def total(self):\n"
            "    return self.input['a'] * 2\n"
        )
        cell = Cell(source, kind=CellKind.METHOD)
        assert compiler.evaluate(cell) == "ran"
        assert compiler.evaluate(cell, input={"method": "total", "a": 4}) == 8

    def test_method_cell_unknown_method(self, compiler):
        cell = Cell("def run(self):\n    return 1\n", kind=CellKind.METHOD)
        with pytest.raises(RuntimeInvocationError):
            compiler.evaluate(cell, input={"method": "missing"})

    def test_multiline_string_value_kept(self, compiler):
        assert compiler.evaluate(Cell('x = """a\nb"""\nx')) == "a\nb"

    def test_multiline_string_in_method_cell(self, compiler):
        cell = Cell('def run(self):\n    return """a\nb"""\n', kind=CellKind.METHOD)
        assert compiler.evaluate(cell) == "a\nb"

    def test_dedent_leaves_string_contents_alone(self, compiler):
        cell = Cell('\n    text = """\n  first\n    second"""\n    text\n')
        assert compiler.evaluate(cell) == "\n  first\n    second"

    def test_import_line_inside_string_not_hoisted(self, compiler):
        cell = Cell('doc = """\nimport os\n"""\ndoc')
        assert compiler.evaluate(cell) == "\nimport os\n"

    def test_comment_inside_coordinate(self, compiler, make_cube, registry):
        make_cube("Tax").set_cell({"state": "OH"}, 0.05)
        cell = Cell("$Tax(state: 'OH'  # don't\n)", cube="Pricing")
        assert compiler.evaluate(cell, registry=registry) == 0.05


class TestBuildSource:
    def test_class_name_from_cube_and_id(self, compiler):
        generated = compiler.build_source(Cell("1", cube="Tax Rates"), 42)
        assert generated.class_name == "CubeCell_Tax_Rates_42"
        assert "class CubeCell_Tax_Rates_42(ExecutionShim):" in generated.text

    def test_class_prefix_from_config(self):
        compiler = CellCompiler(config=CompilerConfig(class_prefix="Pricing"))
        assert compiler.build_source(Cell("1", cube="T"), 1).class_name == "Pricing_T_1"

    def test_imports_hoisted_to_module_top(self, compiler):
        generated = compiler.build_source(Cell("import math\nmath.pi"), 1)
        assert generated.text.startswith("import math\n\n\nclass ")
        assert generated.text.count("import math") == 1

    def test_imports_left_inline_when_disabled(self):
        compiler = CellCompiler(config=CompilerConfig(hoist_imports=False))
        generated = compiler.build_source(Cell("import math\nmath.pi"), 1)
        assert generated.text.startswith("class ")
        assert compiler.evaluate(Cell("import math\nmath.floor(1.5)")) == 1

    def test_shortcuts_expanded(self, compiler):
        generated = compiler.build_source(Cell("$Tax(state: 'OH')"), 1)
        assert "return self.get_fixed_cell('Tax', {'state': 'OH'})" in generated.text

    def test_unique_placeholder_substituted(self, compiler):
        generated = compiler.build_source(Cell("class ~Helper~:\n    pass"), 9)
        assert "class Helper9:" in generated.text


class TestUniqueIds:
    def test_placeholders_differ_between_compiles(self, compiler):
        source = "class ~Helper~:\n    pass\n~Helper~.__name__"
        first = compiler.evaluate(Cell(source))
        second = compiler.evaluate(Cell(source))
        assert first.startswith("Helper")
        assert second.startswith("Helper")
        assert first != second

    def test_recompile_after_edit_gets_fresh_id(self, compiler):
        cell = Cell("class ~Helper~:\n    pass\n~Helper~.__name__")
        first = compiler.evaluate(cell)
        cell.source = cell.source + "\n"
        assert compiler.evaluate(cell) != first


class TestCaching:
    def test_compiles_once(self, compiler, backend):
        cell = Cell("input['a'] + 1")
        assert compiler.evaluate(cell, input={"a": 1}) == 2
        assert compiler.evaluate(cell, input={"a": 2}) == 3
        assert backend.calls == 1
        assert cell.state is CompileState.COMPILED

    def test_same_artifact_returned(self, compiler):
        cell = Cell("1")
        assert compiler.get_or_compile(cell) is compiler.get_or_compile(cell)

    def test_hot_path_takes_no_lock(self, compiler):
        class ExplodingLock:
            def __enter__(self):
                raise AssertionError("lock taken on the hot path")

            def __exit__(self, *exc):
                return False

        cell = Cell("1")
        artifact = compiler.get_or_compile(cell)
        compiler.cache._lock = ExplodingLock()
        assert compiler.get_or_compile(cell) is artifact

    def test_source_edit_invalidates(self, compiler, backend):
        cell = Cell("1")
        compiler.evaluate(cell)
        cell.source = "2"
        assert cell.state is CompileState.UNCOMPILED
        assert cell.compiled_artifact is None
        assert cell.version == 2
        assert compiler.evaluate(cell) == 2
        assert backend.calls == 2

    def test_references(self, compiler):
        assert compiler.references(Cell("$Tax(a: 1) + @Fees(b: 2)")) == {"Tax", "Fees"}


class TestCompileFailure:
    def test_syntax_error_is_compilation_error(self, compiler):
        cell = Cell("def (", cube="Pricing", coordinate={"state": "OH"})
        with pytest.raises(CompilationError) as exc_info:
            compiler.get_or_compile(cell)

        err = exc_info.value
        assert isinstance(err.__cause__, SyntaxError)
        assert err.cube == "Pricing"
        assert "Pricing" in str(err)
        assert "def (" in str(err)
        assert "state: 'OH'" in str(err)

    def test_failure_is_sticky(self, compiler, backend):
        cell = Cell("def (", cube="Pricing")
        with pytest.raises(CompilationError) as first:
            compiler.evaluate(cell)
        for _ in range(3):
            with pytest.raises(CompilationError) as again:
                compiler.evaluate(cell)
            assert str(again.value) == str(first.value)

        assert backend.calls == 1
        assert cell.state is CompileState.FAILED
        assert cell.compile_error == str(first.value)
        assert cell.compiled_artifact is None

    def test_edit_clears_failure(self, compiler):
        cell = Cell("def (")
        with pytest.raises(CompilationError):
            compiler.evaluate(cell)
        cell.source = "1 + 1"
        assert cell.compile_error is None
        assert compiler.evaluate(cell) == 2

    def test_shortcut_syntax_error_is_sticky_compile_failure(self, compiler, backend):
        cell = Cell("$Tax(state: 'OH'")
        with pytest.raises(CompilationError) as exc_info:
            compiler.evaluate(cell)
        assert isinstance(exc_info.value.__cause__, ShortcutSyntaxError)
        assert backend.calls == 0

        with pytest.raises(CompilationError):
            compiler.evaluate(cell)
        assert compiler.cache.compiles == 1

    def test_source_hidden_when_configured(self):
        compiler = CellCompiler(config=CompilerConfig(include_source_in_errors=False))
        with pytest.raises(CompilationError) as exc_info:
            compiler.evaluate(Cell("def secret("))
        assert "secret" not in str(exc_info.value)
        assert "<hidden>" in str(exc_info.value)

    def test_long_source_truncated(self):
        compiler = CellCompiler(config=CompilerConfig(max_error_source_length=10))
        with pytest.raises(CompilationError) as exc_info:
            compiler.evaluate(Cell("def (" + "x" * 50))
        assert "x" * 20 not in str(exc_info.value)

    def test_backend_rejection(self):
        backend = FailingBackend()
        compiler = CellCompiler(backend=backend)
        cell = Cell("1")
        for _ in range(2):
            with pytest.raises(CompilationError, match="back end rejected"):
                compiler.evaluate(cell)
        assert backend.calls == 1


class TestRuntimeErrors:
    def test_runtime_error_wrapped(self, compiler):
        cell = Cell("1 / 0", cube="Math")
        with pytest.raises(RuntimeInvocationError) as exc_info:
            compiler.evaluate(cell)
        assert isinstance(exc_info.value.__cause__, ZeroDivisionError)
        assert "division by zero" in str(exc_info.value)
        assert "Math" in str(exc_info.value)

    def test_runtime_error_does_not_poison_cell(self, compiler, backend):
        cell = Cell("10 / input['d']")
        with pytest.raises(RuntimeInvocationError):
            compiler.evaluate(cell, input={"d": 0})
        assert compiler.evaluate(cell, input={"d": 5}) == 2
        assert backend.calls == 1

    def test_cell_errors_propagate_unwrapped(self, compiler):
        cell = Cell("$Tax(state: 'OH')", cube="Pricing")
        with pytest.raises(UnresolvedReferenceError):
            compiler.evaluate(cell)


class TestConcurrency:
    THREADS = 16

    def _race(self, compiler, cell):
        barrier = threading.Barrier(self.THREADS)

        def worker():
            barrier.wait()
            try:
                return compiler.get_or_compile(cell)
            except CompilationError as e:
                return e

        with ThreadPoolExecutor(max_workers=self.THREADS) as pool:
            futures = [pool.submit(worker) for _ in range(self.THREADS)]
            return [f.result() for f in futures]

    def test_exactly_once_compilation(self):
        backend = CountingBackend(delay=0.05)
        compiler = CellCompiler(backend=backend)
        cell = Cell("input['a'] * 2")

        results = self._race(compiler, cell)

        assert backend.calls == 1
        assert all(r is results[0] for r in results)
        assert results[0] is cell.compiled_artifact

    def test_concurrent_failure_reported_once(self):
        backend = FailingBackend(delay=0.05)
        compiler = CellCompiler(backend=backend)
        cell = Cell("1")

        results = self._race(compiler, cell)

        assert backend.calls == 1
        assert all(isinstance(r, CompilationError) for r in results)
        assert len({str(r) for r in results}) == 1

    def test_concurrent_evaluation_of_compiled_cell(self, compiler, backend):
        cell = Cell("input['n'] * input['n']")

        def worker(n):
            return compiler.evaluate(cell, input={"n": n})

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(worker, range(50)))

        assert results == [n * n for n in range(50)]
        assert backend.calls == 1


class TestPythonBackend:
    def test_source_cache_is_bounded(self):
        backend = PythonBackend(source_cache_size=2)
        for name in ("Bounded1", "Bounded2", "Bounded3"):
            backend.compile(f"class {name}(ExecutionShim):\n    pass\n", name)

        assert "<cell Bounded1>" not in linecache.cache
        assert "<cell Bounded2>" in linecache.cache
        assert "<cell Bounded3>" in linecache.cache

    def test_rejects_source_without_shim_class(self):
        with pytest.raises(TypeError, match="Missing"):
            PythonBackend().compile("x = 1\n", "Missing")
