"""Tests for the execution shim callbacks."""

import pytest

from cubecell import Bindings, Cell, ExecutionShim, UnresolvedReferenceError

from .conftest import RecordingCube


def make_shim(input=None, cube=None, registry=None):
    return ExecutionShim(
        input={} if input is None else input,
        output={},
        stack=[],
        cube=cube,
        registry=registry,
    )


class TestFixedCell:
    def test_looks_up_in_named_cube(self, registry):
        rates = RecordingCube("Rates", value=0.05)
        registry.register(rates)
        shim = make_shim(input={"zip": "43215"}, registry=registry)

        assert shim.get_fixed_cell("Rates", {"state": "OH"}) == 0.05
        assert rates.lookups == [{"state": "OH"}]
        assert shim.input == {"zip": "43215"}

    def test_unregistered_cube_raises(self, registry):
        shim = make_shim(cube=RecordingCube("Pricing"), registry=registry)
        with pytest.raises(UnresolvedReferenceError) as exc_info:
            shim.get_fixed_cell("Tax", {"state": "OH"})

        err = exc_info.value
        assert err.owner == "Pricing"
        assert err.target == "Tax"
        assert "Pricing" in str(err)
        assert "state: 'OH'" in str(err)

    def test_missing_registry_raises(self):
        with pytest.raises(UnresolvedReferenceError):
            make_shim().get_fixed_cell("Tax", {})


class TestRelativeCell:
    def test_merges_into_input_then_looks_up_current_cube(self):
        cube = RecordingCube("Zips")
        input = {"zip": "43215"}
        shim = make_shim(input=input, cube=cube)

        assert shim.get_relative_cell({"state": "OH"}) == "found"
        assert input == {"zip": "43215", "state": "OH"}
        assert cube.lookups == [{"zip": "43215", "state": "OH"}]

    def test_no_current_cube(self):
        with pytest.raises(UnresolvedReferenceError):
            make_shim().get_relative_cell({"a": 1})


class TestRelativeCubeCell:
    def test_merges_then_looks_up_named_cube(self, registry):
        rates = RecordingCube("Rates")
        registry.register(rates)
        input = {"zip": "43215"}
        shim = make_shim(input=input, registry=registry)

        shim.get_relative_cube_cell("Rates", {"state": "OH"})
        assert rates.lookups == [{"zip": "43215", "state": "OH"}]

    def test_unregistered_cube_raises_after_merge(self, registry):
        input = {}
        shim = make_shim(input=input, cube=RecordingCube("Pricing"), registry=registry)
        with pytest.raises(UnresolvedReferenceError, match="relative"):
            shim.get_relative_cube_cell("Tax", {"state": "OH"})
        assert input == {"state": "OH"}


class TestShimInCells:
    def test_bindings_visible_to_cell(self, compiler):
        cube = RecordingCube("Zips")
        cell = Cell("(cube.name, sorted(input), registry, stack)")
        assert compiler.evaluate(cell, input={"a": 1}, cube=cube) == ("Zips", ["a"], None, [])

    def test_relative_at_scenario(self, compiler):
        """@(state:'OH') with input {zip:'43215'} merges before re-lookup."""
        cube = RecordingCube("Zips")
        input = {"zip": "43215"}
        cell = Cell("@(state:'OH')", cube="Zips")

        assert compiler.evaluate(cell, input=input, cube=cube) == "found"
        assert input == {"zip": "43215", "state": "OH"}
        assert cube.lookups == [{"zip": "43215", "state": "OH"}]

    def test_from_bindings(self):
        bindings = Bindings(input={"a": 1})
        shim = ExecutionShim.from_bindings(bindings)
        assert shim.input is bindings.input
        assert shim.output is bindings.output
        assert shim.stack is bindings.stack

    def test_base_run_not_implemented(self):
        with pytest.raises(NotImplementedError):
            make_shim().run()
