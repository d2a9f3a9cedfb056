"""Evaluate a small pricing cube that references a tax cube.

Usage:
    python examples/pricing_cube.py

Shows shortcut expansion, dependency extraction, and that each cell is
compiled only once no matter how many threads evaluate it.
"""

import time
from concurrent.futures import ThreadPoolExecutor

from cubecell import Cell, CellCompiler, Cube, CubeRegistry, expand, extract_references

PRICE_CELL = """
import math

subtotal = input['qty'] * $Catalog(sku: input['sku'])
math.ceil(subtotal * (1 + $Tax(state: input['state'])) * 100) / 100
"""


def build() -> tuple[CellCompiler, Cube]:
    compiler = CellCompiler()
    registry = CubeRegistry()

    tax = registry.register(Cube("Tax", compiler, registry))
    tax.set_cell({"state": "OH"}, 0.0575)
    tax.set_cell({"state": "TX"}, 0.0625)

    catalog = registry.register(Cube("Catalog", compiler, registry))
    catalog.set_cell({"sku": "widget"}, 4.25)
    catalog.set_cell({"sku": "gadget"}, 19.99)

    pricing = registry.register(Cube("Pricing", compiler, registry))
    pricing.set_cell({}, Cell(PRICE_CELL))
    return compiler, pricing


def main():
    print("Expanded source:")
    print(expand(PRICE_CELL))
    print(f"References: {sorted(extract_references(PRICE_CELL))}")
    print()

    compiler, pricing = build()
    orders = [
        {"sku": sku, "qty": qty, "state": state}
        for sku in ("widget", "gadget")
        for qty in range(1, 51)
        for state in ("OH", "TX")
    ]

    start = time.perf_counter()
    with ThreadPoolExecutor(max_workers=8) as pool:
        totals = list(pool.map(pricing.get_cell, orders))
    elapsed = time.perf_counter() - start

    print(f"Priced {len(totals)} orders in {elapsed * 1000:.1f}ms")
    print(f"Cell compiles: {compiler.cache.compiles}")
    print(f"First order: {orders[0]} -> {totals[0]}")


if __name__ == "__main__":
    main()
