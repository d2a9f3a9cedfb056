"""Static dependency and import extraction for cell source.

Used by tooling (dependency graphs, cache invalidation), not on the
evaluation path. Extraction is purely syntactic; names are never resolved.

Reference extraction reads the same head patterns the shortcut expander
rewrites, so a change to the shortcut grammar changes both at once.
"""

import bisect
import re
from dataclasses import dataclass, field
from typing import NamedTuple

from .shortcuts import NAMED_RULES, string_spans

EXPLICIT_CUBE_REF_PATTERN = re.compile(
    r"""registry\.get_cube\(\s*(?P<quote>['"])(?P<name>[^'"]+)(?P=quote)\s*\)"""
)

# Top-level import statements, terminated by ';' or end of line.
IMPORT_PATTERN = re.compile(
    r"^(?P<stmt>from[ \t]+[\w.]+[ \t]+import[ \t]+(?:\([^)]*\)|[^;\n#]+)"
    r"|import[ \t]+[^;\n#]+?)"
    r"[ \t]*(?:#[^\n]*)?(?:;[ \t]*|\n|$)",
    re.MULTILINE,
)


class ImportExtraction(NamedTuple):
    """Imports found in a source text and the text with them removed."""

    imports: list[str]
    source: str


@dataclass
class CellDependencies:
    """Everything a cell's source references statically."""

    references: set[str] = field(default_factory=set)
    imports: list[str] = field(default_factory=list)


def extract_references(source: str) -> set[str]:
    """Collect the names of all cubes referenced by ``source``.

    Finds ``$name(...)``, ``@name(...)`` and ``registry.get_cube("name")``.

    Example:
        >>> sorted(extract_references("$Tax(state: 'OH') + @Rates(year: 2024)"))
        ['Rates', 'Tax']
    """
    names: set[str] = set()
    for rule in NAMED_RULES:
        for m in rule.pattern.finditer(source):
            names.add(m.group("name"))

    for m in EXPLICIT_CUBE_REF_PATTERN.finditer(source):
        names.add(m.group("name"))

    return names


def _in_string(spans: list[tuple[int, int]], pos: int) -> bool:
    i = bisect.bisect_right(spans, (pos,)) - 1
    return i >= 0 and spans[i][0] < pos < spans[i][1]


def extract_imports(source: str) -> ImportExtraction:
    """Collect top-level import statements and strip them from ``source``.

    Statements are kept verbatim (minus the trailing separator), in the order
    first seen, with duplicates collapsed. Lines inside string literals are
    left alone.

    Example:
        >>> extract_imports("import math\\nmath.floor(x)\\n")
        ImportExtraction(imports=['import math'], source='math.floor(x)\\n')
    """
    spans = string_spans(source)
    imports: dict[str, None] = {}
    kept = []
    last = 0
    for m in IMPORT_PATTERN.finditer(source):
        if _in_string(spans, m.start()):
            continue
        imports.setdefault(m.group("stmt").strip(), None)
        kept.append(source[last : m.start()])
        last = m.end()
    kept.append(source[last:])
    return ImportExtraction(list(imports), "".join(kept))


def analyze(source: str) -> CellDependencies:
    """Run both extractions over ``source``."""
    return CellDependencies(
        references=extract_references(source),
        imports=extract_imports(source).imports,
    )
