"""Shortcut expansion for cell source.

Cells reference other cells with a terse syntax that is rewritten into
explicit callback calls on the execution shim before compilation:

    $name(coord)    -> self.get_fixed_cell('name', {coord})
    $(coord)        -> self.get_relative_cell({coord})
    @name(coord)    -> self.get_relative_cube_cell('name', {coord})
    @(coord)        -> self.get_relative_cell({coord})

A coordinate is written as a map literal (``state: 'OH', zip: z``). Bare
identifier keys are quoted when the coordinate is turned into a dict display.
A coordinate with no ``key: value`` entry is passed through untouched, so
``$(coord)`` works when ``coord`` already holds a dict.

Rules run in a fixed order, named before coordless for each sigil. Every
shortcut must be preceded by a non-identifier character or start of input.

``~name~`` placeholders are replaced by ``name<id>`` once per compile, before
expansion, so generated class names never collide.
"""

import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .errors import ShortcutSyntaxError

BOUNDARY = r"(?<![A-Za-z0-9_])"
CUBE_NAME = r"(?P<name>[A-Za-z_][A-Za-z0-9_.]*)"

FIXED_CELL_PATTERN = re.compile(BOUNDARY + r"\$" + CUBE_NAME + r"\(")
RELATIVE_CELL_PATTERN = re.compile(BOUNDARY + r"\$\(")
RELATIVE_CUBE_CELL_PATTERN = re.compile(BOUNDARY + "@" + CUBE_NAME + r"\(")
RELATIVE_CELL_PATTERN_2 = re.compile(BOUNDARY + r"@\(")

UNIQUE_CLASS_PATTERN = re.compile(r"~([a-zA-Z0-9_]+)~")
CLASS_NAME_PATTERN = re.compile(r"[^a-zA-Z0-9_]")
COORD_KEY_PATTERN = re.compile(r"""^\s*(?:([A-Za-z_][A-Za-z0-9_]*)|('[^']*'|"[^"]*"))\s*$""")

OPENERS = {"(": ")", "[": "]", "{": "}"}


@dataclass(frozen=True)
class ShortcutRule:
    """One shortcut form: a head pattern and the call it rewrites to."""

    name: str
    pattern: re.Pattern
    rewrite: Callable[[str | None, str], str]

    def match(self, source: str, pos: int = 0) -> re.Match | None:
        return self.pattern.search(source, pos)


def _fixed_cell(name: str | None, coord: str) -> str:
    return f"self.get_fixed_cell({name!r}, {coord})"


def _relative_cell(name: str | None, coord: str) -> str:
    return f"self.get_relative_cell({coord})"


def _relative_cube_cell(name: str | None, coord: str) -> str:
    return f"self.get_relative_cube_cell({name!r}, {coord})"


# Order matters: within one sigil the named form runs before the coordless form.
RULES: tuple[ShortcutRule, ...] = (
    ShortcutRule("fixed_cube_cell", FIXED_CELL_PATTERN, _fixed_cell),
    ShortcutRule("relative_cell", RELATIVE_CELL_PATTERN, _relative_cell),
    ShortcutRule("relative_cube_cell", RELATIVE_CUBE_CELL_PATTERN, _relative_cube_cell),
    ShortcutRule("relative_cell_at", RELATIVE_CELL_PATTERN_2, _relative_cell),
)

# Forms that name another cube. Dependency extraction reads these.
NAMED_RULES: tuple[ShortcutRule, ...] = (RULES[0], RULES[2])


def _skip_string(text: str, pos: int) -> int:
    """Return the index just past the string literal starting at ``pos``."""
    quote = text[pos]
    if text.startswith(quote * 3, pos):
        end = text.find(quote * 3, pos + 3)
        return len(text) if end < 0 else end + 3
    i = pos + 1
    while i < len(text):
        c = text[i]
        if c == "\\":
            i += 2
            continue
        if c == quote or c == "\n":
            return i + 1
        i += 1
    return i


def _skip_comment(text: str, pos: int) -> int:
    """Return the index of the newline ending the comment at ``pos``."""
    end = text.find("\n", pos)
    return len(text) if end < 0 else end


def string_spans(text: str) -> list[tuple[int, int]]:
    """Offsets ``(start, end)`` of every string literal in ``text``.

    ``start`` is the opening quote and ``end`` is just past the closing one.
    Quotes inside comments do not start a string.
    """
    spans = []
    i = 0
    while i < len(text):
        c = text[i]
        if c == "#":
            i = _skip_comment(text, i)
        elif c in "'\"":
            end = _skip_string(text, i)
            spans.append((i, end))
            i = end
        else:
            i += 1
    return spans


def strip_comments(text: str) -> str:
    """Remove ``#`` comments from ``text``, keeping the newlines that end them."""
    parts = []
    last = 0
    i = 0
    while i < len(text):
        c = text[i]
        if c == "#":
            parts.append(text[last:i])
            i = last = _skip_comment(text, i)
        elif c in "'\"":
            i = _skip_string(text, i)
        else:
            i += 1
    parts.append(text[last:])
    return "".join(parts)


def find_closing_paren(text: str, start: int) -> int:
    """Find the ``)`` closing a paren opened just before ``start``.

    Nested brackets must balance, while string literals and comments are
    skipped. Returns -1 when the paren is never closed.
    """
    expected = [")"]
    i = start
    while i < len(text):
        c = text[i]
        if c in "'\"":
            i = _skip_string(text, i)
            continue
        if c == "#":
            i = _skip_comment(text, i)
            continue
        if c in OPENERS:
            expected.append(OPENERS[c])
        elif c in ")]}":
            if c != expected[-1]:
                return -1
            expected.pop()
            if not expected:
                return i
        i += 1
    return -1


def split_top_level(text: str, sep: str) -> list[str]:
    """Split ``text`` on ``sep`` where it is not nested in brackets, strings or comments."""
    parts = []
    depth = 0
    last = 0
    i = 0
    while i < len(text):
        c = text[i]
        if c in "'\"":
            i = _skip_string(text, i)
            continue
        if c == "#":
            i = _skip_comment(text, i)
            continue
        if c in OPENERS:
            depth += 1
        elif c in ")]}":
            depth -= 1
        elif c == sep and depth == 0:
            parts.append(text[last:i])
            last = i + 1
        i += 1
    parts.append(text[last:])
    return parts


def coordinate_literal(text: str, position: int = 0) -> str:
    """Turn a map-literal coordinate into a Python dict display.

    ``state: 'OH', zip: z`` becomes ``{'state': 'OH', 'zip': z}``. Text with
    no ``key: value`` entry is returned stripped but otherwise unchanged.
    Comments are dropped.
    """
    stripped = strip_comments(text).strip()
    if not stripped:
        return "{}"

    items = [item for item in split_top_level(stripped, ",") if item.strip()]
    entries = []
    keyed = 0
    for item in items:
        if item.strip().startswith("**"):
            entries.append(item.strip())
            keyed += 1
            continue
        parts = split_top_level(item, ":")
        if len(parts) == 1:
            entries.append(None)
            continue
        key, value = parts[0], ":".join(parts[1:])
        m = COORD_KEY_PATTERN.match(key)
        if not m or not value.strip():
            raise ShortcutSyntaxError("invalid coordinate entry", position, item.strip())
        quoted = repr(m.group(1)) if m.group(1) else m.group(2)
        entries.append(f"{quoted}: {value.strip()}")
        keyed += 1

    if keyed == 0:
        return stripped
    if keyed != len(entries):
        raise ShortcutSyntaxError("coordinate mixes keyed and bare entries", position, stripped)
    return "{" + ", ".join(entries) + "}"


class ShortcutExpander:
    """Applies the ordered shortcut rules to cell source.

    Expansion is pure and idempotent: rewritten calls contain no sigils, so
    ``expand(expand(s)) == expand(s)``.
    """

    def __init__(self, rules: Sequence[ShortcutRule] = RULES):
        self.rules = tuple(rules)

    def expand(self, source: str) -> str:
        return self._expand(source, 0)

    def _expand(self, source: str, offset: int) -> str:
        for rule in self.rules:
            source = self._apply(rule, source, offset)
        return source

    def _apply(self, rule: ShortcutRule, source: str, offset: int) -> str:
        out = []
        pos = 0
        while True:
            m = rule.match(source, pos)
            if m is None:
                break
            close = find_closing_paren(source, m.end())
            if close < 0:
                raise ShortcutSyntaxError(
                    f"unbalanced parentheses in {rule.name} shortcut",
                    offset + m.start(),
                    source[m.start() : m.start() + 60],
                )
            inner_offset = offset + m.end()
            coord = self._expand(source[m.end() : close], inner_offset)
            name = m.groupdict().get("name")
            out.append(source[pos : m.start()])
            out.append(rule.rewrite(name, coordinate_literal(coord, inner_offset)))
            pos = close + 1
        out.append(source[pos:])
        return "".join(out)


_default_expander = ShortcutExpander()


def expand(source: str) -> str:
    """Expand all shortcuts in ``source`` with the default rule order."""
    return _default_expander.expand(source)


def substitute_unique_ids(source: str, unique_id: int | str) -> str:
    """Replace every ``~name~`` placeholder with ``name<unique_id>``."""
    return UNIQUE_CLASS_PATTERN.sub(lambda m: f"{m.group(1)}{unique_id}", source)


def fix_class_name(name: str) -> str:
    """Make ``name`` usable as a Python identifier fragment."""
    return CLASS_NAME_PATTERN.sub("_", name)


def format_coordinate(coord: Any) -> str:
    """Render a coordinate the way it is written in cell source."""
    if isinstance(coord, Mapping):
        return ", ".join(f"{k}: {v!r}" for k, v in coord.items())
    return repr(coord)
