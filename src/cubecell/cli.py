"""Command-line tools for cell source.

Usage:
    cubecell expand cell.py
    cubecell deps cell.py --json
    cubecell check cells/*.py --kind method -v
"""

import argparse
import json
import sys
from pathlib import Path

from .cell import Cell, CellKind
from .compiler import CellCompiler
from .config import load_config
from .dependencies import analyze
from .errors import CellError
from .observability import LOG_LEVELS, configure_logging
from .shortcuts import expand


def cmd_expand(args: argparse.Namespace) -> int:
    print(expand(args.file.read_text()), end="")
    return 0


def cmd_deps(args: argparse.Namespace) -> int:
    deps = analyze(args.file.read_text())
    if args.json:
        print(json.dumps({"references": sorted(deps.references), "imports": deps.imports}, indent=2))
        return 0

    print("References:")
    for name in sorted(deps.references):
        print(f"  {name}")
    print("Imports:")
    for stmt in deps.imports:
        print(f"  {stmt}")
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    compiler = CellCompiler(config=load_config(args.config))
    failed = 0
    for path in args.files:
        cell = Cell(path.read_text(), cube=path.stem, kind=CellKind(args.kind))
        try:
            compiler.get_or_compile(cell)
        except CellError as e:
            failed += 1
            print(f"  FAIL  {path}: {e}")
            continue
        if args.verbose:
            print(f"  OK    {path}")

    print()
    print(f"  {len(args.files) - failed} ok, {failed} failed")
    return 1 if failed else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cubecell", description="Inspect and compile cube cell source")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Log level (default: WARNING)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("expand", help="Print source with shortcuts expanded")
    p.add_argument("file", type=Path)
    p.set_defaults(func=cmd_expand)

    p = sub.add_parser("deps", help="List referenced cubes and imports")
    p.add_argument("file", type=Path)
    p.add_argument("--json", action="store_true", help="Emit JSON")
    p.set_defaults(func=cmd_deps)

    p = sub.add_parser("check", help="Compile cell files and report failures")
    p.add_argument("files", nargs="+", type=Path)
    p.add_argument("--kind", choices=[k.value for k in CellKind], default=CellKind.EXPRESSION.value)
    p.add_argument("--config", type=Path, default=None, help="YAML compiler config")
    p.add_argument("-v", "--verbose", action="store_true")
    p.set_defaults(func=cmd_check)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
