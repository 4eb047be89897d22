#!/usr/bin/env python3
"""
Compile or lint tally contract files.

Usage:
    tallyc <file.tally>                # Compile, print bytecode and ABI
    tallyc <file.tally> --abi          # ABI only (JSON)
    tallyc <file.tally> --bin          # Bytecode only (hex)
    tallyc --lint <file.tally> [...]   # Report errors and warnings
"""

import argparse
import json
import sys
from pathlib import Path

from .artifact import produce, lint, CompilationError


def lint_file(path: Path) -> int:
    """Lint a single file. Returns the number of errors."""
    diagnostics = lint(path.read_text())
    errors = 0
    for diag in diagnostics:
        loc = f":{diag.line}" if diag.line else ""
        print(f"{path}{loc}: {diag.severity}: {diag.message}")
        if diag.severity == "error":
            errors += 1
    return errors


def compile_file(path: Path, show_abi: bool, show_bin: bool) -> int:
    """Compile a single file and print the requested outputs."""
    try:
        artifact = produce(path.read_text(), source_name=str(path))
    except CompilationError as e:
        for diag in e.diagnostics:
            print(e.format_diagnostic(diag), file=sys.stderr)
        return 1

    for warning in artifact.warnings:
        loc = f":{warning.line}" if warning.line else ""
        print(f"{path}{loc}: warning: {warning.message}", file=sys.stderr)

    if not show_abi and not show_bin:
        show_abi = show_bin = True
    if show_bin:
        print(artifact.bytecode_hex)
    if show_abi:
        print(json.dumps(artifact.abi_dicts(), indent=2))
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Compile tally contract files."
    )
    parser.add_argument("files", nargs="+", help="Contract files")
    parser.add_argument("--abi", action="store_true", help="Print the ABI")
    parser.add_argument("--bin", action="store_true", help="Print the bytecode")
    parser.add_argument(
        "--lint",
        action="store_true",
        help="Only parse and validate, reporting errors and warnings"
    )

    args = parser.parse_args(argv)
    files = [Path(f) for f in args.files]

    missing = [f for f in files if not f.exists()]
    if missing:
        for f in missing:
            print(f"Error: File not found: {f}", file=sys.stderr)
        sys.exit(1)

    if args.lint:
        total_errors = sum(lint_file(f) for f in files)
        if total_errors:
            print(f"\n{total_errors} error(s)")
        sys.exit(1 if total_errors else 0)

    failures = sum(compile_file(f, args.abi, args.bin) for f in files)
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
