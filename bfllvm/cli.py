from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from .codegen import CompilerOptions, compile_source
from .errors import CompileError, ParseError


class SourceReadError(Exception):
    pass


def load_program(path: str) -> str:
    """Read a program file, turning I/O and decoding failures into one error."""
    source_path = Path(path)
    try:
        return source_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise SourceReadError(f"Source file not found: {path}") from exc
    except UnicodeDecodeError as exc:
        raise SourceReadError(
            f"Source file is not valid UTF-8: {path} (byte {exc.start}: {exc.reason})"
        ) from exc
    except OSError as exc:
        raise SourceReadError(f"Cannot read source file {path}: {exc.strerror}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bfllvm", description="Compile Brainfuck source to LLVM IR")
    parser.add_argument("source", nargs="?", help="Path to Brainfuck source file")
    parser.add_argument(
        "-o",
        "--emit",
        help="Destination file for emitted LLVM IR (default: print to stdout)",
    )
    parser.add_argument(
        "-O",
        "--opt-level",
        type=int,
        choices=range(0, 4),
        default=0,
        help="LLVM optimization level applied after verification (default: 0)",
    )
    parser.add_argument("--triple", help="Target triple recorded in the module (default: host)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log compiler stages to stderr")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.source is None:
        parser.print_usage(sys.stdout)
        return 0

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    try:
        source_text = load_program(args.source)
    except SourceReadError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    options = CompilerOptions(opt_level=args.opt_level, target_triple=args.triple)
    try:
        # Positions are reported 1-based on the command line.
        llvm_ir = compile_source(source_text, options, offset=1)
    except (ParseError, CompileError) as exc:
        print(f"Compilation error: {exc}", file=sys.stderr)
        return 1

    if args.emit:
        try:
            Path(args.emit).write_text(llvm_ir, encoding="utf-8")
        except OSError as exc:
            print(f"Cannot write {args.emit}: {exc.strerror}", file=sys.stderr)
            return 1
    else:
        sys.stdout.write(llvm_ir)
        if not llvm_ir.endswith("\n"):
            sys.stdout.write("\n")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
