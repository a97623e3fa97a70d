from __future__ import annotations
import argparse
import os
import pprint
import sys
from typing import List, Optional

from errors import BrownParseError, BrownRuntimeError
from graphics import Graphics
from interpreter import InterpreterState, Program, TracebackFormatter
from lowering import convert_data_segment, format_ir, to_intermediate_repr
from parser import SourceFile, parse_source


EMIT_CHOICES = ("ast", "ast-pretty", "data", "ir", "run")


def build_program(source: SourceFile) -> Program:
    code = to_intermediate_repr(source.code)
    data_segment = convert_data_segment(source.data)
    return Program.try_new(code, data_segment)


def compile_source(text: str, filename: str = "<string>") -> Program:
    """Parse, lower and load ``text``, raising on any load-time error."""
    return build_program(parse_source(text, filename))


def _emit(source: SourceFile, mode: str) -> None:
    if mode == "ast":
        print(repr(source.code))
    elif mode == "ast-pretty":
        pprint.pprint(source.code)
    elif mode == "data":
        pprint.pprint(source.data)
        segment = convert_data_segment(source.data)
        print(f"data: {segment.data.hex(' ') if segment.data else '(empty)'}")
        for name, offset in segment.labels.items():
            print(f"  {name} = {offset}")
    elif mode == "ir":
        print(format_ir(to_intermediate_repr(source.code)))


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Brown reference interpreter")
    parser.add_argument("program", help="Source file path or literal source with -source")
    parser.add_argument("--emit", choices=EMIT_CHOICES, default="run", help="Stage to print instead of running")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit memory snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--frames", metavar="DIR", help="Save every presented frame as a PNG in DIR")
    parser.add_argument("--seed", type=int, help="Seed for the random intrinsics")
    parser.add_argument("--strict-args", action="store_true", help="Fail when a call passes the wrong number of arguments")
    args = parser.parse_args(argv)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    try:
        source = parse_source(source_text, filename)
        if args.emit != "run":
            _emit(source, args.emit)
            return 0
        program = build_program(source)
    except BrownParseError as error:
        print(f"ParseError: {error}", file=sys.stderr)
        return 1
    except BrownRuntimeError as error:
        print(f"{error.__class__.__name__}: {error.message}", file=sys.stderr)
        return 1

    if args.frames:
        os.makedirs(args.frames, exist_ok=True)
    state = InterpreterState(
        program,
        graphics=Graphics(frame_dir=args.frames),
        seed=args.seed,
        verbose=args.verbose,
        strict_args=args.strict_args,
    )
    try:
        return state.run()
    except BrownRuntimeError as error:
        formatter = TracebackFormatter(state)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(run_cli())
