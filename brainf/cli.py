from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .generator import parse, print_program
from .streams import stdio_sink, stdio_source
from .vm import (
    DEFAULT_TAPE_LENGTH,
    BracketError,
    BrainfError,
    VirtualMachine,
    flush_after_error,
    flush_output,
)

logger = logging.getLogger(__name__)


def _read_program(path: str) -> bytes:
    return Path(path).read_bytes()


def _positive_int(text: str) -> int:
    value = int(text)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {text}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="brainf",
        description=f"brainf v{__version__}: brainfuck interpreter.",
    )
    parser.add_argument("file", help="brainfuck program to run")
    parser.add_argument(
        "--tape-length",
        type=_positive_int,
        default=DEFAULT_TAPE_LENGTH,
        help=f"Number of cells on the tape (default: {DEFAULT_TAPE_LENGTH})",
    )
    parser.add_argument(
        "--max-steps",
        type=_positive_int,
        default=None,
        help="Abort after this many executed bytes (default: unlimited)",
    )
    parser.add_argument(
        "--emit",
        action="store_true",
        help="Print the program with comments stripped instead of running it",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log to stderr; repeat to trace every instruction",
    )
    return parser


def _configure_logging(verbosity: int) -> None:
    if not verbosity:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        program = _read_program(args.file)
    except OSError as exc:
        print(f"Error reading file: {exc}", file=sys.stderr)
        return 1

    if args.emit:
        print_program(parse(program))
        sys.stdout.write("\n")
        return 0

    vm = VirtualMachine(tape_length=args.tape_length, debug=args.verbose > 1)
    sink = stdio_sink()
    try:
        vm.run(program, stdio_source(), sink, max_steps=args.max_steps)
        flush_output(sink)
    except BracketError as exc:
        flush_after_error(sink)
        positions = ", ".join(str(pos) for pos in exc.positions)
        print(f"Error, unmatched bracket at {positions}", file=sys.stderr)
        return 1
    except BrainfError as exc:
        flush_after_error(sink)
        logger.debug("run of %s aborted", args.file, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
