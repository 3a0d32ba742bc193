from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Union

from .streams import (
    ByteSink,
    ByteSource,
    SinkLike,
    SourceLike,
    StreamSink,
    as_sink,
    as_source,
    stdio_sink,
    stdio_source,
)

logger = logging.getLogger(__name__)

DEFAULT_TAPE_LENGTH = 30000

INC = ord("+")
DEC = ord("-")
RIGHT = ord(">")
LEFT = ord("<")
READ = ord(",")
WRITE = ord(".")
OPEN = ord("[")
CLOSE = ord("]")

ProgramLike = Union[bytes, bytearray, memoryview, str]


class BrainfError(Exception):
    """Base class for every error raised while running a program."""


class BracketError(BrainfError):
    """Loop brackets in the program do not pair up."""

    positions: List[int]


class UnmatchedCloser(BracketError):
    def __init__(self, position: int) -> None:
        super().__init__(f"Unmatched ']' at position {position}")
        self.position = position
        self.positions = [position]


class UnmatchedOpener(BracketError):
    def __init__(self, positions: Iterable[int]) -> None:
        self.positions = list(positions)
        label = "position" if len(self.positions) == 1 else "positions"
        listing = ", ".join(str(pos) for pos in self.positions)
        super().__init__(f"Unmatched '[' at {label} {listing}")


class InputFailure(BrainfError):
    def __init__(self, error: OSError) -> None:
        super().__init__(f"Failed to read input: {error}")
        self.error = error


class OutputFailure(BrainfError):
    def __init__(self, error: OSError) -> None:
        super().__init__(f"Failed to write output: {error}")
        self.error = error


class StepLimitExceeded(BrainfError):
    """Raised when execution exceeds the configured step budget."""


@dataclass
class ExecutionState:
    step: int
    cursor: int
    command: Optional[str]
    pointer: int
    tape_start: int
    tape: List[int]
    stack: List[int]
    code_length: int


def as_program(program: ProgramLike) -> bytes:
    if isinstance(program, str):
        return program.encode("utf-8")
    if isinstance(program, (bytes, bytearray, memoryview)):
        return bytes(program)
    raise TypeError(f"Program must be bytes or str, not {type(program).__name__}")


@dataclass
class VirtualMachine:
    """Byte tape machine for the eight-instruction language.

    Cells hold 0..255 and wrap on overflow; the data pointer wraps modulo
    ``tape_length``. ``[`` always enters its loop body and ``]`` decides
    whether to repeat, using a stack of resume positions rather than a
    precomputed jump table, so bracket errors surface while running.
    """

    tape_length: int = DEFAULT_TAPE_LENGTH
    debug: bool = False

    tape: bytearray = field(init=False, repr=False)
    pointer: int = field(init=False, repr=False)
    cursor: int = field(init=False, repr=False)
    stack: List[int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.tape_length < 1:
            raise ValueError("tape_length must be at least 1")
        self.reset()

    def reset(self) -> None:
        self.tape = bytearray(self.tape_length)
        self.pointer = 0
        self.cursor = 0
        self.stack = []

    def run(
        self,
        program: ProgramLike,
        source: SourceLike = None,
        sink: SinkLike = None,
        max_steps: Optional[int] = None,
    ) -> None:
        code = as_program(program)
        reader = as_source(source)
        writer = as_sink(sink)
        self.reset()
        logger.debug("running %d byte program, tape_length=%d", len(code), self.tape_length)

        code_length = len(code)
        steps = 0
        while self.cursor < code_length:
            if max_steps is not None and steps >= max_steps:
                raise StepLimitExceeded(f"Program exceeded the step limit of {max_steps}")
            self.cursor = self._execute_instruction(code[self.cursor], self.cursor, reader, writer)
            steps += 1

        self._check_balanced()
        logger.debug("program finished after %d steps", steps)

    def step(
        self,
        program: ProgramLike,
        source: SourceLike = None,
        sink: SinkLike = None,
        max_steps: Optional[int] = None,
        tape_window: int = 10,
    ) -> Iterator[ExecutionState]:
        code = as_program(program)
        reader = as_source(source)
        writer = as_sink(sink)
        self.reset()
        code_length = len(code)
        steps = 0

        while self.cursor < code_length:
            if max_steps is not None and steps >= max_steps:
                raise StepLimitExceeded(f"Program exceeded the step limit of {max_steps}")

            command = code[self.cursor]
            self.cursor = self._execute_instruction(command, self.cursor, reader, writer)
            steps += 1
            yield self.snapshot(steps, chr(command), code_length, tape_window)

        self._check_balanced()
        # Final snapshot marks completion
        yield self.snapshot(steps, None, code_length, tape_window)

    def _execute_instruction(
        self,
        command: int,
        cursor: int,
        source: ByteSource,
        sink: ByteSink,
    ) -> int:
        next_cursor = cursor + 1
        if command == INC:
            self.tape[self.pointer] = (self.tape[self.pointer] + 1) % 256
        elif command == DEC:
            self.tape[self.pointer] = (self.tape[self.pointer] - 1) % 256
        elif command == RIGHT:
            self.pointer = (self.pointer + 1) % self.tape_length
        elif command == LEFT:
            self.pointer = (self.pointer - 1) % self.tape_length
        elif command == READ:
            try:
                value = source.read_byte()
            except OSError as exc:
                logger.debug("input failed at position %d: %s", cursor, exc)
                raise InputFailure(exc) from exc
            self.tape[self.pointer] = 0 if value is None else value
        elif command == WRITE:
            try:
                sink.write_byte(self.tape[self.pointer])
            except OSError as exc:
                logger.debug("output failed at position %d: %s", cursor, exc)
                raise OutputFailure(exc) from exc
        elif command == OPEN:
            self.stack.append(next_cursor)
        elif command == CLOSE:
            if not self.stack:
                logger.debug("unmatched ']' at position %d", cursor)
                raise UnmatchedCloser(cursor)
            if self.tape[self.pointer] == 0:
                self.stack.pop()
            else:
                next_cursor = self.stack[-1]
        else:
            return next_cursor

        if self.debug:
            logger.debug(
                "%6d %s ptr=%d cell=%d depth=%d",
                cursor,
                chr(command),
                self.pointer,
                self.tape[self.pointer],
                len(self.stack),
            )
        return next_cursor

    def _check_balanced(self) -> None:
        if self.stack:
            # The stack holds resume positions, one past each opener
            openers = [resume - 1 for resume in self.stack]
            logger.debug("unmatched '[' at %s", openers)
            raise UnmatchedOpener(openers)

    def snapshot(
        self,
        step: int = 0,
        command: Optional[str] = None,
        code_length: int = 0,
        tape_window: int = 10,
    ) -> ExecutionState:
        start = max(0, self.pointer - tape_window)
        end = min(self.tape_length, self.pointer + tape_window + 1)
        return ExecutionState(
            step=step,
            cursor=self.cursor,
            command=command,
            pointer=self.pointer,
            tape_start=start,
            tape=list(self.tape[start:end]),
            stack=list(self.stack),
            code_length=code_length,
        )


def default_vm() -> VirtualMachine:
    return VirtualMachine(tape_length=DEFAULT_TAPE_LENGTH)


def run(
    program: ProgramLike,
    source: SourceLike = None,
    sink: SinkLike = None,
    tape_length: int = DEFAULT_TAPE_LENGTH,
) -> None:
    VirtualMachine(tape_length=tape_length).run(program, source, sink)


def flush_output(sink: StreamSink) -> None:
    try:
        sink.flush()
    except OSError as exc:
        logger.debug("flushing output failed: %s", exc)
        raise OutputFailure(exc) from exc


def flush_after_error(sink: StreamSink) -> None:
    """Flush what a failed run wrote without masking the run's own error."""
    try:
        sink.flush()
    except OSError as exc:
        logger.debug("output lost after failed run: %s", exc)


def run_with_stdio(program: ProgramLike, tape_length: int = DEFAULT_TAPE_LENGTH) -> None:
    """Run ``program`` reading the process stdin and writing its stdout."""
    sink = stdio_sink()
    try:
        VirtualMachine(tape_length=tape_length).run(program, stdio_source(), sink)
    except BrainfError:
        flush_after_error(sink)
        raise
    flush_output(sink)


__all__ = [
    "BracketError",
    "BrainfError",
    "DEFAULT_TAPE_LENGTH",
    "ExecutionState",
    "InputFailure",
    "OutputFailure",
    "StepLimitExceeded",
    "UnmatchedCloser",
    "UnmatchedOpener",
    "VirtualMachine",
    "default_vm",
    "flush_after_error",
    "flush_output",
    "run",
    "run_with_stdio",
]
