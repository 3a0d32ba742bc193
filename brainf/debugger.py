from __future__ import annotations

import argparse
import logging
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .streams import BytesSink, BytesSource
from .vm import (
    DEFAULT_TAPE_LENGTH,
    BrainfError,
    ExecutionState,
    StepLimitExceeded,
    VirtualMachine,
    as_program,
)

logger = logging.getLogger(__name__)


@dataclass
class DebugSession:
    """Drives a VirtualMachine one instruction at a time.

    Engine errors (bad brackets, I/O failures) finish the session and are
    kept in ``error``; only ``StepLimitExceeded`` propagates to the caller.
    """

    program: Union[bytes, str]
    input_template: Union[bytes, str] = b""
    tape_length: int = DEFAULT_TAPE_LENGTH
    tape_window: int = 10
    max_steps: Optional[int] = None
    history_limit: int = 200

    def __post_init__(self) -> None:
        self.program = as_program(self.program)
        if isinstance(self.input_template, str):
            self.input_template = self.input_template.encode("utf-8")
        self.breakpoints: set[int] = set()
        self.hit_breakpoint: Optional[int] = None
        self._init_machine()

    def _init_machine(self) -> None:
        self.machine = VirtualMachine(tape_length=self.tape_length)
        self.sink = BytesSink()
        self.step_iter = self.machine.step(
            self.program,
            BytesSource(self.input_template),
            self.sink,
            max_steps=self.max_steps,
            tape_window=self.tape_window,
        )
        self.finished = False
        self.error: Optional[BrainfError] = None
        self.history: List[ExecutionState] = []
        self.last_state = self.machine.snapshot(0, None, len(self.program), self.tape_window)
        self._record_state(self.last_state)

    def restart(self) -> None:
        self.hit_breakpoint = None
        self._init_machine()

    @property
    def output(self) -> bytes:
        return self.sink.getvalue()

    def _record_state(self, state: ExecutionState) -> None:
        self.history.append(state)
        if len(self.history) > self.history_limit:
            self.history.pop(0)
        self.last_state = state

    def step_forward(self, count: int = 1) -> Sequence[ExecutionState]:
        states: List[ExecutionState] = []
        if count <= 0:
            return states
        self.hit_breakpoint = None
        for _ in range(count):
            if self.finished:
                break
            try:
                state = next(self.step_iter)
            except StopIteration:
                self.finished = True
                break
            except StepLimitExceeded:
                self.finished = True
                raise
            except BrainfError as exc:
                logger.debug("session stopped: %s", exc)
                self.finished = True
                self.error = exc
                break
            self._record_state(state)
            states.append(state)
            if state.command is None:
                self.finished = True
                break
            if state.cursor in self.breakpoints:
                self.hit_breakpoint = state.cursor
                break
        return states

    def run_until_break(self, limit: Optional[int] = None) -> Sequence[ExecutionState]:
        states: List[ExecutionState] = []
        executed = 0
        while limit is None or executed < limit:
            step_states = self.step_forward(1)
            if not step_states:
                break
            states.extend(step_states)
            executed += 1
            if self.hit_breakpoint is not None:
                break
        return states

    def current_state(self) -> ExecutionState:
        return self.last_state

    def add_breakpoint(self, cursor: int) -> None:
        self.breakpoints.add(cursor)

    def remove_breakpoint(self, cursor: int) -> bool:
        if cursor in self.breakpoints:
            self.breakpoints.remove(cursor)
            return True
        return False

    def clear_breakpoints(self) -> None:
        self.breakpoints.clear()

    def list_breakpoints(self) -> List[int]:
        return sorted(self.breakpoints)

    def is_finished(self) -> bool:
        return self.finished


def format_state(state: ExecutionState, program: bytes, output: bytes = b"") -> str:
    lines: List[str] = []
    cmd_display = state.command if state.command is not None else "(init)"
    lines.append(
        f"step={state.step} cursor={state.cursor}/{state.code_length} "
        f"command={cmd_display!r} pointer={state.pointer} depth={len(state.stack)}"
    )
    if output:
        lines.append(f"output={output!r}")
    tape_parts: List[str] = []
    for idx, value in enumerate(state.tape):
        absolute = state.tape_start + idx
        cell_repr = f"{absolute}:{value:03}"
        if absolute == state.pointer:
            tape_parts.append(f"[{cell_repr}]")
        else:
            tape_parts.append(f" {cell_repr} ")
    lines.append("tape=" + " ".join(tape_parts))
    lines.append(f"code={_format_code_window(program, state.cursor)}")
    return "\n".join(lines)


def _format_code_window(program: bytes, cursor: int, window: int = 16) -> str:
    if not program:
        return "(empty)"
    start = max(0, cursor - window)
    end = min(len(program), cursor + window + 1)
    pieces: List[str] = []
    for index in range(start, end):
        ch = chr(program[index]) if 32 <= program[index] < 127 else "?"
        if index == cursor:
            pieces.append(f"[{ch}]")
        else:
            pieces.append(ch)
    if cursor >= len(program):
        pieces.append("[END]")
    return "".join(pieces)


def run_repl(session: DebugSession) -> None:
    print("brainf debugger (type 'help' for commands)")
    _print_state(session.current_state(), session)
    while True:
        try:
            line = input("(bfdb) ").strip()
        except EOFError:
            print()
            break
        if not line:
            continue
        try:
            parts = shlex.split(line)
            if not parts:
                continue
            command = parts[0].lower()
            args = parts[1:]
            if command in {"n", "next"}:
                count = max(1, int(args[0])) if args else 1
                states = session.step_forward(count)
                if states:
                    _print_state(states[-1], session)
                _report_stop(session, bool(states))
            elif command in {"r", "run"}:
                limit = int(args[0]) if args else None
                try:
                    states = session.run_until_break(limit)
                except StepLimitExceeded:
                    print("Step limit reached.", file=sys.stderr)
                    continue
                if states:
                    _print_state(states[-1], session)
                    if session.hit_breakpoint is not None:
                        print(f"Stopped at breakpoint {session.hit_breakpoint}.")
                        session.hit_breakpoint = None
                _report_stop(session, bool(states))
            elif command == "state":
                _print_state(session.current_state(), session)
            elif command == "history":
                count = int(args[0]) if args else 10
                for state in session.history[-count:]:
                    print("-" * 40)
                    print(format_state(state, session.program))
            elif command == "break":
                if not args:
                    print("Usage: break POSITION")
                    continue
                cursor = int(args[0])
                session.add_breakpoint(cursor)
                print(f"Breakpoint set at {cursor}.")
            elif command == "breaks":
                points = session.list_breakpoints()
                if not points:
                    print("No breakpoints.")
                else:
                    print("Breakpoints:", ", ".join(map(str, points)))
            elif command == "clear":
                if not args:
                    session.clear_breakpoints()
                    print("All breakpoints cleared.")
                else:
                    cursor = int(args[0])
                    if session.remove_breakpoint(cursor):
                        print(f"Breakpoint {cursor} cleared.")
                    else:
                        print(f"No breakpoint at {cursor}.")
            elif command == "restart":
                session.restart()
                print("Session restarted.")
                _print_state(session.current_state(), session)
            elif command in {"quit", "exit"}:
                break
            elif command == "help":
                _print_help()
            else:
                print("Unknown command. Type 'help' for a list.")
        except ValueError as exc:
            print(f"Invalid input: {exc}", file=sys.stderr)
        except StepLimitExceeded:
            print("Step limit reached.", file=sys.stderr)


def _report_stop(session: DebugSession, advanced: bool) -> None:
    if session.error is not None:
        print(f"Error: {session.error}", file=sys.stderr)
    elif session.is_finished() and not advanced:
        print("Program has finished.")


def _print_state(state: ExecutionState, session: DebugSession) -> None:
    print("-" * 40)
    print(format_state(state, session.program, session.output))


def _print_help() -> None:
    print(
        "Commands:\n"
        "  next [N]    : execute N instructions (default 1)\n"
        "  run [N]     : run until a breakpoint, the end, or N instructions\n"
        "  state       : show the current state\n"
        "  history [N] : show the last N states\n"
        "  break POS   : set a breakpoint at program position POS\n"
        "  breaks      : list breakpoints\n"
        "  clear [POS] : remove a breakpoint (all when POS is omitted)\n"
        "  restart     : start the program again\n"
        "  quit/exit   : leave the debugger\n"
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="brainf interactive debugger")
    parser.add_argument("file", help="brainfuck program to debug")
    parser.add_argument("--input", default="", help="Text fed to the program's input")
    parser.add_argument(
        "--tape-length",
        type=int,
        default=DEFAULT_TAPE_LENGTH,
        help=f"Number of tape cells (default: {DEFAULT_TAPE_LENGTH})",
    )
    parser.add_argument(
        "--max-steps",
        type=int,
        default=5_000_000,
        help="Step limit (default: 5,000,000)",
    )
    parser.add_argument("--tape-window", type=int, default=10, help="Cells shown either side of the pointer")
    parser.add_argument("--history-limit", type=int, default=200, help="Number of states kept in history")
    args = parser.parse_args(argv)

    try:
        program = Path(args.file).read_bytes()
    except OSError as exc:
        print(f"Error reading file: {exc}", file=sys.stderr)
        return 1

    try:
        session = DebugSession(
            program,
            input_template=args.input,
            tape_length=args.tape_length,
            tape_window=args.tape_window,
            max_steps=args.max_steps,
            history_limit=args.history_limit,
        )
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    run_repl(session)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
