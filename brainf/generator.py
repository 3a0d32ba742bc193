from __future__ import annotations

import sys
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, TextIO, Union


class Op(Enum):
    ADD = "+"
    SUB = "-"
    NEXT = ">"
    PREV = "<"
    GET = ","
    PUT = "."
    OPEN = "["
    CLOSE = "]"


REPEATABLE = {Op.ADD, Op.SUB, Op.NEXT, Op.PREV}
_BY_SYMBOL = {ord(op.value): op for op in Op}
# Cell arithmetic is mod 256, so a single Add/Sub never needs more than this
MAX_CELL_COUNT = 255


@dataclass(frozen=True)
class Instr:
    op: Op
    count: int = 1

    def __post_init__(self) -> None:
        if self.count < 1:
            raise ValueError("count must be positive")
        if self.op not in REPEATABLE and self.count != 1:
            raise ValueError(f"{self.op.name} cannot be repeated")
        if self.op in (Op.ADD, Op.SUB) and self.count > MAX_CELL_COUNT:
            raise ValueError(f"{self.op.name} count must not exceed {MAX_CELL_COUNT}")

    def __str__(self) -> str:
        return self.op.value * self.count


def parse(program: Union[bytes, bytearray, str]) -> List[Instr]:
    """Turn program text into instructions, dropping comment bytes.

    Consecutive ``+ - > <`` collapse into a single counted instruction.
    """
    if isinstance(program, str):
        program = program.encode("utf-8")
    instrs: List[Instr] = []
    for byte in program:
        op = _BY_SYMBOL.get(byte)
        if op is None:
            continue
        if instrs and op in REPEATABLE and instrs[-1].op is op:
            last = instrs[-1]
            limit = MAX_CELL_COUNT if op in (Op.ADD, Op.SUB) else None
            if limit is None or last.count < limit:
                instrs[-1] = Instr(op, last.count + 1)
                continue
        instrs.append(Instr(op))
    return instrs


def render(instrs: Sequence[Instr]) -> str:
    return "".join(str(instr) for instr in instrs)


def print_program(instrs: Sequence[Instr], file: Optional[TextIO] = None) -> None:
    out = file if file is not None else sys.stdout
    for instr in instrs:
        out.write(str(instr))


def strip(program: Union[bytes, bytearray, str]) -> str:
    return render(parse(program))


__all__ = [
    "Instr",
    "MAX_CELL_COUNT",
    "Op",
    "parse",
    "print_program",
    "render",
    "strip",
]
