__version__ = "0.1.0"

from .debugger import DebugSession
from .generator import Instr, Op, parse, render
from .streams import ByteSink, ByteSource, BytesSink, BytesSource, StreamSink, StreamSource
from .vm import (
    DEFAULT_TAPE_LENGTH,
    BracketError,
    BrainfError,
    ExecutionState,
    InputFailure,
    OutputFailure,
    StepLimitExceeded,
    UnmatchedCloser,
    UnmatchedOpener,
    VirtualMachine,
    default_vm,
    run,
    run_with_stdio,
)

__all__ = [
    "DEFAULT_TAPE_LENGTH",
    "BracketError",
    "BrainfError",
    "ByteSink",
    "ByteSource",
    "BytesSink",
    "BytesSource",
    "DebugSession",
    "ExecutionState",
    "InputFailure",
    "Instr",
    "Op",
    "OutputFailure",
    "StepLimitExceeded",
    "StreamSink",
    "StreamSource",
    "UnmatchedCloser",
    "UnmatchedOpener",
    "VirtualMachine",
    "default_vm",
    "parse",
    "render",
    "run",
    "run_with_stdio",
]
