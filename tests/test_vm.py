import io
import unittest
from unittest import mock

from brainf import (
    BytesSink,
    BytesSource,
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

HELLO_WORLD = (
    b"++++++++[>++++[>++>+++>+++>+<<<<-]>+>+>->>+[<]<-]"
    b">>.>---.+++++++..+++.>>.<-.<.+++.------.--------.>>+.>++."
)
ADDER = b",>,>>++++[->++++[-<<+++<---<--->>>>]<]<<[-<+>]>[-<<+>>]<<."


class FailingSource:
    def read_byte(self):
        raise OSError("device unplugged")


class FailingSink:
    def write_byte(self, value):
        raise OSError("broken pipe")


class ClosedPipe(io.BytesIO):
    def flush(self):
        raise BrokenPipeError("pipe closed")


class CellArithmeticTests(unittest.TestCase):
    def test_increment_then_decrement_restores_cell(self) -> None:
        vm = VirtualMachine(tape_length=8)
        for start in (0, 1, 128, 255):
            for count in range(256):
                with self.subTest(start=start, count=count):
                    vm.run(b"," + b"+" * count + b"-" * count, bytes([start]))
                    self.assertEqual(vm.tape[0], start)

    def test_increment_wraps_to_zero(self) -> None:
        vm = VirtualMachine(tape_length=8)
        vm.run(b"+" * 256)
        self.assertEqual(vm.tape[0], 0)
        vm.run(b"," + b"+", b"\xff")
        self.assertEqual(vm.tape[0], 0)

    def test_decrement_wraps_to_255(self) -> None:
        vm = VirtualMachine(tape_length=8)
        vm.run(b"-")
        self.assertEqual(vm.tape[0], 255)


class PointerWraparoundTests(unittest.TestCase):
    def test_left_from_zero_wraps_to_last_cell(self) -> None:
        vm = VirtualMachine(tape_length=5)
        vm.run(b"<+")
        self.assertEqual(vm.pointer, 4)
        self.assertEqual(vm.tape[4], 1)

    def test_right_from_last_cell_wraps_to_zero(self) -> None:
        vm = VirtualMachine(tape_length=5)
        vm.run(b">>>>>+")
        self.assertEqual(vm.pointer, 0)
        self.assertEqual(vm.tape[0], 1)

    def test_move_and_return_is_identity_everywhere(self) -> None:
        length = 6
        vm = VirtualMachine(tape_length=length)
        for position in range(length):
            for moves in (b"><", b"<>"):
                with self.subTest(position=position, moves=moves):
                    vm.run(b">" * position + moves)
                    self.assertEqual(vm.pointer, position)

    def test_power_of_two_tape(self) -> None:
        vm = VirtualMachine(tape_length=65536)
        vm.run(b"<")
        self.assertEqual(vm.pointer, 65535)

    def test_tape_sizes_are_independent(self) -> None:
        small = VirtualMachine(tape_length=3)
        large = default_vm()
        small.run(b"<")
        large.run(b"<")
        self.assertEqual(small.pointer, 2)
        self.assertEqual(large.pointer, 29999)

    def test_rejects_empty_tape(self) -> None:
        with self.assertRaises(ValueError):
            VirtualMachine(tape_length=0)


class LoopTests(unittest.TestCase):
    def test_balanced_brackets_succeed_without_output(self) -> None:
        for program in (b"[]", b"[[]]", b"[][[]][]", b"[ comment [ ] ]"):
            with self.subTest(program=program):
                sink = BytesSink()
                run(program, sink=sink)
                self.assertEqual(sink.getvalue(), b"")

    def test_loop_body_runs_before_first_test(self) -> None:
        sink = BytesSink()
        run(b"[.]", sink=sink)
        self.assertEqual(sink.getvalue(), b"\x00")

    def test_nested_loops_multiply(self) -> None:
        sink = BytesSink()
        run(b"++[>++[>+<-]<-]>>.", sink=sink)
        self.assertEqual(sink.getvalue(), b"\x04")

    def test_inner_closer_matches_inner_opener(self) -> None:
        vm = VirtualMachine(tape_length=4)
        vm.run(b"+++[>[-]+<-]")
        self.assertEqual(list(vm.tape[:2]), [0, 1])
        self.assertEqual(vm.stack, [])

    def test_clear_loop_inside_loop(self) -> None:
        sink = BytesSink()
        run(b"+[[-]].", sink=sink)
        self.assertEqual(sink.getvalue(), b"\x00")

    def test_io_happens_once_per_executed_instruction(self) -> None:
        source = BytesSource(b"abcdef")
        sink = BytesSink()
        run(b"+++[>,.<-]", source, sink)
        self.assertEqual(sink.getvalue(), b"abc")
        self.assertEqual(source.remaining, b"def")


class BracketErrorTests(unittest.TestCase):
    def test_leading_closer(self) -> None:
        for program in (b"]", b"]+[]", b"][", b"]]]"):
            with self.subTest(program=program):
                with self.assertRaises(UnmatchedCloser) as ctx:
                    run(program)
                self.assertEqual(ctx.exception.position, 0)
                self.assertEqual(ctx.exception.positions, [0])

    def test_closer_after_comment(self) -> None:
        with self.assertRaises(UnmatchedCloser) as ctx:
            run(b"ab+]")
        self.assertEqual(ctx.exception.position, 3)

    def test_closer_after_completed_loop(self) -> None:
        with self.assertRaises(UnmatchedCloser) as ctx:
            run(b"[]]")
        self.assertEqual(ctx.exception.position, 2)

    def test_trailing_opener(self) -> None:
        for program in (b"[", b"+++[", b"[][", b"hello ["):
            with self.subTest(program=program):
                with self.assertRaises(UnmatchedOpener) as ctx:
                    run(program)
                self.assertEqual(ctx.exception.positions, [len(program) - 1])

    def test_openers_reported_outermost_first(self) -> None:
        with self.assertRaises(UnmatchedOpener) as ctx:
            run(b"[x[[]")
        self.assertEqual(ctx.exception.positions, [0, 2])
        self.assertIn("0, 2", str(ctx.exception))

    def test_output_before_error_is_kept(self) -> None:
        sink = BytesSink()
        with self.assertRaises(UnmatchedCloser):
            run(b"+.]", sink=sink)
        self.assertEqual(sink.getvalue(), b"\x01")


class InputOutputTests(unittest.TestCase):
    def test_read_past_end_sets_zero(self) -> None:
        vm = VirtualMachine(tape_length=4)
        vm.run(b"+++,")
        self.assertEqual(vm.tape[0], 0)
        vm.run(b",>,", b"A")
        self.assertEqual(list(vm.tape[:2]), [65, 0])

    def test_input_failure_wraps_os_error(self) -> None:
        with self.assertRaises(InputFailure) as ctx:
            run(b"+,", FailingSource())
        self.assertIsInstance(ctx.exception.error, OSError)
        self.assertIs(ctx.exception.__cause__, ctx.exception.error)

    def test_output_failure_wraps_os_error(self) -> None:
        with self.assertRaises(OutputFailure) as ctx:
            run(b"+.", sink=FailingSink())
        self.assertIn("broken pipe", str(ctx.exception))

    def test_accepts_file_objects(self) -> None:
        output = io.BytesIO()
        run(b",+.,+.", io.BytesIO(b"AB"), output)
        self.assertEqual(output.getvalue(), b"BC")

    def test_accepts_bytearray_sink(self) -> None:
        captured = bytearray()
        run(b"+" * 33 + b".", sink=captured)
        self.assertEqual(captured, bytearray(b"!"))

    def test_run_with_stdio(self) -> None:
        stdin = io.BytesIO(b"26")
        stdout = io.BytesIO()
        with mock.patch("sys.stdin", stdin), mock.patch("sys.stdout", stdout):
            run_with_stdio(ADDER)
        self.assertEqual(stdout.getvalue(), b"8")

    def test_run_with_stdio_reports_failed_flush(self) -> None:
        with mock.patch("sys.stdin", io.BytesIO()), mock.patch("sys.stdout", ClosedPipe()):
            with self.assertRaises(OutputFailure) as ctx:
                run_with_stdio(b"+.")
        self.assertIsInstance(ctx.exception.__cause__, BrokenPipeError)

    def test_failed_flush_does_not_mask_run_error(self) -> None:
        stdout = ClosedPipe()
        with mock.patch("sys.stdin", io.BytesIO()), mock.patch("sys.stdout", stdout):
            with self.assertRaises(UnmatchedCloser) as ctx:
                run_with_stdio(b"+.]")
        self.assertEqual(ctx.exception.position, 2)
        self.assertEqual(stdout.getvalue(), b"\x01")


class ProgramTests(unittest.TestCase):
    def test_hello_world(self) -> None:
        sink = BytesSink()
        run(HELLO_WORLD, io.BytesIO(b""), sink)
        self.assertEqual(sink.getvalue(), b"Hello World!\n")

    def test_adder(self) -> None:
        for digits, expected in ((b"26", b"8"), (b"43", b"7")):
            with self.subTest(digits=digits):
                sink = BytesSink()
                run(ADDER, digits, sink)
                self.assertEqual(sink.getvalue(), expected)

    def test_text_program(self) -> None:
        sink = BytesSink()
        run("+" * 65 + ". é", sink=sink)
        self.assertEqual(sink.getvalue(), b"A")

    def test_rejects_non_program(self) -> None:
        with self.assertRaises(TypeError):
            run(42)

    def test_state_is_fresh_per_run(self) -> None:
        vm = VirtualMachine(tape_length=4)
        vm.run(b"+>+")
        vm.run(b"+")
        self.assertEqual(list(vm.tape), [1, 0, 0, 0])
        self.assertEqual(vm.pointer, 0)


class StepLimitTests(unittest.TestCase):
    def test_step_limit_exceeded(self) -> None:
        vm = VirtualMachine()
        with self.assertRaises(StepLimitExceeded):
            vm.run(b"+[]", max_steps=10)

    def test_limit_not_hit_by_short_program(self) -> None:
        vm = VirtualMachine()
        vm.run(b"+++", max_steps=3)
        self.assertEqual(vm.tape[0], 3)


class StepTests(unittest.TestCase):
    def test_step_sequence_produces_states(self) -> None:
        vm = VirtualMachine()
        states = list(vm.step(b"++x.", tape_window=2))
        commands = [state.command for state in states[:-1]]
        self.assertEqual(commands, ["+", "+", "x", "."])
        self.assertIsNone(states[-1].command)
        self.assertEqual(states[-1].cursor, 4)
        self.assertEqual(states[-1].tape[0], 2)

    def test_step_tracks_stack(self) -> None:
        vm = VirtualMachine()
        states = list(vm.step(b"+[-]"))
        self.assertEqual(states[1].stack, [2])
        self.assertEqual(states[-1].stack, [])

    def test_step_raises_on_unmatched_opener_at_end(self) -> None:
        vm = VirtualMachine()
        stepper = vm.step(b"+[")
        next(stepper)
        next(stepper)
        with self.assertRaises(UnmatchedOpener):
            next(stepper)

    def test_step_limit(self) -> None:
        vm = VirtualMachine()
        stepper = vm.step(b"+[]", max_steps=4)
        with self.assertRaises(StepLimitExceeded):
            while True:
                next(stepper)


class DebugLoggingTests(unittest.TestCase):
    def test_debug_traces_instructions(self) -> None:
        vm = VirtualMachine(tape_length=4, debug=True)
        with self.assertLogs("brainf.vm", level="DEBUG") as logs:
            vm.run(b"+>")
        self.assertTrue(any("ptr=1" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
