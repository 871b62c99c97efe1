import ctypes
import sys
import unittest

import llvmlite
from llvmlite import binding

from bfllvm import (
    BuilderError,
    CodeGenerator,
    CompileError,
    CompilerOptions,
    FunctionVerifyError,
    OptimizationError,
    TAPE_LEN,
    UndelimitedJump,
    compile,
    compile_source,
    parse,
)
from bfllvm.backend import LlvmliteBackend
from bfllvm.parser import count_instructions, loop_depth


binding.initialize_native_target()
binding.initialize_native_asmprinter()

_PUTCHAR = ctypes.CFUNCTYPE(ctypes.c_int16, ctypes.c_uint8)
_GETCHAR = ctypes.CFUNCTYPE(ctypes.c_uint8)
_OUTPUT_SYMBOL = "bfllvm_test_putchar"
_INPUT_SYMBOL = "bfllvm_test_getchar"

HELLO_WORLD = (
    "++++++++[>++++[>++>+++>+++>+<<<<-]>+>+>->>+[<]<-]"
    ">>.>---.+++++++..+++.>>.<-.<.+++.------.--------.>>+.>++."
)


def run_program(source: str, stdin: bytes = b"", opt_level: int = 0) -> bytes:
    """JIT the generated module and return the bytes it wrote."""
    options = CompilerOptions(
        opt_level=opt_level,
        output_symbol=_OUTPUT_SYMBOL,
        input_symbol=_INPUT_SYMBOL,
    )
    llvm_ir = compile_source(source, options)

    output = bytearray()
    pending = list(stdin)

    def putchar(value: int) -> int:
        output.append(value & 0xFF)
        return value

    def getchar() -> int:
        return pending.pop(0) if pending else 0

    put_callback = _PUTCHAR(putchar)
    get_callback = _GETCHAR(getchar)
    binding.add_symbol(_OUTPUT_SYMBOL, ctypes.cast(put_callback, ctypes.c_void_p).value)
    binding.add_symbol(_INPUT_SYMBOL, ctypes.cast(get_callback, ctypes.c_void_p).value)

    target_machine = binding.Target.from_default_triple().create_target_machine()
    engine = binding.create_mcjit_compiler(binding.parse_assembly(""), target_machine)
    module = binding.parse_assembly(llvm_ir)
    module.verify()
    engine.add_module(module)
    engine.finalize_object()
    engine.run_static_constructors()

    entry = ctypes.CFUNCTYPE(None)(engine.get_function_address("main"))
    entry()
    return bytes(output)


def block_count(llvm_ir: str) -> int:
    module = binding.parse_assembly(llvm_ir)
    return len(list(module.get_function("main").blocks))


class ModuleShapeTests(unittest.TestCase):
    def test_declares_io_and_entry(self) -> None:
        llvm_ir = compile_source("")
        module = binding.parse_assembly(llvm_ir)
        self.assertTrue(module.get_function("putchar").is_declaration)
        self.assertTrue(module.get_function("getchar").is_declaration)
        self.assertFalse(module.get_function("main").is_declaration)

    def test_tape_and_head_storage(self) -> None:
        llvm_ir = compile_source("+")
        self.assertIn(f"[{TAPE_LEN} x i8]", llvm_ir)
        self.assertIn("alloca i16", llvm_ir)
        self.assertIn("llvm.memset", llvm_ir)
        self.assertIn("zext i16", llvm_ir)

    def test_two_blocks_per_loop(self) -> None:
        self.assertEqual(block_count(compile_source("+-<>")), 1)
        self.assertEqual(block_count(compile_source("[]")), 3)
        self.assertEqual(block_count(compile_source("[[]]")), 5)
        self.assertEqual(block_count(compile_source("[-][-]")), 5)
        self.assertEqual(block_count(compile_source("[" + "+" * 50 + "]")), 3)

    def test_generation_is_deterministic(self) -> None:
        program = parse(HELLO_WORLD)
        self.assertEqual(compile(program), compile(program))

    def test_module_name_and_triple_options(self) -> None:
        options = CompilerOptions(module_name="demo", target_triple="x86_64-unknown-linux-gnu")
        llvm_ir = compile_source(".", options)
        self.assertIn("demo", llvm_ir)
        self.assertIn('target triple = "x86_64-unknown-linux-gnu"', llvm_ir)

    def test_rejects_invalid_opt_level(self) -> None:
        with self.assertRaises(ValueError):
            CompilerOptions(opt_level=4)

    def test_empty_program_compiles(self) -> None:
        llvm_ir = compile(parse(""))
        self.assertIn("define void @", llvm_ir)
        self.assertIn(f"i32 {TAPE_LEN}", llvm_ir)
        self.assertEqual(block_count(llvm_ir), 1)

    def test_optimized_module_for_explicit_host_triple(self) -> None:
        triple = binding.get_default_triple()
        llvm_ir = compile_source("+[-].", CompilerOptions(opt_level=1, target_triple=triple))
        self.assertIn(triple, llvm_ir)
        self.assertIsNotNone(binding.parse_assembly(llvm_ir).get_function("main"))

    def test_installed_llvmlite_is_supported(self) -> None:
        major, minor = (int(part) for part in llvmlite.__version__.split(".")[:2])
        self.assertGreaterEqual((major, minor), (0, 44))


class DeepNestingTests(unittest.TestCase):
    def test_parse_nesting_beyond_recursion_limit(self) -> None:
        depth = sys.getrecursionlimit() * 5
        program = parse("[" * depth + "+" + "]" * depth)
        self.assertEqual(loop_depth(program), depth)
        self.assertEqual(count_instructions(program), depth + 1)

    def test_unclosed_deep_loop_reports_outermost(self) -> None:
        depth = sys.getrecursionlimit() * 2
        with self.assertRaises(UndelimitedJump) as ctx:
            parse("+" + "[" * depth + "]" * (depth - 1))
        self.assertEqual(ctx.exception.position, 1)

    def test_compile_nesting_beyond_recursion_limit(self) -> None:
        depth = sys.getrecursionlimit() + 200
        llvm_ir = compile_source("[" * depth + "-" + "]" * depth)
        self.assertEqual(block_count(llvm_ir), 1 + 2 * depth)


class _RejectingBackend(LlvmliteBackend):
    def verify(self, routine) -> bool:
        return False


class ErrorTests(unittest.TestCase):
    def test_verification_failure_aborts(self) -> None:
        generator = CodeGenerator(backend_factory=lambda options: _RejectingBackend())
        with self.assertRaises(FunctionVerifyError):
            generator.compile(parse("+."))

    def test_backend_verify_rejects_unterminated_block(self) -> None:
        backend = LlvmliteBackend()
        routine = backend.declare_function("main", backend.function_type(backend.void_type(), []))
        backend.position_at_end(backend.create_block(routine, "entry"))
        backend.emit_alloca(backend.int_type(16), "head")
        self.assertFalse(backend.verify(routine))

    def test_builder_failure_is_wrapped(self) -> None:
        backend = LlvmliteBackend()
        routine = backend.declare_function("main", backend.function_type(backend.void_type(), []))
        backend.position_at_end(backend.create_block(routine, "entry"))
        i8 = backend.int_type(8)
        with self.assertRaises(BuilderError) as ctx:
            backend.emit_load(backend.const(i8, 1), i8, "not_a_pointer")
        self.assertIsInstance(ctx.exception.cause, TypeError)
        self.assertIs(ctx.exception.__cause__, ctx.exception.cause)

    def test_unknown_arith_op_is_builder_error(self) -> None:
        backend = LlvmliteBackend()
        routine = backend.declare_function("main", backend.function_type(backend.void_type(), []))
        backend.position_at_end(backend.create_block(routine, "entry"))
        with self.assertRaises(BuilderError):
            backend.emit_arith("mul", backend.const(backend.int_type(8), 2), 3, "product")

    def test_optimizer_failure_is_compile_error(self) -> None:
        options = CompilerOptions(opt_level=1, target_triple="bogus-unknown-none")
        with self.assertRaises(OptimizationError) as ctx:
            compile_source("+.", options)
        self.assertIsInstance(ctx.exception, CompileError)
        self.assertIs(ctx.exception.__cause__, ctx.exception.cause)

    def test_unoptimized_foreign_triple_is_only_recorded(self) -> None:
        options = CompilerOptions(target_triple="bogus-unknown-none")
        self.assertIn('target triple = "bogus-unknown-none"', compile_source("+.", options))


class GeneratedProgramTests(unittest.TestCase):
    def test_output(self) -> None:
        self.assertEqual(run_program("+" * 65 + "."), b"A")

    def test_cell_wraps_on_increment(self) -> None:
        self.assertEqual(run_program("+" * 256 + "."), b"\x00")
        self.assertEqual(run_program("-+."), b"\x00")

    def test_cell_wraps_on_decrement(self) -> None:
        self.assertEqual(run_program("-."), b"\xff")

    def test_head_wraps_left_of_zero(self) -> None:
        # Cell 65535 is written, then the head wraps back to cell 0.
        self.assertEqual(run_program("<+>.<."), b"\x00\x01")
        self.assertEqual(run_program("<" + "+" * 7 + "<>>" + "<."), b"\x07")

    def test_tape_starts_zeroed(self) -> None:
        self.assertEqual(run_program(".>.>>>."), b"\x00\x00\x00")

    def test_loop_on_zero_cell_is_skipped(self) -> None:
        self.assertEqual(run_program("[.]+."), b"\x01")
        self.assertEqual(run_program(">[.+]<+."), run_program("+."))

    def test_loop_runs_until_cell_is_zero(self) -> None:
        self.assertEqual(run_program("+++[>++<-]>."), b"\x06")

    def test_nested_loops(self) -> None:
        self.assertEqual(run_program("++[>+++[>+<-]<-]>>."), b"\x06")

    def test_loop_condition_follows_moved_head(self) -> None:
        self.assertEqual(run_program("+>++>+++<<[>]<."), b"\x03")

    def test_input_is_stored_in_cell(self) -> None:
        self.assertEqual(run_program(",+.", stdin=b"A"), b"B")
        self.assertEqual(run_program(",[.,]", stdin=b"echo"), b"echo")

    def test_hello_world(self) -> None:
        self.assertEqual(run_program(HELLO_WORLD), b"Hello World!\n")

    def test_optimized_program_behaves_the_same(self) -> None:
        self.assertEqual(run_program(HELLO_WORLD, opt_level=2), b"Hello World!\n")


if __name__ == "__main__":
    unittest.main()
