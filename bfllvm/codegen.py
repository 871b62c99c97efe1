from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, List, Optional, Tuple

from .backend import Backend, LlvmliteBackend
from .errors import FunctionVerifyError, LibraryLinkageError
from .parser import (
    Decrement,
    Increment,
    Input,
    Instruction,
    Loop,
    MoveLeft,
    MoveRight,
    Output,
    count_instructions,
    parse,
)

logger = logging.getLogger(__name__)

HEAD_BITS = 16
CELL_BITS = 8
TAPE_LEN = 65536

# Head moves rely on i16 wraparound; changing one of these means changing both.
assert TAPE_LEN == 2 ** HEAD_BITS


@dataclass
class CompilerOptions:
    opt_level: int = 0
    module_name: str = "bf"
    target_triple: Optional[str] = None
    output_symbol: str = "putchar"
    input_symbol: str = "getchar"
    entry_symbol: str = "main"

    def __post_init__(self) -> None:
        if not 0 <= self.opt_level <= 3:
            raise ValueError("opt_level must be between 0 and 3")


def default_backend(options: CompilerOptions) -> Backend:
    return LlvmliteBackend(
        module_name=options.module_name,
        target_triple=options.target_triple,
        opt_level=options.opt_level,
    )


@dataclass
class _Routine:
    """Storage handles shared by every instruction emitted into one routine."""

    function: Any
    head: Any
    tape: Any
    head_type: Any
    cell_type: Any
    loops: int = 0


class CodeGenerator:
    def __init__(
        self,
        options: Optional[CompilerOptions] = None,
        backend_factory: Callable[[CompilerOptions], Backend] = default_backend,
    ) -> None:
        self.options = options or CompilerOptions()
        self.backend_factory = backend_factory

    def compile(self, instructions: Iterable[Instruction]) -> str:
        instructions = list(instructions)
        backend = self.backend_factory(self.options)
        routine = self._emit_prologue(backend)

        self._emit_program(backend, routine, instructions)
        backend.emit_return()
        logger.debug(
            "emitted %d instructions with %d loops (%d basic blocks)",
            count_instructions(instructions),
            routine.loops,
            1 + 2 * routine.loops,
        )

        if not backend.verify(routine.function):
            raise FunctionVerifyError()
        backend.run_passes(routine.function)
        return backend.serialize()

    def _emit_prologue(self, backend: Backend) -> _Routine:
        options = self.options
        cell_type = backend.int_type(CELL_BITS)
        head_type = backend.int_type(HEAD_BITS)
        tape_type = backend.array_type(cell_type, TAPE_LEN)

        backend.declare_function(options.output_symbol, backend.function_type(head_type, [cell_type]))
        backend.declare_function(options.input_symbol, backend.function_type(cell_type, []))
        main = backend.declare_function(options.entry_symbol, backend.function_type(backend.void_type(), []))

        backend.position_at_end(backend.create_block(main, "entry"))
        head = backend.emit_alloca(head_type, "head")
        tape = backend.emit_alloca(tape_type, "tape", zero_init=True)
        backend.emit_store(backend.const(head_type, 0), head)

        return _Routine(
            function=main,
            head=head,
            tape=tape,
            head_type=head_type,
            cell_type=cell_type,
        )

    def _emit_program(self, backend: Backend, routine: _Routine, instructions: List[Instruction]) -> None:
        # Explicit stack of open loop bodies, so nesting depth is not bounded
        # by the interpreter's recursion limit.
        pending: List[Tuple[Iterator[Instruction], Optional[Tuple[Any, Any]]]] = [(iter(instructions), None)]
        while pending:
            body, blocks = pending[-1]
            instruction = next(body, None)
            if instruction is None:
                pending.pop()
                if blocks is not None:
                    self._close_loop(backend, routine, *blocks)
            elif isinstance(instruction, Loop):
                pending.append((iter(instruction.body), self._open_loop(backend, routine)))
            else:
                self._emit_instruction(backend, routine, instruction)

    def _emit_instruction(self, backend: Backend, routine: _Routine, instruction: Instruction) -> None:
        if isinstance(instruction, (MoveLeft, MoveRight)):
            op = "sub" if isinstance(instruction, MoveLeft) else "add"
            head_value = backend.emit_load(routine.head, routine.head_type, "load_head")
            backend.emit_store(backend.emit_arith(op, head_value, 1, "new_head"), routine.head)
        elif isinstance(instruction, (Increment, Decrement)):
            op = "add" if isinstance(instruction, Increment) else "sub"
            cell, value = self._load_cell(backend, routine)
            name = "cell_inc" if op == "add" else "cell_dec"
            backend.emit_store(backend.emit_arith(op, value, 1, name), cell)
        elif isinstance(instruction, Output):
            _, value = self._load_cell(backend, routine)
            output = self._resolve(backend, self.options.output_symbol)
            backend.emit_call(output, [value], "putchar")
        elif isinstance(instruction, Input):
            cell = self._cell_address(backend, routine)
            read = backend.emit_call(self._resolve(backend, self.options.input_symbol), [], "getchar")
            backend.emit_store(read, cell)
        else:
            raise TypeError(f"Unsupported instruction: {instruction!r}")

    def _open_loop(self, backend: Backend, routine: _Routine) -> Tuple[Any, Any]:
        _, value = self._load_cell(backend, routine)
        body_block = backend.create_block(routine.function, "loop")
        after_block = backend.create_block(routine.function, "loop_remain")
        routine.loops += 1

        is_zero = backend.emit_compare("==", value, 0, "cell_eq_zero")
        backend.emit_cond_branch(is_zero, after_block, body_block)
        backend.position_at_end(body_block)
        return body_block, after_block

    def _close_loop(self, backend: Backend, routine: _Routine, body_block: Any, after_block: Any) -> None:
        # The body may have moved the head, so the cell is looked up again.
        _, value = self._load_cell(backend, routine)
        is_nonzero = backend.emit_compare("!=", value, 0, "cell_ne_zero")
        backend.emit_cond_branch(is_nonzero, body_block, after_block)
        backend.position_at_end(after_block)

    def _cell_address(self, backend: Backend, routine: _Routine) -> Any:
        head_value = backend.emit_load(routine.head, routine.head_type, "load_head")
        return backend.emit_cell_address(routine.tape, head_value, "cell_ptr")

    def _load_cell(self, backend: Backend, routine: _Routine) -> Tuple[Any, Any]:
        cell = self._cell_address(backend, routine)
        return cell, backend.emit_load(cell, routine.cell_type, "cell")

    @staticmethod
    def _resolve(backend: Backend, name: str) -> Any:
        routine = backend.get_function(name)
        if routine is None:
            raise LibraryLinkageError(name)
        return routine


def compile(instructions: Iterable[Instruction], options: Optional[CompilerOptions] = None) -> str:
    """Generate LLVM IR text for an already parsed program."""
    return CodeGenerator(options).compile(instructions)


def compile_source(source: str, options: Optional[CompilerOptions] = None, offset: int = 0) -> str:
    """Parse ``source`` and generate LLVM IR text for it.

    Parse errors report positions shifted by ``offset``.
    """
    return compile(parse(source, offset=offset), options)


__all__ = [
    "CELL_BITS",
    "CodeGenerator",
    "CompilerOptions",
    "HEAD_BITS",
    "TAPE_LEN",
    "compile",
    "compile_source",
    "default_backend",
]
