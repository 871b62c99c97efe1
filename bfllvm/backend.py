from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Optional, Sequence

from llvmlite import binding, ir

from .errors import BuilderError, OptimizationError

logger = logging.getLogger(__name__)


class Backend:
    """Builder, verifier and optimizer services the code generator relies on.

    Values, types, blocks and routines returned by a backend are opaque to
    the caller; they are only ever passed back into the same backend.
    """

    # --- types and constants ---

    def void_type(self) -> Any:
        raise NotImplementedError

    def int_type(self, bits: int) -> Any:
        raise NotImplementedError

    def array_type(self, element: Any, count: int) -> Any:
        raise NotImplementedError

    def function_type(self, result: Any, params: Sequence[Any]) -> Any:
        raise NotImplementedError

    def const(self, typ: Any, value: int) -> Any:
        raise NotImplementedError

    # --- routines and blocks ---

    def declare_function(self, name: str, fn_type: Any) -> Any:
        raise NotImplementedError

    def get_function(self, name: str) -> Optional[Any]:
        raise NotImplementedError

    def create_block(self, routine: Any, name: str) -> Any:
        raise NotImplementedError

    def position_at_end(self, block: Any) -> None:
        raise NotImplementedError

    # --- instructions ---

    def emit_alloca(self, typ: Any, name: str, zero_init: bool = False) -> Any:
        raise NotImplementedError

    def emit_load(self, ptr: Any, typ: Any, name: str) -> Any:
        raise NotImplementedError

    def emit_store(self, value: Any, ptr: Any) -> None:
        raise NotImplementedError

    def emit_arith(self, op: str, value: Any, amount: int, name: str) -> Any:
        raise NotImplementedError

    def emit_cell_address(self, array: Any, index: Any, name: str) -> Any:
        raise NotImplementedError

    def emit_compare(self, op: str, value: Any, rhs: int, name: str) -> Any:
        raise NotImplementedError

    def emit_branch(self, target: Any) -> None:
        raise NotImplementedError

    def emit_cond_branch(self, cond: Any, if_true: Any, if_false: Any) -> None:
        raise NotImplementedError

    def emit_call(self, routine: Any, args: Sequence[Any], name: str) -> Any:
        raise NotImplementedError

    def emit_return(self) -> None:
        raise NotImplementedError

    # --- post-generation ---

    def verify(self, routine: Any) -> bool:
        raise NotImplementedError

    def run_passes(self, routine: Any) -> None:
        raise NotImplementedError

    def serialize(self) -> str:
        raise NotImplementedError


def _builder_call(method: Callable) -> Callable:
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except (TypeError, ValueError, AssertionError, AttributeError) as exc:
            raise BuilderError(exc) from exc

    return wrapper


_ARITH_OPS = {"add", "sub"}
_COMPARE_OPS = {"==", "!=", "<", "<=", ">", ">="}


class LlvmliteBackend(Backend):
    """Backend producing LLVM IR through ``llvmlite``.

    ``llvmlite.ir`` builds the module; ``llvmlite.binding`` verifies it and
    runs the optimization pipeline when ``opt_level`` is above zero.
    """

    def __init__(
        self,
        module_name: str = "bf",
        target_triple: Optional[str] = None,
        opt_level: int = 0,
    ) -> None:
        self.module = ir.Module(name=module_name)
        self.module.triple = target_triple or binding.get_default_triple()
        self.opt_level = opt_level
        self._builder = ir.IRBuilder()
        self._optimized: Optional[str] = None

    def void_type(self) -> ir.Type:
        return ir.VoidType()

    def int_type(self, bits: int) -> ir.IntType:
        return ir.IntType(bits)

    def array_type(self, element: ir.Type, count: int) -> ir.ArrayType:
        return ir.ArrayType(element, count)

    def function_type(self, result: ir.Type, params: Sequence[ir.Type]) -> ir.FunctionType:
        return ir.FunctionType(result, list(params))

    def const(self, typ: ir.Type, value: int) -> ir.Constant:
        return ir.Constant(typ, value)

    def declare_function(self, name: str, fn_type: ir.FunctionType) -> ir.Function:
        return ir.Function(self.module, fn_type, name=name)

    def get_function(self, name: str) -> Optional[ir.Function]:
        value = self.module.globals.get(name)
        if isinstance(value, ir.Function):
            return value
        return None

    def create_block(self, routine: ir.Function, name: str) -> ir.Block:
        return routine.append_basic_block(name=name)

    def position_at_end(self, block: ir.Block) -> None:
        self._builder.position_at_end(block)

    @_builder_call
    def emit_alloca(self, typ: ir.Type, name: str, zero_init: bool = False) -> ir.Value:
        ptr = self._builder.alloca(typ, name=name)
        if zero_init:
            self._emit_zero_fill(ptr, typ)
        return ptr

    def _emit_zero_fill(self, ptr: ir.Value, typ: ir.Type) -> None:
        i32 = ir.IntType(32)
        if isinstance(typ, ir.ArrayType):
            start = self._builder.gep(
                ptr,
                [ir.Constant(i32, 0), ir.Constant(i32, 0)],
                inbounds=True,
                name=f"{ptr.name}_start",
            )
            size = typ.count * (typ.element.width // 8)
        else:
            start = ptr
            size = typ.width // 8
        memset = self.module.declare_intrinsic("llvm.memset", [start.type, i32])
        self._builder.call(
            memset,
            [
                start,
                ir.Constant(ir.IntType(8), 0),
                ir.Constant(i32, size),
                ir.Constant(ir.IntType(1), 0),
            ],
        )

    @_builder_call
    def emit_load(self, ptr: ir.Value, typ: ir.Type, name: str) -> ir.Value:
        return self._builder.load(ptr, name=name, typ=typ)

    @_builder_call
    def emit_store(self, value: ir.Value, ptr: ir.Value) -> None:
        self._builder.store(value, ptr)

    @_builder_call
    def emit_arith(self, op: str, value: ir.Value, amount: int, name: str) -> ir.Value:
        if op not in _ARITH_OPS:
            raise ValueError(f"Unsupported arithmetic operation: {op}")
        # No nuw/nsw flags: the result wraps modulo 2**width.
        operand = ir.Constant(value.type, amount)
        if op == "add":
            return self._builder.add(value, operand, name=name)
        return self._builder.sub(value, operand, name=name)

    @_builder_call
    def emit_cell_address(self, array: ir.Value, index: ir.Value, name: str) -> ir.Value:
        # GEP indices are signed; widen first so the top half of the tape stays reachable.
        i32 = ir.IntType(32)
        wide = self._builder.zext(index, i32, name=f"{name}_index")
        return self._builder.gep(
            array,
            [ir.Constant(i32, 0), wide],
            inbounds=True,
            name=name,
        )

    @_builder_call
    def emit_compare(self, op: str, value: ir.Value, rhs: int, name: str) -> ir.Value:
        if op not in _COMPARE_OPS:
            raise ValueError(f"Unsupported comparison: {op}")
        return self._builder.icmp_unsigned(op, value, ir.Constant(value.type, rhs), name=name)

    @_builder_call
    def emit_branch(self, target: ir.Block) -> None:
        self._builder.branch(target)

    @_builder_call
    def emit_cond_branch(self, cond: ir.Value, if_true: ir.Block, if_false: ir.Block) -> None:
        self._builder.cbranch(cond, if_true, if_false)

    @_builder_call
    def emit_call(self, routine: ir.Function, args: Sequence[ir.Value], name: str) -> ir.Value:
        return self._builder.call(routine, list(args), name=name)

    @_builder_call
    def emit_return(self) -> None:
        self._builder.ret_void()

    def verify(self, routine: ir.Function) -> bool:
        try:
            parsed = binding.parse_assembly(str(self.module))
            parsed.verify()
        except RuntimeError as exc:
            logger.warning("verification of %s failed: %s", routine.name, exc)
            return False
        return True

    def run_passes(self, routine: ir.Function) -> None:
        if self.opt_level <= 0:
            logger.debug("opt level 0, leaving %s untouched", routine.name)
            return
        binding.initialize_native_target()
        binding.initialize_native_asmprinter()
        try:
            parsed = binding.parse_assembly(str(self.module))
            parsed.verify()
            # Only the host target is registered; other triples fail here.
            target = binding.Target.from_triple(self.module.triple)
            target_machine = target.create_target_machine()
            tuning = binding.create_pipeline_tuning_options(speed_level=self.opt_level)
            pass_builder = binding.create_pass_builder(target_machine, tuning)
            pass_builder.getModulePassManager().run(parsed, pass_builder)
        except (RuntimeError, TypeError, ValueError) as exc:
            raise OptimizationError(self.opt_level, exc) from exc
        logger.debug("ran O%d module pipeline for %s", self.opt_level, routine.name)
        self._optimized = str(parsed)

    def serialize(self) -> str:
        if self._optimized is not None:
            return self._optimized
        return str(self.module)


__all__ = ["Backend", "LlvmliteBackend"]
