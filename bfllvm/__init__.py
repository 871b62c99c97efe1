from .codegen import TAPE_LEN, CodeGenerator, CompilerOptions, compile, compile_source
from .errors import (
    BuilderError,
    CompileError,
    FunctionVerifyError,
    LibraryLinkageError,
    OptimizationError,
    ParseError,
    UnbalancedLoopError,
    UndelimitedJump,
)
from .parser import (
    Decrement,
    Increment,
    Input,
    Instruction,
    Loop,
    MoveLeft,
    MoveRight,
    Output,
    parse,
)

__all__ = [
    "BuilderError",
    "CodeGenerator",
    "CompileError",
    "CompilerOptions",
    "Decrement",
    "FunctionVerifyError",
    "Increment",
    "Input",
    "Instruction",
    "LibraryLinkageError",
    "Loop",
    "MoveLeft",
    "MoveRight",
    "OptimizationError",
    "Output",
    "ParseError",
    "TAPE_LEN",
    "UnbalancedLoopError",
    "UndelimitedJump",
    "compile",
    "compile_source",
    "parse",
]
