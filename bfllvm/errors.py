from __future__ import annotations

from typing import Optional


# === Parse-time errors ===


class ParseError(Exception):
    pass


class UndelimitedJump(ParseError):
    """A loop bracket without a matching partner.

    ``position`` is a character index into the original source, never into
    a loop body, so nested failures point at the right column.
    """

    def __init__(self, position: int) -> None:
        super().__init__(f"Unmatched jump at position {position}.")
        self.position = position


# === Generation-time errors ===


class CompileError(Exception):
    pass


class BuilderError(CompileError):
    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"LLVM builder error: {cause}")
        self.cause = cause


class FunctionVerifyError(CompileError):
    def __init__(self, detail: Optional[str] = None) -> None:
        message = "Generated function failed LLVM verification."
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)
        self.detail = detail


class OptimizationError(CompileError):
    def __init__(self, opt_level: int, cause: BaseException) -> None:
        super().__init__(f"LLVM O{opt_level} pipeline failed: {cause}")
        self.opt_level = opt_level
        self.cause = cause


class UnbalancedLoopError(CompileError):
    def __init__(self) -> None:
        super().__init__("Invalid loop.")


class LibraryLinkageError(CompileError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Failed to find function {name!r}.")
        self.name = name


__all__ = [
    "BuilderError",
    "CompileError",
    "FunctionVerifyError",
    "LibraryLinkageError",
    "OptimizationError",
    "ParseError",
    "UnbalancedLoopError",
    "UndelimitedJump",
]
