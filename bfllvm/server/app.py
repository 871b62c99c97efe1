from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, status
from pydantic import BaseModel, Field, validator

from bfllvm.backend import Backend
from bfllvm.codegen import TAPE_LEN, CodeGenerator, CompilerOptions, default_backend
from bfllvm.errors import CompileError, UndelimitedJump
from bfllvm.parser import count_instructions, loop_depth, parse

logger = logging.getLogger(__name__)


class CompileRequest(BaseModel):
    source: str = ""
    opt_level: int = Field(default=0, ge=0, le=3)
    target_triple: Optional[str] = None

    @validator("target_triple")
    def normalize_triple(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None


class CompileResponse(BaseModel):
    ir: str
    instruction_count: int
    loop_depth: int


class HealthResponse(BaseModel):
    status: str
    tape_len: int


def create_app(
    backend_factory: Callable[[CompilerOptions], Backend] = default_backend,
) -> FastAPI:
    app = FastAPI(title="bfllvm compile API", version="0.1.0")

    @app.get("/api/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok", tape_len=TAPE_LEN)

    @app.post("/api/compile", response_model=CompileResponse)
    def compile_program(payload: CompileRequest) -> CompileResponse:
        try:
            instructions = parse(payload.source)
        except UndelimitedJump as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={"message": str(exc), "position": exc.position},
            ) from exc

        options = CompilerOptions(opt_level=payload.opt_level, target_triple=payload.target_triple)
        try:
            llvm_ir = CodeGenerator(options, backend_factory).compile(instructions)
        except CompileError as exc:
            logger.error("code generation failed: %s", exc)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=str(exc),
            ) from exc

        return CompileResponse(
            ir=llvm_ir,
            instruction_count=count_instructions(instructions),
            loop_depth=loop_depth(instructions),
        )

    return app


__all__ = ["CompileRequest", "CompileResponse", "create_app"]
