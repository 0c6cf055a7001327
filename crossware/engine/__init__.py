"""Execution engine: handler contract and the pipeline driver."""

from crossware.engine.chain import Pipeline, RunResult, create_pipeline, pipe
from crossware.engine.handler import (
    CONTINUE,
    Continue,
    FunctionHandler,
    Handler,
    HandlerFunc,
    NextFunction,
    Outcome,
    Stop,
    create_handler,
    wrap_handler,
)

__all__ = [
    "CONTINUE",
    "Continue",
    "FunctionHandler",
    "Handler",
    "HandlerFunc",
    "NextFunction",
    "Outcome",
    "Pipeline",
    "RunResult",
    "Stop",
    "create_handler",
    "create_pipeline",
    "pipe",
    "wrap_handler",
]
