"""Execution engine package."""
from clause_runtime.engine.clock import resolve_current_time
from clause_runtime.engine.engine import Engine
from clause_runtime.engine.sandbox import (
    DirectEvaluator,
    Evaluator,
    Executable,
    IsolatedEvaluator,
    SandboxResult,
    create_evaluator,
)

__all__ = [
    "create_evaluator",
    "DirectEvaluator",
    "Engine",
    "Evaluator",
    "Executable",
    "IsolatedEvaluator",
    "resolve_current_time",
    "SandboxResult",
]
