"""Logic package."""
from clause_runtime.logic.calls import (
    CallDescriptor,
    CallRenderer,
    Dispatch,
    NamedClause,
    get_renderer,
)
from clause_runtime.logic.compiler import (
    CompilerOutput,
    LogicCompiler,
    PythonSourceCompiler,
)
from clause_runtime.logic.manager import LogicManager, ValidatedContract
from clause_runtime.logic.scripts import CompiledOutput, Script, ScriptManager

__all__ = [
    "CallDescriptor",
    "CallRenderer",
    "CompiledOutput",
    "CompilerOutput",
    "Dispatch",
    "get_renderer",
    "LogicCompiler",
    "LogicManager",
    "NamedClause",
    "PythonSourceCompiler",
    "Script",
    "ScriptManager",
    "ValidatedContract",
]
