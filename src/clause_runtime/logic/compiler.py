"""DSL compiler interface and compile targets."""
import ast
from dataclasses import dataclass
from typing import Protocol

from clause_runtime.errors import CompileError, UnsupportedTargetError
from clause_runtime.models import ModelFile

# Compile targets and the extension of their generated code
TARGETS = {
    "python": ".py",
    "es6": ".js",
    "java": ".java",
}

DSL_EXTENSION = ".ergo"
DISPATCH_FUNCTION = "dispatch"


def check_target(target: str) -> None:
    """
    Raises:
        UnsupportedTargetError: If ``target`` is not a known compile target
    """
    if target not in TARGETS:
        raise UnsupportedTargetError(target)


@dataclass(frozen=True)
class CompilerOutput:
    """Code produced by a DSL compiler."""

    code: str
    contract_name: str | None = None


class LogicCompiler(Protocol):
    """Compiles combined DSL source into target-language code."""

    def compile(self, source: str, target: str, models: list[ModelFile]) -> CompilerOutput:
        """
        Raises:
            CompileError: If the source cannot be compiled
        """
        ...


class PythonSourceCompiler:
    """
    Compiler for logic already written in the Python target.

    The source is passed through unchanged; the script repository checks
    its syntax and discovers the contract name.
    """

    def compile(self, source: str, target: str, models: list[ModelFile]) -> CompilerOutput:
        if target != "python":
            raise CompileError(f"Python source cannot be compiled to target {target}")
        return CompilerOutput(code=source)


@dataclass(frozen=True)
class PythonSourceInfo:
    contract_name: str | None
    has_dispatch: bool


def inspect_python_source(code: str, file_name: str = "main.py") -> PythonSourceInfo:
    """
    Discover the contract class and dispatch function of compiled Python logic.

    The contract is the first top-level class.

    Raises:
        CompileError: If the code is not valid Python
    """
    try:
        tree = ast.parse(code, filename=file_name)
    except SyntaxError as e:
        raise CompileError(f"Invalid compiled logic: {e.msg}", file_name, e.lineno) from e

    contract_name = next(
        (node.name for node in tree.body if isinstance(node, ast.ClassDef)),
        None,
    )
    has_dispatch = any(
        isinstance(node, ast.FunctionDef) and node.name == DISPATCH_FUNCTION
        for node in tree.body
    )
    return PythonSourceInfo(contract_name=contract_name, has_dispatch=has_dispatch)
