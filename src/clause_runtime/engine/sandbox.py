"""
Sandboxed evaluation of compiled Python logic.

Two evaluators share one interface: ``IsolatedEvaluator`` freezes the injected
context, restricts builtins, rejects constructs that could hold off its interrupt
and enforces a wall-clock budget;
``DirectEvaluator`` runs trusted logic as is.
"""
import ast
import builtins
import hashlib
import signal
import sys
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from types import CodeType, MappingProxyType
from typing import Any

from clause_runtime.boxing import empty_collection
from clause_runtime.errors import (
    CompileError,
    EngineError,
    ExecutionTimeoutError,
    SandboxRuntimeError,
)
from clause_runtime.logic.calls import CallDescriptor, get_renderer
from clause_runtime.observability import get_logger

logger = get_logger(__name__)

CONTRACT_FILENAME = "<contract>"
ERROR_KEY = "$error"

# Re-fire interval once the budget is spent
_TIMER_INTERVAL_S = 0.05

# Longest range isolated logic may build; sum, sorted and friends run it in C
MAX_RANGE_LENGTH = 1_000_000

_SAFE_BUILTIN_NAMES = (
    "__build_class__",
    "abs", "all", "any", "bool", "classmethod", "dict", "divmod", "enumerate",
    "filter", "float", "frozenset", "int", "isinstance", "issubclass", "iter",
    "len", "list", "map", "max", "min", "next", "object", "property", "range",
    "repr", "reversed", "round", "set", "sorted", "staticmethod", "str", "sum",
    "super", "tuple", "zip",
    "ArithmeticError", "AssertionError", "Exception", "IndexError", "KeyError",
    "LookupError", "StopIteration", "TypeError", "ValueError", "ZeroDivisionError",
)

SAFE_BUILTINS = {name: getattr(builtins, name) for name in _SAFE_BUILTIN_NAMES}

_EXCEPTION_NAMES = frozenset(name for name in _SAFE_BUILTIN_NAMES if name[0].isupper())


def _bounded_range(*args):
    values = range(*args)
    if len(values) > MAX_RANGE_LENGTH:
        raise ValueError(f"range of {len(values)} items exceeds the sandbox limit of {MAX_RANGE_LENGTH}")
    return values


SAFE_BUILTINS["range"] = _bounded_range


class _DeadlineExceeded(BaseException):
    """Interrupts logic that overran its budget. Not catchable as ``Exception``."""


@dataclass(frozen=True)
class Executable:
    """Compiled logic ready to run."""

    code: CodeType
    digest: str


@dataclass(frozen=True)
class SandboxResult:
    """The three logical outputs of a call, still boxed."""

    response: Any
    state: Any
    emit: Any


def freeze(value: Any) -> Any:
    """Return a read-only copy: mappings become proxies, sequences tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    return value


@contextmanager
def _deadline(timeout_s: float) -> Iterator[None]:
    if threading.current_thread() is threading.main_thread() and hasattr(signal, "setitimer"):
        def on_timeout(signum, frame):
            raise _DeadlineExceeded()

        previous = signal.signal(signal.SIGALRM, on_timeout)
        signal.setitimer(signal.ITIMER_REAL, timeout_s, _TIMER_INTERVAL_S)
        try:
            yield
        finally:
            signal.setitimer(signal.ITIMER_REAL, 0)
            signal.signal(signal.SIGALRM, previous)
        return

    # Signals are only delivered to the main thread; elsewhere trace line events
    expires = time.monotonic() + timeout_s

    def tracer(frame, event, arg):
        if time.monotonic() > expires:
            raise _DeadlineExceeded()
        return tracer

    previous_trace = sys.gettrace()
    sys.settrace(tracer)
    try:
        yield
    finally:
        sys.settrace(previous_trace)


class _InterruptGuard(ast.NodeVisitor):
    """
    Rejects constructs that would let isolated logic observe or outlive the
    deadline interrupt. Exception handlers may only name the sandbox's
    built-in exception types, which the interrupt does not derive from.
    """

    def check(self, tree: ast.AST) -> None:
        self.visit(tree)

    def _reject(self, node: ast.AST, message: str) -> None:
        raise CompileError(f"Cannot compile logic: {message}", CONTRACT_FILENAME, getattr(node, "lineno", None))

    def _check_binding(self, node: ast.AST, name: str | None) -> None:
        if name in _EXCEPTION_NAMES:
            self._reject(node, f"{name} cannot be rebound")

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.type is None:
            self._reject(node, "bare except is not allowed")
        caught = node.type.elts if isinstance(node.type, ast.Tuple) else [node.type]
        for item in caught:
            if not (isinstance(item, ast.Name) and item.id in _EXCEPTION_NAMES):
                self._reject(node, f"except may only name {', '.join(sorted(_EXCEPTION_NAMES))}")
        self._check_binding(node, node.name)
        self.generic_visit(node)

    def visit_Try(self, node: ast.Try) -> None:
        if node.finalbody:
            self._reject(node.finalbody[0], "finally is not allowed")
        self.generic_visit(node)

    visit_TryStar = visit_Try

    def visit_With(self, node: ast.AST) -> None:
        self._reject(node, "with statements are not allowed")

    visit_AsyncWith = visit_With

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("__") and node.attr != "__init__":
            self._reject(node, f"access to {node.attr} is not allowed")
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("__"):
            self._reject(node, f"access to {node.id} is not allowed")
        if not isinstance(node.ctx, ast.Load):
            self._check_binding(node, node.id)

    def visit_FunctionDef(self, node: ast.AST) -> None:
        if node.name == "__del__":
            self._reject(node, "finalizers are not allowed")
        self._check_binding(node, node.name)
        self.generic_visit(node)

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self._check_binding(node, node.name)
        self.generic_visit(node)

    def visit_arg(self, node: ast.arg) -> None:
        self._check_binding(node, node.arg)
        self.generic_visit(node)

    def visit_alias(self, node: ast.alias) -> None:
        self._check_binding(node, node.asname or node.name)

    def visit_Global(self, node: ast.AST) -> None:
        for name in node.names:
            self._check_binding(node, name)

    visit_Nonlocal = visit_Global

    def visit_MatchAs(self, node: ast.AST) -> None:
        self._check_binding(node, node.name)
        self.generic_visit(node)

    visit_MatchStar = visit_MatchAs

    def visit_MatchMapping(self, node: ast.AST) -> None:
        self._check_binding(node, node.rest)
        self.generic_visit(node)


class Evaluator(ABC):
    """Compiles and runs Python target logic."""

    kind = "empty"

    def compile(self, source: str) -> Executable:
        """
        Compile logic source into an executable.

        Raises:
            CompileError: If the source is not valid Python
        """
        try:
            code = compile(source, CONTRACT_FILENAME, "exec")
        except SyntaxError as e:
            raise CompileError(f"Cannot compile logic: {e.msg}", CONTRACT_FILENAME, e.lineno) from e
        digest = hashlib.sha256(source.encode("utf-8")).hexdigest()
        logger.debug(f"Compiled executable {digest[:12]} ({self.kind})")
        return Executable(code=code, digest=digest)

    @abstractmethod
    def run(
        self,
        utc_offset: int,
        now: datetime,
        options: Any,
        context: Mapping[str, Any],
        executable: Executable,
        call: CallDescriptor,
        timeout_s: float,
    ) -> SandboxResult:
        """
        Run a call against compiled logic.

        Args:
            utc_offset: UTC offset in minutes for this execution
            now: Definition of 'now'
            options: Boxed options record
            context: Validated ``data``, ``state`` and ``request`` or ``params``
            executable: Compiled logic
            call: Call to perform
            timeout_s: Wall-clock budget in seconds

        Returns:
            Boxed response, state and emitted values

        Raises:
            SandboxRuntimeError: If the logic fails
            ExecutionTimeoutError: If the budget is exceeded
        """
        pass

    def _build_context(self, utc_offset, now, options, context) -> dict[str, Any]:
        return {
            **context,
            "now": now,
            "utc_offset": utc_offset,
            "options": options,
            "emit": empty_collection(),
        }

    def _execute(
        self,
        executable: Executable,
        call: CallDescriptor,
        context: Mapping[str, Any],
        namespace: dict[str, Any],
    ) -> SandboxResult:
        exec(executable.code, namespace)
        perform = get_renderer(call.target).render(call, namespace, context)
        return self._unwrap(perform())

    def _unwrap(self, result: Any) -> SandboxResult:
        if not isinstance(result, Mapping):
            raise SandboxRuntimeError(
                f"Clause returned {type(result).__name__}, expected a mapping with response, state and emit",
                self.kind,
            )
        if ERROR_KEY in result:
            raise SandboxRuntimeError(f"Contract logic raised an error: {result[ERROR_KEY]!r}", self.kind)
        if "state" not in result:
            raise SandboxRuntimeError("Clause result has no state", self.kind)
        return SandboxResult(
            response=result.get("response"),
            state=result["state"],
            emit=result.get("emit", empty_collection()),
        )

    def _runtime_error(self, e: Exception) -> SandboxRuntimeError:
        return SandboxRuntimeError(f"{type(e).__name__}: {e}", self.kind)


class IsolatedEvaluator(Evaluator):
    """
    Runs logic with restricted builtins, a frozen context and a wall-clock
    budget. Each run starts from a fresh module namespace.
    """

    kind = "isolated"

    def compile(self, source: str) -> Executable:
        """
        Compile logic source, rejecting constructs that could hold off the
        deadline interrupt.

        Raises:
            CompileError: If the source is not valid Python or uses such a construct
        """
        executable = super().compile(source)
        _InterruptGuard().check(ast.parse(source, CONTRACT_FILENAME))
        return executable

    def run(self, utc_offset, now, options, context, executable, call, timeout_s) -> SandboxResult:
        frozen = freeze(self._build_context(utc_offset, now, options, context))
        namespace = {"__builtins__": SAFE_BUILTINS, "__name__": "contract_logic"}

        started = time.monotonic()
        try:
            with _deadline(timeout_s):
                result = self._execute(executable, call, frozen, namespace)
        except _DeadlineExceeded as e:
            raise ExecutionTimeoutError(timeout_s, self.kind) from e
        except EngineError:
            raise
        except Exception as e:
            raise self._runtime_error(e) from e

        # Overran inside a single builtin call, where the interrupt cannot land
        if time.monotonic() - started >= timeout_s:
            raise ExecutionTimeoutError(timeout_s, self.kind)
        return result


class DirectEvaluator(Evaluator):
    """Runs trusted logic in-process with full builtins and no timeout."""

    kind = "direct"

    def run(self, utc_offset, now, options, context, executable, call, timeout_s) -> SandboxResult:
        namespace = {"__name__": "contract_logic"}
        try:
            return self._execute(
                executable,
                call,
                self._build_context(utc_offset, now, options, context),
                namespace,
            )
        except EngineError:
            raise
        except Exception as e:
            raise self._runtime_error(e) from e


EVALUATORS: dict[str, type[Evaluator]] = {
    IsolatedEvaluator.kind: IsolatedEvaluator,
    DirectEvaluator.kind: DirectEvaluator,
}


def create_evaluator(kind: str) -> Evaluator:
    """
    Raises:
        ValueError: If ``kind`` is not a known evaluator
    """
    evaluator_class = EVALUATORS.get(kind)
    if evaluator_class is None:
        raise ValueError(f"Unknown evaluator: {kind}")
    return evaluator_class()
