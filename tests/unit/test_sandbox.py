"""Unit tests for the sandbox evaluators."""
import threading
import time
from datetime import datetime, timezone
from types import MappingProxyType

import pytest

from clause_runtime.boxing import unbox
from clause_runtime.engine.sandbox import (
    DirectEvaluator,
    IsolatedEvaluator,
    create_evaluator,
    freeze,
)
from clause_runtime.errors import CompileError, ExecutionTimeoutError, SandboxRuntimeError
from clause_runtime.logic import CallDescriptor, Dispatch, NamedClause

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)
STATE = {"$class": ["org.accordproject.runtime.State"], "$data": {}}


def _invoke(clause):
    return CallDescriptor(shape=NamedClause(clause), target="python", contract_name="HelloWorld")


def _run(evaluator, executable, call, context=None, timeout_s=1.0):
    context = context or {"data": None, "state": STATE, "params": {}}
    return evaluator.run(0, NOW, None, context, executable, call, timeout_s)


@pytest.fixture
def isolated(hello_logic):
    evaluator = IsolatedEvaluator()
    return evaluator, evaluator.compile(hello_logic)


def test_freeze_makes_values_read_only():
    """Test that mappings become proxies and sequences tuples, recursively."""
    frozen = freeze({"a": [1, {"b": 2}]})

    assert isinstance(frozen, MappingProxyType)
    assert isinstance(frozen["a"], tuple)
    assert isinstance(frozen["a"][1], MappingProxyType)
    assert dict(frozen["a"][1]) == {"b": 2}
    with pytest.raises(TypeError):
        frozen["a"] = 1


def test_compile_reports_syntax_errors():
    with pytest.raises(CompileError) as exc_info:
        IsolatedEvaluator().compile("def broken(:\n")

    assert exc_info.value.line == 1


def test_compile_digest_is_stable(hello_logic):
    evaluator = IsolatedEvaluator()

    assert evaluator.compile(hello_logic).digest == evaluator.compile(hello_logic).digest


def test_run_named_clause(isolated):
    evaluator, executable = isolated
    request = {"$class": ["org.acme.test.Foo"], "$data": {"amount": 3.14}}

    result = _run(evaluator, executable, _invoke("bar"), {"data": None, "state": STATE, "params": {"request": request}})

    assert unbox(result.response) == request
    assert unbox(result.state) == STATE
    assert unbox(result.emit) == []


def test_run_dispatch(isolated):
    evaluator, executable = isolated
    request = {"$class": ["org.acme.test.MyRequest"], "$data": {"input": "world"}}
    call = CallDescriptor(shape=Dispatch(), target="python", contract_name="HelloWorld")

    result = _run(evaluator, executable, call, {"data": None, "state": STATE, "request": request})

    assert result.response == {"$class": "org.acme.test.MyResponse", "output": "Hello world"}


def test_logic_error_becomes_runtime_error(isolated):
    """Test that an $error result is raised as a runtime error."""
    evaluator, executable = isolated

    with pytest.raises(SandboxRuntimeError, match="Payment is overdue") as exc_info:
        _run(evaluator, executable, _invoke("fail"))
    assert exc_info.value.kind == "isolated"


def test_exception_in_logic_is_wrapped(isolated):
    evaluator, executable = isolated

    with pytest.raises(SandboxRuntimeError, match="ZeroDivisionError") as exc_info:
        _run(evaluator, executable, _invoke("crash"))
    assert isinstance(exc_info.value.__cause__, ZeroDivisionError)


def test_imports_are_blocked(isolated):
    evaluator, executable = isolated

    with pytest.raises(SandboxRuntimeError, match="ImportError"):
        _run(evaluator, executable, _invoke("sneak"))


def test_injected_context_cannot_be_mutated(isolated):
    evaluator, executable = isolated

    with pytest.raises(SandboxRuntimeError, match="TypeError"):
        _run(evaluator, executable, _invoke("mutate"))
    assert STATE == {"$class": ["org.accordproject.runtime.State"], "$data": {}}


def test_missing_clause(isolated):
    evaluator, executable = isolated

    with pytest.raises(SandboxRuntimeError, match="has no clause missing"):
        _run(evaluator, executable, _invoke("missing"))


def test_unbounded_loop_times_out(isolated):
    """Test that a runaway clause is interrupted within its budget."""
    evaluator, executable = isolated

    started = time.monotonic()
    with pytest.raises(ExecutionTimeoutError) as exc_info:
        _run(evaluator, executable, _invoke("spin"), timeout_s=0.2)

    assert time.monotonic() - started < 2.0
    assert isinstance(exc_info.value, TimeoutError)
    assert exc_info.value.timeout_s == 0.2


def test_unbounded_loop_times_out_off_main_thread(isolated):
    """Test the deadline outside the main thread, where signals are unavailable."""
    evaluator, executable = isolated
    errors = []

    def worker():
        try:
            _run(evaluator, executable, _invoke("spin"), timeout_s=0.2)
        except ExecutionTimeoutError as e:
            errors.append(e)

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert len(errors) == 1


def test_loop_that_swallows_exceptions_times_out(isolated):
    """Test that catching Exception inside a runaway loop does not hold off the deadline."""
    evaluator, executable = isolated

    started = time.monotonic()
    with pytest.raises(ExecutionTimeoutError):
        _run(evaluator, executable, _invoke("stubborn"), timeout_s=0.2)

    assert time.monotonic() - started < 2.0


def test_loop_that_swallows_exceptions_times_out_off_main_thread(isolated):
    evaluator, executable = isolated
    errors = []

    def worker():
        try:
            _run(evaluator, executable, _invoke("stubborn"), timeout_s=0.2)
        except ExecutionTimeoutError as e:
            errors.append(e)

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert len(errors) == 1


@pytest.mark.parametrize(
    "source, message",
    [
        ("try:\n    pass\nexcept:\n    pass\n", "bare except"),
        ("try:\n    pass\nexcept (ValueError, BaseException):\n    pass\n", "except may only name"),
        ("try:\n    pass\nexcept Exception.__base__:\n    pass\n", "except may only name"),
        ("try:\n    pass\nfinally:\n    pass\n", "finally"),
        ("Exception = ValueError\n", "Exception cannot be rebound"),
        ("with open('x') as f:\n    pass\n", "with statements"),
        ("x = ().__class__\n", "__class__"),
        ("f = __import__\n", "__import__"),
        ("class Leaky:\n    def __del__(self):\n        pass\n", "finalizers"),
    ],
)
def test_compile_rejects_constructs_that_hold_off_the_deadline(source, message):
    with pytest.raises(CompileError, match=message):
        IsolatedEvaluator().compile(source)


def test_compile_accepts_builtin_exception_handlers():
    source = (
        "class Safe:\n"
        "    def __init__(self):\n"
        "        super().__init__()\n"
        "\n"
        "    def parse(self, ctx):\n"
        "        try:\n"
        "            value = int(ctx['raw'])\n"
        "        except (TypeError, ValueError) as e:\n"
        "            value = 0\n"
        "        return {'response': value, 'state': ctx['__state']}\n"
    )
    evaluator = IsolatedEvaluator()
    call = CallDescriptor(shape=NamedClause("parse"), target="python", contract_name="Safe")

    result = _run(evaluator, evaluator.compile(source), call, {"data": None, "state": STATE, "params": {"raw": "x"}})

    assert result.response == 0


def test_direct_evaluator_does_not_restrict_handlers():
    assert DirectEvaluator().compile("try:\n    pass\nfinally:\n    pass\n").digest


def test_oversized_range_is_rejected(isolated):
    """Test that a single builtin call cannot spend the budget in C."""
    evaluator, executable = isolated

    started = time.monotonic()
    with pytest.raises(SandboxRuntimeError, match="exceeds the sandbox limit"):
        _run(evaluator, executable, _invoke("total"), timeout_s=0.5)

    assert time.monotonic() - started < 0.5


def test_range_within_limit():
    evaluator = IsolatedEvaluator()
    executable = evaluator.compile(
        "class Sums:\n"
        "    def total(self, ctx):\n"
        "        return {'response': sum(range(1, 101)), 'state': ctx['__state']}\n"
    )
    call = CallDescriptor(shape=NamedClause("total"), target="python", contract_name="Sums")

    assert _run(evaluator, executable, call).response == 5050


def test_no_state_leaks_between_runs():
    """Test that module globals start fresh on every run."""
    evaluator = IsolatedEvaluator()
    executable = evaluator.compile(
        "CALLS = []\n"
        "\n"
        "class Tally:\n"
        "    def count(self, ctx):\n"
        "        CALLS.append(1)\n"
        "        return {'response': len(CALLS), 'state': ctx['__state']}\n"
    )
    call = CallDescriptor(shape=NamedClause("count"), target="python", contract_name="Tally")

    first = _run(evaluator, executable, call)
    second = _run(evaluator, executable, call)

    assert first.response == second.response == 1
    assert unbox(second.emit) == []


def test_direct_evaluator_allows_imports(hello_logic):
    """Test that trusted logic runs with full builtins."""
    evaluator = DirectEvaluator()

    result = _run(evaluator, evaluator.compile(hello_logic), _invoke("sneak"))

    assert isinstance(result.response, str)


def test_create_evaluator():
    assert create_evaluator("isolated").kind == "isolated"
    assert create_evaluator("direct").kind == "direct"
    with pytest.raises(ValueError, match="Unknown evaluator"):
        create_evaluator("remote")
