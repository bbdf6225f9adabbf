"""
Call shapes and their per-target renderers.

A call is one of two shapes: ``Dispatch`` routes a single request to the
matching clause by its type, ``NamedClause`` invokes a clause of the
contract by name. Renderers turn a shape into a callable bound to the
namespace of executed logic; no call text is ever assembled.
"""
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from clause_runtime.errors import SandboxRuntimeError, UnsupportedTargetError
from clause_runtime.logic.compiler import DISPATCH_FUNCTION

# Keys of the runtime bindings in a call bundle
RESERVED_PREFIX = "__"
NOW_KEY = "__now"
OPTIONS_KEY = "__options"
CONTRACT_KEY = "__contract"
STATE_KEY = "__state"
EMIT_KEY = "__emit"


@dataclass(frozen=True)
class Dispatch:
    """Dispatch by request type."""


@dataclass(frozen=True)
class NamedClause:
    """Invoke the named clause with parameters."""

    name: str

    def __post_init__(self):
        if not self.name.isidentifier() or self.name.startswith("_"):
            raise ValueError(f"Invalid clause name: {self.name!r}")


CallShape = Dispatch | NamedClause


@dataclass(frozen=True)
class CallDescriptor:
    """A call shape bound to a compile target and contract."""

    shape: CallShape
    target: str
    contract_name: str | None = None

    @property
    def label(self) -> str:
        if isinstance(self.shape, NamedClause):
            return self.shape.name
        return DISPATCH_FUNCTION


class CallRenderer(ABC):
    """Renders call shapes for one target."""

    target: str

    @abstractmethod
    def render(
        self,
        call: CallDescriptor,
        namespace: Mapping[str, Any],
        context: Mapping[str, Any],
    ) -> Callable[[], Any]:
        """
        Bind a call to executed logic.

        Args:
            call: Call to render
            namespace: Globals of the executed logic
            context: Invocation context (``now``, ``options``, ``data``,
                ``state``, ``emit`` and ``request`` or ``params``)

        Returns:
            Zero-argument callable performing the call
        """
        pass


class PythonCallRenderer(CallRenderer):
    """
    Renders calls against Python target logic.

    Clauses receive a single bundle mapping. Runtime bindings use reserved
    keys (``__now``, ``__options``, ``__contract``, ``__state`` and
    ``__emit``) that parameters cannot shadow; the rest is ``request`` for
    dispatch or the clause parameters for named clauses.
    """

    target = "python"

    def render(
        self,
        call: CallDescriptor,
        namespace: Mapping[str, Any],
        context: Mapping[str, Any],
    ) -> Callable[[], Any]:
        bindings = {
            NOW_KEY: context["now"],
            OPTIONS_KEY: context["options"],
            CONTRACT_KEY: context["data"],
            STATE_KEY: context["state"],
            EMIT_KEY: context["emit"],
        }

        if isinstance(call.shape, Dispatch):
            dispatch = namespace.get(DISPATCH_FUNCTION)
            if not callable(dispatch):
                raise SandboxRuntimeError("Compiled logic does not define a dispatch function")
            bundle = {"request": context["request"], **bindings}
            return lambda: dispatch(bundle)

        contract_class = namespace.get(call.contract_name) if call.contract_name else None
        if not isinstance(contract_class, type):
            raise SandboxRuntimeError(f"Compiled logic does not define contract {call.contract_name}")
        clause_name = call.shape.name
        if not callable(getattr(contract_class, clause_name, None)):
            raise SandboxRuntimeError(f"Contract {call.contract_name} has no clause {clause_name}")

        # Reserved bindings take precedence over parameters
        bundle = {**(context.get("params") or {}), **bindings}

        def invoke_clause() -> Any:
            return getattr(contract_class(), clause_name)(bundle)

        return invoke_clause


RENDERERS: dict[str, CallRenderer] = {
    PythonCallRenderer.target: PythonCallRenderer(),
}


def get_renderer(target: str) -> CallRenderer:
    """
    Raises:
        UnsupportedTargetError: If the target has no call renderer
    """
    renderer = RENDERERS.get(target)
    if renderer is None:
        raise UnsupportedTargetError(target, f"No call renderer for target {target}")
    return renderer
