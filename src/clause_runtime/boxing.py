"""
Boxing codec between wire JSON and the representation used by compiled logic.

Natural numbers are wrapped as ``{"$nat": n}`` and ordered collections as
``{"$coll": [...], "$length": n}``. The ``$class`` discriminator is never
boxed. Both directions are pure and total; ``unbox`` also accepts the
read-only mappings and tuples produced by the isolated sandbox.
"""
from collections.abc import Mapping
from typing import Any

NAT = "$nat"
COLL = "$coll"
LENGTH = "$length"
CLASS = "$class"


def empty_collection() -> dict[str, Any]:
    """Return the boxed empty collection used to seed the emit accumulator."""
    return {COLL: [], LENGTH: 0}


def is_boxed_nat(value: Any) -> bool:
    return isinstance(value, Mapping) and len(value) == 1 and NAT in value


def is_boxed_coll(value: Any) -> bool:
    return isinstance(value, Mapping) and len(value) == 2 and COLL in value and LENGTH in value


def box(value: Any) -> Any:
    """Box a wire JSON value."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return {NAT: value}
    if isinstance(value, (list, tuple)):
        items = [box(item) for item in value]
        return {COLL: items, LENGTH: len(items)}
    if isinstance(value, Mapping):
        return {
            key: (item if key == CLASS else box(item))
            for key, item in value.items()
        }
    return value


def unbox(value: Any) -> Any:
    """Unbox a value produced by compiled logic back to wire JSON."""
    if is_boxed_nat(value):
        return value[NAT]
    if is_boxed_coll(value):
        return [unbox(item) for item in value[COLL]]
    if isinstance(value, Mapping):
        return {key: _unbox_entry(key, item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [unbox(item) for item in value]
    return value


def _unbox_entry(key: str, item: Any) -> Any:
    if key != CLASS:
        return unbox(item)
    # A frozen polymorphic $class arrives as a tuple
    return list(item) if isinstance(item, tuple) else item
