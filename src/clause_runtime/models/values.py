"""Typed values produced by the serializer and the factory."""
from dataclasses import dataclass, field
from typing import Any

from clause_runtime.errors import ValidationError

RESOURCE_SCHEME = "resource:"


def join_path(path: str, name: str | int) -> str:
    """Extend a field path with a property name or an array index."""
    if isinstance(name, int):
        return f"{path}[{name}]"
    return f"{path}.{name}" if path else name


@dataclass
class TypedValue:
    """An instance of a declared type."""

    fqn: str
    data: dict[str, Any] = field(default_factory=dict)
    identifier: str | None = None

    @property
    def namespace(self) -> str:
        return self.fqn.rpartition(".")[0]

    @property
    def type_name(self) -> str:
        return self.fqn.rpartition(".")[2]

    def to_relationship(self) -> "Relationship":
        if self.identifier is None:
            raise ValidationError(f"Instance of {self.fqn} has no identifier")
        return Relationship(self.fqn, self.identifier)


@dataclass(frozen=True)
class Relationship:
    """A reference to an identified instance, ``resource:Namespace.Type#id``."""

    fqn: str
    identifier: str

    def to_uri(self) -> str:
        return f"{RESOURCE_SCHEME}{self.fqn}#{self.identifier}"

    @classmethod
    def from_uri(cls, uri: str, default_fqn: str, path: str | None = None) -> "Relationship":
        """
        Parse a relationship reference.

        A bare identifier (no ``resource:`` scheme) refers to ``default_fqn``.

        Raises:
            ValidationError: If the reference is malformed
        """
        if not uri.startswith(RESOURCE_SCHEME):
            if not uri:
                raise ValidationError("Empty relationship identifier", path)
            return cls(default_fqn, uri)

        fqn, sep, identifier = uri[len(RESOURCE_SCHEME):].partition("#")
        if not sep or not fqn or not identifier:
            raise ValidationError(f"Invalid relationship reference {uri!r}", path)
        return cls(fqn, identifier)
