"""Model file parsing and type declarations."""
import re
from enum import Enum
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from clause_runtime.errors import ModelError

PRIMITIVE_TYPES = frozenset({"String", "Boolean", "Integer", "Long", "Double", "DateTime"})

_FIELD_PATTERN = re.compile(
    r"^\s*(?P<relationship>-->)?\s*(?P<type>[A-Za-z_][\w.]*)\s*(?P<array>\[\])?\s*(?P<optional>\?)?\s*$"
)


class DeclarationKind(str, Enum):
    """Kinds of type declarations."""

    CONCEPT = "concept"
    ASSET = "asset"
    PARTICIPANT = "participant"
    TRANSACTION = "transaction"
    EVENT = "event"
    ENUM = "enum"


class FieldDeclaration(BaseModel):
    """A field of a type declaration."""

    name: str = Field(..., description="Field name")
    type: str = Field(..., description="Primitive type, or declared type name")
    array: bool = Field(default=False, description="Field holds an ordered collection")
    optional: bool = Field(default=False, description="Field may be absent")
    relationship: bool = Field(
        default=False,
        description="Field references an identified instance",
    )
    default: Any = Field(default=None, description="Default used by the factory")

    @property
    def is_primitive(self) -> bool:
        return self.type in PRIMITIVE_TYPES


class TypeDeclaration(BaseModel):
    """A type declared in a model file."""

    model_config = ConfigDict(populate_by_name=True)

    namespace: str = Field(..., description="Declaring namespace")
    name: str = Field(..., description="Short type name")
    kind: DeclarationKind = Field(default=DeclarationKind.CONCEPT)
    abstract: bool = Field(default=False)
    extends: str | None = Field(default=None, description="Super type as written")
    identified_by: str | None = Field(default=None, alias="identifiedBy")
    fields: list[FieldDeclaration] = Field(default_factory=list)
    values: list[str] = Field(default_factory=list, description="Enum values")

    @property
    def fqn(self) -> str:
        return f"{self.namespace}.{self.name}"


def parse_field(name: str, spec: Any) -> FieldDeclaration:
    """
    Parse a field specification.

    Accepts the short string form (``Double``, ``Integer[]``, ``String?``,
    ``--> Party``) or a mapping with ``type`` plus optional ``optional`` and
    ``default`` keys, where ``type`` may itself use the short form.

    Raises:
        ModelError: If the specification cannot be parsed
    """
    extra: dict[str, Any] = {}
    if isinstance(spec, dict):
        extra = {k: v for k, v in spec.items() if k != "type"}
        spec = spec.get("type")
    if not isinstance(spec, str):
        raise ModelError(f"Invalid type for field {name}: {spec!r}")

    match = _FIELD_PATTERN.match(spec)
    if match is None:
        raise ModelError(f"Invalid type for field {name}: {spec!r}")

    try:
        return FieldDeclaration(
            name=name,
            type=match.group("type"),
            array=bool(match.group("array")),
            optional=bool(match.group("optional")) or bool(extra.pop("optional", False)),
            relationship=bool(match.group("relationship")),
            **extra,
        )
    except PydanticValidationError as e:
        raise ModelError(f"Invalid declaration for field {name}: {e}") from e


class ModelFile:
    """
    A parsed model file.

    Model files are YAML documents::

        namespace: org.acme.test
        imports:
          - org.acme.common.*
        types:
          Foo:
            kind: transaction
            extends: org.accordproject.runtime.Request
            fields:
              amount: Double
              party: --> Party
    """

    def __init__(self, content: str, name: str | None = None):
        self.name = name
        self.definitions = content

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ModelError(f"Cannot parse model file {name}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("namespace"), str):
            raise ModelError(f"Model file {name} does not declare a namespace")

        self.namespace: str = data["namespace"]
        self.imports: list[str] = list(data.get("imports") or [])
        self.declarations: dict[str, TypeDeclaration] = {}

        for type_name, body in (data.get("types") or {}).items():
            self.declarations[type_name] = self._parse_declaration(type_name, body or {})

    def _parse_declaration(self, type_name: str, body: dict[str, Any]) -> TypeDeclaration:
        if not isinstance(body, dict):
            raise ModelError(f"Invalid declaration for {self.namespace}.{type_name}")

        fields = [
            parse_field(field_name, spec)
            for field_name, spec in (body.get("fields") or {}).items()
        ]
        try:
            return TypeDeclaration(
                namespace=self.namespace,
                name=type_name,
                kind=body.get("kind", DeclarationKind.CONCEPT),
                abstract=body.get("abstract", False),
                extends=body.get("extends"),
                identifiedBy=body.get("identifiedBy"),
                fields=fields,
                values=body.get("values") or [],
            )
        except PydanticValidationError as e:
            raise ModelError(f"Invalid declaration for {self.namespace}.{type_name}: {e}") from e

    def get_namespace(self) -> str:
        return self.namespace

    def get_name(self) -> str | None:
        return self.name

    def get_definitions(self) -> str:
        return self.definitions

    def __repr__(self) -> str:
        return f"ModelFile({self.namespace!r}, name={self.name!r})"
