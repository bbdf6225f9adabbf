"""Structural validation of typed values against the model."""
from datetime import datetime
from typing import Any

from clause_runtime.errors import ValidationError
from clause_runtime.models.declarations import DeclarationKind, FieldDeclaration
from clause_runtime.models.manager import ModelManager
from clause_runtime.models.values import Relationship, TypedValue, join_path


def json_type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def check_primitive(type_name: str, value: Any) -> bool:
    """Whether ``value`` is a valid parsed value for a primitive type."""
    if type_name == "String":
        return isinstance(value, str)
    if type_name == "Boolean":
        return isinstance(value, bool)
    if type_name in ("Integer", "Long"):
        return isinstance(value, int) and not isinstance(value, bool)
    if type_name == "Double":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if type_name == "DateTime":
        return isinstance(value, datetime)
    return False


class ResourceValidator:
    """
    Validates typed values: required fields, primitive types, enum values,
    abstract types, identifiers and relationship targets.
    """

    def __init__(self, model_manager: ModelManager, permit_resources_for_relationships: bool = False):
        self._model_manager = model_manager
        self._permit_resources = permit_resources_for_relationships

    def validate(self, value: TypedValue, path: str = "") -> None:
        """
        Validate a typed value recursively.

        Raises:
            ValidationError: Naming the offending field path
        """
        declaration = self._model_manager.get_type(value.fqn)
        if declaration is None:
            raise ValidationError(f"Type {value.fqn} is not declared", path or None)
        if declaration.abstract:
            raise ValidationError(f"Cannot instantiate abstract type {value.fqn}", path or None)
        if declaration.kind == DeclarationKind.ENUM:
            raise ValidationError(f"Cannot instantiate enum {value.fqn}", path or None)

        properties = {p.name: p for p in self._model_manager.get_properties(value.fqn)}

        for name in value.data:
            if name not in properties:
                raise ValidationError(
                    f"Property {name} is not declared in {value.fqn}",
                    join_path(path, name),
                )

        for name, prop in properties.items():
            field_path = join_path(path, name)
            raw = value.data.get(name)
            if raw is None:
                if not prop.optional:
                    raise ValidationError(
                        f"The instance of {value.fqn} is missing the required field {name}",
                        field_path,
                    )
                continue
            if prop.array:
                if not isinstance(raw, list):
                    raise ValidationError(f"Expected an array, found {json_type_name(raw)}", field_path)
                for index, item in enumerate(raw):
                    self._check_field(prop, item, join_path(field_path, index))
            else:
                self._check_field(prop, raw, field_path)

        identifier_field = self._model_manager.get_identifier_field(value.fqn)
        if identifier_field is not None:
            identifier = value.data.get(identifier_field)
            if not isinstance(identifier, str) or not identifier:
                raise ValidationError(
                    f"Instance of {value.fqn} has an empty identifier",
                    join_path(path, identifier_field),
                )
            if value.identifier != identifier:
                raise ValidationError(
                    f"Identifier of {value.fqn} does not match field {identifier_field}",
                    join_path(path, identifier_field),
                )

    def _check_field(self, prop: FieldDeclaration, raw: Any, path: str) -> None:
        if prop.relationship:
            self._check_relationship(prop, raw, path)
            return

        if prop.is_primitive:
            if not check_primitive(prop.type, raw):
                raise ValidationError(
                    f"Expected a {prop.type}, found {json_type_name(raw)}",
                    path,
                )
            return

        declaration = self._model_manager.require_type(prop.type)
        if declaration.kind == DeclarationKind.ENUM:
            if raw not in declaration.values:
                raise ValidationError(f"Value {raw!r} is not a member of enum {prop.type}", path)
            return

        if not isinstance(raw, TypedValue):
            raise ValidationError(f"Expected an instance of {prop.type}, found {json_type_name(raw)}", path)
        if not self._model_manager.is_assignable(raw.fqn, prop.type):
            raise ValidationError(f"Instance of {raw.fqn} is not assignable to {prop.type}", path)
        self.validate(raw, path)

    def _check_relationship(self, prop: FieldDeclaration, raw: Any, path: str) -> None:
        if isinstance(raw, Relationship):
            target = raw.fqn
        elif isinstance(raw, TypedValue):
            if not self._permit_resources:
                raise ValidationError(
                    f"Embedded instance of {raw.fqn} is not permitted for relationship {prop.name}",
                    path,
                )
            target = raw.fqn
            self.validate(raw, path)
        else:
            raise ValidationError(f"Expected a relationship to {prop.type}, found {json_type_name(raw)}", path)

        if not self._model_manager.is_assignable(target, prop.type):
            raise ValidationError(f"Relationship target {target} is not assignable to {prop.type}", path)
