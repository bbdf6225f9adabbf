"""Conversion between wire JSON and typed values."""
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from clause_runtime.errors import ModelError, ValidationError
from clause_runtime.models.declarations import DeclarationKind, FieldDeclaration
from clause_runtime.models.manager import ModelManager
from clause_runtime.models.validator import ResourceValidator, check_primitive, json_type_name
from clause_runtime.models.values import Relationship, TypedValue, join_path

CLASS_KEY = "$class"
DATA_KEY = "$data"
IDENTIFIER_KEY = "$identifier"


def offset_timezone(utc_offset: int | None) -> timezone:
    """Timezone for an offset given in minutes; UTC when absent."""
    if utc_offset is None:
        return timezone.utc
    return timezone(timedelta(minutes=utc_offset))


def parse_datetime(raw: Any, utc_offset: int | None, path: str | None = None) -> datetime:
    """Parse an ISO 8601 string; naive values are read in ``utc_offset``."""
    if isinstance(raw, datetime):
        parsed = raw
    elif isinstance(raw, str):
        text = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValidationError(f"Invalid DateTime {raw!r}", path) from e
    else:
        raise ValidationError(f"Expected a DateTime, found {json_type_name(raw)}", path)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=offset_timezone(utc_offset))
    return parsed


def format_datetime(value: datetime, utc_offset: int | None) -> str:
    if utc_offset is not None:
        value = value.astimezone(offset_timezone(utc_offset))
    return value.isoformat(timespec="milliseconds")


@dataclass(frozen=True)
class _WriteOptions:
    ergo: bool = False
    permit_resources_for_relationships: bool = False
    convert_resources_to_relationships: bool = False
    convert_resources_to_id: bool = False
    utc_offset: int | None = None


class Serializer:
    """
    Reads and writes typed values as JSON.

    Plain form of an instance::

        {"$class": "org.acme.Foo", "amount": 3.14}

    Ergo form, consumed by compiled logic::

        {"$class": ["org.acme.Foo"], "$data": {"amount": 3.14}}

    Identified instances carry ``$identifier`` inside ``$data`` in ergo form.
    """

    def __init__(self, model_manager: ModelManager):
        self._model_manager = model_manager

    # ------------------------------------------------------------------
    # JSON -> typed value
    # ------------------------------------------------------------------

    def from_json(
        self,
        data: Any,
        *,
        ergo: bool = False,
        validate: bool = True,
        accept_resources_for_relationships: bool = False,
        utc_offset: int | None = None,
    ) -> TypedValue:
        """
        Parse a JSON object into a typed value.

        Args:
            data: JSON object carrying a ``$class`` discriminator
            ergo: Also accept the ergo ``{"$class": [...], "$data": {...}}`` form
            validate: Run the resource validator on the result
            accept_resources_for_relationships: Accept embedded instances
                where a relationship is declared
            utc_offset: Offset in minutes applied to naive DateTime values

        Raises:
            ValidationError: If the JSON does not match the model
        """
        reader = _Reader(self._model_manager, ergo, accept_resources_for_relationships, utc_offset)
        value = reader.read_instance(data, "", None)
        if validate:
            ResourceValidator(
                self._model_manager,
                permit_resources_for_relationships=accept_resources_for_relationships,
            ).validate(value)
        return value

    # ------------------------------------------------------------------
    # typed value -> JSON
    # ------------------------------------------------------------------

    def to_json(
        self,
        value: TypedValue,
        *,
        ergo: bool = False,
        permit_resources_for_relationships: bool = False,
        convert_resources_to_relationships: bool = False,
        convert_resources_to_id: bool = False,
        utc_offset: int | None = None,
    ) -> dict[str, Any]:
        """
        Write a typed value as JSON.

        Args:
            value: Typed value to write
            ergo: Write the ergo form consumed by compiled logic
            permit_resources_for_relationships: Write embedded instances held
                by relationship fields in full
            convert_resources_to_relationships: Write embedded instances held
                by relationship fields as ``resource:`` references
            convert_resources_to_id: Write embedded instances held by
                relationship fields as their bare identifier
            utc_offset: Offset in minutes DateTime values are rendered in

        Raises:
            ValidationError: If a relationship holds an embedded instance and
                no option allows writing it
        """
        if not isinstance(value, TypedValue):
            raise ValidationError(f"Cannot serialize {json_type_name(value)} without a declared type")
        options = _WriteOptions(
            ergo=ergo,
            permit_resources_for_relationships=permit_resources_for_relationships,
            convert_resources_to_relationships=convert_resources_to_relationships,
            convert_resources_to_id=convert_resources_to_id,
            utc_offset=utc_offset,
        )
        return self._write_instance(value, "", options)

    def _write_instance(self, value: TypedValue, path: str, options: _WriteOptions) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        for prop in self._model_manager.get_properties(value.fqn):
            raw = value.data.get(prop.name)
            if raw is None:
                continue
            field_path = join_path(path, prop.name)
            if prop.array:
                fields[prop.name] = [
                    self._write_field(prop, item, join_path(field_path, index), options)
                    for index, item in enumerate(raw)
                ]
            else:
                fields[prop.name] = self._write_field(prop, raw, field_path, options)

        if options.ergo:
            if value.identifier is not None:
                fields[IDENTIFIER_KEY] = value.identifier
            return {CLASS_KEY: [value.fqn], DATA_KEY: fields}
        return {CLASS_KEY: value.fqn, **fields}

    def _write_field(self, prop: FieldDeclaration, raw: Any, path: str, options: _WriteOptions) -> Any:
        if prop.relationship:
            if isinstance(raw, Relationship):
                return raw.to_uri()
            if options.convert_resources_to_id:
                return raw.identifier
            if options.convert_resources_to_relationships:
                return raw.to_relationship().to_uri()
            if options.permit_resources_for_relationships:
                return self._write_instance(raw, path, options)
            raise ValidationError(
                f"Embedded instance of {raw.fqn} is not permitted for relationship {prop.name}",
                path,
            )

        if isinstance(raw, TypedValue):
            return self._write_instance(raw, path, options)
        if prop.type == "DateTime":
            return format_datetime(raw, options.utc_offset)
        if prop.type == "Double":
            return float(raw)
        return raw


class _Reader:
    """Single-use JSON reader carrying the parse options."""

    def __init__(
        self,
        model_manager: ModelManager,
        ergo: bool,
        accept_resources_for_relationships: bool,
        utc_offset: int | None,
    ):
        self._model_manager = model_manager
        self._ergo = ergo
        self._accept_resources = accept_resources_for_relationships
        self._utc_offset = utc_offset

    def read_instance(self, data: Any, path: str, expected: str | None) -> TypedValue:
        if not isinstance(data, Mapping):
            raise ValidationError(f"Expected an object, found {json_type_name(data)}", path or None)

        fqn = self._read_class(data, path)
        declaration = self._model_manager.get_type(fqn)
        if declaration is None:
            raise ValidationError(f"Type {fqn} is not declared", path or None)
        if declaration.kind == DeclarationKind.ENUM:
            raise ValidationError(f"Cannot instantiate enum {fqn}", path or None)
        if expected is not None and not self._model_manager.is_assignable(fqn, expected):
            raise ValidationError(f"Instance of {fqn} is not assignable to {expected}", path or None)

        if self._ergo and DATA_KEY in data:
            fields = data[DATA_KEY]
            if not isinstance(fields, Mapping):
                raise ValidationError("Expected $data to be an object", join_path(path, DATA_KEY))
        else:
            fields = {key: item for key, item in data.items() if key != CLASS_KEY}

        try:
            properties = {p.name: p for p in self._model_manager.get_properties(fqn)}
        except ModelError as e:
            raise ValidationError(str(e), path or None) from e

        values: dict[str, Any] = {}
        for name, raw in fields.items():
            if name.startswith("$"):
                continue
            field_path = join_path(path, name)
            prop = properties.get(name)
            if prop is None:
                raise ValidationError(f"Property {name} is not declared in {fqn}", field_path)
            values[name] = self._read_field(prop, raw, field_path)

        identifier = None
        identifier_field = self._model_manager.get_identifier_field(fqn)
        if identifier_field is not None:
            identifier = values.get(identifier_field)
        return TypedValue(fqn, values, identifier)

    def _read_class(self, data: Mapping, path: str) -> str:
        fqn = data.get(CLASS_KEY)
        # Polymorphic instances carry the list of their types, most specific first
        if isinstance(fqn, (list, tuple)) and fqn:
            fqn = fqn[0]
        if not isinstance(fqn, str) or not fqn:
            raise ValidationError("Missing or invalid $class property", join_path(path, CLASS_KEY))
        return fqn

    def _read_field(self, prop: FieldDeclaration, raw: Any, path: str) -> Any:
        if raw is None:
            return None
        if prop.array:
            if not isinstance(raw, (list, tuple)):
                raise ValidationError(f"Expected an array, found {json_type_name(raw)}", path)
            return [self._read_scalar(prop, item, join_path(path, index)) for index, item in enumerate(raw)]
        return self._read_scalar(prop, raw, path)

    def _read_scalar(self, prop: FieldDeclaration, raw: Any, path: str) -> Any:
        if prop.relationship:
            if isinstance(raw, str):
                return Relationship.from_uri(raw, prop.type, path)
            if isinstance(raw, Mapping):
                if not self._accept_resources:
                    raise ValidationError(
                        f"Expected a relationship to {prop.type}, found an embedded object",
                        path,
                    )
                return self.read_instance(raw, path, prop.type)
            raise ValidationError(f"Expected a relationship to {prop.type}, found {json_type_name(raw)}", path)

        if prop.type == "DateTime":
            return parse_datetime(raw, self._utc_offset, path)
        if prop.is_primitive:
            if not check_primitive(prop.type, raw):
                raise ValidationError(f"Expected a {prop.type}, found {json_type_name(raw)}", path)
            return float(raw) if prop.type == "Double" else raw

        declaration = self._model_manager.require_type(prop.type)
        if declaration.kind == DeclarationKind.ENUM:
            if not isinstance(raw, str):
                raise ValidationError(f"Expected a member of enum {prop.type}, found {json_type_name(raw)}", path)
            return raw
        return self.read_instance(raw, path, prop.type)
