"""Tests for model files, the serializer, the validator and the factory."""
from datetime import datetime, timedelta, timezone

import pytest

from clause_runtime.errors import ModelError, ValidationError
from clause_runtime.models import (
    Factory,
    Introspector,
    ModelFile,
    ModelManager,
    Relationship,
    ResourceValidator,
    Serializer,
    TypedValue,
)
from clause_runtime.models.declarations import parse_field


@pytest.fixture
def model_manager(acme_model):
    manager = ModelManager()
    manager.add_model_file(acme_model, "acme.yaml")
    manager.validate_model_files()
    return manager


@pytest.fixture
def serializer(model_manager):
    return Serializer(model_manager)


class TestModelFile:
    """Test model file parsing."""

    @pytest.mark.parametrize(
        "spec, expected",
        [
            ("Double", {"type": "Double", "array": False, "optional": False, "relationship": False}),
            ("Integer[]", {"type": "Integer", "array": True, "optional": False, "relationship": False}),
            ("String?", {"type": "String", "array": False, "optional": True, "relationship": False}),
            ("--> Party", {"type": "Party", "array": False, "optional": False, "relationship": True}),
        ],
    )
    def test_parse_short_field_forms(self, spec, expected):
        field = parse_field("value", spec)

        assert field.model_dump(include=set(expected)) == expected

    def test_parse_mapping_field_form(self):
        field = parse_field("flag", {"type": "Boolean", "optional": True, "default": False})

        assert field.type == "Boolean"
        assert field.optional is True
        assert field.default is False

    def test_invalid_field_type_is_rejected(self):
        with pytest.raises(ModelError, match="Invalid type for field"):
            parse_field("value", "not a type!")

    def test_malformed_yaml_is_rejected(self):
        with pytest.raises(ModelError, match="Cannot parse model file"):
            ModelFile("namespace: [unclosed", "bad.yaml")

    def test_missing_namespace_is_rejected(self):
        with pytest.raises(ModelError, match="does not declare a namespace"):
            ModelFile("types: {}", "empty.yaml")


class TestModelManager:
    """Test the model registry and type resolution."""

    def test_builtin_namespaces(self):
        manager = ModelManager()

        assert manager.get_namespaces() == [
            "org.accordproject.runtime",
            "org.accordproject.ergo.options",
        ]

    def test_duplicate_namespace_is_rejected(self, model_manager, acme_model):
        with pytest.raises(ModelError, match="already declared"):
            model_manager.add_model_file(acme_model, "again.yaml")

    def test_update_and_delete_model_file(self, model_manager):
        model_manager.update_model_file("namespace: org.acme.test\ntypes:\n  Bar: {}\n", "acme.yaml")

        assert model_manager.get_type("org.acme.test.Bar") is not None
        assert model_manager.get_type("org.acme.test.Foo") is None

        model_manager.delete_model_file("org.acme.test")
        assert model_manager.get_model_file("org.acme.test") is None

        with pytest.raises(ModelError, match="not found"):
            model_manager.delete_model_file("org.acme.test")

    def test_resolve_type_through_imports(self, model_manager):
        assert model_manager.resolve_type("org.acme.test", "Request") == "org.accordproject.runtime.Request"
        assert model_manager.resolve_type("org.acme.test", "Party") == "org.acme.test.Party"
        assert model_manager.resolve_type("org.acme.test", "Double") == "Double"
        assert model_manager.resolve_type("org.acme.test", "Missing") is None

    def test_inheritance(self, model_manager):
        assert model_manager.is_assignable("org.acme.test.MyRequest", "org.accordproject.runtime.Request")
        assert not model_manager.is_assignable("org.acme.test.MyRequest", "org.accordproject.runtime.Response")
        assert model_manager.get_identifier_field("org.acme.test.TemplateModel") == "contractId"

    def test_properties_resolve_field_types(self, model_manager):
        seller = {p.name: p for p in model_manager.get_properties("org.acme.test.TemplateModel")}["seller"]

        assert seller.type == "org.acme.test.Party"
        assert seller.relationship is True

    def test_unresolved_field_type_fails_validation(self):
        manager = ModelManager()
        manager.add_model_file("namespace: org.acme.bad\ntypes:\n  Foo:\n    fields:\n      bar: Baz\n", "bad.yaml")

        with pytest.raises(ModelError, match="Baz"):
            manager.validate_model_files()

    def test_relationship_to_unidentified_type_fails_validation(self):
        manager = ModelManager()
        manager.add_model_file(
            'namespace: org.acme.bad\ntypes:\n  Baz: {}\n  Foo:\n    fields:\n      bar: "--> Baz"\n',
            "bad.yaml",
        )

        with pytest.raises(ModelError, match="not identified"):
            manager.validate_model_files()

    def test_missing_import_fails_validation(self):
        manager = ModelManager()
        manager.add_model_file("namespace: org.acme.bad\nimports:\n  - org.acme.missing.*\n", "bad.yaml")

        with pytest.raises(ModelError, match="org.acme.missing"):
            manager.validate_model_files()


class TestSerializer:
    """Test conversion between JSON and typed values."""

    def test_plain_round_trip(self, serializer):
        data = {"$class": "org.acme.test.Foo", "amount": 3.14}

        value = serializer.from_json(data)

        assert value == TypedValue("org.acme.test.Foo", {"amount": 3.14})
        assert serializer.to_json(value) == data

    def test_ergo_form_with_identifier(self, serializer, contract_data):
        value = serializer.from_json(contract_data)

        assert serializer.to_json(value, ergo=True) == {
            "$class": ["org.acme.test.TemplateModel"],
            "$data": {
                "contractId": "c-1",
                "seller": "resource:org.acme.test.Party#alice",
                "rate": 2.5,
                "$identifier": "c-1",
            },
        }

    def test_ergo_form_is_read_back(self, serializer):
        value = serializer.from_json(
            {"$class": ["org.acme.test.Foo"], "$data": {"amount": 1.5}},
            ergo=True,
        )

        assert value.data == {"amount": 1.5}

    def test_bare_identifier_relationship(self, serializer, contract_data):
        contract_data["seller"] = "alice"

        value = serializer.from_json(contract_data)

        assert value.data["seller"] == Relationship("org.acme.test.Party", "alice")

    def test_embedded_resource_requires_acceptance(self, serializer, contract_data):
        contract_data["seller"] = {"$class": "org.acme.test.Party", "partyId": "alice"}

        with pytest.raises(ValidationError) as exc_info:
            serializer.from_json(contract_data)
        assert exc_info.value.path == "seller"

        value = serializer.from_json(contract_data, accept_resources_for_relationships=True)
        assert serializer.to_json(value, convert_resources_to_id=True)["seller"] == "alice"
        assert serializer.to_json(value, convert_resources_to_relationships=True)["seller"] == (
            "resource:org.acme.test.Party#alice"
        )
        with pytest.raises(ValidationError, match="not permitted"):
            serializer.to_json(value)

    def test_datetime_uses_offset(self, serializer, model_manager):
        model_manager.add_model_file(
            "namespace: org.acme.time\ntypes:\n  Deadline:\n    fields:\n      due: DateTime\n",
            "time.yaml",
        )

        value = serializer.from_json({"$class": "org.acme.time.Deadline", "due": "2024-01-01T12:00:00"}, utc_offset=60)

        assert value.data["due"] == datetime(2024, 1, 1, 12, tzinfo=timezone(timedelta(minutes=60)))
        assert serializer.to_json(value, utc_offset=0)["due"] == "2024-01-01T11:00:00.000+00:00"

    def test_undeclared_property_names_path(self, serializer):
        with pytest.raises(ValidationError) as exc_info:
            serializer.from_json({"$class": "org.acme.test.Foo", "amount": 1.0, "extra": 1})

        assert exc_info.value.path == "extra"

    def test_missing_class(self, serializer):
        with pytest.raises(ValidationError, match=r"\$class"):
            serializer.from_json({"amount": 1.0})


class TestResourceValidator:
    """Test structural validation."""

    def test_missing_required_field(self, model_manager):
        validator = ResourceValidator(model_manager)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(TypedValue("org.acme.test.Foo", {}))

        assert exc_info.value.path == "amount"
        assert "missing the required field amount" in str(exc_info.value)

    def test_wrong_primitive_type_in_array(self, model_manager):
        validator = ResourceValidator(model_manager)

        with pytest.raises(ValidationError) as exc_info:
            validator.validate(TypedValue("org.acme.test.Counter", {"count": 1, "tags": ["a", 2]}))

        assert exc_info.value.path == "tags[1]"

    def test_abstract_type_is_rejected(self, model_manager):
        with pytest.raises(ValidationError, match="abstract"):
            ResourceValidator(model_manager).validate(TypedValue("org.accordproject.runtime.Obligation", {}))

    def test_embedded_resource_needs_permission(self, model_manager):
        party = TypedValue("org.acme.test.Party", {"partyId": "alice"}, "alice")
        contract = TypedValue(
            "org.acme.test.TemplateModel",
            {"contractId": "c-1", "seller": party, "rate": 1.0},
            "c-1",
        )

        with pytest.raises(ValidationError, match="not permitted"):
            ResourceValidator(model_manager).validate(contract)
        ResourceValidator(model_manager, permit_resources_for_relationships=True).validate(contract)

    def test_empty_identifier(self, model_manager):
        with pytest.raises(ValidationError, match="empty identifier"):
            ResourceValidator(model_manager).validate(TypedValue("org.acme.test.Party", {"partyId": ""}, ""))


class TestFactory:
    """Test creation of typed values."""

    def test_new_concept_uses_defaults(self, model_manager):
        options = Factory(model_manager).new_concept("org.accordproject.ergo.options", "Options")

        assert options.data == {"wrapVariables": False, "template": False}

    def test_new_resource_requires_identifier(self, model_manager):
        factory = Factory(model_manager)

        with pytest.raises(ModelError, match="identifier is required"):
            factory.new_resource("org.acme.test", "Party")
        assert factory.new_resource("org.acme.test", "Party", "bob").identifier == "bob"

    def test_new_relationship(self, model_manager):
        relationship = Factory(model_manager).new_relationship("org.acme.test", "Party", "bob")

        assert relationship.to_uri() == "resource:org.acme.test.Party#bob"

    def test_abstract_type_cannot_be_created(self, model_manager):
        with pytest.raises(ModelError, match="abstract"):
            Factory(model_manager).new_concept("org.accordproject.runtime", "Obligation")

    def test_introspector(self, model_manager):
        introspector = Introspector(model_manager)

        names = {declaration.fqn for declaration in introspector.get_class_declarations()}
        assert "org.acme.test.Foo" in names
        assert introspector.get_class_declaration("org.acme.test.Foo").name == "Foo"
