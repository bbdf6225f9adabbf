"""Factory and introspection for declared types."""
from clause_runtime.errors import ModelError
from clause_runtime.models.declarations import DeclarationKind, TypeDeclaration
from clause_runtime.models.manager import ModelManager
from clause_runtime.models.values import Relationship, TypedValue


class Factory:
    """Creates typed values populated with the declared field defaults."""

    def __init__(self, model_manager: ModelManager):
        self._model_manager = model_manager

    def new_resource(self, namespace: str, type_name: str, identifier: str | None = None) -> TypedValue:
        """
        Create an instance of ``namespace.type_name``.

        Args:
            namespace: Declaring namespace
            type_name: Short type name
            identifier: Identifier, required for identified types

        Raises:
            ModelError: If the type is unknown, abstract, an enum, or needs
                an identifier that was not given
        """
        fqn = f"{namespace}.{type_name}"
        declaration = self._model_manager.require_type(fqn)
        if declaration.abstract:
            raise ModelError(f"Cannot instantiate abstract type {fqn}")
        if declaration.kind == DeclarationKind.ENUM:
            raise ModelError(f"Cannot instantiate enum {fqn}")

        data = {
            prop.name: prop.default
            for prop in self._model_manager.get_properties(fqn)
            if prop.default is not None
        }

        identifier_field = self._model_manager.get_identifier_field(fqn)
        if identifier_field is not None:
            if not identifier:
                raise ModelError(f"An identifier is required to create {fqn}")
            data[identifier_field] = identifier
        else:
            identifier = None

        return TypedValue(fqn, data, identifier)

    def new_concept(self, namespace: str, type_name: str) -> TypedValue:
        return self.new_resource(namespace, type_name)

    def new_relationship(self, namespace: str, type_name: str, identifier: str) -> Relationship:
        fqn = f"{namespace}.{type_name}"
        if self._model_manager.get_identifier_field(fqn) is None:
            raise ModelError(f"Cannot reference {fqn}, which is not identified")
        return Relationship(fqn, identifier)


class Introspector:
    """Read-only view over the declarations of a model manager."""

    def __init__(self, model_manager: ModelManager):
        self._model_manager = model_manager

    def get_class_declarations(self) -> list[TypeDeclaration]:
        return [
            declaration
            for model_file in self._model_manager.get_model_files()
            for declaration in model_file.declarations.values()
        ]

    def get_class_declaration(self, fqn: str) -> TypeDeclaration:
        return self._model_manager.require_type(fqn)
