"""Model manager: registry of model files and type resolution."""
from clause_runtime.errors import ModelError
from clause_runtime.models.declarations import (
    DeclarationKind,
    FieldDeclaration,
    ModelFile,
    PRIMITIVE_TYPES,
    TypeDeclaration,
)
from clause_runtime.observability import get_logger

logger = get_logger(__name__)

RUNTIME_MODEL = """
namespace: org.accordproject.runtime
types:
  Request:
    kind: transaction
  Response:
    kind: transaction
  State:
    kind: concept
  Obligation:
    kind: event
    abstract: true
"""

OPTIONS_MODEL = """
namespace: org.accordproject.ergo.options
types:
  Options:
    kind: concept
    fields:
      wrapVariables:
        type: Boolean
        default: false
      template:
        type: Boolean
        default: false
"""

BUILTIN_MODELS = (
    ("@runtime.yaml", RUNTIME_MODEL),
    ("@options.yaml", OPTIONS_MODEL),
)


class ModelManager:
    """
    Registry of model files, keyed by namespace.

    Adding and updating model files never checks cross-file references;
    ``validate_model_files`` does that once the full set is loaded.
    """

    def __init__(self):
        """Initialize with the built-in runtime models."""
        self._model_files: dict[str, ModelFile] = {}
        for name, content in BUILTIN_MODELS:
            self.add_model_file(content, name)

    def get_namespaces(self) -> list[str]:
        return list(self._model_files)

    def get_model_files(self) -> list[ModelFile]:
        return list(self._model_files.values())

    def get_model_file(self, namespace: str) -> ModelFile | None:
        return self._model_files.get(namespace)

    def add_model_file(self, model_file: ModelFile | str, name: str | None = None) -> ModelFile:
        """
        Add a model file.

        Args:
            model_file: Parsed model file or its content
            name: File name (used when content is given)

        Returns:
            The registered model file

        Raises:
            ModelError: If the namespace is already declared
        """
        if not isinstance(model_file, ModelFile):
            model_file = ModelFile(model_file, name)
        if model_file.namespace in self._model_files:
            raise ModelError(f"Namespace {model_file.namespace} is already declared")
        self._model_files[model_file.namespace] = model_file
        logger.debug(f"Model file added: {model_file.namespace}")
        return model_file

    def update_model_file(self, model_file: ModelFile | str, name: str | None = None) -> ModelFile:
        """
        Replace the model file declaring the same namespace.

        Raises:
            ModelError: If no model file declares that namespace
        """
        if not isinstance(model_file, ModelFile):
            model_file = ModelFile(model_file, name)
        if model_file.namespace not in self._model_files:
            raise ModelError(f"Model file for namespace {model_file.namespace} not found")
        self._model_files[model_file.namespace] = model_file
        logger.debug(f"Model file updated: {model_file.namespace}")
        return model_file

    def delete_model_file(self, namespace: str) -> None:
        """
        Remove the model file declaring ``namespace``.

        Raises:
            ModelError: If the namespace is not declared
        """
        if namespace not in self._model_files:
            raise ModelError(f"Model file for namespace {namespace} not found")
        del self._model_files[namespace]
        logger.debug(f"Model file deleted: {namespace}")

    def clear_model_files(self) -> None:
        """Remove all model files, keeping the built-ins."""
        self._model_files.clear()
        for name, content in BUILTIN_MODELS:
            self.add_model_file(content, name)

    # ------------------------------------------------------------------
    # Type resolution
    # ------------------------------------------------------------------

    def get_type(self, fqn: str) -> TypeDeclaration | None:
        """Get a declaration by fully qualified name, or None."""
        namespace, _, name = fqn.rpartition(".")
        model_file = self._model_files.get(namespace)
        if model_file is None:
            return None
        return model_file.declarations.get(name)

    def require_type(self, fqn: str) -> TypeDeclaration:
        declaration = self.get_type(fqn)
        if declaration is None:
            raise ModelError(f"Type {fqn} is not declared")
        return declaration

    def resolve_type(self, namespace: str, name: str) -> str | None:
        """
        Resolve a type name as written in ``namespace``.

        Primitive names resolve to themselves. Qualified names resolve if
        declared. Short names are looked up in the namespace, then in its
        imports.

        Returns:
            Fully qualified name, or None if unresolved
        """
        if name in PRIMITIVE_TYPES:
            return name
        if "." in name:
            return name if self.get_type(name) else None

        local = f"{namespace}.{name}"
        if self.get_type(local):
            return local

        model_file = self._model_files.get(namespace)
        for imported in model_file.imports if model_file else []:
            if imported.endswith(".*"):
                candidate = f"{imported[:-2]}.{name}"
            elif imported.rpartition(".")[2] == name:
                candidate = imported
            else:
                continue
            if self.get_type(candidate):
                return candidate
        return None

    def get_supertype(self, fqn: str) -> str | None:
        declaration = self.require_type(fqn)
        if declaration.extends is None:
            return None
        supertype = self.resolve_type(declaration.namespace, declaration.extends)
        if supertype is None:
            raise ModelError(f"Super type {declaration.extends} of {fqn} is not declared")
        return supertype

    def get_type_hierarchy(self, fqn: str) -> list[str]:
        """Return ``fqn`` followed by its super types, nearest first."""
        hierarchy = []
        current: str | None = fqn
        while current is not None:
            if current in hierarchy:
                raise ModelError(f"Circular inheritance involving {fqn}")
            hierarchy.append(current)
            current = self.get_supertype(current)
        return hierarchy

    def is_assignable(self, fqn: str, target: str) -> bool:
        """Whether instances of ``fqn`` may be used where ``target`` is expected."""
        if self.get_type(fqn) is None:
            return False
        return target in self.get_type_hierarchy(fqn)

    def get_properties(self, fqn: str) -> list[FieldDeclaration]:
        """
        Return all fields of a type, inherited ones first, with field types
        resolved to fully qualified names.

        Raises:
            ModelError: If the type or one of its field types is not declared
        """
        properties: dict[str, FieldDeclaration] = {}
        for type_name in reversed(self.get_type_hierarchy(fqn)):
            declaration = self.require_type(type_name)
            for field in declaration.fields:
                resolved = self.resolve_type(declaration.namespace, field.type)
                if resolved is None:
                    raise ModelError(
                        f"Type {field.type} of field {field.name} in {type_name} is not declared"
                    )
                properties[field.name] = field.model_copy(update={"type": resolved})
        return list(properties.values())

    def get_identifier_field(self, fqn: str) -> str | None:
        for type_name in self.get_type_hierarchy(fqn):
            identified_by = self.require_type(type_name).identified_by
            if identified_by:
                return identified_by
        return None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_model_files(self) -> None:
        """
        Check that every model file is internally consistent and that all
        references between model files resolve.

        Raises:
            ModelError: On the first inconsistency found
        """
        for model_file in self._model_files.values():
            for imported in model_file.imports:
                namespace = imported[:-2] if imported.endswith(".*") else imported.rpartition(".")[0]
                if namespace not in self._model_files:
                    raise ModelError(
                        f"Namespace {namespace} imported by {model_file.namespace} is not declared"
                    )
            for declaration in model_file.declarations.values():
                self._validate_declaration(declaration)
        logger.debug(f"Validated {len(self._model_files)} model files")

    def _validate_declaration(self, declaration: TypeDeclaration) -> None:
        fqn = declaration.fqn

        if declaration.kind == DeclarationKind.ENUM:
            if not declaration.values:
                raise ModelError(f"Enum {fqn} declares no values")
            if declaration.fields or declaration.extends:
                raise ModelError(f"Enum {fqn} cannot declare fields or a super type")
            return

        # Resolves super types (and detects cycles) and field types
        properties = self.get_properties(fqn)

        for field in properties:
            if field.is_primitive:
                if field.relationship:
                    raise ModelError(f"Relationship {field.name} in {fqn} cannot target a primitive")
                continue
            target = self.require_type(field.type)
            if field.relationship and self.get_identifier_field(field.type) is None:
                raise ModelError(
                    f"Relationship {field.name} in {fqn} targets {target.fqn}, which is not identified"
                )

        identifier = self.get_identifier_field(fqn)
        if identifier is not None:
            by_name = {field.name: field for field in properties}
            field = by_name.get(identifier)
            if field is None or field.type != "String" or field.array or field.optional:
                raise ModelError(
                    f"Identifying field {identifier} of {fqn} must be a required String field"
                )
