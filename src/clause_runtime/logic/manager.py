"""Logic manager: models, logic and the validation boundary for one contract."""
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

from clause_runtime.boxing import COLL, LENGTH, box, unbox
from clause_runtime.config import get_settings
from clause_runtime.contracts import ValidateOptions
from clause_runtime.errors import CompileError, ValidationError
from clause_runtime.logic.calls import (
    RESERVED_PREFIX,
    CallDescriptor,
    Dispatch,
    NamedClause,
    get_renderer,
)
from clause_runtime.logic.compiler import DSL_EXTENSION, LogicCompiler, check_target
from clause_runtime.logic.scripts import CompiledOutput, ScriptManager
from clause_runtime.models import (
    Factory,
    Introspector,
    ModelFile,
    ModelManager,
    ResourceValidator,
    Serializer,
    TypedValue,
)
from clause_runtime.observability import get_logger

logger = get_logger(__name__)


def _normalize_name(file_name: str) -> str:
    return file_name.replace("\\", "/")


def _logic_extension(file_name: str) -> str:
    return PurePosixPath(file_name).suffix or DSL_EXTENSION


@dataclass(frozen=True)
class ValidatedContract:
    """Contract data in boxed ergo form, with the typed value it came from."""

    serialized: Any
    validated: TypedValue


class LogicManager:
    """
    Packages the models and logic of a contract for one compile target.

    Owns the validation boundary: every value handed to compiled logic goes
    through ``validate_input``/``validate_contract`` and every value coming
    back through ``validate_output``/``validate_output_array``.
    """

    def __init__(self, target: str | None = None, compiler: LogicCompiler | None = None):
        """
        Initialize logic manager.

        Args:
            target: Compile target (defaults to the configured target)
            compiler: DSL compiler handed to the script manager

        Raises:
            UnsupportedTargetError: If the target is unknown
        """
        target = target or get_settings().target
        check_target(target)
        self.target = target
        self.contract_name: str | None = None
        self.model_manager = ModelManager()
        self.built_in_namespaces = self.model_manager.get_namespaces()
        self.script_manager = ScriptManager(self.target, self.model_manager, compiler)
        self.introspector = Introspector(self.model_manager)
        self.factory = Factory(self.model_manager)
        self.serializer = Serializer(self.model_manager)
        self.validated = False

    def get_target(self) -> str:
        return self.target

    def set_target(self, target: str, recompile: bool = False) -> None:
        """
        Set the compile target.

        Args:
            target: New compile target
            recompile: Recompile the logic immediately
        """
        self.script_manager.change_target(target, recompile)
        self.target = target

    def set_contract_name(self, contract_name: str) -> None:
        self.contract_name = contract_name

    def get_contract_name(self) -> str | None:
        return self.contract_name

    def get_introspector(self) -> Introspector:
        return self.introspector

    def get_factory(self) -> Factory:
        return self.factory

    def get_serializer(self) -> Serializer:
        return self.serializer

    def get_script_manager(self) -> ScriptManager:
        return self.script_manager

    def get_model_manager(self) -> ModelManager:
        return self.model_manager

    # ------------------------------------------------------------------
    # Models and logic
    # ------------------------------------------------------------------

    def add_model_file(self, content: str, file_name: str) -> None:
        """
        Add a model file. Model files for built-in namespaces are ignored.

        Raises:
            ModelError: If the content is malformed or the namespace exists
        """
        self.validated = False
        name = _normalize_name(file_name)
        model_file = ModelFile(content, name)
        if model_file.namespace in self.built_in_namespaces:
            logger.debug(f"Ignoring model file for built-in namespace {model_file.namespace}")
            return
        self.model_manager.add_model_file(model_file)
        self.script_manager.invalidate()

    def add_model_files(self, contents: list[str], file_names: list[str]) -> None:
        self.validated = False
        for content, file_name in zip(contents, file_names):
            self.add_model_file(content, file_name)

    def update_model(self, content: str, file_name: str) -> None:
        """
        Add or update a model file by name.

        Identical content is a no-op. Changed content with the same namespace
        replaces the model file in place; a changed namespace deletes the old
        model file, then adds the new one.
        """
        name = _normalize_name(file_name)
        previous = next(
            (model_file for model_file in self.model_manager.get_model_files() if model_file.get_name() == name),
            None,
        )
        if previous is None:
            self.add_model_file(content, name)
            return
        if previous.get_definitions() == content:
            return

        model_file = ModelFile(content, name)
        if model_file.namespace in self.built_in_namespaces:
            logger.debug(f"Ignoring model file for built-in namespace {model_file.namespace}")
            return

        self.validated = False
        if model_file.namespace == previous.namespace:
            self.model_manager.update_model_file(model_file)
        else:
            self.model_manager.delete_model_file(previous.namespace)
            self.model_manager.add_model_file(model_file)
        self.script_manager.invalidate()

    def add_logic_file(self, content: str, file_name: str) -> None:
        """Add a logic file; the extension defaults to the DSL's own."""
        name = _normalize_name(file_name)
        script = self.script_manager.create_script(name, _logic_extension(name), content)
        self.script_manager.add_script(script)

    def update_logic(self, content: str, file_name: str) -> None:
        """Add or update a logic file by name; identical content is a no-op."""
        name = _normalize_name(file_name)
        script = self.script_manager.get_script(name)
        if script is None:
            self.add_logic_file(content, name)
        elif script.get_contents() != content:
            self.script_manager.modify_script(name, _logic_extension(name), content)

    def validate_model_files(self) -> None:
        """
        Validate the model files once.

        Raises:
            ModelError: If the models are inconsistent
        """
        if not self.validated:
            self.model_manager.validate_model_files()
            self.validated = True

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def compile_logic_sync(self, force: bool = False) -> CompiledOutput | None:
        """
        Compile the logic for the target.

        Args:
            force: Recompile even if already compiled

        Returns:
            Compiled output, or None when there is no logic

        Raises:
            ModelError: If the models are inconsistent
            CompileError: If compilation fails
        """
        self.validate_model_files()
        compiled = self.script_manager.compile_logic(force)
        if compiled is not None and compiled.contract_name:
            self.set_contract_name(compiled.contract_name)
        return compiled

    async def compile_logic(self, force: bool = False) -> None:
        """Compile the logic; failures surface when the outcome is awaited."""
        self.compile_logic_sync(force)

    def register_compiled_logic_sync(self) -> CompiledOutput | None:
        """Register the combined logic files as already-compiled target code."""
        code = self.script_manager.get_combined_scripts()
        if not code:
            return None
        compiled = self.script_manager.register_compiled(code)
        if compiled.contract_name:
            self.set_contract_name(compiled.contract_name)
        return compiled

    # ------------------------------------------------------------------
    # Validation boundary
    # ------------------------------------------------------------------

    def _parse_and_validate(self, data: Any, utc_offset: int | None, accept_resources: bool = True) -> TypedValue:
        value = self.serializer.from_json(
            data,
            validate=False,
            accept_resources_for_relationships=accept_resources,
            utc_offset=utc_offset,
        )
        ResourceValidator(self.model_manager, permit_resources_for_relationships=True).validate(value)
        return value

    def validate_input(self, input: Any, utc_offset: int | None = None) -> Any:
        """
        Validate input JSON and box it for compiled logic.

        ``None`` means the input is absent and is returned without validation.

        Args:
            input: Input JSON carrying ``$class``
            utc_offset: UTC offset in minutes for DateTime values

        Returns:
            Boxed ergo form of the input

        Raises:
            ValidationError: If the input does not match the model
        """
        if input is None:
            return None

        value = self._parse_and_validate(input, utc_offset)
        serialized = self.serializer.to_json(
            value,
            ergo=True,
            permit_resources_for_relationships=True,
            utc_offset=utc_offset,
        )
        return box(serialized)

    def validate_contract(
        self,
        contract: Any,
        utc_offset: int | None = None,
        options: ValidateOptions | None = None,
    ) -> ValidatedContract | None:
        """
        Validate contract data.

        Returns:
            Boxed ergo form together with the typed value, or None for
            absent contract data

        Raises:
            ValidationError: If the contract data does not match the model
        """
        options = options or ValidateOptions()

        if contract is None:
            return None

        value = self._parse_and_validate(contract, utc_offset, options.accept_resources_for_relationships)
        serialized = self.serializer.to_json(
            value,
            ergo=True,
            permit_resources_for_relationships=options.permit_resources_for_relationships,
            convert_resources_to_relationships=options.convert_resources_to_relationships,
            convert_resources_to_id=options.convert_resources_to_id,
            utc_offset=utc_offset,
        )
        return ValidatedContract(serialized=box(serialized), validated=value)

    def validate_input_record(self, record: Mapping[str, Any] | None, utc_offset: int | None = None) -> dict[str, Any]:
        """
        Validate each field of a parameter record independently.

        Object-valued fields are validated as inputs and arrays become boxed
        collections of validated elements. Scalar fields pass through unchanged.

        Raises:
            ValidationError: If a field does not match the model or its name
                uses the prefix reserved for runtime bindings
        """
        valid_record: dict[str, Any] = {}
        for key, value in (record or {}).items():
            if key.startswith(RESERVED_PREFIX):
                raise ValidationError(f"Parameter names starting with {RESERVED_PREFIX} are reserved", key)
            if isinstance(value, Mapping):
                valid_record[key] = self.validate_input(value, utc_offset)
            elif isinstance(value, (list, tuple)):
                items = [
                    self.validate_input(item, utc_offset) if isinstance(item, Mapping) else box(item)
                    for item in value
                ]
                valid_record[key] = {COLL: items, LENGTH: len(items)}
            else:
                valid_record[key] = value
        return valid_record

    def validate_output(self, output: Any, utc_offset: int | None = None) -> Any:
        """
        Unbox and validate a value produced by compiled logic.

        Embedded resources are written back as ``resource:`` references.
        Non-object values pass through unboxed.

        Raises:
            ValidationError: If the output does not match the model
        """
        if output is None:
            return None

        value = unbox(output)
        if not isinstance(value, Mapping):
            return value

        typed = self.serializer.from_json(
            value,
            ergo=True,
            validate=False,
            accept_resources_for_relationships=True,
            utc_offset=utc_offset,
        )
        ResourceValidator(self.model_manager, permit_resources_for_relationships=True).validate(typed)
        return self.serializer.to_json(
            typed,
            convert_resources_to_relationships=True,
            utc_offset=utc_offset,
        )

    def validate_output_array(self, output: Any, utc_offset: int | None = None) -> list[Any]:
        """
        Validate a boxed collection produced by compiled logic.

        Raises:
            ValidationError: If the value is not a collection or an element
                does not match the model
        """
        items = unbox(output)
        if not isinstance(items, list):
            raise ValidationError("Expected a collection of emitted values")
        return [self.validate_output(item, utc_offset) for item in items]

    # ------------------------------------------------------------------
    # Call shapes
    # ------------------------------------------------------------------

    def get_dispatch_call(self) -> CallDescriptor:
        """
        Raises:
            UnsupportedTargetError: If the target has no call renderer
            CompileError: If the compiled logic has no dispatch function
        """
        get_renderer(self.target)
        self.script_manager.has_dispatch()
        return CallDescriptor(shape=Dispatch(), target=self.target, contract_name=self.contract_name)

    def get_invoke_call(self, clause_name: str) -> CallDescriptor:
        """
        Raises:
            UnsupportedTargetError: If the target has no call renderer
            CompileError: If no contract name was discovered
        """
        get_renderer(self.target)
        if not self.contract_name:
            raise CompileError(f"Cannot create invoke call for target {self.target} without a contract name")
        return CallDescriptor(
            shape=NamedClause(clause_name),
            target=self.target,
            contract_name=self.contract_name,
        )
