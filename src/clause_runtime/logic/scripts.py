"""Script repository: logic source files and their compiled output."""
from dataclasses import dataclass

from clause_runtime.errors import CompileError, EngineError
from clause_runtime.logic.compiler import (
    LogicCompiler,
    PythonSourceCompiler,
    check_target,
    inspect_python_source,
)
from clause_runtime.models import ModelManager
from clause_runtime.observability import get_logger

logger = get_logger(__name__)


@dataclass
class Script:
    """A logic source file."""

    name: str
    extension: str
    contents: str

    def get_name(self) -> str:
        return self.name

    def get_extension(self) -> str:
        return self.extension

    def get_contents(self) -> str:
        return self.contents


@dataclass(frozen=True)
class CompiledOutput:
    """All logic files compiled as one unit for a target."""

    code: str
    target: str
    contract_name: str | None = None
    has_dispatch: bool = False


class ScriptManager:
    """
    Holds logic files in insertion order and their combined compiled output.

    Any change to the logic files drops the compiled output, so the next
    non-forced compilation rebuilds it.
    """

    def __init__(self, target: str, model_manager: ModelManager, compiler: LogicCompiler | None = None):
        """
        Initialize script manager.

        Args:
            target: Compile target
            model_manager: Models handed to the compiler
            compiler: DSL compiler (defaults to the Python pass-through)
        """
        check_target(target)
        self.target = target
        self._model_manager = model_manager
        self._compiler = compiler or PythonSourceCompiler()
        self._scripts: dict[str, Script] = {}
        self.compiled_script: CompiledOutput | None = None

    def create_script(self, name: str, extension: str, contents: str) -> Script:
        return Script(name=name, extension=extension, contents=contents)

    def add_script(self, script: Script) -> None:
        self._scripts[script.name] = script
        self.compiled_script = None

    def modify_script(self, name: str, extension: str, contents: str) -> None:
        """
        Replace the contents of an existing script.

        Raises:
            ValueError: If no script has that name
        """
        if name not in self._scripts:
            raise ValueError(f"Script not found: {name}")
        self._scripts[name] = self.create_script(name, extension, contents)
        self.compiled_script = None

    def delete_script(self, name: str) -> None:
        if name not in self._scripts:
            raise ValueError(f"Script not found: {name}")
        del self._scripts[name]
        self.compiled_script = None

    def clear_scripts(self) -> None:
        self._scripts = {}
        self.compiled_script = None

    def get_script(self, name: str) -> Script | None:
        return self._scripts.get(name)

    def get_scripts(self) -> list[Script]:
        return list(self._scripts.values())

    def get_combined_scripts(self) -> str:
        return "\n\n".join(script.contents for script in self._scripts.values())

    def invalidate(self) -> None:
        """Drop the compiled output, e.g. after a model change."""
        self.compiled_script = None

    def change_target(self, target: str, recompile: bool = False) -> None:
        """
        Change the compile target.

        Args:
            target: New compile target
            recompile: Recompile immediately

        Raises:
            UnsupportedTargetError: If the target is unknown
        """
        check_target(target)
        self.target = target
        self.compiled_script = None
        if recompile:
            self.compile_logic(True)

    def compile_logic(self, force: bool = False) -> CompiledOutput | None:
        """
        Compile all scripts unless already compiled.

        Args:
            force: Recompile even if compiled output exists

        Returns:
            Compiled output, or None when there are no scripts

        Raises:
            CompileError: If the compiler fails
        """
        if self.compiled_script is not None and not force:
            return self.compiled_script
        if not self._scripts:
            return None

        source = self.get_combined_scripts()
        try:
            output = self._compiler.compile(source, self.target, self._model_manager.get_model_files())
        except EngineError:
            raise
        except Exception as e:
            raise CompileError(f"Compiler failure: {e}") from e

        logger.info(f"Compiled {len(self._scripts)} logic files for target {self.target}")
        return self.register_compiled(output.code, output.contract_name)

    def register_compiled(self, code: str, contract_name: str | None = None) -> CompiledOutput:
        """
        Register target code as the compiled output.

        For the Python target the code is inspected for its contract class
        and dispatch function.

        Raises:
            CompileError: If Python target code is not valid Python
        """
        has_dispatch = False
        if self.target == "python":
            info = inspect_python_source(code)
            contract_name = contract_name or info.contract_name
            has_dispatch = info.has_dispatch

        self.compiled_script = CompiledOutput(
            code=code,
            target=self.target,
            contract_name=contract_name,
            has_dispatch=has_dispatch,
        )
        return self.compiled_script

    def get_compiled_script(self) -> CompiledOutput | None:
        return self.compiled_script

    def get_compiled_code(self) -> str | None:
        return self.compiled_script.code if self.compiled_script else None

    def has_dispatch(self) -> None:
        """
        Raises:
            CompileError: If the compiled logic has no dispatch function
        """
        if self.compiled_script is None:
            raise CompileError("Logic has not been compiled")
        if not self.compiled_script.has_dispatch:
            raise CompileError("Cannot find a dispatch function in the compiled logic")
