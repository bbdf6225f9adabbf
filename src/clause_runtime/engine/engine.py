"""Execution engine: validate, run in the sandbox, validate again."""
from collections.abc import Callable, Mapping
from typing import Any

from clause_runtime.boxing import box
from clause_runtime.config import get_settings
from clause_runtime.contracts import ExecutionConfig, InvokeResult, TriggerResult
from clause_runtime.engine.clock import resolve_current_time
from clause_runtime.engine.sandbox import Evaluator, Executable, create_evaluator
from clause_runtime.errors import CompileError, EngineError
from clause_runtime.logic import CallDescriptor, LogicManager, get_renderer
from clause_runtime.observability import get_logger, with_trace_context

logger = get_logger(__name__)


class Engine:
    """
    Runs compiled contract logic against validated inputs.

    Each operation resolves the current time, validates the contract,
    request or parameters and state, runs the call in the evaluator and
    validates the response, new state and emitted values before returning
    them. Executables are cached per contract identity.

    An engine and the logic managers it runs are not safe for concurrent use.
    """

    def __init__(self, evaluator: Evaluator | None = None, timeout_s: float | None = None):
        """
        Initialize engine.

        Args:
            evaluator: Evaluator to run logic in (defaults to the configured kind)
            timeout_s: Wall-clock budget per call (defaults to the configured budget)
        """
        settings = get_settings()
        self._evaluator = evaluator or create_evaluator(settings.sandbox)
        self._timeout_s = timeout_s or settings.sandbox_timeout_s
        self._scripts: dict[str, Executable] = {}
        self._script_target: str | None = None

    def kind(self) -> str:
        """Kind of evaluator this engine runs logic in."""
        return self._evaluator.kind

    def clear_cache(self) -> None:
        self._scripts = {}
        self._script_target = None

    def cache_script(self, logic: LogicManager, contract_id: str) -> Executable:
        """
        Get the executable for a contract, compiling it on first use.

        Args:
            logic: Logic manager holding compiled logic
            contract_id: Contract identity used as the cache key

        Returns:
            Cached executable

        Raises:
            UnsupportedTargetError: If the logic target cannot be run
            CompileError: If the logic has not been compiled
        """
        target = logic.get_target()
        get_renderer(target)

        if self._script_target != target:
            if self._scripts:
                logger.debug(f"Compile target changed to {target}, clearing {len(self._scripts)} executables")
            self.clear_cache()
            self._script_target = target

        executable = self._scripts.get(contract_id)
        if executable is None:
            code = logic.get_script_manager().get_compiled_code()
            if code is None:
                raise CompileError(f"Logic for contract {contract_id} has not been compiled")
            executable = self._evaluator.compile(code)
            self._scripts[contract_id] = executable
            logger.debug(
                f"Cached executable for {contract_id}",
                extra=with_trace_context(logger, contract_id=contract_id, engine_kind=self.kind()),
            )
        return executable

    def _default_state(self, logic: LogicManager) -> dict[str, Any]:
        namespace, _, type_name = get_settings().default_state_class.rpartition(".")
        state = logic.get_factory().new_concept(namespace, type_name)
        return logic.get_serializer().to_json(state)

    def _execute(
        self,
        logic: LogicManager,
        contract_id: str,
        clause_name: str,
        contract: Any,
        state: Any,
        config: ExecutionConfig,
        input_key: str,
        input_value: Any,
        validate: Callable[[Any, int], Any],
        make_call: Callable[[], CallDescriptor],
    ) -> tuple[Any, Any, list[Any]]:
        extra = with_trace_context(
            logger,
            trace_id=config.trace_id,
            contract_id=contract_id,
            clause_name=clause_name,
            engine_kind=self.kind(),
        )

        logger.info("Contract execution started", extra=extra)

        try:
            now, utc_offset = resolve_current_time(config.now, config.utc_offset)

            # Contract, then request or parameters, then state
            valid_contract = logic.validate_contract(contract, utc_offset, config.validate_options)
            valid_input = validate(input_value, utc_offset)
            valid_state = logic.validate_input(state, utc_offset)
            options = box(config.options.to_record(get_settings().options_class))

            executable = self.cache_script(logic, contract_id)
            call = make_call()

            context: Mapping[str, Any] = {
                "data": valid_contract.serialized if valid_contract else None,
                "state": valid_state,
                input_key: valid_input,
            }
            result = self._evaluator.run(
                utc_offset,
                now,
                options,
                context,
                executable,
                call,
                self._timeout_s,
            )

            response = logic.validate_output(result.response, utc_offset)
            new_state = logic.validate_output(result.state, utc_offset)
            emit = logic.validate_output_array(result.emit, utc_offset)

        except EngineError:
            logger.error("Contract execution failed", extra=extra, exc_info=True)
            raise
        except Exception as e:
            logger.error("Unexpected engine error", extra=extra, exc_info=True)
            raise EngineError(f"Unexpected error: {e}") from e

        logger.info("Contract execution completed", extra=extra)
        return response, new_state, emit

    def trigger(
        self,
        logic: LogicManager,
        contract_id: str,
        contract: Any,
        request: Any,
        state: Any,
        config: ExecutionConfig | None = None,
    ) -> dict[str, Any]:
        """
        Dispatch a request to the clause that handles its type.

        Args:
            logic: Compiled logic
            contract_id: Contract identity
            contract: Contract data JSON
            request: Request JSON
            state: Current state JSON
            config: Time, options and validation settings

        Returns:
            ``{clause, request, response, state, emit}`` with the request
            echoed as given

        Raises:
            ValidationError: If an input or output does not match the model
            CompileError: If the logic is not compiled or has no dispatch
            UnsupportedTargetError: If the logic target cannot be run
            SandboxRuntimeError: If the logic fails
            ExecutionTimeoutError: If the logic exceeds its budget
        """
        config = config or ExecutionConfig()
        response, new_state, emit = self._execute(
            logic,
            contract_id,
            "dispatch",
            contract,
            state,
            config,
            input_key="request",
            input_value=request,
            validate=logic.validate_input,
            make_call=logic.get_dispatch_call,
        )
        return TriggerResult(
            clause=contract_id,
            request=request,
            response=response,
            state=new_state,
            emit=emit,
        ).model_dump()

    def invoke(
        self,
        logic: LogicManager,
        contract_id: str,
        clause_name: str,
        contract: Any,
        params: Any,
        state: Any,
        config: ExecutionConfig | None = None,
    ) -> dict[str, Any]:
        """
        Invoke a clause by name.

        Each parameter is validated on its own; the original parameters are
        echoed in the result.

        Returns:
            ``{clause, params, response, state, emit}``

        Raises:
            Same as ``trigger``; ``CompileError`` if the logic has no
            contract identity
        """
        config = config or ExecutionConfig()
        response, new_state, emit = self._execute(
            logic,
            contract_id,
            clause_name,
            contract,
            state,
            config,
            input_key="params",
            input_value=params,
            validate=logic.validate_input_record,
            make_call=lambda: logic.get_invoke_call(clause_name),
        )
        return InvokeResult(
            clause=contract_id,
            params=params,
            response=response,
            state=new_state,
            emit=emit,
        ).model_dump()

    def init(
        self,
        logic: LogicManager,
        contract_id: str,
        contract: Any,
        params: Any = None,
        config: ExecutionConfig | None = None,
    ) -> dict[str, Any]:
        """Invoke the ``init`` clause starting from the default state."""
        params = params if params is not None else {}
        return self.invoke(logic, contract_id, "init", contract, params, self._default_state(logic), config)

    def calculate(
        self,
        logic: LogicManager,
        contract_id: str,
        name: str,
        contract: Any,
        config: ExecutionConfig | None = None,
    ) -> dict[str, Any]:
        """
        Evaluate a formula clause with no parameters and the default state.

        Embedded resources in the contract are passed to the formula as
        bare identifiers.
        """
        config = config or ExecutionConfig()
        config = config.model_copy(
            update={
                "validate_options": config.validate_options.model_copy(update={"convert_resources_to_id": True}),
            }
        )
        return self.invoke(logic, contract_id, name, contract, {}, self._default_state(logic), config)

    # ------------------------------------------------------------------
    # Compile, then run
    # ------------------------------------------------------------------

    async def _compiled_contract_name(self, logic: LogicManager) -> str:
        await logic.compile_logic(False)
        contract_name = logic.get_contract_name()
        if not contract_name:
            raise CompileError("Compiled logic does not declare a contract")
        return contract_name

    async def compile_and_trigger(
        self,
        logic: LogicManager,
        contract: Any,
        request: Any,
        state: Any,
        config: ExecutionConfig | None = None,
    ) -> dict[str, Any]:
        """Compile the logic if needed, then ``trigger`` it."""
        contract_id = await self._compiled_contract_name(logic)
        return self.trigger(logic, contract_id, contract, request, state, config)

    async def compile_and_invoke(
        self,
        logic: LogicManager,
        clause_name: str,
        contract: Any,
        params: Any,
        state: Any,
        config: ExecutionConfig | None = None,
    ) -> dict[str, Any]:
        """Compile the logic if needed, then ``invoke`` a clause."""
        contract_id = await self._compiled_contract_name(logic)
        return self.invoke(logic, contract_id, clause_name, contract, params, state, config)

    async def compile_and_init(
        self,
        logic: LogicManager,
        contract: Any,
        params: Any = None,
        config: ExecutionConfig | None = None,
    ) -> dict[str, Any]:
        """Compile the logic if needed, then ``init`` the contract."""
        contract_id = await self._compiled_contract_name(logic)
        return self.init(logic, contract_id, contract, params, config)

    async def compile_and_calculate(
        self,
        logic: LogicManager,
        name: str,
        contract: Any,
        config: ExecutionConfig | None = None,
    ) -> dict[str, Any]:
        """Compile the logic if needed, then ``calculate`` a formula."""
        contract_id = await self._compiled_contract_name(logic)
        return self.calculate(logic, contract_id, name, contract, config)
