"""Error taxonomy for the clause runtime."""


class EngineError(Exception):
    """Base exception for runtime errors."""

    pass


class ModelError(EngineError):
    """Raised when model files are malformed or inconsistent."""

    pass


class CompileError(EngineError):
    """Raised when contract logic cannot be compiled."""

    def __init__(self, message: str, file_name: str | None = None, line: int | None = None):
        self.file_name = file_name
        self.line = line
        location = ""
        if file_name:
            location = f" ({file_name}" + (f":{line}" if line else "") + ")"
        super().__init__(f"{message}{location}")


class ValidationError(EngineError):
    """Raised when a value does not conform to the model.

    The ``path`` attribute names the offending field, e.g. ``items[2].amount``.
    """

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        self.reason = message
        if path:
            message = f"{path}: {message}"
        super().__init__(message)


class UnsupportedTargetError(EngineError):
    """Raised when a compile target has no renderer or evaluator."""

    def __init__(self, target: str, message: str | None = None):
        self.target = target
        super().__init__(message or f"Unsupported target: {target}")


class SandboxRuntimeError(EngineError):
    """Raised when executed contract logic fails."""

    def __init__(self, message: str, kind: str | None = None):
        self.kind = kind
        label = f"[{kind}] " if kind else ""
        super().__init__(f"{label}{message}")


class ExecutionTimeoutError(EngineError, TimeoutError):
    """Raised when contract logic exceeds its wall-clock budget."""

    def __init__(self, timeout_s: float, kind: str | None = None):
        self.timeout_s = timeout_s
        self.kind = kind
        label = f"[{kind}] " if kind else ""
        super().__init__(f"{label}Contract logic timed out after {timeout_s}s")
