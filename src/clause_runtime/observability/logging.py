"""Structured JSON logging with invocation context."""
import logging
import sys
from typing import Any

from pythonjsonlogger import jsonlogger

from clause_runtime.config import get_settings

CONTEXT_FIELDS = ("trace_id", "contract_id", "clause_name", "engine_kind")


class TraceContextFilter(logging.Filter):
    """Add invocation context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add default context fields if not present."""
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with standardized field names."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        """Add custom fields to the log record."""
        super().add_fields(log_record, record, message_dict)

        if "timestamp" not in log_record:
            log_record["timestamp"] = self.formatTime(record, self.datefmt)

        log_record["level"] = record.levelname
        log_record["logger"] = record.name

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value:
                log_record[name] = value
            else:
                log_record.pop(name, None)


def setup_logging() -> None:
    """Configure structured JSON logging for the runtime."""
    settings = get_settings()

    handler = logging.StreamHandler(sys.stdout)

    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    handler.setFormatter(formatter)
    handler.addFilter(TraceContextFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level)


class ContextAdapter(logging.LoggerAdapter):
    """Logger adapter that merges per-call extra with the adapter context."""

    def process(self, msg: Any, kwargs: dict[str, Any]) -> tuple[Any, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_logger(name: str) -> logging.LoggerAdapter:
    """
    Get a logger with context support.

    Args:
        name: Logger name (typically __name__)

    Returns:
        LoggerAdapter that can accept invocation context in extra dict
    """
    logger = logging.getLogger(name)
    return ContextAdapter(logger, extra={})


def with_trace_context(
    logger: logging.LoggerAdapter,
    trace_id: str | None = None,
    contract_id: str | None = None,
    clause_name: str | None = None,
    engine_kind: str | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Create an extra dict with invocation context for logging.

    Args:
        logger: Logger adapter
        trace_id: Trace ID
        contract_id: Contract identity being executed
        clause_name: Clause being invoked
        engine_kind: Evaluator kind (isolated or direct)
        **kwargs: Additional context fields

    Returns:
        Dict to pass as extra parameter to logger methods
    """
    extra = kwargs.copy()
    if trace_id:
        extra["trace_id"] = trace_id
    if contract_id:
        extra["contract_id"] = contract_id
    if clause_name:
        extra["clause_name"] = clause_name
    if engine_kind:
        extra["engine_kind"] = engine_kind
    return extra
