"""
Structured JSON logging (``payroll_kernel.logging_config``).

Every payroll log line is one JSON object: the envelope (``ts``, ``level``,
``logger``, ``message``), then whatever ``LogContext`` fields are bound,
then the record's ``extra`` payload.  Payroll errors logged with
``exc_info`` add their ``code`` and structured attributes, so a rejected
transition can be found by ``exc_code`` without parsing messages.

Context fields are bound by the layer that knows them:
``PayrollRunService`` binds ``run_id`` and ``actor_id`` for the duration of
each operation, and ``PayrollLineCalculator`` binds ``employee_id`` while it
computes one line.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "LOGGER_NAMESPACE",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

from payroll_kernel.exceptions import PayrollKernelError

LOGGER_NAMESPACE = "payroll_kernel"

CONTEXT_FIELDS: tuple[str, ...] = ("correlation_id", "run_id", "actor_id", "employee_id")

_EMPTY: Mapping[str, str] = MappingProxyType({})

_context: ContextVar[Mapping[str, str]] = ContextVar("payroll_log_context", default=_EMPTY)


class LogContext:
    """
    Fields merged into every record logged in the current thread or task.

    The whole context is one immutable mapping held in a ``ContextVar``;
    ``bind`` layers fields on top and restores the previous mapping on exit,
    so nested operations (a run, then one employee inside it) unwind cleanly.
    """

    @staticmethod
    def _merge(fields: Mapping[str, object]) -> Token:
        unknown = sorted(set(fields) - set(CONTEXT_FIELDS))
        if unknown:
            raise ValueError(f"unknown log context field(s): {', '.join(unknown)}")
        merged = dict(_context.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        return _context.set(MappingProxyType(merged))

    @classmethod
    def set(cls, **fields: object) -> None:
        """Merge fields into the current context; ``None`` values are skipped."""
        cls._merge(fields)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **fields: object) -> Iterator[type["LogContext"]]:
        token = cls._merge(fields)
        try:
            yield cls
        finally:
            _context.reset(token)


def _to_json(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return str(value)


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    if isinstance(exc, PayrollKernelError):
        fields["exc_code"] = exc.code
        for name, value in vars(exc).items():
            if not name.startswith("_"):
                fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_context.get())

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    """``get_logger("engines.tax")`` -> ``payroll_kernel.engines.tax``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


# Marks the handler installed by configure_logging so reset_logging removes
# only that one and leaves handlers attached by tests alone.
_INSTALLED_ATTR = "_payroll_structured_handler"
_install_lock = threading.Lock()


def _installed_handler(namespace: logging.Logger) -> logging.Handler | None:
    for handler in namespace.handlers:
        if getattr(handler, _INSTALLED_ATTR, False):
            return handler
    return None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> logging.Handler:
    """
    Install the JSON handler on the ``payroll_kernel`` namespace.

    Idempotent: once a handler is installed, later calls return it unchanged
    and ignore their arguments.
    """
    namespace = logging.getLogger(LOGGER_NAMESPACE)
    with _install_lock:
        existing = _installed_handler(namespace)
        if existing is not None:
            return existing

        installed = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        installed.setFormatter(StructuredFormatter())
        setattr(installed, _INSTALLED_ATTR, True)
        namespace.addHandler(installed)
        namespace.setLevel(level)
        namespace.propagate = False
        return installed


def reset_logging() -> None:
    """Undo ``configure_logging``.  Used by tests."""
    namespace = logging.getLogger(LOGGER_NAMESPACE)
    with _install_lock:
        installed = _installed_handler(namespace)
        if installed is not None:
            namespace.removeHandler(installed)
        namespace.setLevel(logging.WARNING)
        namespace.propagate = True
