"""
Structured logging for the royalty kernel.

Every logger lives under the ``royalty_kernel`` namespace and carries the
operation context bound in LogContext (correlation, actor, batch,
productora, conflict).  Records render either as one JSON object per line
(``fmt="json"``, the default) or as ``key=value`` text for terminals.

Events are snake_case messages with their data in ``extra={...}``::

    logger.info("ledger_posted", extra={"sequence": 7, "kind": "payment"})

RoyaltyKernelError exceptions logged with ``exc_info`` contribute their
code, fatal flag, reason and structured attributes as ``exc_*`` fields.
"""

__all__ = [
    "StructuredFormatter",
    "TextFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "royalty_kernel"

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------


class LogContext:
    """Operation-scoped log fields, isolated per thread and per task."""

    _FIELD_NAMES = (
        "correlation_id",
        "actor_id",
        "batch_id",
        "productora_id",
        "conflict_id",
    )

    _vars: dict[str, ContextVar[str | None]] = {
        name: ContextVar(f"royalty_log_{name}", default=None) for name in _FIELD_NAMES
    }

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set known fields; None values and unknown names are ignored."""
        for name, value in fields.items():
            var = cls._vars.get(name)
            if var is not None and value is not None:
                var.set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            name: value
            for name in cls._FIELD_NAMES
            if (value := cls._vars[name].get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in cls._vars.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: Any) -> "_BoundContext":
        """Set fields for the duration of a ``with`` block, then restore them."""
        return _BoundContext(fields)


class _BoundContext:
    def __init__(self, fields: dict[str, Any]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar, Any]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            var = LogContext._vars.get(name)
            if var is not None and value is not None:
                self._tokens.append((var, var.set(str(value))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()


# ---------------------------------------------------------------------------
# Record payload
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}

# Attributes rendered by _exception_fields itself, or never useful in logs
_EXC_SKIP = frozenset({"args", "code", "fatal", "reason"})


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
        fields["exc_fatal"] = bool(getattr(exc, "fatal", False))
        fields["exc_reason"] = getattr(exc, "reason", str(exc))
    for key, value in vars(exc).items():
        if not key.startswith("_") and key not in _EXC_SKIP:
            fields[f"exc_{key}"] = value
    return fields


def _record_payload(record: logging.LogRecord) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
    }
    payload.update(LogContext.get_all())
    for key, value in vars(record).items():
        if key not in _STDLIB_KEYS and key not in payload:
            payload[key] = value
    if record.exc_info and record.exc_info[1] is not None:
        payload.update(_exception_fields(record.exc_info[1]))
    return payload


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = _record_payload(record)
        if record.exc_info and record.exc_info[1] is not None:
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_default)


class TextFormatter(logging.Formatter):
    """``ts LEVEL logger message key=value ...`` for interactive use."""

    def format(self, record: logging.LogRecord) -> str:
        payload = _record_payload(record)
        head = " ".join(
            str(payload.pop(key)) for key in ("ts", "level", "logger", "message")
        )
        tail = " ".join(
            f"{key}={value if isinstance(value, (str, int)) else _json_default(value)}"
            for key, value in payload.items()
        )
        line = f"{head} {tail}" if tail else head
        if record.exc_info and record.exc_info[1] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


_FORMATTERS: dict[str, type[logging.Formatter]] = {
    "json": StructuredFormatter,
    "text": TextFormatter,
}

# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger ``royalty_kernel.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int | str = logging.INFO,
    fmt: str = "json",
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Install one handler on the ``royalty_kernel`` logger.

    Idempotent: only the first call in a process (or since
    ``reset_logging``) has any effect.

    Raises:
        ValueError: ``fmt`` is neither ``json`` nor ``text``.
    """
    global _configured
    formatter_type = _FORMATTERS.get(fmt)
    if formatter_type is None:
        raise ValueError(f"Unknown log format {fmt!r}; expected one of {sorted(_FORMATTERS)}")

    with _lock:
        if _configured:
            return
        _configured = True

        kernel_logger = logging.getLogger(_LOGGER_PREFIX)
        kernel_logger.setLevel(level)
        kernel_logger.propagate = False

        target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(formatter_type())
        kernel_logger.addHandler(target)


def reset_logging() -> None:
    """Remove the installed handler so ``configure_logging`` runs again.  Tests only."""
    global _configured
    with _lock:
        _configured = False
        kernel_logger = logging.getLogger(_LOGGER_PREFIX)
        kernel_logger.handlers.clear()
        kernel_logger.setLevel(logging.WARNING)
