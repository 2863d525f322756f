"""
Rift Observability

Structured logging for the compiler, the VM and the harness.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                    Application Code                      │
    │  logger.info("compiled", contract="Wallet", paths=4)     │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                      RiftLogger                          │
    │     layer tagging, compilation id, structured context    │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                   StructuredHandler                      │
    │              JSON lines or plain text on stderr          │
    └─────────────────────────────────────────────────────────┘

Levels and formats come from the ``observability`` config section.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import contextlib
import contextvars
import functools
import json
import logging
import sys
import time
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar

from rift.config import get_config

# Identifies the compilation or execution a log line belongs to.
operation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "operation_id", default=""
)


class LogLevel(Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class RiftLayer(Enum):
    """Rift components for categorization."""
    CELL = "cell"
    MODEL = "model"
    TRACE = "trace"
    LOWERING = "lowering"
    VM = "vm"
    HARNESS = "harness"
    CONFIG = "config"
    CLI = "cli"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    operation_id: str = ""
    layer: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def to_text(self) -> str:
        context = " ".join(f"{k}={v}" for k, v in self.context.items())
        line = f"{self.timestamp} {self.level.upper():8} [{self.layer}] {self.message}"
        if self.duration_ms is not None:
            line += f" ({self.duration_ms:.2f}ms)"
        if context:
            line += f" {context}"
        if self.exception:
            line += "\n" + self.exception
        return line


class StructuredHandler(logging.Handler):
    """Logging handler that outputs structured JSON or text lines."""

    def __init__(self, stream: Any = None, fmt: str = "json"):
        super().__init__()
        self.stream = stream
        self.fmt = fmt

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                operation_id=operation_id_var.get(),
                layer=getattr(record, "layer", ""),
                operation=getattr(record, "operation", ""),
                duration_ms=getattr(record, "duration_ms", None),
                error_code=getattr(record, "error_code", ""),
                context=getattr(record, "context", {}),
            )

            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))

            stream = self.stream or sys.stderr
            stream.write((event.to_text() if self.fmt == "text" else event.to_json()) + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)


class RiftLogger:
    """
    Structured logger for Rift components.

    Includes the active operation id and layer in every event.
    """

    def __init__(
        self,
        name: str,
        layer: RiftLayer,
        level: Optional[LogLevel] = None,
    ):
        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"rift.{layer.value}.{name}")
        self._explicit_level = level
        self._handler = next(
            (h for h in self._logger.handlers if isinstance(h, StructuredHandler)), None
        )
        if self._handler is None:
            self._handler = StructuredHandler()
            self._logger.addHandler(self._handler)
        self._sync()

    def _sync(self) -> None:
        """Pick up level and format from configuration."""
        obs = get_config().observability
        level = self._explicit_level.value if self._explicit_level else obs.log_level.get()
        self._logger.setLevel(getattr(logging, level.upper()))
        self._handler.fmt = obs.log_format.get()

    def is_enabled_for(self, level: LogLevel) -> bool:
        self._sync()
        return self._logger.isEnabledFor(getattr(logging, level.value.upper()))

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        """Internal log method."""
        self._sync()
        extra = {
            "layer": self.layer.value,
            "operation": operation,
            "error_code": error_code,
            "duration_ms": duration_ms,
            "context": context,
        }
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        """Log debug message."""
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        """Log info message."""
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        """Log warning message."""
        self._log(logging.WARNING, message, **context)

    def error(
        self,
        message: str,
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        """Log error message."""
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)

    def operation(
        self,
        name: str,
        duration_ms: float,
        success: bool = True,
        **context: Any,
    ) -> None:
        """Log an operation completion."""
        level = logging.INFO if success else logging.WARNING
        status = "completed" if success else "failed"
        self._log(
            level,
            f"Operation {name} {status}",
            operation=name,
            duration_ms=duration_ms,
            **context,
        )


def new_operation_id(prefix: str = "op") -> contextvars.Token:
    """Start a new operation id for the current context."""
    return operation_id_var.set(f"{prefix}-{uuid.uuid4().hex[:12]}")


@contextlib.contextmanager
def operation_scope(prefix: str) -> Iterator[str]:
    """
    Run a block under an operation id.

    An id already active in the context is kept, so nested operations
    log under the outer id.
    """
    if operation_id_var.get():
        yield operation_id_var.get()
        return
    token = new_operation_id(prefix)
    try:
        yield operation_id_var.get()
    finally:
        operation_id_var.reset(token)


def get_logger(name: str, layer: RiftLayer) -> RiftLogger:
    """Get a logger for a Rift component."""
    return RiftLogger(name, layer)


T = TypeVar("T")


def timed_operation(
    logger: RiftLogger,
    operation_name: str,
    id_prefix: Optional[str] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator for timing and logging operations.

    With ``id_prefix`` the call runs inside ``operation_scope(id_prefix)``.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            scope = operation_scope(id_prefix) if id_prefix else contextlib.nullcontext()
            with scope:
                start = time.monotonic()
                success = True
                try:
                    return func(*args, **kwargs)
                except Exception:
                    success = False
                    raise
                finally:
                    duration_ms = (time.monotonic() - start) * 1000
                    logger.operation(operation_name, duration_ms, success)
        return wrapper
    return decorator
