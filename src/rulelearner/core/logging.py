"""Structured logging infrastructure for the rule learner.

Wraps structlog with learner-specific context such as the learning run id,
the session id and the component name. Supports console and JSON output,
optionally mirrored to a rotating log file.

Example usage:
    from rulelearner.core.logging import configure_logging, get_logger

    configure_logging(level="DEBUG", format="console")
    logger = get_logger("generator")
    logger.info("rule_generated", category="performance")

    ctx = LearningRunContext(source="batch")
    with with_context(ctx):
        logger.info("batch_started")  # includes run_id, source
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

if TYPE_CHECKING:
    from rulelearner.core.config import LogConfig

# Field names whose values are never written to logs
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "token",
    "secret",
    "password",
    "credential",
    "authorization",
})


@dataclass(frozen=True)
class LearningRunContext:
    """Immutable correlation context for one learning run.

    Attributes:
        run_id: Unique id of the learning run.
        session_id: Optional monitor session id the run belongs to.
        component: Component currently doing the work.
        source: What triggered the run ("live", "batch", ...).
    """

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    session_id: str | None = None
    component: str = "pipeline"
    source: str = "live"

    def with_component(self, component: str) -> LearningRunContext:
        """Return a copy of this context for another component."""
        return LearningRunContext(
            run_id=self.run_id,
            session_id=self.session_id,
            component=component,
            source=self.source,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "run_id": self.run_id,
            "component": self.component,
            "source": self.source,
        }
        if self.session_id is not None:
            result["session_id"] = self.session_id
        return result


_current_context: ContextVar[LearningRunContext | None] = ContextVar(
    "rulelearner_context", default=None
)


def get_current_context() -> LearningRunContext | None:
    """Get the active LearningRunContext, if any."""
    return _current_context.get()


@contextmanager
def with_context(ctx: LearningRunContext) -> Iterator[LearningRunContext]:
    """Set the LearningRunContext for the duration of a block.

    Args:
        ctx: The context to activate.

    Yields:
        The context that was set.
    """
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _redact(key: str, value: Any) -> Any:
    key_lower = key.lower()
    if any(pattern in key_lower for pattern in SENSITIVE_PATTERNS):
        return "[REDACTED]"
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts sensitive fields, one level deep."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {k: _redact(k, v) for k, v in value.items()}
        else:
            sanitized[key] = _redact(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that merges the active LearningRunContext.

    Explicitly bound keys take precedence over context keys.
    """
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


class LearnerLogger:
    """Component logger wrapping structlog.

    The underlying structlog logger is fetched on every call so loggers
    created at import time still honour a later configure_logging().
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    @property
    def component(self) -> str:
        return self._component

    def bind(self, **context: Any) -> LearnerLogger:
        """Return a new logger with additional bound context."""
        new_logger = LearnerLogger.__new__(LearnerLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log an error with traceback. Call from inside an except block."""
        self._get_logger().exception(event, **kw)


def _build_processors(
    renderer: Processor,
    include_timestamps: bool,
    include_context: bool,
) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
    ]
    if include_context:
        processors.append(_add_context)
    if include_timestamps:
        processors.append(_add_timestamp)
    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console", "both"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 20,
    backup_count: int = 3,
    include_timestamps: bool = True,
    include_context: bool = True,
) -> None:
    """Configure structured logging for the rule learner.

    Call once at startup, before the pipeline runs.

    Args:
        level: Minimum log level to capture.
        format: "console" for human-readable stderr output, "json" for
            structured output (to file_path, or stdout when no file is given),
            "both" for console on stderr plus JSON in file_path.
        file_path: Log file location. Required when format="both".
        max_file_size_mb: Size at which the log file rotates.
        backup_count: Number of rotated files to keep.
        include_timestamps: Add ISO 8601 UTC timestamps.
        include_context: Merge the active LearningRunContext into events.

    Raises:
        ValueError: If format="both" without a file_path.
    """
    if format == "both" and file_path is None:
        raise ValueError("file_path is required when format='both'")

    log_level = getattr(logging, level)
    handlers: list[logging.Handler] = []

    if format in ("console", "both"):
        handlers.append(logging.StreamHandler(sys.stderr))

    if format in ("json", "both"):
        if file_path is not None:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(
                RotatingFileHandler(
                    file_path,
                    maxBytes=max_file_size_mb * 1024 * 1024,
                    backupCount=backup_count,
                    encoding="utf-8",
                )
            )
        else:
            handlers.append(logging.StreamHandler(sys.stdout))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        handler.setLevel(log_level)
        root_logger.addHandler(handler)

    renderer: Processor
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    # cache_logger_on_first_use=False keeps import-time loggers reconfigurable
    structlog.configure(
        processors=_build_processors(renderer, include_timestamps, include_context),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def configure_logging_from(config: LogConfig) -> None:
    """Configure logging from the ``logging`` section of RuleLearningConfig."""
    configure_logging(level=config.level, format=config.format, file_path=config.file_path)


def get_logger(component: str, **initial_context: Any) -> LearnerLogger:
    """Get a logger bound to a component name.

    Args:
        component: Component name (e.g., "generator", "approver").
        **initial_context: Extra context to bind.

    Returns:
        A LearnerLogger for the component.
    """
    return LearnerLogger(component, **initial_context)


__all__ = [
    "LearnerLogger",
    "LearningRunContext",
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "configure_logging_from",
    "get_current_context",
    "get_logger",
    "with_context",
]
