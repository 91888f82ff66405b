"""
Structured logging for the IAV monitor.

Every service thread (HTTP intake, queue consumer, dispatch pool) logs
through structlog. Log lines carry a correlation ID from a context
variable, so one eligibility request or income batch can be followed
across threads. Werkzeug, httpx and other stdlib loggers are rendered by
the same formatter, so the output stays one format.

Fun fact: Personal numbers are PII in every jurisdiction that issues them,
so a processor masks them (and incomes) on every line, not just the ones
we remember to scrub.
"""

import contextvars
import logging
import os
import secrets
import sys
import time
from typing import IO, Any

import structlog

REDACTED = "***REDACTED***"

# Fields that identify a person or their finances
REDACTED_FIELDS = frozenset(
    {
        "personal_number",
        "income",
        "salary_income",
        "capital_income",
    }
)

# Loggers that only repeat what our own lines already say
_NOISY_LOGGERS = ("werkzeug", "httpx", "httpcore")

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

# Handler installed by configure_logging(), replaced on reconfiguration
_handler: logging.Handler | None = None


# ============================================================================
# Correlation IDs
# ============================================================================


def generate_correlation_id() -> str:
    """22-character URL-safe ID (128 bits)."""
    return secrets.token_urlsafe(16)


def get_correlation_id() -> str:
    """The current correlation ID; one is created on first use."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current thread or context."""
    correlation_id_var.set(correlation_id)


# ============================================================================
# Processors
# ============================================================================


def add_correlation_id(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    event_dict.setdefault("correlation_id", get_correlation_id())
    return event_dict


def redact_context(context: dict[str, Any]) -> dict[str, Any]:
    """
    Copy of a log context with personal and financial fields masked.

    Example:
        >>> redact_context({"personal_number": "19900101-1234", "employer_id": 7})
        {"personal_number": "***REDACTED***", "employer_id": 7}
    """
    return {k: REDACTED if k in REDACTED_FIELDS else v for k, v in context.items()}


def redact_personal_fields(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor applying redact_context to every log line."""
    return redact_context(event_dict)


def _shared_processors() -> list[structlog.types.Processor]:
    """Processors run for structlog and foreign (stdlib) records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        add_correlation_id,
        redact_personal_fields,
    ]


def _renderer_chain(json_output: bool, colors: bool) -> list[structlog.types.Processor]:
    if json_output:
        return [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return [structlog.dev.ConsoleRenderer(colors=colors)]


# ============================================================================
# Setup
# ============================================================================


def is_production() -> bool:
    """True when ENVIRONMENT=production."""
    return os.getenv("ENVIRONMENT", "development").lower() == "production"


def configure_logging(
    *,
    json_output: bool | None = None,
    log_level: str = "INFO",
    stream: IO[str] | None = None,
) -> None:
    """
    Configure structlog and the root stdlib logger.

    Safe to call more than once; the handler from the previous call is
    replaced, not duplicated.

    Args:
        json_output: JSON lines if True, console lines if False
            (None: JSON in production, console otherwise)
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        stream: Where to write (default: stdout)
    """
    global _handler

    if json_output is None:
        json_output = is_production()
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    out = stream or sys.stdout
    colors = not json_output and out.isatty()

    shared = _shared_processors()
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *_renderer_chain(json_output, colors),
        ],
    )
    handler = logging.StreamHandler(out)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)
    root.addHandler(handler)
    root.setLevel(level)
    _handler = handler

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structured logger for a module (pass __name__)."""
    return structlog.get_logger(name)


# ============================================================================
# Operation logging
# ============================================================================


class LogOperation:
    """
    Times a unit of work and logs its start, completion or failure.

    Context fields are redacted before they reach the logger. A failure
    is logged and the exception propagates.

    Example:
        >>> with LogOperation(logger, "stick_control", personal_number=pn):
        ...     accumulator.process(event)
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        **context: Any,
    ) -> None:
        self.operation = operation
        self.logger = logger.bind(operation=operation, **redact_context(context))
        self._started: float | None = None

    @property
    def elapsed_seconds(self) -> float:
        """Seconds since the block was entered (0.0 before that)."""
        if self._started is None:
            return 0.0
        return time.perf_counter() - self._started

    def __enter__(self) -> "LogOperation":
        self._started = time.perf_counter()
        self.logger.debug(f"{self.operation} started")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        duration_ms = round(self.elapsed_seconds * 1000, 2)
        if exc_type is None:
            self.logger.info(f"{self.operation} completed", duration_ms=duration_ms)
            return

        # Tracebacks stay out of production logs
        self.logger.error(
            f"{self.operation} failed",
            duration_ms=duration_ms,
            error=str(exc_val),
            exc_info=not is_production(),
        )
