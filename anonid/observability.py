"""
Observability: Structured Logging, Tracing, and Audit

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │     Registry · Ledger · Consent · Orchestrator · ZK     │
    │  log.info("msg", commitment=c)   tracer.span("verify")  │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │              CoreLogger / Tracer / AuditLogger          │
    │  Context propagation, correlation IDs, hash chaining    │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │           logging "anonid" hierarchy handlers           │
    │        StructuredHandler (JSON) │ text formatter        │
    └─────────────────────────────────────────────────────────┘

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import hashlib
import json
import logging
import sys
import threading
import time
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, TypeVar

# Context variables for request-scoped data
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)
span_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "span_id", default=""
)
trace_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "trace_id", default=""
)

ROOT_LOGGER_NAME = "anonid"


class LogLevel(Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class CoreLayer(Enum):
    """Authorization core layers for categorization."""
    REGISTRY = "registry"
    LEDGER = "ledger"
    CONSENT = "consent"
    VERIFICATION = "verification"
    ZK = "zk"
    EVENTS = "events"
    CONFIG = "config"
    CORE = "core"
    CLI = "cli"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    trace_id: str = ""
    span_id: str = ""
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
        return json.dumps(self.to_dict(), default=str)


# =============================================================================
# TRACING
# =============================================================================

@dataclass
class Span:
    """A timed unit of work within a trace."""
    trace_id: str
    span_id: str
    parent_span_id: str = ""
    name: str = ""
    layer: str = ""
    start_time: float = field(default_factory=time.monotonic)
    end_time: Optional[float] = None
    status: str = "ok"
    attributes: Dict[str, Any] = field(default_factory=dict)

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def set_status(self, status: str, message: str = "") -> None:
        self.status = status
        if message:
            self.attributes["status_message"] = message

    def end(self) -> None:
        if self.end_time is None:
            self.end_time = time.monotonic()

    @property
    def duration_ms(self) -> float:
        end = self.end_time or time.monotonic()
        return (end - self.start_time) * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_span_id": self.parent_span_id,
            "name": self.name,
            "layer": self.layer,
            "duration_ms": round(self.duration_ms, 2),
            "status": self.status,
            "attributes": self.attributes,
        }


class SpanContext:
    """Context manager for spans."""

    def __init__(self, tracer: "Tracer", name: str, layer: CoreLayer, **attributes: Any):
        self.tracer = tracer
        self.name = name
        self.layer = layer
        self.attributes = attributes
        self.span: Optional[Span] = None
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> Span:
        self.span = self.tracer.start_span(self.name, self.layer, **self.attributes)
        self._token = span_id_var.set(self.span.span_id)
        return self.span

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.span:
            if exc_type:
                self.span.set_status("error", str(exc_val))
                self.span.set_attribute("exception_type", exc_type.__name__)
            self.tracer.end_span(self.span)
        if self._token:
            span_id_var.reset(self._token)


class Tracer:
    """
    Minimal in-process tracer.

    Spans are handed to registered exporters when they end. Exporter failures
    are logged and do not affect the traced operation.
    """

    def __init__(self, service_name: str = "anonid"):
        self.service_name = service_name
        self._active: Dict[str, Span] = {}
        self._lock = threading.RLock()
        self._exporters: List[Callable[[Span], None]] = []

    def add_exporter(self, exporter: Callable[[Span], None]) -> None:
        with self._lock:
            self._exporters.append(exporter)

    def start_trace(self) -> str:
        trace_id = uuid.uuid4().hex
        trace_id_var.set(trace_id)
        return trace_id

    def start_span(self, name: str, layer: CoreLayer, **attributes: Any) -> Span:
        span = Span(
            trace_id=trace_id_var.get() or self.start_trace(),
            span_id=uuid.uuid4().hex[:16],
            parent_span_id=span_id_var.get(),
            name=name,
            layer=layer.value,
            attributes=attributes,
        )
        with self._lock:
            self._active[span.span_id] = span
        return span

    def end_span(self, span: Span) -> None:
        span.end()
        with self._lock:
            self._active.pop(span.span_id, None)
            exporters = list(self._exporters)

        for exporter in exporters:
            try:
                exporter(span)
            except Exception:
                logging.getLogger(ROOT_LOGGER_NAME).warning(
                    "Span exporter %r failed", exporter, exc_info=True
                )

    def span(self, name: str, layer: CoreLayer, **attributes: Any) -> SpanContext:
        return SpanContext(self, name, layer, **attributes)

    @property
    def active_spans(self) -> int:
        with self._lock:
            return len(self._active)


# =============================================================================
# LOGGING
# =============================================================================

class StructuredHandler(logging.Handler):
    """Logging handler that outputs structured JSON, one object per line."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                correlation_id=correlation_id_var.get(),
                trace_id=trace_id_var.get(),
                span_id=span_id_var.get(),
                layer=getattr(record, "layer", ""),
                operation=getattr(record, "operation", ""),
                duration_ms=getattr(record, "duration_ms", None),
                error_code=getattr(record, "error_code", ""),
                context=getattr(record, "context", {}),
            )

            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))

            self.stream.write(event.to_json() + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


_configure_lock = threading.Lock()
_configured = False


def configure_logging(level: str = "info", fmt: str = "json", stream: Any = None) -> logging.Logger:
    """
    Install a single handler on the ``anonid`` logger hierarchy.

    Calling again replaces the handler, so the level and format can follow
    configuration reloads.
    """
    global _configured
    root = logging.getLogger(ROOT_LOGGER_NAME)
    with _configure_lock:
        for handler in list(root.handlers):
            if getattr(handler, "_anonid_handler", False):
                root.removeHandler(handler)

        if fmt == "json":
            handler: logging.Handler = StructuredHandler(stream)
        else:
            handler = logging.StreamHandler(stream or sys.stderr)
            handler.setFormatter(logging.Formatter(
                "%(asctime)s %(levelname)s %(name)s: %(message)s"
            ))
        handler._anonid_handler = True  # type: ignore[attr-defined]
        root.addHandler(handler)
        root.setLevel(getattr(logging, level.upper()))
        _configured = True
    return root


class CoreLogger:
    """
    Structured logger for authorization core components.

    Automatically includes correlation IDs, trace context, and layer
    information in all log events.
    """

    def __init__(self, name: str, layer: CoreLayer):
        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{layer.value}.{name}")
        if not _configured:
            configure_logging()

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
        if not self._logger.isEnabledFor(level):
            return
        extra = {
            "layer": self.layer.value,
            "operation": operation,
            "error_code": error_code,
            "duration_ms": duration_ms,
            "context": context,
        }
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def error(
        self,
        message: str,
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
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


def generate_correlation_id() -> str:
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    """Get the current correlation ID, creating one if unset."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


_tracer: Optional[Tracer] = None
_tracer_lock = threading.Lock()


def get_tracer() -> Tracer:
    """Get the global tracer instance."""
    global _tracer
    if _tracer is None:
        with _tracer_lock:
            if _tracer is None:
                _tracer = Tracer()
    return _tracer


def get_logger(name: str, layer: CoreLayer) -> CoreLogger:
    return CoreLogger(name, layer)


T = TypeVar("T")


def timed_operation(
    logger: CoreLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for timing and logging operations."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            start = time.monotonic()
            success = True
            error_code = ""
            try:
                return func(*args, **kwargs)
            except Exception as e:
                success = False
                error_code = getattr(e, "code", type(e).__name__)
                raise
            finally:
                duration_ms = (time.monotonic() - start) * 1000
                if success:
                    logger.operation(operation_name, duration_ms, True)
                else:
                    logger.operation(operation_name, duration_ms, False, error_code=error_code)
        return wrapper
    return decorator


# =============================================================================
# AUDIT
# =============================================================================

@dataclass
class AuditEvent:
    """Audit record of a mutation attempt."""
    event_id: str
    timestamp: str
    actor: str
    action: str
    resource_type: str
    resource_id: str
    outcome: str  # success, failure, denied
    correlation_id: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    previous_hash: str = ""
    event_hash: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AuditLogger:
    """
    Tamper-evident audit trail.

    Every record carries the hash of its predecessor, so removing or editing
    a record breaks the chain for every later one.
    """

    GENESIS = "genesis"

    def __init__(self, logger: CoreLogger, max_records: int = 10000):
        self._logger = logger
        self._last_hash: str = self.GENESIS
        self._records: List[AuditEvent] = []
        self._max_records = max_records
        self._lock = threading.Lock()

    @staticmethod
    def _compute_hash(event: AuditEvent, previous_hash: str) -> str:
        body = event.to_dict()
        body.pop("event_hash", None)
        data = json.dumps(body, sort_keys=True, default=str) + previous_hash
        return hashlib.sha256(data.encode()).hexdigest()

    def log(
        self,
        actor: str,
        action: str,
        resource_type: str,
        resource_id: str,
        outcome: str,
        **details: Any,
    ) -> AuditEvent:
        """Record an audit event."""
        event = AuditEvent(
            event_id=uuid.uuid4().hex,
            timestamp=datetime.now(timezone.utc).isoformat(),
            actor=actor,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            outcome=outcome,
            correlation_id=get_correlation_id(),
            details=details,
        )

        with self._lock:
            event.previous_hash = self._last_hash
            event.event_hash = self._compute_hash(event, self._last_hash)
            self._last_hash = event.event_hash
            self._records.append(event)
            if len(self._records) > self._max_records:
                self._records.pop(0)

        self._logger.info(
            f"AUDIT: {action} on {resource_type}/{resource_id} -> {outcome}",
            operation="audit",
            actor=actor,
            outcome=outcome,
            event_hash=event.event_hash,
        )
        return event

    def records(self) -> List[AuditEvent]:
        with self._lock:
            return list(self._records)

    def verify_chain(self) -> bool:
        """Recompute the hash chain over retained records."""
        with self._lock:
            records = list(self._records)
        for prev, record in zip(records, records[1:]):
            if record.previous_hash != prev.event_hash:
                return False
        return all(
            r.event_hash == self._compute_hash(r, r.previous_hash) for r in records
        )

    @property
    def head(self) -> str:
        with self._lock:
            return self._last_hash


__all__ = [
    "LogLevel",
    "CoreLayer",
    "LogEvent",
    "Span",
    "SpanContext",
    "Tracer",
    "StructuredHandler",
    "configure_logging",
    "CoreLogger",
    "generate_correlation_id",
    "set_correlation_id",
    "get_correlation_id",
    "get_tracer",
    "get_logger",
    "timed_operation",
    "AuditEvent",
    "AuditLogger",
]
