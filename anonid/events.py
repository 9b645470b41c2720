"""
Domain Events, Event Bus, and Append-Only Event Log

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                          EVENT INFRASTRUCTURE                            │
    │                                                                          │
    │  Domain Events          Event Store               Event Bus              │
    │  ├─ IssuerAdded         ├─ Append-only            ├─ Typed pub/sub       │
    │  ├─ IssuerRemoved       ├─ Streams per key        ├─ Priorities          │
    │  ├─ CredentialIssued    ├─ Optimistic versions    ├─ Filters             │
    │  ├─ CredentialRevoked   ├─ JSON-lines durability  └─ Async handlers      │
    │  ├─ ConsentGiven        └─ Replay / projections                          │
    │  └─ ConsentRevoked                                                       │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Delivery Contract
─────────────────

    A mutating operation appends its event to the store while it still holds
    the lock of the key it mutates, then applies the state change. The event
    is published on the bus only after both steps succeeded, so subscribers
    see each committed mutation exactly once and never see a failed one.

    Handler failures are reported through ``on_error``; they never roll back a
    committed mutation.

Streams
───────

    issuer:<principal>                   IssuerAdded / IssuerRemoved
    credential:<commitment>              CredentialIssued / CredentialRevoked
    consent:<commitment>:<verifier>      ConsentGiven / ConsentRevoked

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import json
import os
import queue
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Set,
    Type,
    Union,
)

from anonid.hardening import InvariantChecker, InvariantViolation
from anonid.observability import CoreLayer, get_logger
from anonid.schema import EVENT_RECORD, require_valid

log = get_logger("events", CoreLayer.EVENTS)


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Base class for all events in the system.

    Events are immutable facts. ``actor`` is the principal that caused the
    event and ``occurred_at`` the core clock reading (Unix seconds) at which
    it was committed; replay restores timestamps from this field.
    """

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    correlation_id: Optional[str] = None
    causation_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    actor: str = ""
    occurred_at: int = 0

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    @property
    def stream_id(self) -> str:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        """Deserialize, dispatching on ``event_type`` when called on the base."""
        data = data.copy()
        event_type = data.pop("event_type", None)
        target = cls
        if cls is Event:
            if event_type not in EVENT_TYPES:
                raise ValueError(f"Unknown event type: {event_type!r}")
            target = EVENT_TYPES[event_type]
        return target(**data)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str, sort_keys=True)

    def digest(self) -> str:
        """Deterministic digest of event content."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# ════════════════════════════════════════════════════════════════════════════
# DOMAIN EVENTS
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class IssuerAdded(Event):
    """Emitted when the administrator trusts (or re-trusts) an issuer."""
    issuer: str = ""

    @property
    def stream_id(self) -> str:
        return f"issuer:{self.issuer}"


@dataclass
class IssuerRemoved(Event):
    """Emitted when the administrator withdraws trust from an issuer."""
    issuer: str = ""

    @property
    def stream_id(self) -> str:
        return f"issuer:{self.issuer}"


@dataclass
class CredentialIssued(Event):
    """Emitted when a trusted issuer records a new credential commitment."""
    commitment: str = ""
    issuer: str = ""

    @property
    def stream_id(self) -> str:
        return f"credential:{self.commitment}"


@dataclass
class CredentialRevoked(Event):
    """Emitted when the original issuer revokes a credential."""
    commitment: str = ""
    issuer: str = ""

    @property
    def stream_id(self) -> str:
        return f"credential:{self.commitment}"


@dataclass
class ConsentGiven(Event):
    """Emitted when a holder grants a verifier consent for a credential."""
    commitment: str = ""
    verifier: str = ""

    @property
    def stream_id(self) -> str:
        return f"consent:{self.commitment}:{self.verifier}"


@dataclass
class ConsentRevoked(Event):
    """Emitted when consent for a (credential, verifier) pair is withdrawn."""
    commitment: str = ""
    verifier: str = ""

    @property
    def stream_id(self) -> str:
        return f"consent:{self.commitment}:{self.verifier}"


EVENT_TYPES: Dict[str, Type[Event]] = {
    cls.__name__: cls
    for cls in (
        IssuerAdded,
        IssuerRemoved,
        CredentialIssued,
        CredentialRevoked,
        ConsentGiven,
        ConsentRevoked,
    )
}


# ════════════════════════════════════════════════════════════════════════════
# EVENT HANDLER
# ════════════════════════════════════════════════════════════════════════════


EventHandler = Callable[[Event], None]


@dataclass
class EventHandlerRegistration:
    """Registration for an event handler."""
    handler: EventHandler
    event_types: Set[Type[Event]]
    priority: int = 0
    filter_func: Optional[Callable[[Event], bool]] = None
    async_handler: bool = False


class EventHandlerError(Exception):
    """Error during event handling."""
    def __init__(self, event: Event, handler: EventHandler, cause: Exception):
        self.event = event
        self.handler = handler
        self.cause = cause
        name = getattr(handler, "__name__", repr(handler))
        super().__init__(f"Handler {name} failed for {event.event_type}: {cause}")


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


class EventBus:
    """
    In-memory event bus for pub/sub communication.

    Supports typed subscriptions, filters, priorities, and async processing.
    Thread-safe for concurrent publishing and subscribing.

    Example:
        bus = EventBus()

        @bus.subscribe(CredentialRevoked)
        def on_revoked(event):
            notify_verifiers(event.commitment)
    """

    def __init__(
        self,
        async_queue_size: int = 1000,
        on_error: Optional[Callable[[EventHandlerError], None]] = None,
    ):
        self._handlers: List[EventHandlerRegistration] = []
        self._lock = threading.RLock()
        self._async_queue: queue.Queue = queue.Queue(maxsize=async_queue_size)
        self._async_worker: Optional[threading.Thread] = None
        self._running = False
        self._on_error = on_error
        self._published_count = 0
        self._handled_count = 0
        self._error_count = 0

    def subscribe(
        self,
        *event_types: Type[Event],
        priority: int = 0,
        filter_func: Optional[Callable[[Event], bool]] = None,
        async_handler: bool = False,
    ) -> Callable[[EventHandler], EventHandler]:
        """
        Decorator to subscribe a handler to event types.

        Args:
            event_types: Event types to subscribe to (none = all events)
            priority: Handler priority (higher = earlier)
            filter_func: Optional filter function
            async_handler: Process on the background worker
        """
        def decorator(handler: EventHandler) -> EventHandler:
            registration = EventHandlerRegistration(
                handler=handler,
                event_types=set(event_types) if event_types else {Event},
                priority=priority,
                filter_func=filter_func,
                async_handler=async_handler,
            )
            with self._lock:
                self._handlers.append(registration)
                self._handlers.sort(key=lambda r: -r.priority)
            return handler
        return decorator

    def unsubscribe(self, handler: EventHandler) -> bool:
        with self._lock:
            original_len = len(self._handlers)
            self._handlers = [r for r in self._handlers if r.handler != handler]
            return len(self._handlers) < original_len

    def publish(self, event: Event) -> None:
        """
        Publish an event to all subscribers.

        Synchronous handlers are called immediately in priority order.
        Async handlers are queued for background processing.
        """
        with self._lock:
            self._published_count += 1
            handlers_to_call = []

            for registration in self._handlers:
                if not any(isinstance(event, t) for t in registration.event_types):
                    continue
                if registration.filter_func and not registration.filter_func(event):
                    continue
                handlers_to_call.append(registration)

        # Call handlers outside the lock
        for registration in handlers_to_call:
            if registration.async_handler and self._running:
                try:
                    self._async_queue.put_nowait((registration.handler, event))
                except queue.Full:
                    self._call_handler(registration.handler, event)
            else:
                self._call_handler(registration.handler, event)

    def _call_handler(self, handler: EventHandler, event: Event) -> None:
        try:
            handler(event)
            with self._lock:
                self._handled_count += 1
        except Exception as e:
            with self._lock:
                self._error_count += 1
            error = EventHandlerError(event, handler, e)
            log.warning(str(error), operation="publish", event_id=event.event_id)
            if self._on_error:
                self._on_error(error)

    def start_async_processing(self) -> None:
        """Start background thread for async handlers."""
        if self._running:
            return

        self._running = True
        self._async_worker = threading.Thread(
            target=self._async_processor,
            daemon=True,
            name="anonid-event-bus",
        )
        self._async_worker.start()

    def stop_async_processing(self, timeout: float = 5.0) -> None:
        """Drain queued events, then stop the background worker."""
        self._async_queue.join()
        self._running = False
        if self._async_worker:
            self._async_worker.join(timeout=timeout)
            self._async_worker = None

    def _async_processor(self) -> None:
        while self._running:
            try:
                handler, event = self._async_queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._call_handler(handler, event)
            finally:
                self._async_queue.task_done()

    @property
    def metrics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "published_count": self._published_count,
                "handled_count": self._handled_count,
                "error_count": self._error_count,
                "handler_count": len(self._handlers),
                "async_queue_size": self._async_queue.qsize(),
            }


# ════════════════════════════════════════════════════════════════════════════
# EVENT STORE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class EventRecord:
    """A persisted event record."""
    sequence_number: int
    event: Event
    stream_id: str
    version: int
    recorded_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_number": self.sequence_number,
            "event": self.event.to_dict(),
            "stream_id": self.stream_id,
            "version": self.version,
            "recorded_at": self.recorded_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventRecord":
        require_valid(data, EVENT_RECORD)
        return cls(
            sequence_number=data["sequence_number"],
            event=Event.from_dict(data["event"]),
            stream_id=data["stream_id"],
            version=data["version"],
            recorded_at=data.get("recorded_at", ""),
        )


class ConcurrencyError(Exception):
    """Optimistic concurrency violation."""
    def __init__(self, stream_id: str, expected: int, actual: int):
        self.stream_id = stream_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Concurrency error for stream '{stream_id}': "
            f"expected version {expected}, actual {actual}"
        )


class EventStore:
    """
    Append-only event store.

    Events are organized into streams by entity key. Records are never
    modified or deleted; the global sequence number gives a total order that
    replay follows.

    Example:
        store = EventStore()
        store.append(event.stream_id, [event], expected_version=0)
        for record in store.iter_all():
            ...
    """

    def __init__(self):
        self._events: List[EventRecord] = []
        self._streams: Dict[str, List[EventRecord]] = {}
        self._sequence_number = 0
        self._lock = threading.RLock()

    def append(
        self,
        stream_id: str,
        events: List[Event],
        expected_version: Optional[int] = None,
    ) -> List[EventRecord]:
        """
        Append events to a stream.

        Args:
            stream_id: Stream identifier
            events: Events to append
            expected_version: For optimistic concurrency (None = no check)

        Returns:
            List of recorded events with sequence numbers

        Raises:
            ConcurrencyError: If expected_version doesn't match
        """
        with self._lock:
            current_version = len(self._streams.get(stream_id, ()))

            if expected_version is not None and expected_version != current_version:
                raise ConcurrencyError(stream_id, expected_version, current_version)

            records = []
            sequence = self._sequence_number
            for event in events:
                sequence += 1
                current_version += 1
                records.append(EventRecord(
                    sequence_number=sequence,
                    event=event,
                    stream_id=stream_id,
                    version=current_version,
                ))

            self._persist(records)
            self._index(records)
            return records

    def _persist(self, records: List[EventRecord]) -> None:
        """Durability hook; raising here leaves the store unchanged."""

    def _index(self, records: List[EventRecord]) -> None:
        for record in records:
            InvariantChecker.check_monotonic_increase(
                "sequence_number", self._sequence_number + 1, record.sequence_number
            )
            self._sequence_number = record.sequence_number
            self._events.append(record)
            self._streams.setdefault(record.stream_id, []).append(record)

    def read_stream(
        self,
        stream_id: str,
        from_version: int = 0,
        to_version: Optional[int] = None,
    ) -> List[Event]:
        with self._lock:
            stream = self._streams.get(stream_id, [])
            to_version = len(stream) if to_version is None else to_version
            return [r.event for r in stream[from_version:to_version]]

    def read_all(
        self,
        from_position: int = 0,
        max_count: int = 1000,
    ) -> List[EventRecord]:
        with self._lock:
            return self._events[from_position:from_position + max_count]

    def iter_all(self, batch_size: int = 1000) -> Iterator[EventRecord]:
        """Iterate every record in global order, in batches."""
        position = 0
        while True:
            batch = self.read_all(from_position=position, max_count=batch_size)
            if not batch:
                return
            yield from batch
            position += len(batch)

    def get_stream_version(self, stream_id: str) -> int:
        with self._lock:
            return len(self._streams.get(stream_id, ()))

    @property
    def total_events(self) -> int:
        with self._lock:
            return len(self._events)

    @property
    def current_position(self) -> int:
        with self._lock:
            return self._sequence_number


class JsonlEventStore(EventStore):
    """
    Event store backed by a JSON-lines file.

    Each append is written, flushed, and fsynced before it becomes visible in
    memory, so a record that a reader can observe is on disk. A failed append
    truncates the file back to its previous length. Existing logs are loaded
    and schema-validated on open; an unterminated final line is a write that
    was never acknowledged and is discarded.
    """

    def __init__(self, path: Union[str, Path], fsync: bool = True):
        super().__init__()
        self.path = Path(path)
        self._fsync = fsync
        if self.path.exists():
            self._load()
        else:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> None:
        with open(self.path, "rb") as f:
            data = f.read()
        # Appends are acknowledged only after the trailing newline is on disk.
        complete = data.rfind(b"\n") + 1
        if complete < len(data):
            log.warning(
                "Discarding unterminated event log tail",
                operation="load",
                path=str(self.path),
                discarded_bytes=len(data) - complete,
            )
            os.truncate(self.path, complete)

        count = 0
        with self._lock:
            for line_no, line in enumerate(data[:complete].split(b"\n"), start=1):
                if not line.strip():
                    continue
                try:
                    record = EventRecord.from_dict(json.loads(line.decode("utf-8")))
                    self._index([record])
                except (ValueError, TypeError, InvariantViolation) as e:
                    raise ValueError(f"{self.path}:{line_no}: {e}") from e
                count += 1
        log.info("Event log loaded", operation="load", path=str(self.path), events=count)

    def _persist(self, records: List[EventRecord]) -> None:
        payload = "".join(
            json.dumps(r.to_dict(), sort_keys=True, separators=(",", ":"), default=str) + "\n"
            for r in records
        )
        size = self.path.stat().st_size if self.path.exists() else 0
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                if self._fsync:
                    os.fsync(f.fileno())
        except BaseException as e:
            if self.path.exists():
                os.truncate(self.path, size)
            log.error(
                "Event log append rolled back",
                error_code=type(e).__name__,
                operation="append",
                path=str(self.path),
            )
            raise


# ════════════════════════════════════════════════════════════════════════════
# PROJECTION
# ════════════════════════════════════════════════════════════════════════════


class Projection(ABC):
    """
    Base class for read models derived from the event log.

    Projections can be rebuilt from the event store at any time.
    """

    def __init__(self):
        self._position = 0

    @property
    def position(self) -> int:
        """Last processed event position."""
        return self._position

    @abstractmethod
    def handle_event(self, event: Event) -> None:
        """Process an event to update the projection."""
        pass

    def process_events(self, events: Iterable[EventRecord]) -> None:
        for record in events:
            self.handle_event(record.event)
            self._position = record.sequence_number

    def rebuild(self, store: EventStore) -> None:
        """Rebuild projection from event store."""
        self._position = 0
        self.process_events(store.iter_all())


class EventSourcedComponent(Projection):
    """
    State holder whose every mutation is an event appended to the store.

    Commands validate, then call ``_commit`` while holding the lock for the
    key they mutate; ``_commit`` appends the event and applies it through
    ``handle_event``, the same path replay uses. Commands call ``_publish``
    after releasing the lock.
    """

    def __init__(self, store: EventStore, bus: EventBus):
        super().__init__()
        self._store = store
        self._bus = bus

    def _commit(self, event: Event) -> EventRecord:
        stream_id = event.stream_id
        (record,) = self._store.append(
            stream_id,
            [event],
            expected_version=self._store.get_stream_version(stream_id),
        )
        self.handle_event(event)
        self._position = record.sequence_number
        return record

    def rebuild(self, store: Optional[EventStore] = None) -> None:
        """Discard in-memory state and re-apply every event in the store."""
        self._reset()
        super().rebuild(store if store is not None else self._store)

    @abstractmethod
    def _reset(self) -> None:
        """Drop all state derived from events."""

    def _publish(self, event: Event) -> None:
        self._bus.publish(event)


__all__ = [
    # Base
    "Event",
    "EventHandler",
    "EventHandlerRegistration",
    "EventHandlerError",
    # Domain Events
    "IssuerAdded",
    "IssuerRemoved",
    "CredentialIssued",
    "CredentialRevoked",
    "ConsentGiven",
    "ConsentRevoked",
    "EVENT_TYPES",
    # Event Bus
    "EventBus",
    # Event Store
    "EventRecord",
    "EventStore",
    "JsonlEventStore",
    "ConcurrencyError",
    # Projection
    "Projection",
    "EventSourcedComponent",
]
