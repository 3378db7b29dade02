"""
Structured progress events for the reporting/UI sink.

The core never renders anything; it hands MigrationEvents to a sink callable.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class EventKind(Enum):
    PHASE_ENTERED = "phase_entered"
    OBJECT_CREATED = "object_created"
    OBJECT_FAILED = "object_failed"
    TABLE_MOVED = "table_moved"
    TABLE_FAILED = "table_failed"
    WARNING = "warning"


@dataclass(frozen=True)
class MigrationEvent:
    kind: EventKind
    phase: Optional[str] = None
    object_name: Optional[str] = None
    detail: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


EventSink = Callable[[MigrationEvent], None]


class LoggingEventSink:
    """Default sink: every event becomes a log line"""

    LEVELS = {
        EventKind.PHASE_ENTERED: logging.INFO,
        EventKind.OBJECT_CREATED: logging.INFO,
        EventKind.OBJECT_FAILED: logging.ERROR,
        EventKind.TABLE_MOVED: logging.INFO,
        EventKind.TABLE_FAILED: logging.ERROR,
        EventKind.WARNING: logging.WARNING,
    }

    def __init__(self, log: logging.Logger = None):
        self.log = log or logger

    def __call__(self, event: MigrationEvent):
        parts = [event.kind.value]
        if event.phase:
            parts.append(f"[{event.phase}]")
        if event.object_name:
            parts.append(event.object_name)
        if event.detail:
            parts.append(f"- {event.detail}")
        self.log.log(self.LEVELS.get(event.kind, logging.INFO), " ".join(parts))


class CollectingEventSink:
    """Keeps every event in memory; safe for concurrent table movers"""

    def __init__(self):
        self.events: List[MigrationEvent] = []
        self._lock = threading.Lock()

    def __call__(self, event: MigrationEvent):
        with self._lock:
            self.events.append(event)

    def of_kind(self, kind: EventKind) -> List[MigrationEvent]:
        with self._lock:
            return [e for e in self.events if e.kind == kind]
