from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class EventType(str, Enum):
    GAZE_AWAY = "GAZE_AWAY"
    FACE_ABSENT = "FACE_ABSENT"
    OBJECT_DETECTED = "OBJECT_DETECTED"
    TAB_SWITCH = "TAB_SWITCH"


class Severity(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    SUSPICIOUS = "suspicious"


DEFAULT_SEVERITY: dict[EventType, Severity] = {
    EventType.GAZE_AWAY: Severity.WARNING,
    EventType.FACE_ABSENT: Severity.SUSPICIOUS,
    EventType.OBJECT_DETECTED: Severity.SUSPICIOUS,
    EventType.TAB_SWITCH: Severity.WARNING,
}


@dataclass(frozen=True)
class SessionEvent:
    id: str
    type: EventType
    severity: Severity
    timestamp_ms: int
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Freeze metadata so an appended event can't be edited through a shared dict.
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp_ms,
            "metadata": dict(self.metadata),
        }


def new_event(event_type: EventType, timestamp_ms: int, metadata: Mapping[str, Any] | None = None) -> SessionEvent:
    """Build an event whose id is assigned later by `EventLog.append`."""
    return SessionEvent(
        id="",
        type=event_type,
        severity=DEFAULT_SEVERITY[event_type],
        timestamp_ms=int(timestamp_ms),
        metadata=metadata or {},
    )


class EventLog:
    """
    Append-only, ordered session event log.

    - Insertion order is the canonical event order.
    - Appends are serialized; ids are "<timestamp>-<sequence>" and unique per log.
    - Readers get an immutable tuple snapshot, never a view of the live list.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[SessionEvent] = []
        self._seq = 0

    def append(self, event: SessionEvent) -> SessionEvent:
        with self._lock:
            self._seq += 1
            stored = SessionEvent(
                id=f"{event.timestamp_ms}-{self._seq}",
                type=event.type,
                severity=event.severity,
                timestamp_ms=event.timestamp_ms,
                metadata=event.metadata,
            )
            self._events.append(stored)
            return stored

    def snapshot(self) -> tuple[SessionEvent, ...]:
        with self._lock:
            return tuple(self._events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
