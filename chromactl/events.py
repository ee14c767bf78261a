import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional

from .utils import new_id

logger = logging.getLogger(__name__)

INFO = "INFO"
WARN = "WARN"
ERROR = "ERROR"
JOB_STARTED = "JOB_STARTED"
JOB_SUCCEEDED = "JOB_SUCCEEDED"
JOB_FAILED = "JOB_FAILED"
JOB_DISCARDED = "JOB_DISCARDED"
DRAINED = "DRAINED"

_LEVELS = {
    WARN: logging.WARNING,
    ERROR: logging.ERROR,
    JOB_FAILED: logging.WARNING,
}


@dataclass(frozen=True)
class Event:
    kind: str
    title: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=new_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "title": self.title,
            "details": {k: v if isinstance(v, (str, int, float, bool)) or v is None else str(v)
                        for k, v in self.details.items()},
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "Event":
        return cls(
            id=data["id"],
            kind=data["kind"],
            title=data["title"],
            details=dict(data.get("details") or {}),
            timestamp=float(data.get("timestamp", 0.0)),
        )

    def line(self) -> str:
        stamp = time.strftime("%H:%M:%S", time.localtime(self.timestamp))
        return f"{stamp} {self.kind:<13} {self.title}"


Listener = Callable[[Event], None]


class EventChannel:
    """Publish/subscribe hub handed to whoever needs to report progress."""

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe():
            self.unsubscribe(listener)
        return _unsubscribe

    def unsubscribe(self, listener: Listener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, kind: str, title: str, **details) -> Event:
        event = Event(kind=kind, title=title, details=details)
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed on %s", kind)
        return event


def log_listener(event: Event):
    """Forward events to the logging module."""
    level = _LEVELS.get(event.kind, logging.INFO)
    if event.details:
        logger.log(level, "%s %s", event.title, event.details)
    else:
        logger.log(level, "%s", event.title)


class EventLog:
    """Bounded ring of the most recent events, shown by `status`."""

    def __init__(self, maxlen: int = 500):
        self._events: Deque[Event] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def __call__(self, event: Event):
        with self._lock:
            self._events.append(event)

    def extend(self, events: Iterable[Event]):
        with self._lock:
            self._events.extend(events)

    def entries(self, kind: Optional[str] = None) -> List[Event]:
        with self._lock:
            return [e for e in self._events if kind is None or e.kind == kind]

    def recent(self, n: int) -> List[Event]:
        with self._lock:
            return list(self._events)[-n:] if n > 0 else []

    def clear(self):
        with self._lock:
            self._events.clear()
