from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Callable, Deque, List, Optional

from .models import LoadEvent, LoadEventType

logger = logging.getLogger(__name__)

EventListener = Callable[[LoadEvent], None]


class EventSequencer:
    """
    Single owner of the sequence counter and the append-only event log.

    Producers submit events through `emit`; the sequence number is assigned
    under a lock at emission time, so the log is gap-free and totally ordered
    no matter which thread produced the work.

    Listeners run outside the lock, one event at a time and in sequence
    order. Whichever caller finds no delivery in progress drains the pending
    events; an `emit` made from inside a listener (or from another thread
    during delivery) is queued and delivered after the current event.
    """

    def __init__(self, project_id: str, listeners: Optional[List[EventListener]] = None):
        self.project_id = project_id
        self._listeners: List[EventListener] = list(listeners or [])
        self._events: List[LoadEvent] = []
        self._pending: Deque[LoadEvent] = deque()
        self._delivering = False
        self._lock = threading.Lock()

    def subscribe(self, listener: EventListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def emit(self, event_type: LoadEventType, **fields: Any) -> LoadEvent:
        with self._lock:
            event = LoadEvent(
                event_type=event_type,
                sequence_number=len(self._events),
                project_id=self.project_id,
                **fields,
            )
            self._events.append(event)
            self._pending.append(event)
            deliver = not self._delivering
            self._delivering = True
        logger.debug("#%d %s %s", event.sequence_number, event.event_type.value, event.path or "")
        if deliver:
            self._deliver()
        return event

    def _deliver(self) -> None:
        try:
            while True:
                with self._lock:
                    if not self._pending:
                        self._delivering = False
                        return
                    event = self._pending.popleft()
                    listeners = list(self._listeners)
                for listener in listeners:
                    listener(event)
        except BaseException:
            with self._lock:
                self._delivering = False
            raise

    @property
    def events(self) -> List[LoadEvent]:
        with self._lock:
            return list(self._events)

    def __len__(self) -> int:
        return len(self._events)
