"""
Events published by the folder tracker.

Consumers (the HTTP layer, a UI, tests) subscribe to the bus instead of
polling tracker state.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Type
from uuid import uuid4

from .types import FolderState, SyncStatus

logger = logging.getLogger("event_bus")


@dataclass(frozen=True)
class TrackerEvent:
    """Base class for all tracker events."""

    folder_id: str = ""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def event_type(self) -> str:
        return self.__class__.__name__


@dataclass(frozen=True)
class FolderAdded(TrackerEvent):
    name: str = ""
    path: str = ""


@dataclass(frozen=True)
class FolderRemoved(TrackerEvent):
    name: str = ""


@dataclass(frozen=True)
class SyncStatusChanged(TrackerEvent):
    state: FolderState = FolderState.IDLE
    status: Optional[SyncStatus] = None


@dataclass(frozen=True)
class SearchStarted(TrackerEvent):
    pass


@dataclass(frozen=True)
class SearchFinished(TrackerEvent):
    found_path: Optional[str] = None


@dataclass(frozen=True)
class FolderReconciled(TrackerEvent):
    old_path: str = ""
    new_path: str = ""
    errors: tuple = ()


@dataclass(frozen=True)
class FolderInTrash(TrackerEvent):
    trash_path: Optional[str] = None


@dataclass(frozen=True)
class FolderRestored(TrackerEvent):
    new_path: str = ""


@dataclass(frozen=True)
class ManualLocateRequired(TrackerEvent):
    stored_path: str = ""


Handler = Callable[[TrackerEvent], None]


class EventBus:
    """
    Publish/subscribe channel. Safe to publish from worker threads;
    handlers run on the publishing thread.
    """

    def __init__(self, history_limit: int = 500):
        self._handlers: Dict[type, List[Handler]] = {}
        self._history: List[TrackerEvent] = []
        self._history_limit = history_limit
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type[TrackerEvent], handler: Handler) -> None:
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: Type[TrackerEvent], handler: Handler) -> bool:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
        return False

    def publish(self, event: TrackerEvent) -> None:
        with self._lock:
            self._history.append(event)
            if len(self._history) > self._history_limit:
                del self._history[:-self._history_limit]
            handlers = list(self._handlers.get(type(event), []))
            if type(event) is not TrackerEvent:
                handlers += self._handlers.get(TrackerEvent, [])

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # A broken subscriber must not break the check cycle
                logger.error(f"Event handler failed for {event.event_type}: {e}")

    def get_history(self) -> List[TrackerEvent]:
        with self._lock:
            return self._history.copy()

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()
