import time
import queue
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from core.engine import FolderTracker
from core.events import FolderRemoved
from core.types import TrackedFolder

logger = logging.getLogger("scheduler")

MAX_IDLE_WAIT = 1.0


class CancellationToken:
    """Explicit stop signal for one watched folder."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


@dataclass
class _Watch:
    folder: TrackedFolder
    interval: float
    token: CancellationToken
    next_due: float


class FolderWatchScheduler:
    """
    Single coordinator thread for periodic folder checks.

    Every watched folder has its own interval and cancellation token.
    Marker searches run on worker threads and post their follow-up back
    here, so tracker writes after a search happen on the coordinator.
    """

    def __init__(self, tracker: FolderTracker, interval: float = 10.0):
        self.tracker = tracker
        self.interval = interval
        self.running = False
        self.thread = None
        self._stop_event = threading.Event()
        self._wake = threading.Event()
        self._watches: Dict[str, _Watch] = {}
        self._completions: "queue.Queue[Callable[[], None]]" = queue.Queue()
        self._lock = threading.Lock()

        tracker.set_completion_handler(self.post)
        tracker.event_bus.subscribe(FolderRemoved, self._on_removed)

    def start(self):
        if self.running:
            return

        self.running = True
        self._stop_event.clear()
        self.thread = threading.Thread(target=self._loop, daemon=True, name="FolderWatchThread")
        self.thread.start()
        logger.info("Folder watch scheduler started")

    def stop(self):
        if not self.running:
            return
        self.running = False
        self._stop_event.set()
        self._wake.set()
        with self._lock:
            for watch in self._watches.values():
                watch.token.cancel()
            self._watches.clear()
        if self.thread:
            self.thread.join(timeout=2.0)
        logger.info("Folder watch scheduler stopped")

    def watch(self, folder: TrackedFolder, interval: Optional[float] = None) -> CancellationToken:
        """Check folder now and then every interval seconds until cancelled."""
        with self._lock:
            existing = self._watches.get(folder.id)
            if existing and not existing.token.cancelled:
                return existing.token
            token = CancellationToken()
            self._watches[folder.id] = _Watch(folder, interval or self.interval, token, time.monotonic())
        self._wake.set()
        logger.debug(f"Watching {folder.name} every {interval or self.interval}s")
        return token

    def unwatch(self, folder_id: str) -> bool:
        with self._lock:
            watch = self._watches.pop(folder_id, None)
        if watch is None:
            return False
        watch.token.cancel()
        logger.debug(f"Stopped watching {watch.folder.name}")
        return True

    def trigger(self, folder_id: str) -> bool:
        """Run the folder's next check as soon as possible."""
        with self._lock:
            watch = self._watches.get(folder_id)
            if watch is None:
                return False
            watch.next_due = time.monotonic()
        self._wake.set()
        return True

    def watched_ids(self) -> List[str]:
        with self._lock:
            return list(self._watches)

    def post(self, fn: Callable[[], None]):
        """Hand work to the coordinator thread. Safe from any thread."""
        self._completions.put(fn)
        self._wake.set()

    def _on_removed(self, event: FolderRemoved):
        self.unwatch(event.folder_id)

    def _loop(self):
        while self.running and not self._stop_event.is_set():
            self._wake.clear()
            try:
                wait = self.run_pending()
            except Exception as e:
                logger.error(f"Error in folder watch loop: {e}")
                wait = MAX_IDLE_WAIT

            self._wake.wait(wait)

    def run_pending(self) -> float:
        """
        Drain posted completions, then run every due check.
        Returns seconds until the next check is due (capped).
        """
        self._drain_completions()

        now = time.monotonic()
        with self._lock:
            due = [w for w in self._watches.values() if w.next_due <= now and not w.token.cancelled]

        for watch in due:
            if watch.token.cancelled:
                continue
            try:
                self.tracker.check(watch.folder)
            except Exception as e:
                logger.error(f"Check failed for {watch.folder.name}: {e}")
            watch.next_due = time.monotonic() + watch.interval

        self._drain_completions()

        with self._lock:
            pending = [w.next_due for w in self._watches.values() if not w.token.cancelled]
        if not pending:
            return MAX_IDLE_WAIT
        return max(0.0, min(min(pending) - time.monotonic(), MAX_IDLE_WAIT))

    def _drain_completions(self):
        while True:
            try:
                fn = self._completions.get_nowait()
            except queue.Empty:
                return
            try:
                fn()
            except Exception as e:
                logger.error(f"Search follow-up failed: {e}")
