import logging
import threading
import concurrent.futures
from typing import Callable, Dict, Optional

logger = logging.getLogger("search_dispatcher")


class SearchDispatcher:
    """
    Runs slow discovery work off the caller's thread.
    At most one job per folder id is in flight at any time.
    """

    def __init__(self, max_workers: int = 2):
        self.executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="marker-search")
        self._in_flight: Dict[str, concurrent.futures.Future] = {}
        self._lock = threading.Lock()
        self._closed = False

    def submit(self, folder_id: str, fn: Callable[[], None]) -> Optional[concurrent.futures.Future]:
        """Schedule fn for folder_id. Returns None if a job for it is already running."""
        with self._lock:
            if self._closed:
                logger.debug(f"Dispatcher closed, not searching for {folder_id}")
                return None
            if folder_id in self._in_flight:
                logger.debug(f"Search already in flight for {folder_id}")
                return None
            future = self.executor.submit(self._run, folder_id, fn)
            self._in_flight[folder_id] = future
        future.add_done_callback(lambda f: self._forget(folder_id, f))
        return future

    def _run(self, folder_id: str, fn: Callable[[], None]):
        logger.debug(f"Starting search job: {folder_id}")
        try:
            return fn()
        except Exception as e:
            logger.error(f"Search job failed for {folder_id}: {e}")
            raise
        finally:
            logger.debug(f"Finished search job: {folder_id}")

    def _forget(self, folder_id: str, future: concurrent.futures.Future):
        with self._lock:
            if self._in_flight.get(folder_id) is future:
                del self._in_flight[folder_id]

    def is_in_flight(self, folder_id: str) -> bool:
        with self._lock:
            return folder_id in self._in_flight

    def future_for(self, folder_id: str) -> Optional[concurrent.futures.Future]:
        with self._lock:
            return self._in_flight.get(folder_id)

    def wait_all(self, timeout: Optional[float] = None):
        with self._lock:
            futures = list(self._in_flight.values())
        concurrent.futures.wait(futures, timeout=timeout)

    def shutdown(self, wait: bool = True):
        with self._lock:
            self._closed = True
        self.executor.shutdown(wait=wait)
