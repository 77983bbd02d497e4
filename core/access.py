import os
import logging
import weakref
from typing import Callable, List, Optional, TypeVar

logger = logging.getLogger("scoped_access")

T = TypeVar("T")

_DIR_FLAGS = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)


def _close_fd(fd: int, path: str):
    try:
        os.close(fd)
        logger.debug(f"Released leaked access to {path}")
    except OSError:
        pass


class ScopedAccess:
    """
    Bounded access grant for one filesystem location.

    Holding access means holding an open directory descriptor on the
    location, which keeps it pinned while it is read or resolved.
    Prefer `with ScopedAccess(path):` or `with_access()`; the finalizer
    only exists to close a descriptor someone forgot to release.
    """

    def __init__(self, path: str):
        self.path = path
        self._fd: Optional[int] = None
        self._finalizer: Optional[weakref.finalize] = None
        self._opened_here: List[bool] = []

    @property
    def is_accessing(self) -> bool:
        return self._fd is not None

    def acquire(self) -> bool:
        """Start access. Returns True if held afterwards. No-op when already held."""
        if self._fd is not None:
            return True
        try:
            self._fd = os.open(self.path, _DIR_FLAGS)
        except OSError as e:
            logger.debug(f"Could not acquire access to {self.path}: {e}")
            return False
        self._finalizer = weakref.finalize(self, _close_fd, self._fd, self.path)
        return True

    def release(self):
        if self._fd is None:
            return
        if self._finalizer is not None:
            self._finalizer.detach()
            self._finalizer = None
        fd, self._fd = self._fd, None
        try:
            os.close(fd)
        except OSError as e:
            logger.debug(f"Error closing access to {self.path}: {e}")

    def with_access(self, body: Callable[[str], T]) -> T:
        """
        Run body(path) with access held. Only releases afterwards if this
        call did the acquiring, so nested callers keep their grant.
        """
        was_accessing = self.is_accessing
        if not was_accessing:
            self.acquire()
        try:
            return body(self.path)
        finally:
            if not was_accessing:
                self.release()

    def __enter__(self) -> "ScopedAccess":
        self._opened_here.append(not self.is_accessing)
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        if self._opened_here.pop():
            self.release()
        return False

    def __repr__(self):
        state = "held" if self.is_accessing else "released"
        return f"ScopedAccess({self.path!r}, {state})"
