from abc import ABC, abstractmethod
from enum import Enum, auto
from dataclasses import dataclass
from typing import List, Optional

from core.types import FolderMarkError, TrackedFolder


class FileType(Enum):
    FILE = auto()
    DIRECTORY = auto()
    SYMLINK = auto()


@dataclass
class FileResource:
    path: str
    name: str
    type: FileType
    size: int
    mtime: float


class NoModelContext(FolderMarkError):
    """Raised when an operation needs the folder store and none is attached."""
    pass


class PersistenceUnavailable(FolderMarkError):
    """Raised when the folder store cannot read or write."""
    pass


class IFolderStore(ABC):
    """
    Persistence contract for tracked folders.
    insert/delete stage changes; save() commits them, including in-place
    edits to any folder the store handed out or was given.
    """

    @abstractmethod
    def insert(self, folder: TrackedFolder) -> None:
        pass

    @abstractmethod
    def save(self) -> None:
        """Commit pending changes. Raises PersistenceUnavailable."""
        pass

    @abstractmethod
    def delete(self, folder: TrackedFolder) -> None:
        pass

    @abstractmethod
    def query_all(self) -> List[TrackedFolder]:
        """All tracked folders, newest first (created_at descending)."""
        pass


class IIndexedSearch(ABC):
    """Optional indexed file search (Spotlight, locate...). Best-effort only."""

    @abstractmethod
    def is_available(self) -> bool:
        pass

    @abstractmethod
    def query_by_extension(self, extension: str, scope: Optional[str] = None) -> List[str]:
        """Paths of files ending in .<extension>, optionally under scope. Never raises."""
        pass


class IFolderPicker(ABC):
    """Interactive folder chooser. Blocks until the user picks or cancels."""

    @abstractmethod
    def prompt(self, title: str) -> Optional[str]:
        """Selected folder path, or None if cancelled."""
        pass
