import os
import tempfile
from typing import List, Optional

from core.engine import FolderTracker
from core.types import TrackedFolder
from providers.interface import IFolderStore, PersistenceUnavailable
from settings import Settings


class MemoryFolderStore(IFolderStore):
    """In-memory store that counts saves and can be told to fail."""

    def __init__(self):
        self.folders = {}
        self.saves = 0
        self.fail_saves = False
        self.saved_paths = {}

    def insert(self, folder: TrackedFolder) -> None:
        self.folders[folder.id] = folder

    def save(self) -> None:
        if self.fail_saves:
            raise PersistenceUnavailable("store offline")
        self.saves += 1
        self.saved_paths = {fid: f.stored_path for fid, f in self.folders.items()}

    def delete(self, folder: TrackedFolder) -> None:
        self.folders.pop(folder.id, None)

    def query_all(self) -> List[TrackedFolder]:
        return sorted(self.folders.values(), key=lambda f: f.created_at, reverse=True)


class Sandbox:
    """
    Throwaway home directory with Desktop/Documents/Downloads and an
    XDG-style trash, plus helpers to move folders around in it.
    """

    def __init__(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = os.path.realpath(self._tmp.name)
        self.home = os.path.join(self.root, "home")
        self.desktop = os.path.join(self.home, "Desktop")
        self.documents = os.path.join(self.home, "Documents")
        self.downloads = os.path.join(self.home, "Downloads")
        self.trash = os.path.join(self.home, ".local", "share", "Trash")
        for d in (self.desktop, self.documents, self.downloads,
                  os.path.join(self.trash, "files"), os.path.join(self.trash, "info")):
            os.makedirs(d, exist_ok=True)
        self.settings = Settings(
            db_path=os.path.join(self.root, "test.db"),
            home_dir=self.home,
            trash_dir=self.trash,
            indexed_search="none",
            log_dir=os.path.join(self.root, "logs"),
        )

    def cleanup(self):
        self._tmp.cleanup()

    def mkdir(self, *parts) -> str:
        path = os.path.join(self.home, *parts)
        os.makedirs(path, exist_ok=True)
        return path

    def move(self, src: str, *dst_parts) -> str:
        dst = os.path.join(self.home, *dst_parts)
        os.makedirs(os.path.dirname(dst), exist_ok=True)
        os.rename(src, dst)
        return dst

    def trash_folder(self, path: str) -> str:
        name = os.path.basename(path)
        dst = os.path.join(self.trash, "files", name)
        os.rename(path, dst)
        with open(os.path.join(self.trash, "info", f"{name}.trashinfo"), "w") as f:
            f.write(f"[Trash Info]\nPath={path}\nDeletionDate=2026-01-01T00:00:00\n")
        return dst

    def tracker(self, store: Optional[IFolderStore] = None, **kwargs) -> FolderTracker:
        return FolderTracker.from_settings(self.settings, store, **kwargs)
