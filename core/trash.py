import os
import logging
from typing import Optional

from providers.local_provider import LocalFileSystem
from utils import is_within, normalize_path

logger = logging.getLogger("trash_detector")


class TrashDetector:
    """Decides whether a location is inside the current user's trash."""

    def __init__(self, trash_dir: str, fs: Optional[LocalFileSystem] = None):
        self.trash_dir = normalize_path(trash_dir)
        self.fs = fs or LocalFileSystem()

    def is_in_trash(self, path: Optional[str]) -> bool:
        if not path:
            return False
        return is_within(path, self.trash_dir)

    def info_file_for(self, trashed_path: str) -> Optional[str]:
        """
        The freedesktop .trashinfo file describing a trashed item, if the
        trash uses the files/ + info/ layout.
        """
        files_dir = os.path.join(self.trash_dir, "files")
        if os.path.dirname(normalize_path(trashed_path)) != files_dir:
            return None
        name = os.path.basename(trashed_path)
        return os.path.join(self.trash_dir, "info", f"{name}.trashinfo")

    def forget(self, trashed_path: str):
        """Best-effort removal of trash bookkeeping after an item left the trash."""
        info = self.info_file_for(trashed_path)
        if not info or not self.fs.exists(info):
            return
        try:
            self.fs.delete(info)
            logger.debug(f"Removed trash info file {info}")
        except OSError as e:
            logger.warning(f"Could not remove trash info file {info}: {e}")
