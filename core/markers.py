"""
Marker files: small JSON records dropped inside each tracked folder.

The record carries the folder's id so that the folder can be found again
by content when its identity token no longer resolves. Discovery runs in
two phases: an indexed search (when the platform has one) and a bounded
walk of the usual user directories.
"""

import os
import json
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

from providers.interface import IIndexedSearch
from providers.local_provider import LocalFileSystem
from utils import is_bundle_like, is_hidden, normalize_path
from .types import FolderMarkError, MarkerRecord

logger = logging.getLogger("marker_manager")

MARKER_EXTENSION = "foldermark"
MARKER_SCHEMA_VERSION = "1.0"
MARKER_MIME_TYPE = b"application/x-foldermark"
CREATED_BY = "foldermark"
DEFAULT_MAX_DEPTH = 5


class MarkerError(FolderMarkError):
    pass


class WriteError(MarkerError):
    pass


class AlreadyExistsError(MarkerError):
    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _same_id(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.strip().upper() == b.strip().upper()


class MarkerFileManager:
    def __init__(self,
                 fs: Optional[LocalFileSystem] = None,
                 indexed_search: Optional[IIndexedSearch] = None,
                 search_roots: Union[Sequence[str], Callable[[], Iterable[str]], None] = None,
                 home_dir: Optional[str] = None,
                 max_depth: int = DEFAULT_MAX_DEPTH):
        self.fs = fs or LocalFileSystem()
        self.indexed_search = indexed_search
        self._search_roots = search_roots or []
        self.home_dir = home_dir
        self.max_depth = max_depth

    @staticmethod
    def marker_name(display_name: str) -> str:
        sanitized = display_name.replace("/", "-").replace(":", "-").replace("\\", "-")
        return f"{sanitized}.{MARKER_EXTENSION}"

    def marker_path(self, folder_path: str, display_name: str) -> str:
        return os.path.join(folder_path, self.marker_name(display_name))

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def create(self, folder_path: str, display_name: str, project_id: str) -> str:
        """Write a fresh marker. Returns the marker path."""
        self._check_folder(folder_path)
        marker_path = self.marker_path(folder_path, display_name)

        if self.fs.exists(marker_path):
            if not self.fs.isfile(marker_path) or self.read_record(marker_path) is None:
                raise AlreadyExistsError(f"A file that is not a marker blocks {marker_path}")

        record = MarkerRecord(
            project_name=display_name,
            project_id=project_id,
            schema_version=MARKER_SCHEMA_VERSION,
            created_by=CREATED_BY,
            created_at=_now(),
        )
        self._write(marker_path, record)
        self._apply_icon(marker_path)
        logger.info(f"Created marker file at: {marker_path}")
        return marker_path

    def update(self, folder_path: str, display_name: str, project_id: str) -> str:
        """Rewrite the marker in place, or create it if missing."""
        marker_path = self.marker_path(folder_path, display_name)
        if not self.fs.exists(marker_path):
            return self.create(folder_path, display_name, project_id)

        self._check_folder(folder_path)
        existing = self.read_record(marker_path)
        if not self.fs.isfile(marker_path) or existing is None:
            raise AlreadyExistsError(f"A file that is not a marker blocks {marker_path}")

        record = MarkerRecord(
            project_name=display_name,
            project_id=project_id,
            schema_version=MARKER_SCHEMA_VERSION,
            created_by=CREATED_BY,
            created_at=existing.created_at if _same_id(existing.project_id, project_id) else None,
            updated_at=_now(),
        )
        self._write(marker_path, record)
        logger.info(f"Updated marker file at: {marker_path}")
        return marker_path

    def remove(self, folder_path: str, display_name: str):
        marker_path = self.marker_path(folder_path, display_name)
        try:
            self.fs.delete(marker_path)
            logger.info(f"Removed marker file from: {folder_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove marker file {marker_path}: {e}")

    def _check_folder(self, folder_path: str):
        if not self.fs.isdir(folder_path):
            raise WriteError(f"Folder does not exist: {folder_path}")
        if not self.fs.is_writable(folder_path):
            raise WriteError(f"Folder is not writable: {folder_path}")

    def _write(self, marker_path: str, record: MarkerRecord):
        data = {
            "projectName": record.project_name,
            "projectID": record.project_id,
            "createdBy": record.created_by,
            "version": record.schema_version,
        }
        if record.created_at:
            data["createdAt"] = record.created_at
        if record.updated_at:
            data["updatedAt"] = record.updated_at

        payload = (json.dumps(data, indent=2) + "\n").encode("utf-8")
        try:
            self.fs.write_bytes(marker_path, payload)
        except IsADirectoryError as e:
            raise AlreadyExistsError(f"A directory blocks marker file {marker_path}") from e
        except OSError as e:
            raise WriteError(f"Failed to write marker file at {marker_path}: {e}") from e

    def _apply_icon(self, marker_path: str):
        # Desktop file managers pick icons from the MIME type attribute.
        try:
            if not self.fs.set_xattr(marker_path, "user.mime_type", MARKER_MIME_TYPE):
                logger.debug("Extended attributes not supported, marker keeps default icon")
        except OSError as e:
            logger.debug(f"Could not tag marker file {marker_path}: {e}")

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def exists(self, folder_path: str, display_name: str) -> bool:
        return self.fs.exists(self.marker_path(folder_path, display_name))

    def find_in(self, folder_path: str) -> Optional[str]:
        """Any marker file directly inside folder_path."""
        suffix = f".{MARKER_EXTENSION}"
        for path in sorted(self.fs.list_files(folder_path)):
            if path.endswith(suffix):
                return path
        return None

    def read_record(self, marker_path: str) -> Optional[MarkerRecord]:
        """Parse a marker file. Unknown keys are ignored; any failure gives None."""
        try:
            data = json.loads(self.fs.read_bytes(marker_path).decode("utf-8"))
        except (OSError, UnicodeDecodeError, ValueError):
            return None
        if not isinstance(data, dict):
            return None
        project_id = data.get("projectID")
        if not isinstance(project_id, str) or not project_id:
            return None
        return MarkerRecord(
            project_name=str(data.get("projectName", "")),
            project_id=project_id,
            schema_version=str(data.get("version", "")),
            created_by=str(data.get("createdBy", "")),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )

    def read_id(self, marker_path: str) -> Optional[str]:
        record = self.read_record(marker_path)
        return record.project_id if record else None

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def locate_by_id(self, project_id: str, should_stop: Optional[Callable[[], bool]] = None) -> Optional[str]:
        """
        Folder containing the marker for project_id.
        Indexed search first; its answer always wins over the directory walk.
        """
        logger.info(f"Searching for marker file with projectID: {project_id}")

        found = self._locate_indexed(project_id)
        if found:
            logger.info(f"Found folder by marker (indexed): {found}")
            return found

        logger.debug("Indexed search found nothing, walking search roots...")
        found = self._locate_walk(project_id, should_stop)
        if found:
            logger.info(f"Found folder by marker (walk): {found}")
        else:
            logger.info(f"Marker file with projectID {project_id} not found")
        return found

    def _locate_indexed(self, project_id: str) -> Optional[str]:
        search = self.indexed_search
        if search is None:
            return None
        try:
            if not search.is_available():
                return None
            hits = search.query_by_extension(MARKER_EXTENSION, scope=self.home_dir)
        except Exception as e:
            logger.warning(f"Indexed search failed, falling back to walk: {e}")
            return None

        suffix = f".{MARKER_EXTENSION}"
        logger.debug(f"Indexed search returned {len(hits)} marker candidates")
        for hit in hits:
            if not hit.endswith(suffix):
                continue
            if _same_id(self.read_id(hit), project_id):
                return normalize_path(os.path.dirname(hit))
        return None

    def _roots(self) -> List[str]:
        roots = self._search_roots() if callable(self._search_roots) else self._search_roots
        return list(roots)

    def _locate_walk(self, project_id: str, should_stop: Optional[Callable[[], bool]]) -> Optional[str]:
        suffix = f".{MARKER_EXTENSION}"
        # Directory -> depth budget it was listed with
        listed: Dict[str, int] = {}
        for root in self._roots():
            queue = deque([(normalize_path(root), 0)])
            while queue:
                if should_stop and should_stop():
                    logger.debug("Marker walk stopped early")
                    return None
                current, depth = queue.popleft()
                budget = self.max_depth - depth
                if listed.get(current, 0) >= budget:
                    continue
                listed[current] = budget
                try:
                    with os.scandir(current) as it:
                        entries = sorted(it, key=lambda e: e.name)
                except OSError:
                    continue

                subdirs = []
                for entry in entries:
                    if is_hidden(entry.name):
                        continue
                    try:
                        if entry.is_dir(follow_symlinks=False):
                            if not is_bundle_like(entry.name):
                                subdirs.append(entry.path)
                        elif entry.name.endswith(suffix) and _same_id(self.read_id(entry.path), project_id):
                            return current
                    except OSError:
                        continue

                if depth + 1 < self.max_depth:
                    queue.extend((normalize_path(d), depth + 1) for d in subdirs)
        return None
