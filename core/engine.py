"""
Folder tracker: keeps tracked folders pointed at their real location.

A check cycle evaluates a folder cheaply, hands a search (by inode, then by
marker) to a worker when it is not where it was, reconciles what the
search finds, and leaves it alone while it sits in the trash. Restore,
manual locate and removal are user-driven operations on top of the same
pieces.
"""

import os
import logging
import threading
import functools
from contextlib import contextmanager
from dataclasses import dataclass
from concurrent.futures import Future
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from logger_setup import format_fs_error, log_exception
from providers.interface import IFolderPicker, IFolderStore, IIndexedSearch, NoModelContext
from providers.local_provider import LocalFileSystem
from utils import normalize_path
from .access import ScopedAccess
from .codec import EncodingError, IdentityTokenCodec, InvalidTokenError
from .dispatch import SearchDispatcher
from .evaluator import SyncEvaluator
from .events import (
    EventBus, FolderAdded, FolderInTrash, FolderReconciled, FolderRemoved, FolderRestored,
    ManualLocateRequired, SearchFinished, SearchStarted, SyncStatusChanged,
)
from .markers import MarkerError, MarkerFileManager
from .resolution import (
    IdentityTokenStrategy, MarkerDiscoveryStrategy, PickerStrategy, StoredPathStrategy,
    run_strategies,
)
from .trash import TrashDetector
from .types import FolderMarkError, FolderState, SyncStatus, TrackedFolder

logger = logging.getLogger("folder_tracker")


class RestoreError(FolderMarkError):
    pass


class DestinationExistsError(RestoreError):
    pass


@dataclass
class CheckResult:
    state: FolderState
    status: SyncStatus
    search: Optional[Future] = None


class FolderTracker:
    def __init__(self,
                 store: Optional[IFolderStore],
                 codec: IdentityTokenCodec,
                 markers: MarkerFileManager,
                 trash: TrashDetector,
                 fs: Optional[LocalFileSystem] = None,
                 evaluator: Optional[SyncEvaluator] = None,
                 picker: Optional[IFolderPicker] = None,
                 dispatcher: Optional[SearchDispatcher] = None,
                 event_bus: Optional[EventBus] = None,
                 search_roots: Union[Sequence[str], Callable[[], Iterable[str]], None] = None,
                 desktop_dir: Optional[str] = None):
        self.store = store
        self.codec = codec
        self.markers = markers
        self.trash = trash
        self.fs = fs or LocalFileSystem()
        self.evaluator = evaluator or SyncEvaluator(codec, trash, self.fs)
        self.picker = picker
        self.dispatcher = dispatcher or SearchDispatcher()
        self.event_bus = event_bus or EventBus()
        self._search_roots = search_roots or []
        self.desktop_dir = desktop_dir

        self._lock = threading.Lock()
        self._states: Dict[str, FolderState] = {}
        self._statuses: Dict[str, SyncStatus] = {}
        self._write_locks: Dict[str, threading.Lock] = {}
        self._removed = set()
        self._post: Callable[[Callable[[], None]], None] = lambda fn: fn()

    @classmethod
    def from_settings(cls, settings, store: Optional[IFolderStore],
                      picker: Optional[IFolderPicker] = None,
                      indexed_search: Optional[IIndexedSearch] = None,
                      event_bus: Optional[EventBus] = None) -> "FolderTracker":
        fs = LocalFileSystem()
        codec = IdentityTokenCodec(fs, search_roots=settings.search_roots,
                                   trash_dir=settings.trash_dir, max_depth=settings.search_depth)
        markers = MarkerFileManager(fs, indexed_search=indexed_search,
                                    search_roots=settings.search_roots,
                                    home_dir=settings.home_dir, max_depth=settings.search_depth)
        return cls(
            store, codec, markers, TrashDetector(settings.trash_dir, fs),
            fs=fs,
            picker=picker,
            dispatcher=SearchDispatcher(max_workers=settings.search_workers),
            event_bus=event_bus,
            search_roots=settings.search_roots,
            desktop_dir=settings.desktop_dir,
        )

    def set_completion_handler(self, post: Callable[[Callable[[], None]], None]):
        """Where finished searches deliver their follow-up work (default: inline)."""
        self._post = post

    def shutdown(self):
        self.dispatcher.shutdown(wait=True)

    # -------------------------------------------------------------------------
    # State bookkeeping
    # -------------------------------------------------------------------------

    def state_of(self, folder_id: str) -> FolderState:
        with self._lock:
            return self._states.get(folder_id, FolderState.IDLE)

    def last_status(self, folder_id: str) -> Optional[SyncStatus]:
        with self._lock:
            return self._statuses.get(folder_id)

    def is_removed(self, folder_id: str) -> bool:
        with self._lock:
            return folder_id in self._removed

    def _set_state(self, folder: TrackedFolder, state: FolderState, status: Optional[SyncStatus] = None):
        with self._lock:
            if folder.id in self._removed:
                return
            changed = self._states.get(folder.id) != state
            self._states[folder.id] = state
            if status is not None:
                changed = changed or self._statuses.get(folder.id) != status
                self._statuses[folder.id] = status
        if changed and state != FolderState.CHECKING:
            self.event_bus.publish(SyncStatusChanged(folder_id=folder.id, state=state, status=status))

    def _write_lock(self, folder_id: str) -> threading.Lock:
        with self._lock:
            lock = self._write_locks.get(folder_id)
            if lock is None:
                lock = self._write_locks[folder_id] = threading.Lock()
            return lock

    @contextmanager
    def _writing(self, folder: TrackedFolder, blocking: bool):
        """Serializes path/token/marker/save writes per folder. Yields False when skipped."""
        lock = self._write_lock(folder.id)
        acquired = lock.acquire(blocking=blocking)
        if not acquired:
            logger.info(f"Reconciliation already in progress for {folder.name}, skipping")
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()

    def _require_store(self) -> IFolderStore:
        if self.store is None:
            raise NoModelContext("No folder store available")
        return self.store

    def _roots(self) -> List[str]:
        roots = self._search_roots() if callable(self._search_roots) else self._search_roots
        return list(roots)

    # -------------------------------------------------------------------------
    # Tracking lifecycle
    # -------------------------------------------------------------------------

    def folders(self) -> List[TrackedFolder]:
        return self._require_store().query_all()

    def get_folder(self, folder_id: str) -> Optional[TrackedFolder]:
        for folder in self.folders():
            if folder.id == folder_id:
                return folder
        return None

    def add_folder(self, name: str, path: str) -> TrackedFolder:
        """Start tracking a folder. Raises EncodingError if it cannot be referenced."""
        store = self._require_store()
        path = normalize_path(path)

        logger.info(f"Creating identity token for: {path}")
        token = self.codec.encode(path)

        folder = TrackedFolder(name=name, stored_path=path, identity_token=token)
        store.insert(folder)
        store.save()
        logger.info(f"Tracked folder saved: {name} ({folder.id})")

        # The identity token still tracks the folder without a marker
        try:
            self.markers.create(path, name, folder.id)
        except MarkerError as e:
            logger.warning(f"Error creating marker file: {e}")

        self._set_state(folder, FolderState.IDLE)
        self.event_bus.publish(FolderAdded(folder_id=folder.id, name=name, path=path))
        return folder

    def remove_folder(self, folder: TrackedFolder):
        store = self._require_store()
        with self._lock:
            self._removed.add(folder.id)

        located = run_strategies(folder, [
            StoredPathStrategy(self.fs),
            IdentityTokenStrategy(self.codec, self.fs),
        ])
        if located.found:
            ScopedAccess(located.path).with_access(
                lambda p: self.markers.remove(p, folder.name))

        try:
            store.delete(folder)
            store.save()
        except FolderMarkError:
            with self._lock:
                self._removed.discard(folder.id)
            raise

        with self._lock:
            self._states.pop(folder.id, None)
            self._statuses.pop(folder.id, None)
            self._write_locks.pop(folder.id, None)
            # A search still running clears the tombstone when it finishes
            if not self.dispatcher.is_in_flight(folder.id):
                self._removed.discard(folder.id)
        logger.info(f"Stopped tracking {folder.name} ({folder.id})")
        self.event_bus.publish(FolderRemoved(folder_id=folder.id, name=folder.name))

    # -------------------------------------------------------------------------
    # Check cycle
    # -------------------------------------------------------------------------

    def check_sync_status(self, folder: TrackedFolder) -> Tuple[SyncStatus, bool]:
        return self.evaluator.evaluate(folder.stored_path, folder.identity_token)

    def check(self, folder: TrackedFolder) -> CheckResult:
        """
        One check cycle. Only stats the stored and recorded paths; a folder
        that is not where it was starts (at most one) background search,
        which relocates it by inode and then by marker.
        """
        if self.is_removed(folder.id):
            status = SyncStatus(is_synced=False, stored_path=folder.stored_path)
            return CheckResult(FolderState.IDLE, status)

        self._set_state(folder, FolderState.CHECKING)
        try:
            status, needs_search = self.check_sync_status(folder)
        except OSError as e:
            log_exception(logger, f"Sync check failed for {folder.name}", e)
            status = SyncStatus(is_synced=False, stored_path=folder.stored_path)
            self._set_state(folder, FolderState.MANUAL_PENDING, status)
            return CheckResult(FolderState.MANUAL_PENDING, status)

        if status.is_in_trash:
            self._set_state(folder, FolderState.IN_TRASH, status)
            self.event_bus.publish(FolderInTrash(folder_id=folder.id, trash_path=status.actual_path))
            return CheckResult(FolderState.IN_TRASH, status)

        if needs_search:
            # The search can complete before _start_search returns
            self._set_state(folder, FolderState.SEARCHING, status)
            future = self._start_search(folder)
            return CheckResult(FolderState.SEARCHING, status, future)

        if status.actual_path and status.actual_path != normalize_path(folder.stored_path):
            self._reconcile(folder, status.actual_path)
            status, _ = self.check_sync_status(folder)

        state = FolderState.SYNCED if status.is_synced else FolderState.OUT_OF_SYNC
        self._set_state(folder, state, status)
        return CheckResult(state, status)

    def _start_search(self, folder: TrackedFolder) -> Optional[Future]:
        existing = self.dispatcher.future_for(folder.id)
        if existing is not None:
            return existing

        self.event_bus.publish(SearchStarted(folder_id=folder.id))
        future = self.dispatcher.submit(folder.id, functools.partial(self._search_job, folder))
        return future or self.dispatcher.future_for(folder.id)

    def _search_job(self, folder: TrackedFolder) -> Optional[str]:
        should_stop = lambda: self.is_removed(folder.id)
        found = self._relocate_by_token(folder, should_stop)
        if not found and not should_stop():
            found = self.markers.locate_by_id(folder.id, should_stop=should_stop)
        self._post(functools.partial(self._finish_search, folder, found))
        return found

    def _relocate_by_token(self, folder: TrackedFolder, should_stop: Callable[[], bool]) -> Optional[str]:
        if not folder.identity_token:
            return None
        try:
            found = self.codec.relocate(folder.identity_token, should_stop=should_stop)
        except InvalidTokenError as e:
            logger.warning(f"Failed to relocate {folder.name} by identity token: {e}")
            return None
        if found and self.fs.isdir(found):
            return normalize_path(found)
        return None

    def _finish_search(self, folder: TrackedFolder, found: Optional[str]):
        if self.is_removed(folder.id):
            logger.info(f"Discarding search result for removed folder {folder.name}")
            with self._lock:
                self._removed.discard(folder.id)
            return

        self.event_bus.publish(SearchFinished(folder_id=folder.id, found_path=found))

        if found and self.trash.is_in_trash(found):
            status = SyncStatus(is_synced=False, stored_path=folder.stored_path,
                                actual_path=found, is_in_trash=True)
            self._set_state(folder, FolderState.IN_TRASH, status)
            self.event_bus.publish(FolderInTrash(folder_id=folder.id, trash_path=found))
            return

        if not found:
            status = SyncStatus(is_synced=False, stored_path=folder.stored_path,
                                is_in_trash=self.trash.is_in_trash(folder.stored_path))
            self._set_state(folder, FolderState.MANUAL_PENDING, status)
            self.event_bus.publish(ManualLocateRequired(folder_id=folder.id, stored_path=folder.stored_path))
            return

        self._reconcile(folder, found)
        status, _ = self.check_sync_status(folder)
        state = FolderState.SYNCED if status.is_synced else FolderState.OUT_OF_SYNC
        self._set_state(folder, state, status)

    def _reconcile(self, folder: TrackedFolder, new_path: str) -> Optional[List[str]]:
        """
        Point the folder at new_path: path, token, marker, save. Each step
        logs its own failure and the rest still run. Returns the error list,
        or None when skipped.
        """
        new_path = normalize_path(new_path)
        if self.trash.is_in_trash(new_path):
            logger.info(f"Folder is in trash at: {new_path} - keeping stored path")
            return None

        with self._writing(folder, blocking=False) as acquired:
            if not acquired or self.is_removed(folder.id):
                return None
            if normalize_path(folder.stored_path) == new_path:
                return []

            old_path = folder.stored_path
            logger.info(f"Folder moved from {old_path} to {new_path} - updating...")
            errors = self._apply_new_location(folder, new_path)

            try:
                self._require_store().save()
                logger.info(f"Saved new path: {new_path}")
            except FolderMarkError as e:
                log_exception(logger, "Error saving updated path", e)
                errors.append(str(e))

            self.event_bus.publish(FolderReconciled(
                folder_id=folder.id, old_path=old_path, new_path=new_path, errors=tuple(errors)))
            return errors

    def _apply_new_location(self, folder: TrackedFolder, new_path: str) -> List[str]:
        errors = []
        folder.stored_path = new_path

        try:
            folder.identity_token = ScopedAccess(new_path).with_access(self.codec.encode)
            logger.debug("Identity token updated for new location")
        except EncodingError as e:
            logger.warning(f"Failed to update identity token: {e}")
            errors.append(str(e))

        try:
            self.markers.update(new_path, folder.name, folder.id)
        except MarkerError as e:
            logger.warning(f"Failed to update marker file: {e}")
            errors.append(str(e))
        return errors

    # -------------------------------------------------------------------------
    # On-demand resolution
    # -------------------------------------------------------------------------

    def resolve_and_update(self, folder: TrackedFolder, show_prompt: bool = True) -> Tuple[Optional[str], SyncStatus]:
        """
        Find the folder now: stored path, identity token, marker search and,
        if show_prompt, the folder picker. Moves outside the trash are saved.
        """
        strategies = [
            StoredPathStrategy(self.fs),
            IdentityTokenStrategy(self.codec, self.fs),
            MarkerDiscoveryStrategy(self.markers),
        ]
        if show_prompt and self.picker is not None:
            strategies.append(PickerStrategy(self.picker, self.fs))

        resolution = run_strategies(folder, strategies)
        if not resolution.found:
            in_trash = self.trash.is_in_trash(folder.stored_path)
            status = SyncStatus(is_synced=False, stored_path=folder.stored_path, is_in_trash=in_trash)
            self._set_state(folder, FolderState.IN_TRASH if in_trash else FolderState.MANUAL_PENDING, status)
            return None, status

        actual_path = resolution.path
        if self.trash.is_in_trash(actual_path):
            logger.info(f"Folder is in trash at: {actual_path} - not updating stored path")
            status = SyncStatus(is_synced=False, stored_path=folder.stored_path,
                                actual_path=actual_path, was_resolved=True, is_in_trash=True)
            self._set_state(folder, FolderState.IN_TRASH, status)
            return actual_path, status

        if actual_path != normalize_path(folder.stored_path):
            self._reconcile(folder, actual_path)

        status, _ = self.check_sync_status(folder)
        self._set_state(folder, FolderState.SYNCED if status.is_synced else FolderState.OUT_OF_SYNC, status)
        return actual_path, status

    def update_path_manually(self, folder: TrackedFolder, new_path: str) -> bool:
        """Point a folder at a location the user picked."""
        if self.store is None:
            logger.error("Cannot update folder path: no folder store available")
            return False

        new_path = normalize_path(new_path)
        if not self.fs.isdir(new_path):
            logger.error(f"Selected location is not a folder: {new_path}")
            return False
        if self.trash.is_in_trash(new_path):
            logger.warning(f"Refusing to point {folder.name} at a location in the trash: {new_path}")
            return False

        with self._writing(folder, blocking=True):
            self._apply_new_location(folder, new_path)
            try:
                self.store.save()
            except FolderMarkError as e:
                log_exception(logger, "Error saving manual path update", e)
                return False

        logger.info(f"Manually updated folder path to: {new_path}")
        status, _ = self.check_sync_status(folder)
        self._set_state(folder, FolderState.SYNCED if status.is_synced else FolderState.OUT_OF_SYNC, status)
        return True

    # -------------------------------------------------------------------------
    # Trash
    # -------------------------------------------------------------------------

    def restore_from_trash(self, folder: TrackedFolder) -> str:
        """
        Move a trashed folder back out of the trash. Returns the new path.
        Raises DestinationExistsError rather than overwriting anything.
        """
        store = self._require_store()
        trash_path = self._locate_in_trash(folder)

        if not self.fs.isdir(trash_path):
            raise RestoreError(f"Folder no longer exists in Trash at: {trash_path}")
        if not self.trash.is_in_trash(trash_path):
            raise RestoreError(f"Folder is not in the Trash: {trash_path}")

        leaf = os.path.basename(trash_path.rstrip(os.sep))
        parent = self._restore_parent(folder, leaf)
        destination = os.path.join(parent, leaf)

        if self.fs.exists(destination):
            raise DestinationExistsError(
                f"A folder with this name already exists at the destination:\n{destination}\n\n"
                "Please remove it first or choose a different location.")

        with self._writing(folder, blocking=True):
            try:
                self.fs.move(trash_path, destination)
            except OSError as e:
                raise RestoreError(f"Failed to move folder:\n{format_fs_error(e)}") from e
            logger.info(f"Moved folder from trash to: {destination}")
            self.trash.forget(trash_path)

            self._apply_new_location(folder, destination)
            store.save()

        status, _ = self.check_sync_status(folder)
        self._set_state(folder, FolderState.SYNCED if status.is_synced else FolderState.OUT_OF_SYNC, status)
        self.event_bus.publish(FolderRestored(folder_id=folder.id, new_path=destination))
        return destination

    def _locate_in_trash(self, folder: TrackedFolder) -> str:
        # The identity token follows the folder into the trash, the stored
        # path still names where it used to be.
        if folder.identity_token:
            try:
                with self.codec.decode(folder.identity_token) as decoded:
                    if self.trash.is_in_trash(decoded.path) and self.fs.isdir(decoded.path):
                        return normalize_path(decoded.path)
            except InvalidTokenError as e:
                logger.warning(f"Failed to resolve identity token for trash location: {e}")
        return normalize_path(folder.stored_path)

    def _restore_parent(self, folder: TrackedFolder, leaf: str) -> str:
        parent = os.path.dirname(normalize_path(folder.stored_path))
        if self.fs.isdir(parent) and not self.trash.is_in_trash(parent):
            return parent

        found = self.markers.locate_by_id(folder.id)
        if found and not self.trash.is_in_trash(found):
            if os.path.basename(found) == leaf:
                return os.path.dirname(found)
            return found

        for root in self._roots():
            if self.fs.isdir(os.path.join(root, leaf)):
                return root

        if self.desktop_dir and self.fs.isdir(self.desktop_dir):
            return self.desktop_dir
        raise RestoreError("Could not determine previous folder location. "
                           "Please use 'Select New Location' to manually restore.")

    # -------------------------------------------------------------------------
    # Diagnostics and marker upkeep
    # -------------------------------------------------------------------------

    def test_identity_token(self, folder: TrackedFolder) -> Tuple[bool, str]:
        if not folder.identity_token:
            return False, "No identity token stored"
        try:
            with self.codec.decode(folder.identity_token) as decoded:
                if not self.fs.isdir(decoded.path):
                    return False, f"Identity token resolved but folder doesn't exist at: {decoded.path}"
                marker_status = "Marker file exists" if self.markers.exists(decoded.path, folder.name) \
                    else "Marker file missing"
                return True, f"Identity token is valid - folder found at: {decoded.path}\n{marker_status}"
        except InvalidTokenError as e:
            return False, f"Failed to resolve identity token: {e}"

    def marker_report(self, folder: TrackedFolder, path: Optional[str] = None) -> Tuple[bool, bool]:
        """(a marker is present, it carries this folder's id) for path or the stored path."""
        marker = self.markers.find_in(path or folder.stored_path)
        if marker is None:
            return False, False
        marker_id = self.markers.read_id(marker)
        return True, bool(marker_id) and marker_id.upper() == folder.id.upper()

    def ensure_marker(self, folder: TrackedFolder):
        if self.markers.exists(folder.stored_path, folder.name):
            return
        try:
            self.markers.create(folder.stored_path, folder.name, folder.id)
        except MarkerError as e:
            logger.warning(f"Failed to create marker file: {e}")
