import sqlite3
import threading
import queue
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.types import TrackedFolder
from .interface import IFolderStore, PersistenceUnavailable

logger = logging.getLogger("folder_db")

RESULT_TIMEOUT = 30.0

Statement = Tuple[str, tuple]


class DatabaseWorker(threading.Thread):
    """Owns the sqlite connection; every statement runs on this one thread."""

    def __init__(self, db_path: str):
        super().__init__(daemon=True, name="FolderDBWorker")
        self.db_path = db_path
        self.queue = queue.Queue()
        self.connection = None
        self.running = True
        self.start()

    def run(self):
        try:
            self.connection = sqlite3.connect(self.db_path, check_same_thread=False)
            self.connection.execute("PRAGMA journal_mode=WAL;")
            self.connection.execute("PRAGMA synchronous=NORMAL;")
            self._create_tables()

            while self.running:
                try:
                    task = self.queue.get(timeout=1.0)
                except queue.Empty:
                    continue
                if task is None:
                    self.queue.task_done()
                    break
                statements, result_queue = task
                try:
                    result_queue.put(('success', self._run_statements(statements)))
                except sqlite3.Error as e:
                    self.connection.rollback()
                    result_queue.put(('error', e))
                finally:
                    self.queue.task_done()
        except sqlite3.Error as e:
            logger.critical(f"Database worker failed: {e}")
        finally:
            self.running = False
            if self.connection:
                self.connection.close()
            self._fail_pending()

    def _run_statements(self, statements: Sequence[Statement]) -> Any:
        # A batch commits as one transaction
        result = None
        for query, args in statements:
            cursor = self.connection.execute(query, args)
            if query.strip().upper().startswith("SELECT"):
                result = cursor.fetchall()
            else:
                result = cursor.lastrowid
        self.connection.commit()
        return result

    def _fail_pending(self):
        while True:
            try:
                task = self.queue.get_nowait()
            except queue.Empty:
                return
            if task is not None:
                task[1].put(('error', sqlite3.OperationalError("database worker stopped")))
            self.queue.task_done()

    def _create_tables(self):
        schema = """
        CREATE TABLE IF NOT EXISTS tracked_folders (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            stored_path TEXT NOT NULL,
            identity_token BLOB,
            created_at REAL NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_tracked_folders_created
            ON tracked_folders (created_at);
        """
        self.connection.executescript(schema)
        self.connection.commit()

    def execute_batch(self, statements: Sequence[Statement]) -> Any:
        if not self.running or not self.is_alive():
            raise PersistenceUnavailable(f"Database worker for {self.db_path} is not running")
        result_queue = queue.Queue()
        self.queue.put((list(statements), result_queue))
        try:
            status, result = result_queue.get(timeout=RESULT_TIMEOUT)
        except queue.Empty:
            raise PersistenceUnavailable(f"Timed out waiting for database {self.db_path}")
        if status == 'error':
            raise PersistenceUnavailable(f"Database error: {result}") from result
        return result

    def execute(self, query: str, args: tuple = ()) -> Any:
        return self.execute_batch([(query, args)])

    def close(self):
        self.running = False
        self.queue.put(None)
        self.join(timeout=5.0)


UPSERT_FOLDER = """
INSERT INTO tracked_folders (id, name, stored_path, identity_token, created_at)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    name=excluded.name,
    stored_path=excluded.stored_path,
    identity_token=excluded.identity_token
"""


class SqliteFolderStore(IFolderStore):
    """
    sqlite-backed folder store. Folders handed out by query_all() are
    shared instances, so edits made to them are written by the next save().
    """

    def __init__(self, db_path: str = "foldermark.db"):
        self.db_path = db_path
        self.worker = DatabaseWorker(db_path)
        self._folders: Dict[str, TrackedFolder] = {}
        self._deleted: Dict[str, TrackedFolder] = {}
        self._lock = threading.RLock()

    def insert(self, folder: TrackedFolder) -> None:
        with self._lock:
            self._deleted.pop(folder.id, None)
            self._folders[folder.id] = folder

    def delete(self, folder: TrackedFolder) -> None:
        with self._lock:
            self._folders.pop(folder.id, None)
            self._deleted[folder.id] = folder

    def save(self) -> None:
        with self._lock:
            statements: List[Statement] = [
                (UPSERT_FOLDER, (f.id, f.name, f.stored_path, f.identity_token, f.created_at))
                for f in self._folders.values()
            ]
            statements += [
                ("DELETE FROM tracked_folders WHERE id = ?", (folder_id,))
                for folder_id in self._deleted
            ]
            if not statements:
                return
            self.worker.execute_batch(statements)
            self._deleted.clear()
        logger.debug(f"Saved {len(statements)} folder changes")

    def query_all(self) -> List[TrackedFolder]:
        rows = self.worker.execute(
            "SELECT id, name, stored_path, identity_token, created_at "
            "FROM tracked_folders ORDER BY created_at DESC")
        with self._lock:
            for folder_id, name, stored_path, token, created_at in rows or []:
                if folder_id in self._deleted or folder_id in self._folders:
                    continue
                self._folders[folder_id] = TrackedFolder(
                    id=folder_id,
                    name=name,
                    stored_path=stored_path,
                    identity_token=bytes(token) if token is not None else None,
                    created_at=created_at,
                )
            # Inserted but not yet saved folders are visible too
            result = list(self._folders.values())
        return sorted(result, key=lambda f: f.created_at, reverse=True)

    def get(self, folder_id: str) -> Optional[TrackedFolder]:
        for folder in self.query_all():
            if folder.id == folder_id:
                return folder
        return None

    def close(self):
        self.worker.close()
