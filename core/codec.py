"""
Identity tokens: opaque blobs that find a folder again after it moves.

A token records the folder's device and inode numbers along with the path
it had when encoded. Renames and moves on the same volume keep the inode,
so decoding looks for that inode near the old location, under the search
roots and in the trash.
"""

import os
import json
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import zstandard as zstd

from providers.local_provider import LocalFileSystem
from utils import is_hidden, normalize_path
from .access import ScopedAccess
from .types import FolderMarkError

logger = logging.getLogger("identity_codec")

TOKEN_MAGIC = b"FMK1"
TOKEN_VERSION = 1
ANCESTOR_LEVELS = 3
REQUIRED_FIELDS = ("path", "dev", "ino")


class EncodingError(FolderMarkError):
    pass


class InvalidTokenError(FolderMarkError):
    pass


@dataclass
class DecodedToken:
    """
    Result of decoding. `access` is already acquired on `path` and belongs
    to the caller: use the token as a context manager or call release().
    """
    path: str
    is_stale: bool
    access: ScopedAccess

    def release(self):
        self.access.release()

    def __enter__(self) -> "DecodedToken":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


class IdentityTokenCodec:
    def __init__(self,
                 fs: Optional[LocalFileSystem] = None,
                 search_roots: Union[Sequence[str], Callable[[], Iterable[str]], None] = None,
                 trash_dir: Optional[str] = None,
                 max_depth: int = 5):
        self.fs = fs or LocalFileSystem()
        self._search_roots = search_roots or []
        self.trash_dir = trash_dir
        self.max_depth = max_depth

    def encode(self, path: str) -> bytes:
        path = normalize_path(path)
        if not self.fs.isdir(path):
            raise EncodingError(f"Folder does not exist: {path}")

        access = ScopedAccess(path)
        if not access.acquire():
            raise EncodingError(f"Folder is not accessible: {path}")
        try:
            dev, ino = self.fs.identity(path)
        except OSError as e:
            raise EncodingError(f"Could not read folder identity for {path}: {e}") from e
        finally:
            access.release()

        payload = {
            "v": TOKEN_VERSION,
            "path": path,
            "name": os.path.basename(path),
            "dev": dev,
            "ino": ino,
            "created": datetime.now(timezone.utc).isoformat(),
        }
        data = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        compressor = zstd.ZstdCompressor(level=3, write_checksum=True)
        token = TOKEN_MAGIC + compressor.compress(data)
        logger.debug(f"Encoded identity token for {path}: {len(token)} bytes")
        return token

    def decode(self, token: bytes, relocate: bool = True) -> DecodedToken:
        """
        Resolve a token. With relocate=False only the recorded path is
        checked, so a moved folder comes back stale at its old path
        without touching the rest of the filesystem.
        """
        payload = self._unpack(token)
        recorded = payload["path"]
        target = (payload["dev"], payload["ino"])

        if self._matches(recorded, target):
            path, stale = recorded, False
        else:
            found = self._search(target, recorded) if relocate else None
            if found:
                logger.info(f"Identity token relocated: {recorded} -> {found}")
                path = found
            else:
                logger.debug(f"Identity token target not at {recorded}")
                path = recorded
            stale = True

        access = ScopedAccess(path)
        access.acquire()
        return DecodedToken(path=path, is_stale=stale, access=access)

    def relocate(self, token: bytes, should_stop: Optional[Callable[[], bool]] = None) -> Optional[str]:
        """
        Current location of the token's folder, found by inode. Walks the
        ancestors, search roots and trash, so run it off the coordinator.
        """
        payload = self._unpack(token)
        recorded = payload["path"]
        target = (payload["dev"], payload["ino"])
        if self._matches(recorded, target):
            return recorded
        found = self._search(target, recorded, should_stop)
        if found:
            logger.info(f"Identity token relocated: {recorded} -> {found}")
        return found

    def recorded_path(self, token: bytes) -> str:
        """Path stored in the token at encode time, without resolving."""
        return self._unpack(token)["path"]

    def _unpack(self, token) -> dict:
        if isinstance(token, (bytearray, memoryview)):
            token = bytes(token)
        if not isinstance(token, bytes) or not token.startswith(TOKEN_MAGIC):
            raise InvalidTokenError("Not an identity token")
        try:
            data = zstd.ZstdDecompressor().decompress(token[len(TOKEN_MAGIC):])
            payload = json.loads(data.decode("utf-8"))
        except (zstd.ZstdError, UnicodeDecodeError, ValueError) as e:
            raise InvalidTokenError(f"Corrupt identity token: {e}") from e

        if not isinstance(payload, dict) or any(k not in payload for k in REQUIRED_FIELDS):
            raise InvalidTokenError("Identity token is missing required fields")
        if not isinstance(payload["path"], str) or not isinstance(payload["ino"], int) \
                or not isinstance(payload["dev"], int):
            raise InvalidTokenError("Identity token has malformed fields")
        return payload

    def _matches(self, path: str, target: Tuple[int, int]) -> bool:
        try:
            return self.fs.isdir(path) and self.fs.identity(path) == target
        except OSError:
            return False

    def _roots(self) -> List[str]:
        roots = self._search_roots() if callable(self._search_roots) else self._search_roots
        return list(roots)

    def _search(self, target: Tuple[int, int], recorded: str,
                should_stop: Optional[Callable[[], bool]] = None) -> Optional[str]:
        # Closest first: ancestors of the old location, then the usual roots,
        # then the trash (hidden entries allowed there).
        plan = []
        parent = os.path.dirname(recorded)
        for _ in range(ANCESTOR_LEVELS):
            if not parent or parent == os.path.dirname(parent):
                break
            plan.append((parent, True))
            parent = os.path.dirname(parent)
        plan.extend((root, True) for root in self._roots())
        if self.trash_dir:
            plan.append((self.trash_dir, False))

        # Directory -> depth budget it was listed with. A later root that
        # reaches it with more budget left lists it again.
        listed: Dict[str, int] = {}
        for root, skip_hidden in plan:
            found = self._scan(root, target, skip_hidden, listed, should_stop)
            if found:
                return found
        return None

    def _scan(self, root: str, target: Tuple[int, int], skip_hidden: bool,
              listed: Dict[str, int], should_stop: Optional[Callable[[], bool]] = None) -> Optional[str]:
        dev, ino = target
        queue = deque([(root, 0)])
        while queue:
            if should_stop and should_stop():
                logger.debug("Identity token search stopped early")
                return None
            current, depth = queue.popleft()
            current = normalize_path(current)
            budget = self.max_depth - depth
            if listed.get(current, 0) >= budget:
                continue
            listed[current] = budget
            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError:
                continue
            for entry in entries:
                if skip_hidden and is_hidden(entry.name):
                    continue
                try:
                    if not entry.is_dir(follow_symlinks=False):
                        continue
                    if entry.inode() == ino and entry.stat(follow_symlinks=False).st_dev == dev:
                        return normalize_path(entry.path)
                except OSError:
                    continue
                if depth + 1 < self.max_depth:
                    queue.append((entry.path, depth + 1))
        return None
