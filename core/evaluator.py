import logging
from typing import Optional, Tuple

from providers.local_provider import LocalFileSystem
from utils import normalize_path
from .codec import IdentityTokenCodec, InvalidTokenError
from .trash import TrashDetector
from .types import SyncStatus

logger = logging.getLogger("sync_evaluator")


class SyncEvaluator:
    """
    Computes the sync status of a tracked folder. Reads the filesystem,
    never writes it and keeps no state between calls.
    """

    def __init__(self, codec: IdentityTokenCodec, trash: TrashDetector,
                 fs: Optional[LocalFileSystem] = None):
        self.codec = codec
        self.trash = trash
        self.fs = fs or LocalFileSystem()

    def resolve_token(self, identity_token: Optional[bytes]) -> Optional[str]:
        """
        Folder at the token's recorded path if it still carries the same
        identity, or None. Never walks the filesystem looking for it.
        """
        if not identity_token:
            return None
        try:
            with self.codec.decode(identity_token, relocate=False) as decoded:
                if not decoded.is_stale and self.fs.isdir(decoded.path):
                    return normalize_path(decoded.path)
                logger.debug(f"Identity token no longer matches {decoded.path}")
        except InvalidTokenError as e:
            logger.warning(f"Failed to resolve identity token for sync check: {e}")
        except OSError as e:
            logger.warning(f"Filesystem error resolving identity token: {e}")
        return None

    def evaluate(self, stored_path: str, identity_token: Optional[bytes] = None) -> Tuple[SyncStatus, bool]:
        """Returns (status, needs_search)."""
        actual_from_token = self.resolve_token(identity_token)
        was_resolved = actual_from_token is not None

        stored_exists = self.fs.isdir(stored_path)
        stored_norm = normalize_path(stored_path)

        is_in_trash = self.trash.is_in_trash(stored_path) or \
            (actual_from_token is not None and self.trash.is_in_trash(actual_from_token))

        needs_search = not stored_exists and actual_from_token is None and not is_in_trash

        if actual_from_token is not None:
            actual_path = actual_from_token
        elif stored_exists:
            actual_path = stored_norm
        else:
            actual_path = None

        is_synced = stored_exists and actual_path == stored_norm and not is_in_trash

        if actual_path and not is_synced:
            if is_in_trash:
                logger.warning(f"Folder is in Trash: {actual_path}")
            elif not stored_exists:
                logger.info(f"Sync check: Folder moved from {stored_path} to {actual_path}")
            else:
                logger.info(f"Sync check: Paths differ - stored: {stored_path}, actual: {actual_path}")

        status = SyncStatus(
            is_synced=is_synced,
            stored_path=stored_path,
            actual_path=actual_path,
            was_resolved=was_resolved,
            is_in_trash=is_in_trash,
        )
        return status, needs_search
