"""
Ordered strategies for finding a tracked folder's current location.

Each strategy answers with a Resolution; the tracker walks the list until
one succeeds. The stock order is stored path, identity token, marker
discovery and, when the caller allows it, asking the user.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from providers.interface import IFolderPicker
from providers.local_provider import LocalFileSystem
from utils import normalize_path
from .codec import IdentityTokenCodec, InvalidTokenError
from .markers import MarkerFileManager
from .types import TrackedFolder

logger = logging.getLogger("resolution")


@dataclass(frozen=True)
class Resolution:
    found: bool
    source: str
    path: Optional[str] = None
    reason: str = ""

    @classmethod
    def success(cls, source: str, path: str) -> "Resolution":
        return cls(found=True, source=source, path=normalize_path(path))

    @classmethod
    def failure(cls, source: str, reason: str) -> "Resolution":
        return cls(found=False, source=source, reason=reason)


class ResolutionStrategy:
    name = "base"

    def resolve(self, folder: TrackedFolder) -> Resolution:
        raise NotImplementedError


class StoredPathStrategy(ResolutionStrategy):
    name = "stored_path"

    def __init__(self, fs: LocalFileSystem):
        self.fs = fs

    def resolve(self, folder: TrackedFolder) -> Resolution:
        if self.fs.isdir(folder.stored_path):
            return Resolution.success(self.name, folder.stored_path)
        return Resolution.failure(self.name, f"Stored path missing: {folder.stored_path}")


class IdentityTokenStrategy(ResolutionStrategy):
    name = "identity_token"

    def __init__(self, codec: IdentityTokenCodec, fs: LocalFileSystem):
        self.codec = codec
        self.fs = fs

    def resolve(self, folder: TrackedFolder) -> Resolution:
        if not folder.identity_token:
            return Resolution.failure(self.name, "No identity token stored")
        try:
            with self.codec.decode(folder.identity_token) as decoded:
                if self.fs.isdir(decoded.path):
                    return Resolution.success(self.name, decoded.path)
                return Resolution.failure(self.name, f"Token points at missing folder {decoded.path}")
        except InvalidTokenError as e:
            logger.warning(f"Failed to resolve identity token: {e}")
            return Resolution.failure(self.name, str(e))
        except OSError as e:
            return Resolution.failure(self.name, str(e))


class MarkerDiscoveryStrategy(ResolutionStrategy):
    name = "marker"

    def __init__(self, markers: MarkerFileManager):
        self.markers = markers

    def resolve(self, folder: TrackedFolder) -> Resolution:
        found = self.markers.locate_by_id(folder.id)
        if found:
            return Resolution.success(self.name, found)
        return Resolution.failure(self.name, "No marker file found")


class PickerStrategy(ResolutionStrategy):
    name = "picker"

    def __init__(self, picker: IFolderPicker, fs: LocalFileSystem):
        self.picker = picker
        self.fs = fs

    def resolve(self, folder: TrackedFolder) -> Resolution:
        chosen = self.picker.prompt(f"Locate '{folder.name}' folder")
        if not chosen:
            return Resolution.failure(self.name, "Cancelled by user")
        if not self.fs.isdir(chosen):
            return Resolution.failure(self.name, f"Selected path is not a folder: {chosen}")
        return Resolution.success(self.name, chosen)


def run_strategies(folder: TrackedFolder, strategies: List[ResolutionStrategy]) -> Resolution:
    """First successful resolution, or the last failure."""
    last = Resolution.failure("none", "No strategies to try")
    for strategy in strategies:
        result = strategy.resolve(folder)
        if result.found:
            logger.debug(f"Resolved {folder.name} via {result.source}: {result.path}")
            return result
        logger.debug(f"{strategy.name} failed for {folder.name}: {result.reason}")
        last = result
    return last
