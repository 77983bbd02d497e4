import time
import uuid
from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Optional


class FolderMarkError(Exception):
    """Base class for errors raised by the folder tracking engine."""
    pass


class FolderState(Enum):
    IDLE = auto()
    CHECKING = auto()
    SYNCED = auto()
    OUT_OF_SYNC = auto()
    SEARCHING = auto()
    IN_TRASH = auto()
    MANUAL_PENDING = auto()


@dataclass
class TrackedFolder:
    """
    A user-added folder. `id` is fixed at creation and ties the folder
    to its marker file. Only the engine mutates `stored_path` and
    `identity_token`.
    """
    name: str
    stored_path: str
    identity_token: Optional[bytes] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()).upper())
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class SyncStatus:
    is_synced: bool
    stored_path: str
    actual_path: Optional[str] = None
    was_resolved: bool = False
    is_in_trash: bool = False

    def to_dict(self) -> dict:
        return {
            "is_synced": self.is_synced,
            "stored_path": self.stored_path,
            "actual_path": self.actual_path,
            "was_resolved": self.was_resolved,
            "is_in_trash": self.is_in_trash,
        }


@dataclass
class MarkerRecord:
    project_name: str
    project_id: str
    schema_version: str = "1.0"
    created_by: str = "foldermark"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
