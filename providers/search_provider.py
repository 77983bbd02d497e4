import os
import sys
import shutil
import logging
import subprocess
from typing import List, Optional

from .interface import IIndexedSearch

logger = logging.getLogger("indexed_search")

QUERY_TIMEOUT = 15.0


class CommandSearch(IIndexedSearch):
    """Base for indexed searches backed by a command line tool."""

    command = ""

    def __init__(self, timeout: float = QUERY_TIMEOUT):
        self.timeout = timeout

    def is_available(self) -> bool:
        return shutil.which(self.command) is not None

    def build_args(self, extension: str, scope: Optional[str]) -> List[str]:
        raise NotImplementedError

    def query_by_extension(self, extension: str, scope: Optional[str] = None) -> List[str]:
        args = self.build_args(extension, scope)
        try:
            proc = subprocess.run(args, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"{self.command} query failed: {e}")
            return []

        # locate exits 1 when nothing matched
        if proc.returncode not in (0, 1):
            logger.warning(f"{self.command} exited with {proc.returncode}: {proc.stderr.strip()}")
            return []

        suffix = f".{extension}"
        paths = [line.strip() for line in proc.stdout.splitlines() if line.strip().endswith(suffix)]
        if scope:
            scope = os.path.normpath(scope) + os.sep
            paths = [p for p in paths if p.startswith(scope)]
        logger.debug(f"{self.command} found {len(paths)} '{suffix}' files")
        return paths


class MdfindSearch(CommandSearch):
    """Spotlight, via mdfind."""

    command = "mdfind"

    def build_args(self, extension: str, scope: Optional[str]) -> List[str]:
        args = [self.command]
        if scope:
            args += ["-onlyin", scope]
        args.append(f"kMDItemFSName == '*.{extension}'")
        return args


class LocateSearch(CommandSearch):
    """mlocate/plocate database."""

    command = "locate"

    def build_args(self, extension: str, scope: Optional[str]) -> List[str]:
        return [self.command, "--basename", f"*.{extension}"]


class NullSearch(IIndexedSearch):
    def is_available(self) -> bool:
        return False

    def query_by_extension(self, extension: str, scope: Optional[str] = None) -> List[str]:
        return []


def detect_indexed_search(mode: str = "auto") -> IIndexedSearch:
    """Pick an indexed search for `mode`: auto, mdfind, locate or none."""
    mode = (mode or "auto").lower()
    if mode == "none":
        return NullSearch()
    if mode == "mdfind":
        return MdfindSearch()
    if mode == "locate":
        return LocateSearch()

    candidates = [MdfindSearch(), LocateSearch()] if sys.platform == "darwin" else [LocateSearch()]
    for candidate in candidates:
        if candidate.is_available():
            logger.info(f"Using indexed search: {candidate.command}")
            return candidate
    logger.info("No indexed search available, discovery will walk directories")
    return NullSearch()
