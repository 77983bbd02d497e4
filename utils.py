import os
from typing import Iterable, List

# Directory suffixes that behave like opaque bundles on desktop platforms.
# Their contents are never searched for marker files.
BUNDLE_SUFFIXES = (
    ".app", ".bundle", ".framework", ".plugin", ".kext", ".pkg",
    ".photoslibrary", ".xcodeproj", ".xcworkspace", ".lproj",
)


def normalize_path(path: str) -> str:
    """Absolute, normalized form of a path. Symlinks are left alone."""
    return os.path.normpath(os.path.abspath(os.path.expanduser(path)))


def is_within(path: str, root: str) -> bool:
    """
    True if `path` is `root` or lies below it.
    Compares whole path components, so '/a/Trashy' is not within '/a/Trash'.
    """
    path = normalize_path(path)
    root = normalize_path(root)
    try:
        return os.path.commonpath([path, root]) == root
    except ValueError:
        # Different drives on Windows
        return False


def is_hidden(name: str) -> bool:
    return name.startswith(".")


def is_bundle_like(name: str) -> bool:
    return name.lower().endswith(BUNDLE_SUFFIXES)


def unique_existing(paths: Iterable[str]) -> List[str]:
    """
    Keep the first occurrence of each existing directory, preserving order.
    Used to build search root lists where home may repeat a child root.
    """
    seen = set()
    result = []
    for p in paths:
        if not p:
            continue
        norm = normalize_path(p)
        if norm in seen or not os.path.isdir(norm):
            continue
        seen.add(norm)
        result.append(norm)
    return result
