import os
import fsspec
from typing import Iterator, List, Tuple

from .interface import FileResource, FileType


class LocalFileSystem:
    """
    Local filesystem access for tracked folders and marker files.
    Paths are absolute; fsspec does the I/O so the engine never calls
    open()/shutil directly.
    """

    def __init__(self):
        self.fs = fsspec.filesystem("file")

    def exists(self, path: str) -> bool:
        return self.fs.exists(path)

    def isdir(self, path: str) -> bool:
        return self.fs.isdir(path)

    def isfile(self, path: str) -> bool:
        return self.fs.isfile(path)

    def is_writable(self, path: str) -> bool:
        return os.access(path, os.W_OK)

    def identity(self, path: str) -> Tuple[int, int]:
        """(device, inode) of a path. Survives renames on the same volume."""
        st = os.stat(path)
        return st.st_dev, st.st_ino

    def list_dir(self, path: str) -> Iterator[FileResource]:
        """Direct children of a directory. Missing directories yield nothing."""
        try:
            entries = self.fs.ls(path, detail=True)
        except (FileNotFoundError, NotADirectoryError, PermissionError):
            return
        for info in entries:
            yield self._to_resource(info)

    def list_files(self, path: str) -> List[str]:
        return [r.path for r in self.list_dir(path) if r.type == FileType.FILE]

    def _to_resource(self, info: dict) -> FileResource:
        full_path = os.path.normpath(info["name"])
        if info.get("type") == "directory":
            ftype = FileType.DIRECTORY
        elif info.get("islink"):
            ftype = FileType.SYMLINK
        else:
            ftype = FileType.FILE
        return FileResource(
            path=full_path,
            name=os.path.basename(full_path),
            type=ftype,
            size=info.get("size") or 0,
            mtime=info.get("mtime") or 0.0,
        )

    def read_bytes(self, path: str) -> bytes:
        with self.fs.open(path, "rb") as f:
            return f.read()

    def write_bytes(self, path: str, data: bytes) -> None:
        with self.fs.open(path, "wb") as f:
            f.write(data)

    def delete(self, path: str, recursive: bool = False) -> None:
        if self.fs.isdir(path):
            self.fs.rm(path, recursive=recursive)
        else:
            self.fs.rm(path)

    def move(self, src_path: str, dst_path: str) -> None:
        """Move/rename a file or directory tree."""
        self.fs.mv(src_path, dst_path, recursive=True)

    def set_xattr(self, path: str, name: str, value: bytes) -> bool:
        setxattr = getattr(os, "setxattr", None)
        if setxattr is None:
            return False
        setxattr(path, name, value)
        return True
