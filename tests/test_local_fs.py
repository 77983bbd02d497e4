import os
import tempfile
import unittest
from dataclasses import fields

from providers.interface import FileResource, FileType
from providers.local_provider import LocalFileSystem


class TestLocalFileSystem(unittest.TestCase):
    def setUp(self):
        self.test_dir_obj = tempfile.TemporaryDirectory()
        self.test_dir = self.test_dir_obj.name
        self.fs = LocalFileSystem()

    def tearDown(self):
        self.test_dir_obj.cleanup()

    def test_list_dir(self):
        """list_dir returns direct children with their types."""
        os.makedirs(os.path.join(self.test_dir, "foo", "bar"))
        with open(os.path.join(self.test_dir, "test.txt"), "w") as f:
            f.write("hello")

        items = {item.name: item for item in self.fs.list_dir(self.test_dir)}
        self.assertEqual(set(items), {"foo", "test.txt"})
        self.assertEqual(items["test.txt"].size, 5)
        self.assertEqual(items["test.txt"].type, FileType.FILE)
        self.assertEqual(items["foo"].type, FileType.DIRECTORY)
        self.assertEqual(self.fs.list_files(self.test_dir), [os.path.join(self.test_dir, "test.txt")])

    def test_resource_fields(self):
        """Listing yields plain resources with no provider-specific payload."""
        self.assertEqual([f.name for f in fields(FileResource)], ["path", "name", "type", "size", "mtime"])
        self.assertFalse(hasattr(self.fs, "open"))

    def test_list_missing_dir(self):
        self.assertEqual(list(self.fs.list_dir(os.path.join(self.test_dir, "nope"))), [])

    def test_read_write(self):
        path = os.path.join(self.test_dir, "write_test.txt")
        self.fs.write_bytes(path, b"content")
        with open(path, "rb") as f:
            self.assertEqual(f.read(), b"content")
        self.assertEqual(self.fs.read_bytes(path), b"content")

    def test_delete(self):
        path = os.path.join(self.test_dir, "del_test.txt")
        with open(path, "w") as f:
            f.write("data")
        self.fs.delete(path)
        self.assertFalse(os.path.exists(path))

    def test_move_keeps_identity(self):
        """Moving a directory on the same volume keeps its (dev, inode)."""
        src = os.path.join(self.test_dir, "src")
        os.makedirs(os.path.join(src, "child"))
        before = self.fs.identity(src)

        dst = os.path.join(self.test_dir, "elsewhere", "dst")
        os.makedirs(os.path.dirname(dst))
        self.fs.move(src, dst)

        self.assertFalse(os.path.exists(src))
        self.assertTrue(os.path.isdir(os.path.join(dst, "child")))
        self.assertEqual(self.fs.identity(dst), before)

    def test_predicates(self):
        path = os.path.join(self.test_dir, "f.txt")
        with open(path, "w") as f:
            f.write("x")
        self.assertTrue(self.fs.exists(path))
        self.assertTrue(self.fs.isfile(path))
        self.assertFalse(self.fs.isdir(path))
        self.assertTrue(self.fs.isdir(self.test_dir))
        self.assertTrue(self.fs.is_writable(self.test_dir))


if __name__ == '__main__':
    unittest.main()
