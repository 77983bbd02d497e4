import gc
import os
import tempfile
import unittest

from core.access import ScopedAccess


class TestScopedAccess(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = self.tmp.name

    def tearDown(self):
        self.tmp.cleanup()

    def test_acquire_is_idempotent(self):
        """Acquiring twice keeps a single grant and returns True both times."""
        access = ScopedAccess(self.path)
        self.assertTrue(access.acquire())
        fd = access._fd
        self.assertTrue(access.acquire())
        self.assertEqual(access._fd, fd)
        access.release()
        self.assertFalse(access.is_accessing)

    def test_release_is_idempotent(self):
        access = ScopedAccess(self.path)
        access.release()
        access.acquire()
        access.release()
        access.release()
        self.assertFalse(access.is_accessing)

    def test_acquire_missing_path_fails(self):
        access = ScopedAccess(os.path.join(self.path, "missing"))
        self.assertFalse(access.acquire())
        self.assertFalse(access.is_accessing)

    def test_with_access_releases_on_error(self):
        """The grant opened by with_access is released even when the body raises."""
        access = ScopedAccess(self.path)

        def body(path):
            self.assertTrue(access.is_accessing)
            raise RuntimeError("boom")

        with self.assertRaises(RuntimeError):
            access.with_access(body)
        self.assertFalse(access.is_accessing)

    def test_with_access_keeps_outer_grant(self):
        """A nested with_access does not release a grant it did not open."""
        access = ScopedAccess(self.path)
        access.acquire()
        result = access.with_access(lambda p: p)
        self.assertEqual(result, self.path)
        self.assertTrue(access.is_accessing)
        access.release()

    def test_context_manager_nesting(self):
        access = ScopedAccess(self.path)
        with access:
            with access:
                self.assertTrue(access.is_accessing)
            self.assertTrue(access.is_accessing)
        self.assertFalse(access.is_accessing)

    def test_finalizer_closes_abandoned_grant(self):
        """An access dropped without release() still closes its descriptor."""
        access = ScopedAccess(self.path)
        access.acquire()
        fd = access._fd
        del access
        gc.collect()
        with self.assertRaises(OSError):
            os.fstat(fd)


if __name__ == '__main__':
    unittest.main()
