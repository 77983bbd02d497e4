import os
import shutil
import unittest

from core.codec import IdentityTokenCodec
from core.evaluator import SyncEvaluator
from core.trash import TrashDetector
from sandbox import Sandbox


class TestSyncEvaluator(unittest.TestCase):
    def setUp(self):
        self.sb = Sandbox()
        self.codec = IdentityTokenCodec(search_roots=self.sb.settings.search_roots,
                                        trash_dir=self.sb.trash)
        self.evaluator = SyncEvaluator(self.codec, TrashDetector(self.sb.trash))
        self.path = self.sb.mkdir("Documents", "Proj")
        self.token = self.codec.encode(self.path)

    def tearDown(self):
        self.sb.cleanup()

    def test_synced(self):
        status, needs_search = self.evaluator.evaluate(self.path, self.token)
        self.assertTrue(status.is_synced)
        self.assertEqual(status.actual_path, self.path)
        self.assertTrue(status.was_resolved)
        self.assertFalse(status.is_in_trash)
        self.assertFalse(needs_search)

    def test_synced_without_token(self):
        status, needs_search = self.evaluator.evaluate(self.path, None)
        self.assertTrue(status.is_synced)
        self.assertFalse(status.was_resolved)
        self.assertFalse(needs_search)

    def test_moved_needs_search(self):
        """Evaluation does not chase a moved folder, it asks for a search."""
        self.sb.move(self.path, "Desktop", "Proj")
        status, needs_search = self.evaluator.evaluate(self.path, self.token)
        self.assertFalse(status.is_synced)
        self.assertIsNone(status.actual_path)
        self.assertEqual(status.stored_path, self.path)
        self.assertFalse(status.was_resolved)
        self.assertTrue(needs_search)

    def test_trashed_needs_search(self):
        self.sb.trash_folder(self.path)
        status, needs_search = self.evaluator.evaluate(self.path, self.token)
        self.assertFalse(status.is_synced)
        self.assertFalse(status.is_in_trash)
        self.assertIsNone(status.actual_path)
        self.assertTrue(needs_search)

    def test_stored_path_in_trash(self):
        trashed = self.sb.trash_folder(self.path)
        status, needs_search = self.evaluator.evaluate(trashed, None)
        self.assertFalse(status.is_synced)
        self.assertTrue(status.is_in_trash)
        self.assertFalse(needs_search)

    def test_gone_needs_search(self):
        shutil.rmtree(self.path)
        status, needs_search = self.evaluator.evaluate(self.path, self.token)
        self.assertFalse(status.is_synced)
        self.assertIsNone(status.actual_path)
        self.assertFalse(status.was_resolved)
        self.assertTrue(needs_search)

    def test_corrupt_token_falls_back_to_stored_path(self):
        status, needs_search = self.evaluator.evaluate(self.path, b"corrupt")
        self.assertTrue(status.is_synced)
        self.assertFalse(status.was_resolved)
        self.assertFalse(needs_search)

    def test_does_not_write(self):
        """Evaluation never touches the folder contents."""
        before = sorted(os.listdir(self.path))
        self.sb.move(self.path, "Desktop", "Proj")
        self.evaluator.evaluate(self.path, self.token)
        self.assertEqual(sorted(os.listdir(os.path.join(self.sb.desktop, "Proj"))), before)
        self.assertFalse(os.path.exists(self.path))


if __name__ == '__main__':
    unittest.main()
