import shutil
import time
import unittest

from core.types import FolderState
from sandbox import MemoryFolderStore, Sandbox
from scheduler_service import FolderWatchScheduler, MAX_IDLE_WAIT


class TestFolderWatchScheduler(unittest.TestCase):
    def setUp(self):
        self.sb = Sandbox()
        self.store = MemoryFolderStore()
        self.tracker = self.sb.tracker(self.store)
        self.scheduler = FolderWatchScheduler(self.tracker, interval=60.0)

    def tearDown(self):
        self.scheduler.stop()
        self.tracker.shutdown()
        self.sb.cleanup()

    def test_watch_checks_immediately(self):
        folder = self.tracker.add_folder("Proj", self.sb.mkdir("Documents", "Proj"))
        token = self.scheduler.watch(folder)

        wait = self.scheduler.run_pending()
        self.assertEqual(self.tracker.state_of(folder.id), FolderState.SYNCED)
        self.assertFalse(token.cancelled)
        self.assertLessEqual(wait, MAX_IDLE_WAIT)
        self.assertIn(folder.id, self.scheduler.watched_ids())

    def test_watch_twice_returns_same_token(self):
        folder = self.tracker.add_folder("Proj", self.sb.mkdir("Documents", "Proj"))
        self.assertIs(self.scheduler.watch(folder), self.scheduler.watch(folder))

    def test_search_result_applied_on_coordinator(self):
        """Search follow-ups wait in the queue until the coordinator drains them."""
        path = self.sb.mkdir("Documents", "Proj")
        folder = self.tracker.add_folder("Proj", path)
        shutil.rmtree(path)
        self.scheduler.watch(folder)

        self.scheduler.run_pending()
        self.tracker.dispatcher.wait_all(timeout=10)
        self.assertEqual(self.tracker.state_of(folder.id), FolderState.SEARCHING)

        self.scheduler.run_pending()
        self.assertEqual(self.tracker.state_of(folder.id), FolderState.MANUAL_PENDING)

    def test_unwatch_cancels_token(self):
        folder = self.tracker.add_folder("Proj", self.sb.mkdir("Documents", "Proj"))
        token = self.scheduler.watch(folder)
        self.assertTrue(self.scheduler.unwatch(folder.id))
        self.assertTrue(token.cancelled)
        self.assertFalse(self.scheduler.unwatch(folder.id))

        self.scheduler.run_pending()
        self.assertEqual(self.tracker.state_of(folder.id), FolderState.IDLE)

    def test_removed_folder_is_unwatched(self):
        folder = self.tracker.add_folder("Proj", self.sb.mkdir("Documents", "Proj"))
        token = self.scheduler.watch(folder)
        self.tracker.remove_folder(folder)
        self.assertTrue(token.cancelled)
        self.assertEqual(self.scheduler.watched_ids(), [])

    def test_trigger(self):
        folder = self.tracker.add_folder("Proj", self.sb.mkdir("Documents", "Proj"))
        self.assertFalse(self.scheduler.trigger(folder.id))
        self.scheduler.watch(folder)
        self.scheduler.run_pending()
        moved = self.sb.move(folder.stored_path, "Desktop", "Proj")

        self.assertTrue(self.scheduler.trigger(folder.id))
        self.scheduler.run_pending()
        self.tracker.dispatcher.wait_all(timeout=10)
        self.scheduler.run_pending()
        self.assertEqual(folder.stored_path, moved)
        self.assertEqual(self.tracker.state_of(folder.id), FolderState.SYNCED)

    def test_background_thread(self):
        folder = self.tracker.add_folder("Proj", self.sb.mkdir("Documents", "Proj"))
        self.scheduler.start()
        self.scheduler.watch(folder)

        deadline = time.monotonic() + 5
        while time.monotonic() < deadline and self.tracker.state_of(folder.id) != FolderState.SYNCED:
            time.sleep(0.05)
        self.assertEqual(self.tracker.state_of(folder.id), FolderState.SYNCED)

        self.scheduler.stop()
        self.assertFalse(self.scheduler.running)
        self.assertEqual(self.scheduler.watched_ids(), [])


if __name__ == '__main__':
    unittest.main()
