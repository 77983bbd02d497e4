import threading
import unittest

from core.dispatch import SearchDispatcher
from core.events import EventBus, FolderAdded, FolderRemoved, TrackerEvent


class TestEventBus(unittest.TestCase):
    def test_publish_to_specific_and_catch_all(self):
        bus = EventBus()
        added, everything = [], []
        bus.subscribe(FolderAdded, added.append)
        bus.subscribe(TrackerEvent, everything.append)

        bus.publish(FolderAdded(folder_id="A", name="Proj", path="/p"))
        bus.publish(FolderRemoved(folder_id="A", name="Proj"))

        self.assertEqual(len(added), 1)
        self.assertEqual([e.event_type for e in everything], ["FolderAdded", "FolderRemoved"])

    def test_failing_handler_does_not_block_others(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(FolderAdded, broken)
        bus.subscribe(FolderAdded, received.append)
        bus.publish(FolderAdded(folder_id="A"))
        self.assertEqual(len(received), 1)

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        bus.subscribe(FolderAdded, received.append)
        self.assertTrue(bus.unsubscribe(FolderAdded, received.append))
        self.assertFalse(bus.unsubscribe(FolderAdded, received.append))
        bus.publish(FolderAdded(folder_id="A"))
        self.assertEqual(received, [])

    def test_history_is_bounded(self):
        bus = EventBus(history_limit=3)
        for i in range(5):
            bus.publish(FolderRemoved(folder_id=str(i)))
        self.assertEqual([e.folder_id for e in bus.get_history()], ["2", "3", "4"])
        bus.clear_history()
        self.assertEqual(bus.get_history(), [])


class TestSearchDispatcher(unittest.TestCase):
    def setUp(self):
        self.dispatcher = SearchDispatcher(max_workers=2)

    def tearDown(self):
        self.dispatcher.shutdown()

    def test_one_job_per_folder(self):
        release = threading.Event()
        first = self.dispatcher.submit("A", lambda: release.wait(10))
        self.assertIsNotNone(first)
        self.assertIsNone(self.dispatcher.submit("A", lambda: None))
        self.assertIs(self.dispatcher.future_for("A"), first)
        self.assertTrue(self.dispatcher.is_in_flight("A"))

        other = self.dispatcher.submit("B", lambda: "b")
        self.assertEqual(other.result(timeout=10), "b")

        release.set()
        first.result(timeout=10)
        self.dispatcher.wait_all(timeout=10)

    def test_failed_job_surfaces_exception(self):
        def fail():
            raise ValueError("bad")

        future = self.dispatcher.submit("A", fail)
        with self.assertRaises(ValueError):
            future.result(timeout=10)

    def test_closed_dispatcher_rejects(self):
        self.dispatcher.shutdown()
        self.assertIsNone(self.dispatcher.submit("A", lambda: None))


if __name__ == '__main__':
    unittest.main()
