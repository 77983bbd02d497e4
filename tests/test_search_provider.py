import subprocess
import unittest
from unittest.mock import MagicMock, patch

from providers.search_provider import (
    LocateSearch, MdfindSearch, NullSearch, detect_indexed_search,
)


class TestIndexedSearch(unittest.TestCase):
    def completed(self, stdout, returncode=0):
        proc = MagicMock(spec=subprocess.CompletedProcess)
        proc.stdout = stdout
        proc.stderr = ""
        proc.returncode = returncode
        return proc

    @patch("providers.search_provider.subprocess.run")
    def test_mdfind_query(self, mock_run):
        mock_run.return_value = self.completed("/home/u/A/A.foldermark\n/home/u/B/notes.txt\n/other/C.foldermark\n")

        hits = MdfindSearch().query_by_extension("foldermark", scope="/home/u")

        self.assertEqual(hits, ["/home/u/A/A.foldermark"])
        args = mock_run.call_args[0][0]
        self.assertEqual(args[:3], ["mdfind", "-onlyin", "/home/u"])
        self.assertIn("*.foldermark", args[3])

    @patch("providers.search_provider.subprocess.run")
    def test_locate_no_matches(self, mock_run):
        mock_run.return_value = self.completed("", returncode=1)
        self.assertEqual(LocateSearch().query_by_extension("foldermark"), [])

    @patch("providers.search_provider.subprocess.run")
    def test_failures_return_nothing(self, mock_run):
        mock_run.return_value = self.completed("/x/A.foldermark\n", returncode=2)
        self.assertEqual(LocateSearch().query_by_extension("foldermark"), [])

        mock_run.side_effect = subprocess.TimeoutExpired("locate", 15)
        self.assertEqual(LocateSearch().query_by_extension("foldermark"), [])

    def test_detect(self):
        self.assertIsInstance(detect_indexed_search("none"), NullSearch)
        self.assertIsInstance(detect_indexed_search("mdfind"), MdfindSearch)
        self.assertIsInstance(detect_indexed_search("locate"), LocateSearch)
        with patch("providers.search_provider.shutil.which", return_value=None):
            self.assertIsInstance(detect_indexed_search("auto"), NullSearch)


if __name__ == '__main__':
    unittest.main()
