"""
Tests for reading position storage, merging and the background save worker.
"""

import tempfile
import threading
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from models import ReadingPosition
from progress import (
    SaveWorker,
    get_position,
    load_positions,
    merge_position,
    merge_positions,
    positions_from_json,
    positions_to_json,
    save_positions,
    update_position,
)

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def position(name="a.txt", index=0, minutes=0, title="开始"):
    return ReadingPosition(name, title, index, T0 + timedelta(minutes=minutes))


class TestMerge(unittest.TestCase):

    def test_newer_replaces(self):
        positions = [position(index=1)]
        self.assertTrue(merge_position(positions, position(index=5, minutes=1)))
        self.assertEqual(positions[0].chapter_index, 5)

    def test_older_and_tie_keep_existing(self):
        positions = [position(index=1, minutes=10)]
        self.assertFalse(merge_position(positions, position(index=2, minutes=5)))
        self.assertFalse(merge_position(positions, position(index=3, minutes=10)))
        self.assertEqual(positions[0].chapter_index, 1)

    def test_new_file_appended(self):
        positions = [position()]
        self.assertTrue(merge_position(positions, position(name="b.txt")))
        self.assertEqual([p.file_name for p in positions], ["a.txt", "b.txt"])

    def test_merge_positions_takes_newest_per_file(self):
        local = [position("a.txt", 1, minutes=5), position("b.txt", 2, minutes=0)]
        remote = [position("a.txt", 9, minutes=1), position("b.txt", 7, minutes=3), position("c.txt", 4)]
        merged = merge_positions(local, remote)

        by_name = {p.file_name: p.chapter_index for p in merged}
        self.assertEqual(by_name, {"a.txt": 1, "b.txt": 7, "c.txt": 4})
        # Inputs untouched
        self.assertEqual(local[1].chapter_index, 2)


class TestProgressFile(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "progress.json"

    def tearDown(self):
        self._tmp.cleanup()

    def test_missing_file_is_empty(self):
        self.assertEqual(load_positions(self.path), [])
        self.assertIsNone(get_position("a.txt", self.path))

    def test_update_and_get(self):
        self.assertTrue(update_position(position(index=3, minutes=1), self.path))
        self.assertFalse(update_position(position(index=1), self.path))

        saved = get_position("a.txt", self.path)
        self.assertEqual(saved.chapter_index, 3)
        self.assertEqual(saved.timestamp, T0 + timedelta(minutes=1))

    def test_file_uses_camel_case_fields(self):
        save_positions([position()], self.path)
        text = self.path.read_text(encoding="utf-8")
        for key in ("fileName", "chapter", "chapterIndex", "lastReadTime"):
            self.assertIn(f'"{key}"', text)
        self.assertIn("开始", text)

    def test_corrupt_file_is_ignored(self):
        self.path.write_text("{not json", encoding="utf-8")
        with self.assertLogs("progress", level="WARNING"):
            self.assertEqual(load_positions(self.path), [])

    def test_json_bytes(self):
        data = positions_to_json([position("x.txt", 4)])
        self.assertEqual(positions_from_json(data)[0].chapter_index, 4)

    def test_z_suffix_and_naive_times(self):
        parsed = positions_from_json(
            b'[{"fileName": "a.txt", "chapter": "x", "chapterIndex": 2,'
            b' "lastReadTime": "2024-03-01T12:00:00.000Z"},'
            b' {"fileName": "b.txt", "chapter": "y", "chapterIndex": 1,'
            b' "lastReadTime": "2024-03-01T12:00:00"}]'
        )
        self.assertEqual(parsed[0].timestamp, T0)
        self.assertEqual(parsed[1].timestamp, T0)


class TestSaveWorker(unittest.TestCase):

    def test_saves_are_written(self):
        saved = []
        worker = SaveWorker(lambda p: saved.append(p) or True)
        worker.submit(position(index=1))
        self.assertTrue(worker.flush(timeout=5))
        worker.close()

        self.assertEqual([p.chapter_index for p in saved], [1])

    def test_backlog_coalesces_to_newest(self):
        release = threading.Event()
        saved = []

        def persist(p):
            release.wait(5)
            saved.append(p)
            return True

        worker = SaveWorker(persist)
        worker.submit(position(index=0))
        # These pile up while the first write is blocked
        for i in range(1, 6):
            worker.submit(position(index=i, minutes=i))
        release.set()
        self.assertTrue(worker.flush(timeout=5))
        worker.close()

        self.assertEqual(saved[-1].chapter_index, 5)
        self.assertLessEqual(len(saved), 6)

    def test_failures_are_logged_not_raised(self):
        def persist(p):
            raise OSError("disk full")

        worker = SaveWorker(persist)
        with self.assertLogs("progress", level="WARNING") as logs:
            worker.submit(position())
            worker.flush(timeout=5)
            worker.close()
        self.assertIn("disk full", "\n".join(logs.output))

    def test_false_result_is_logged(self):
        worker = SaveWorker(lambda p: False)
        with self.assertLogs("progress", level="WARNING"):
            worker.submit(position())
            worker.flush(timeout=5)
            worker.close()

    def test_flush_and_close_report_busy_worker(self):
        release = threading.Event()
        worker = SaveWorker(lambda p: release.wait(5))
        worker.submit(position())
        threads_before = threading.active_count()

        self.assertFalse(worker.flush(timeout=0.05))
        self.assertEqual(threading.active_count(), threads_before)
        with self.assertLogs("progress", level="WARNING"):
            self.assertFalse(worker.close(timeout=0.05))

        release.set()

    def test_close_reports_idle_worker(self):
        worker = SaveWorker(lambda p: True)
        worker.submit(position())
        self.assertTrue(worker.close())

    def test_close_without_submit(self):
        worker = SaveWorker(lambda p: True)
        worker.close()
        self.assertTrue(worker.flush(timeout=1))


if __name__ == "__main__":
    unittest.main()
