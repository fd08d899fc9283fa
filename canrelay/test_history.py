import os
import json
import tempfile
import unittest
from unittest.mock import patch

from canrelay.history import HistoryLog


def _record(i):
    return {
        "timestamp": f"2026-10-18T00:00:{i:02d}.000Z",
        "temperatura": 20.0 + i,
        "pressao": 1.0,
        "valvula1": False,
        "valvula2": False,
    }


class TestHistoryLog(unittest.TestCase):
    def setUp(self):
        self.test_dir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.test_dir.name, "dados.txt")
        self.log = HistoryLog(self.path)
        self.log.ensure_exists()

    def tearDown(self):
        self.test_dir.cleanup()

    def test_ensure_exists_creates_empty_file(self):
        self.assertTrue(os.path.exists(self.path))
        self.assertEqual(os.path.getsize(self.path), 0)

    def test_ensure_exists_keeps_existing_content(self):
        self.log.append(_record(1))
        self.assertFalse(self.log.ensure_exists())
        self.assertEqual(self.log.read_last(10), [_record(1)])

    def test_ensure_exists_creates_parent_directory(self):
        nested = HistoryLog(os.path.join(self.test_dir.name, "data", "dados.txt"))
        self.assertTrue(nested.ensure_exists())
        self.assertEqual(nested.read_last(5), [])

    def test_append_writes_one_json_line(self):
        self.log.append(_record(1))
        self.log.append(_record(2))
        with open(self.path, encoding="utf-8") as f:
            lines = f.read().splitlines()
        self.assertEqual(len(lines), 2)
        self.assertEqual(json.loads(lines[1]), _record(2))

    def test_read_last_returns_most_recent_in_order(self):
        for i in range(5):
            self.log.append(_record(i))

        last = self.log.read_last(3)
        self.assertEqual([r["temperatura"] for r in last], [22.0, 23.0, 24.0])

    def test_read_last_with_fewer_records_than_limit(self):
        self.log.append(_record(1))
        self.log.append(_record(2))
        self.assertEqual(self.log.read_last(20), [_record(1), _record(2)])

    def test_read_last_skips_corrupt_lines_without_counting_them(self):
        self.log.append(_record(1))
        with open(self.path, "a", encoding="utf-8") as f:
            f.write("{ not json\n")
            f.write("[1, 2, 3]\n")
            f.write("\n")
        with open(self.path, "ab") as f:
            f.write(b'{"timestamp": "\xff\xfe", "temperatura": 1}\n')
        self.log.append(_record(2))

        self.assertEqual(self.log.read_last(2), [_record(1), _record(2)])
        self.assertEqual(self.log.read_last(1), [_record(2)])

    def test_read_last_non_positive_limit(self):
        self.log.append(_record(1))
        self.assertEqual(self.log.read_last(0), [])
        self.assertEqual(self.log.read_last(-3), [])

    def test_read_last_missing_file(self):
        os.remove(self.path)
        self.assertEqual(self.log.read_last(5), [])

    def test_clear_then_append_is_visible_alone(self):
        for i in range(3):
            self.log.append(_record(i))
        self.log.clear()
        self.assertEqual(self.log.read_last(50), [])

        self.log.append(_record(9))
        self.assertEqual(self.log.read_last(50), [_record(9)])

    def test_append_failure_propagates(self):
        with patch("canrelay.history.os.fsync", side_effect=OSError(28, "No space left on device")):
            with self.assertRaises(OSError):
                self.log.append(_record(1))


if __name__ == '__main__':
    unittest.main()
