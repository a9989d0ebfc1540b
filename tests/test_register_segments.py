import json
import os
import tempfile
import unittest
from pathlib import Path
import sys

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from runners.run_register_segments import register_segments
from storage.segment_index import SegmentIndex


class TestRegisterSegments(unittest.TestCase):
    def test_creates_missing_database_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            rows_path = os.path.join(tmp, "rows.json")
            with open(rows_path, "w", encoding="utf-8") as f:
                json.dump(
                    [
                        {"channel_id": "1", "start": 0, "end": 1000, "url": "http://archive/1_0.wav"},
                        {"channel_id": "2", "start": 0, "end": 1000, "url": "http://archive/2_0.wav"},
                    ],
                    f,
                )
            db_path = os.path.join(tmp, "fresh", "data", "segments.db")

            ids = register_segments(rows_path, db_path)

            self.assertEqual(len(ids), 2)
            self.assertTrue(os.path.exists(db_path))
            rows = SegmentIndex(db_path=db_path).list_channel_segments("2", limit=10, offset=0)
            self.assertEqual(len(rows), 1)

    def test_rerun_keeps_ids(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            rows_path = os.path.join(tmp, "rows.json")
            with open(rows_path, "w", encoding="utf-8") as f:
                json.dump([{"channel_id": "1", "start": 0, "end": 1000, "url": "a.wav"}], f)
            db_path = os.path.join(tmp, "segments.db")

            self.assertEqual(register_segments(rows_path, db_path), register_segments(rows_path, db_path))


if __name__ == "__main__":
    unittest.main()
