import sqlite3
import tempfile
import unittest
from pathlib import Path
import sys

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from pipeline.errors import IndexQueryError
from storage.segment_index import SegmentIndex


class TestSegmentIndex(unittest.TestCase):
    def test_segment_insert_is_idempotent(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            index = SegmentIndex(db_path=f"{tmp}/segments.db")
            index.init_db()

            first = index.add_segments([(0, 1000, "a.wav", "1"), (1000, 2000, "b.wav", "1")])
            second = index.add_segments([(0, 1000, "a.wav", "1"), (1000, 2000, "b.wav", "1")])

            self.assertEqual(first, second)
            self.assertEqual(len(index.list_channel_segments("1", limit=10, offset=0)), 2)

    def test_query_returns_overlapping_rows_in_start_order(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            index = SegmentIndex(db_path=f"{tmp}/segments.db")
            index.init_db()
            index.add_segments(
                [
                    (3000, 7000, "ch1_3000.wav", "1"),
                    (0, 3000, "ch1_0.wav", "1"),
                    (0, 3000, "ch2_0.wav", "2"),
                    (7000, 9000, "ch1_7000.wav", "1"),
                    (0, 3000, "ch9_0.wav", "9"),
                ]
            )

            rows = index.query_overlapping(["1", "2"], 1000, 6000)

            self.assertEqual(
                rows,
                [
                    (0, 3000, "ch1_0.wav", "1"),
                    (0, 3000, "ch2_0.wav", "2"),
                    (3000, 7000, "ch1_3000.wav", "1"),
                ],
            )

    def test_window_bounds_are_half_open(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            index = SegmentIndex(db_path=f"{tmp}/segments.db")
            index.init_db()
            index.add_segments([(0, 1000, "a.wav", "1"), (2000, 3000, "b.wav", "1")])

            self.assertEqual(index.query_overlapping(["1"], 1000, 2000), [])
            self.assertEqual(len(index.query_overlapping(["1"], 999, 2001)), 2)

    def test_rejects_empty_interval(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            index = SegmentIndex(db_path=f"{tmp}/segments.db")
            index.init_db()

            with self.assertRaises(ValueError):
                index.add_segment("1", 1000, 1000, "a.wav")

    def test_query_failure_raises_index_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db_path = f"{tmp}/segments.db"
            conn = sqlite3.connect(db_path)
            conn.execute("CREATE TABLE unrelated (id INTEGER)")
            conn.commit()
            conn.close()

            index = SegmentIndex(db_path=db_path)
            with self.assertRaises(IndexQueryError):
                index.query_overlapping(["1"], 0, 1000)


if __name__ == "__main__":
    unittest.main()
