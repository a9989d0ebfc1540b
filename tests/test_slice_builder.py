import unittest
from pathlib import Path
import sys

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from pipeline.errors import IndexQueryError
from pipeline.models import RequestVars
from sources.slice_builder import SliceBuilder


class FakeIndex:
    def __init__(self, rows=None, error: Exception | None = None):
        self.rows = list(rows or [])
        self.error = error
        self.calls = []

    def query_overlapping(self, channels, window_start, window_end):
        self.calls.append((tuple(channels), window_start, window_end))
        if self.error is not None:
            raise self.error
        return list(self.rows)


def _request(start: int = 0, duration: int = 10000, channels=("1", "2")) -> RequestVars:
    return RequestVars(mission=11, channels=channels, format="m4a", start=start, duration=duration)


class TestSliceBuilder(unittest.TestCase):
    def test_one_slice_per_distinct_bounds(self) -> None:
        index = FakeIndex(
            rows=[
                (0, 3000, "u1", "1"),
                (0, 3000, "u2", "2"),
                (3000, 7000, "u3", "1"),
                (7000, 9000, "u4", "2"),
                (7000, 9000, "u5", "1"),
            ]
        )
        builder = SliceBuilder(index=index, clip_dir="/cache")  # type: ignore[arg-type]

        slices = builder.build(_request())

        self.assertEqual([s.bounds for s in slices], [(0, 3000), (3000, 7000), (7000, 9000)])
        self.assertEqual(list(slices[0].segments), ["1", "2"])
        self.assertEqual(list(slices[1].segments), ["1"])
        self.assertEqual(list(slices[2].segments), ["2", "1"])
        for time_slice in slices:
            for segment in time_slice.segments.values():
                self.assertEqual(segment.bounds, time_slice.bounds)

    def test_queries_requested_window(self) -> None:
        index = FakeIndex()
        builder = SliceBuilder(index=index, clip_dir="/cache")  # type: ignore[arg-type]

        builder.build(_request(start=1000, duration=5000))

        self.assertEqual(index.calls, [(("1", "2"), 1000, 6000)])

    def test_local_paths_are_deterministic(self) -> None:
        index = FakeIndex(rows=[(500, 1500, "https://archive/a.wav", "7")])
        builder = SliceBuilder(index=index, clip_dir="/cache")  # type: ignore[arg-type]

        slices = builder.build(_request(channels=("7",)))
        segment = slices[0].segments["7"]

        self.assertEqual(segment.local_path, str(Path("/cache") / "mission_11_channel_7_500.wav"))
        self.assertEqual(segment.url, "https://archive/a.wav")
        self.assertFalse(segment.materialized)

    def test_no_rows_gives_no_slices(self) -> None:
        builder = SliceBuilder(index=FakeIndex(), clip_dir="/cache")  # type: ignore[arg-type]
        self.assertEqual(builder.build(_request()), [])

    def test_misaligned_row_is_dropped_with_warning(self) -> None:
        index = FakeIndex(
            rows=[
                (0, 3000, "u1", "1"),
                (0, 2500, "u2", "2"),
            ]
        )
        builder = SliceBuilder(index=index, clip_dir="/cache")  # type: ignore[arg-type]

        with self.assertLogs("sources.slice_builder", level="WARNING"):
            slices = builder.build(_request())

        self.assertEqual(len(slices), 1)
        self.assertEqual(list(slices[0].segments), ["1"])

    def test_later_overlapping_row_opens_its_own_slice(self) -> None:
        index = FakeIndex(rows=[(0, 3000, "u1", "1"), (1000, 4000, "u2", "2")])
        builder = SliceBuilder(index=index, clip_dir="/cache")  # type: ignore[arg-type]

        slices = builder.build(_request())

        self.assertEqual([s.bounds for s in slices], [(0, 3000), (1000, 4000)])
        self.assertEqual([s.channel_count for s in slices], [1, 1])

    def test_index_failure_propagates(self) -> None:
        index = FakeIndex(error=IndexQueryError("connection refused"))
        builder = SliceBuilder(index=index, clip_dir="/cache")  # type: ignore[arg-type]

        with self.assertRaises(IndexQueryError):
            builder.build(_request())


if __name__ == "__main__":
    unittest.main()
