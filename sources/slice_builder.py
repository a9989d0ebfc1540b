import logging
import os

from pipeline.models import RequestVars
from sources.audio_segment import AudioSegment, TimeSlice
from storage.segment_index import SegmentIndex


logger = logging.getLogger(__name__)


class SliceBuilder:
    def __init__(self, index: SegmentIndex, clip_dir: str):
        self.index = index
        self.clip_dir = clip_dir

    def local_path_for(self, mission: int, channel_id: str, start: int) -> str:
        return os.path.join(
            self.clip_dir,
            f"mission_{int(mission)}_channel_{channel_id}_{int(start)}.wav",
        )

    def build(self, rv: RequestVars) -> list[TimeSlice]:
        """
        Group the overlapping segments of the requested channels into aligned
        slices, in ascending start order.
        """
        rows = self.index.query_overlapping(rv.channels, rv.start, rv.end)

        slices: list[TimeSlice] = []
        by_bounds: dict[tuple[int, int], TimeSlice] = {}
        last_start = -1

        for start, end, url, channel_id in rows:
            segment = AudioSegment(
                start=start,
                end=end,
                url=url,
                local_path=self.local_path_for(rv.mission, channel_id, start),
                channel_id=channel_id,
            )

            if start > last_start:
                time_slice = TimeSlice(start=start, end=end)
                slices.append(time_slice)
                by_bounds[(start, end)] = time_slice
                last_start = start

            target = by_bounds.get((start, end))
            if target is None:
                logger.warning(
                    "Dropping segment for channel %s at %d..%d: no slice with matching bounds",
                    channel_id,
                    start,
                    end,
                )
                continue

            target.add(segment)

        logger.debug("Built %d slices from %d segment rows", len(slices), len(rows))
        return slices
