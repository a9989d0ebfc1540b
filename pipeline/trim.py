import logging
from dataclasses import dataclass
from typing import Sequence

from pipeline.models import RequestVars
from sources.audio_segment import TimeSlice


logger = logging.getLogger(__name__)


def ms_to_seconds(ms: int) -> str:
    """Milliseconds as seconds with four decimal places, e.g. 200 -> "0.2000"."""
    return f"{int(ms) / 1000.0:.4f}"


@dataclass(frozen=True)
class TrimInstruction:
    offset: str
    duration: str | None = None

    def to_args(self) -> list[str]:
        args = ["trim", self.offset]
        if self.duration is not None:
            args.append(self.duration)
        return args


def slice_trim(i: int, rv: RequestVars, slices: Sequence[TimeSlice]) -> TrimInstruction | None:
    """
    Trim for slice i when slices are streamed one by one. Only the first
    slice gets a leading offset and only the last one a duration cap.
    """
    time_slice = slices[i]
    offset: str | None = None

    if i == 0 and rv.start > time_slice.start:
        offset = ms_to_seconds(rv.start - time_slice.start)
        logger.info("Trimming first slice by %s", offset)

    duration: str | None = None
    if i == len(slices) - 1 and time_slice.end > rv.end:
        duration = ms_to_seconds(rv.end - max(rv.start, time_slice.start))
        logger.info("Capping last slice at %s", duration)

    if offset is None and duration is None:
        return None
    if offset is None:
        return TrimInstruction(offset="0", duration=duration)
    return TrimInstruction(offset=offset, duration=duration)


def bulk_trim(rv: RequestVars, slices: Sequence[TimeSlice]) -> TrimInstruction:
    """
    Trim for the concatenated stream of all slices: cut the first slice's
    leading edge and cap the total at the requested duration.
    """
    if not slices:
        raise ValueError("bulk trim needs at least one slice")

    offset = ms_to_seconds(max(0, rv.start - slices[0].start))
    duration = ms_to_seconds(rv.duration)
    logger.info("Trimming concatenated stream by %s, duration %s", offset, duration)
    return TrimInstruction(offset=offset, duration=duration)
