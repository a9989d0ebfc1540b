from dataclasses import dataclass, field


@dataclass
class AudioSegment:
    start: int               # ms, inclusive
    end: int                 # ms, exclusive
    url: str                 # source locator resolvable by the fetcher
    local_path: str          # deterministic cache path
    channel_id: str
    materialized: bool = False

    @property
    def bounds(self) -> tuple[int, int]:
        return self.start, self.end


@dataclass
class TimeSlice:
    start: int
    end: int
    segments: dict[str, AudioSegment] = field(default_factory=dict)

    @property
    def bounds(self) -> tuple[int, int]:
        return self.start, self.end

    def add(self, segment: AudioSegment) -> None:
        if segment.bounds != self.bounds:
            raise ValueError(
                f"Segment {segment.bounds} does not match slice bounds {self.bounds}"
            )
        self.segments[segment.channel_id] = segment

    def local_paths(self) -> list[str]:
        return [segment.local_path for segment in self.segments.values()]

    @property
    def channel_count(self) -> int:
        return len(self.segments)
