from dataclasses import dataclass, field
from enum import Enum

from sources.audio_segment import TimeSlice


class OutputFormat(str, Enum):
    AAC = "aac"
    M4A = "m4a"
    OGG = "ogg"
    MP3 = "mp3"


@dataclass(frozen=True)
class RequestVars:
    mission: int
    channels: tuple[str, ...]
    format: str
    start: int       # ms
    duration: int    # ms

    def __post_init__(self) -> None:
        channels = tuple(dict.fromkeys(str(c).strip() for c in self.channels if str(c).strip()))
        if not channels:
            raise ValueError("at least one channel is required")
        if int(self.start) < 0:
            raise ValueError("start must be >= 0")
        if int(self.duration) <= 0:
            raise ValueError("duration must be > 0")

        object.__setattr__(self, "channels", channels)
        object.__setattr__(self, "mission", int(self.mission))
        object.__setattr__(self, "start", int(self.start))
        object.__setattr__(self, "duration", int(self.duration))

    @property
    def end(self) -> int:
        return self.start + self.duration


@dataclass(frozen=True)
class Timeouts:
    fetch_seconds: float | None = None
    process_seconds: float | None = None


@dataclass
class ClipPlan:
    request: RequestVars
    slices: list[TimeSlice]
    output_format: OutputFormat
    warnings: list[str] = field(default_factory=list)


@dataclass
class AssemblyResult:
    completed: bool
    output_format: OutputFormat
    slices_processed: int
    bytes_written: int = 0
    output_path: str | None = None
    warnings: list[str] = field(default_factory=list)
