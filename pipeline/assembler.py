import logging
import os
import tempfile
from threading import Event
from typing import Any

from pipeline.errors import NoAudioDataError
from pipeline.formats import FILE, FILE_EXTENSIONS, STREAM, codec_args, resolve_format
from pipeline.models import AssemblyResult, ClipPlan, OutputFormat, RequestVars, Timeouts
from pipeline.prefetch import SlicePrefetcher
from pipeline.process_graph import ProcessPipeline, Stage
from pipeline.tools import ToolPaths
from pipeline.trim import TrimInstruction, bulk_trim, slice_trim
from sources.audio_segment import TimeSlice
from sources.segment_fetcher import SegmentFetcher
from sources.slice_builder import SliceBuilder


logger = logging.getLogger(__name__)


class ClipAssembler:
    """
    Turns a request window into audio, either streamed slice by slice into
    a sink or rendered once into a saved file.
    """

    def __init__(
        self,
        slice_builder: SliceBuilder,
        fetcher: SegmentFetcher,
        tools: ToolPaths,
        export_dir: str,
        sample_rate: int = 44100,
        channels: int = 1,
        aac_encoder: str = "aac",
        fetch_workers: int = 4,
        timeouts: Timeouts | None = None,
    ):
        self.slice_builder = slice_builder
        self.fetcher = fetcher
        self.tools = tools
        self.export_dir = export_dir
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.aac_encoder = aac_encoder
        self.fetch_workers = fetch_workers
        self.timeouts = timeouts or Timeouts()

    # --------------------
    # Planning
    # --------------------

    def plan(self, rv: RequestVars) -> ClipPlan:
        choice = resolve_format(rv.format)
        slices = self.slice_builder.build(rv)
        if not slices:
            raise NoAudioDataError(
                f"No audio for channels {','.join(rv.channels)} "
                f"in window {rv.start}..{rv.end} ms"
            )

        warnings = [choice.warning] if choice.warning else []
        logger.info(
            "Mission %d, channels %s, %d+%d ms as %s: %d slices",
            rv.mission,
            ",".join(rv.channels),
            rv.start,
            rv.duration,
            choice.output_format.value,
            len(slices),
        )
        return ClipPlan(request=rv, slices=slices, output_format=choice.output_format, warnings=warnings)

    def output_path_for(self, rv: RequestVars, output_format: OutputFormat) -> str:
        channels = ".".join(sorted(rv.channels))
        name = (
            f"mission_{rv.mission}_channels_{channels}_{rv.start}_{rv.duration}."
            f"{FILE_EXTENSIONS[output_format]}"
        )
        return os.path.join(self.export_dir, name)

    # --------------------
    # Stages
    # --------------------

    def _pcm_args(self) -> list[str]:
        return [
            "-t", "raw",
            "-e", "signed-integer",
            "-b", "16",
            "-r", str(self.sample_rate),
            "-c", str(self.channels),
        ]

    def merge_stage(self, time_slice: TimeSlice, trim: TrimInstruction | None = None) -> Stage:
        paths = time_slice.local_paths()
        argv = [self.tools.sox]
        if time_slice.channel_count > 1:
            argv.append("-m")
        argv += paths
        argv += self._pcm_args() + ["-"]
        if trim is not None:
            argv += trim.to_args()
        return Stage(name="merge", argv=tuple(argv))

    def trim_stage(self, trim: TrimInstruction) -> Stage:
        argv = [self.tools.sox] + self._pcm_args() + ["-"] + self._pcm_args() + ["-"] + trim.to_args()
        return Stage(name="trim", argv=tuple(argv))

    def transcode_stage(self, output_format: OutputFormat, mode: str, output: str = "pipe:1") -> Stage:
        argv = [
            self.tools.ffmpeg,
            "-hide_banner",
            "-loglevel", "error",
            "-f", "s16le",
            "-ar", str(self.sample_rate),
            "-ac", str(self.channels),
            "-i", "pipe:0",
        ]
        argv += codec_args(output_format, mode, self.aac_encoder)
        argv += ["-y", output]
        return Stage(name="transcode", argv=tuple(argv))

    # --------------------
    # Streaming mode
    # --------------------

    def stream(
        self,
        plan: ClipPlan | RequestVars,
        sink: Any,
        cancel_event: Event | None = None,
        timeouts: Timeouts | None = None,
    ) -> AssemblyResult:
        """
        Merge, trim and transcode each slice in order, writing the encoded
        bytes of every slice to ``sink`` back to back.
        """
        if isinstance(plan, RequestVars):
            plan = self.plan(plan)
        timeouts = timeouts or self.timeouts
        rv = plan.request
        slices = plan.slices

        total = 0
        with SlicePrefetcher(
            fetcher=self.fetcher,
            slices=slices,
            max_workers=self.fetch_workers,
            fetch_timeout=timeouts.fetch_seconds,
            cancel_event=cancel_event,
        ) as prefetcher:
            for i, time_slice in enumerate(slices):
                prefetcher.wait(i)

                pipeline = ProcessPipeline(
                    sources=[self.merge_stage(time_slice, slice_trim(i, rv, slices))],
                    chain=[self.transcode_stage(plan.output_format, STREAM)],
                    sink=sink,
                    cancel_event=cancel_event,
                    timeout=timeouts.process_seconds,
                )
                total += pipeline.run()

        logger.info("Streamed %d bytes from %d slices", total, len(slices))
        return AssemblyResult(
            completed=True,
            output_format=plan.output_format,
            slices_processed=len(slices),
            bytes_written=total,
            warnings=list(plan.warnings),
        )

    # --------------------
    # File mode
    # --------------------

    def save(
        self,
        plan: ClipPlan | RequestVars,
        cancel_event: Event | None = None,
        timeouts: Timeouts | None = None,
    ) -> AssemblyResult:
        """
        Concatenate every slice into one stream, trim it to the request and
        transcode it once into the export directory. The file appears under
        its final name only when the whole pipeline succeeded.
        """
        if isinstance(plan, RequestVars):
            plan = self.plan(plan)
        timeouts = timeouts or self.timeouts
        rv = plan.request
        slices = plan.slices

        output_path = self.output_path_for(rv, plan.output_format)
        os.makedirs(self.export_dir, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=self.export_dir,
            prefix=f".{os.path.basename(output_path)}.",
            suffix=".tmp",
        )
        os.close(fd)

        try:
            with SlicePrefetcher(
                fetcher=self.fetcher,
                slices=slices,
                max_workers=self.fetch_workers,
                fetch_timeout=timeouts.fetch_seconds,
                cancel_event=cancel_event,
            ) as prefetcher:
                pipeline = ProcessPipeline(
                    sources=[self.merge_stage(s) for s in slices],
                    chain=[
                        self.trim_stage(bulk_trim(rv, slices)),
                        self.transcode_stage(plan.output_format, FILE, temp_path),
                    ],
                    before_source=prefetcher.wait,
                    cancel_event=cancel_event,
                    timeout=timeouts.process_seconds,
                )
                pipeline.run()

            os.replace(temp_path, output_path)
        finally:
            if os.path.exists(temp_path):
                os.remove(temp_path)

        logger.info("Saved output to %s", output_path)
        return AssemblyResult(
            completed=True,
            output_format=plan.output_format,
            slices_processed=len(slices),
            bytes_written=os.path.getsize(output_path),
            output_path=output_path,
            warnings=list(plan.warnings),
        )
