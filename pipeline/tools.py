import logging
import shutil
from dataclasses import dataclass

from pipeline.errors import ToolNotFoundError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolPaths:
    sox: str
    ffmpeg: str


def discover_tools(sox_bin: str = "sox", ffmpeg_bin: str = "ffmpeg") -> ToolPaths:
    """
    Resolve the merge and transcode binaries up front so a missing tool
    fails service startup instead of the first request.
    """
    sox = shutil.which(sox_bin)
    if sox is None:
        raise ToolNotFoundError(f"sox executable not found: {sox_bin}")
    logger.info("using sox %s", sox)

    ffmpeg = shutil.which(ffmpeg_bin)
    if ffmpeg is None:
        raise ToolNotFoundError(f"ffmpeg executable not found: {ffmpeg_bin}")
    logger.info("using ffmpeg %s", ffmpeg)

    return ToolPaths(sox=sox, ffmpeg=ffmpeg)
