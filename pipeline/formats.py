import logging
from dataclasses import dataclass

from pipeline.models import OutputFormat


logger = logging.getLogger(__name__)

STREAM = "stream"
FILE = "file"

MEDIA_TYPES = {
    OutputFormat.AAC: "audio/mp4",
    OutputFormat.M4A: "audio/mp4",
    OutputFormat.OGG: "audio/ogg",
    OutputFormat.MP3: "audio/mpeg",
}

FILE_EXTENSIONS = {
    OutputFormat.AAC: "m4a",
    OutputFormat.M4A: "m4a",
    OutputFormat.OGG: "ogg",
    OutputFormat.MP3: "mp3",
}


@dataclass(frozen=True)
class FormatChoice:
    output_format: OutputFormat
    fallback: bool
    warning: str | None = None


def resolve_format(requested: str | None) -> FormatChoice:
    """
    Map a requested format name onto a supported one. Anything unknown
    becomes MP3, and the substitution is reported back as a warning.
    """
    name = (requested or "").strip().lower()
    if name in (OutputFormat.AAC.value, OutputFormat.M4A.value, OutputFormat.OGG.value):
        return FormatChoice(output_format=OutputFormat(name), fallback=False)

    warning = f"unsupported output format {requested!r} requested, falling back to mp3"
    logger.warning(warning)
    return FormatChoice(output_format=OutputFormat.MP3, fallback=True, warning=warning)


def codec_args(output_format: OutputFormat, mode: str, aac_encoder: str = "aac") -> list[str]:
    if output_format in (OutputFormat.AAC, OutputFormat.M4A):
        if mode == STREAM:
            # mp4 over a pipe must be fragmented
            return [
                "-c:a", aac_encoder,
                "-b:a", "256k",
                "-movflags", "frag_keyframe+empty_moov",
                "-f", "ipod",
            ]
        return ["-c:a", aac_encoder, "-b:a", "96k", "-f", "mp4"]

    if output_format == OutputFormat.OGG:
        return ["-c:a", "libvorbis", "-qscale:a", "6", "-f", "ogg"]

    return ["-c:a", "libmp3lame", "-b:a", "256k", "-f", "mp3"]
