import unittest
from pathlib import Path
import sys

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from pipeline.formats import FILE, STREAM, codec_args, resolve_format
from pipeline.models import OutputFormat, RequestVars


class TestFormats(unittest.TestCase):
    def test_supported_formats_resolve_without_warning(self) -> None:
        for name, expected in (("aac", OutputFormat.AAC), ("M4A", OutputFormat.M4A), (" ogg ", OutputFormat.OGG)):
            choice = resolve_format(name)
            self.assertEqual(choice.output_format, expected)
            self.assertFalse(choice.fallback)
            self.assertIsNone(choice.warning)

    def test_unknown_format_falls_back_to_mp3_with_warning(self) -> None:
        with self.assertLogs("pipeline.formats", level="WARNING") as logs:
            choice = resolve_format("flac")

        self.assertEqual(choice.output_format, OutputFormat.MP3)
        self.assertTrue(choice.fallback)
        self.assertIn("flac", choice.warning)
        self.assertTrue(any("falling back to mp3" in line for line in logs.output))

    def test_explicit_mp3_still_reports_fallback(self) -> None:
        with self.assertLogs("pipeline.formats", level="WARNING"):
            choice = resolve_format("mp3")
        self.assertTrue(choice.fallback)

    def test_aac_bitrate_depends_on_mode(self) -> None:
        stream_args = codec_args(OutputFormat.AAC, STREAM)
        file_args = codec_args(OutputFormat.M4A, FILE)

        self.assertIn("256k", stream_args)
        self.assertIn("ipod", stream_args)
        self.assertIn("96k", file_args)
        self.assertEqual(file_args[-2:], ["-f", "mp4"])

    def test_ogg_and_mp3_args(self) -> None:
        self.assertEqual(codec_args(OutputFormat.OGG, STREAM), ["-c:a", "libvorbis", "-qscale:a", "6", "-f", "ogg"])
        self.assertEqual(codec_args(OutputFormat.MP3, FILE), ["-c:a", "libmp3lame", "-b:a", "256k", "-f", "mp3"])

    def test_custom_aac_encoder(self) -> None:
        self.assertIn("libfdk_aac", codec_args(OutputFormat.AAC, STREAM, aac_encoder="libfdk_aac"))


class TestRequestVars(unittest.TestCase):
    def test_normalizes_channels(self) -> None:
        rv = RequestVars(mission=3, channels=[" 2", "1", "2", ""], format="aac", start=0, duration=10)
        self.assertEqual(rv.channels, ("2", "1"))
        self.assertEqual(rv.end, 10)

    def test_rejects_invalid_window(self) -> None:
        with self.assertRaises(ValueError):
            RequestVars(mission=3, channels=("1",), format="aac", start=-1, duration=10)
        with self.assertRaises(ValueError):
            RequestVars(mission=3, channels=("1",), format="aac", start=0, duration=0)
        with self.assertRaises(ValueError):
            RequestVars(mission=3, channels=(), format="aac", start=0, duration=10)


if __name__ == "__main__":
    unittest.main()
