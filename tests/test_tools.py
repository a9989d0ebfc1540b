import os
import stat
import tempfile
import unittest
from pathlib import Path
import sys

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from pipeline.errors import ToolNotFoundError
from pipeline.tools import discover_tools


class TestDiscoverTools(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def _executable(self, name: str) -> str:
        path = os.path.join(self.tmp.name, name)
        with open(path, "w", encoding="utf-8") as f:
            f.write("#!/bin/sh\nexit 0\n")
        os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR)
        return path

    def test_explicit_paths_resolve(self) -> None:
        sox = self._executable("sox")
        ffmpeg = self._executable("ffmpeg")

        tools = discover_tools(sox_bin=sox, ffmpeg_bin=ffmpeg)

        self.assertEqual(tools.sox, sox)
        self.assertEqual(tools.ffmpeg, ffmpeg)

    def test_missing_sox(self) -> None:
        ffmpeg = self._executable("ffmpeg")

        with self.assertRaises(ToolNotFoundError):
            discover_tools(sox_bin=os.path.join(self.tmp.name, "no-sox"), ffmpeg_bin=ffmpeg)

    def test_missing_ffmpeg(self) -> None:
        sox = self._executable("sox")

        with self.assertRaises(ToolNotFoundError):
            discover_tools(sox_bin=sox, ffmpeg_bin=os.path.join(self.tmp.name, "no-ffmpeg"))


if __name__ == "__main__":
    unittest.main()
