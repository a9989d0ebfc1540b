import logging
import os
import shutil
import tempfile
import urllib.error
import urllib.parse
import urllib.request
from threading import Lock

import soundfile as sf

from pipeline.errors import SegmentFetchError
from sources.audio_segment import AudioSegment


logger = logging.getLogger(__name__)

LOCK_STRIPES = 64


class SegmentFetcher:
    """
    Materializes archived segments into the local clip directory.

    Targets are written to a temp file next to the final path, checked to be
    readable audio and then renamed into place, so a concurrent reader never
    sees a half-written file. Fetching an already materialized target is a
    no-op.
    """

    def __init__(
        self,
        clip_dir: str,
        request_timeout: float = 30.0,
        chunk_size: int = 64 * 1024,
        lock_stripes: int = LOCK_STRIPES,
    ):
        self.clip_dir = clip_dir
        self.request_timeout = request_timeout
        self.chunk_size = chunk_size

        # fixed pool; one path always maps to the same lock
        self._path_locks = [Lock() for _ in range(max(1, int(lock_stripes)))]

    def fetch(self, segment: AudioSegment, timeout: float | None = None) -> str:
        target = segment.local_path
        with self._lock_for(target):
            if self._is_valid_audio(target):
                logger.debug("Segment already local: %s", target)
                segment.materialized = True
                return target

            os.makedirs(os.path.dirname(target) or ".", exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=os.path.dirname(target) or ".",
                prefix=f".{os.path.basename(target)}.",
                suffix=".tmp.wav",
            )
            try:
                with os.fdopen(fd, "wb") as out:
                    self._copy_source(segment.url, out, timeout)

                if not self._is_valid_audio(temp_path):
                    raise SegmentFetchError(f"Fetched segment is not readable audio: {segment.url}")

                os.replace(temp_path, target)
            except SegmentFetchError:
                raise
            except (OSError, ValueError, urllib.error.URLError) as exc:
                raise SegmentFetchError(f"Failed to fetch segment {segment.url}: {exc}") from exc
            finally:
                if os.path.exists(temp_path):
                    os.remove(temp_path)

        logger.info("Fetched segment %s -> %s", segment.url, target)
        segment.materialized = True
        return target

    def _lock_for(self, path: str) -> Lock:
        key = os.path.abspath(path)
        return self._path_locks[hash(key) % len(self._path_locks)]

    def _copy_source(self, url: str, out, timeout: float | None) -> None:
        parsed = urllib.parse.urlparse(url)

        if parsed.scheme in ("http", "https"):
            req = urllib.request.Request(url, method="GET")
            with urllib.request.urlopen(req, timeout=timeout or self.request_timeout) as resp:
                shutil.copyfileobj(resp, out, self.chunk_size)
            return

        if parsed.scheme == "file":
            local = urllib.request.url2pathname(parsed.path)
        elif parsed.scheme == "" or len(parsed.scheme) == 1:
            # plain path (a one-letter scheme is a Windows drive)
            local = url
        else:
            raise SegmentFetchError(f"Unsupported segment locator: {url}")

        if not os.path.exists(local):
            raise SegmentFetchError(f"Segment source not found: {local}")

        with open(local, "rb") as src:
            shutil.copyfileobj(src, out, self.chunk_size)

    @staticmethod
    def _is_valid_audio(path: str) -> bool:
        if not os.path.exists(path) or os.path.getsize(path) == 0:
            return False
        try:
            info = sf.info(path)
        except RuntimeError:
            return False
        return info.frames > 0
