import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from threading import Event
import time
from typing import Sequence

from pipeline.errors import AssemblyCancelledError, AssemblyTimeoutError, SegmentFetchError
from sources.audio_segment import TimeSlice
from sources.segment_fetcher import SegmentFetcher


logger = logging.getLogger(__name__)


class SlicePrefetcher:
    """
    Fetches the segments of upcoming slices on a bounded worker pool.

    ``wait(i)`` blocks until every segment of slice ``i`` is local and
    queues slice ``i + 1`` before returning, so downloads for the next
    slice overlap with merging the current one.
    """

    def __init__(
        self,
        fetcher: SegmentFetcher,
        slices: Sequence[TimeSlice],
        max_workers: int = 4,
        lookahead: int = 1,
        fetch_timeout: float | None = None,
        cancel_event: Event | None = None,
        poll_interval: float = 0.1,
    ):
        self.fetcher = fetcher
        self.slices = list(slices)
        self.lookahead = max(0, int(lookahead))
        self.fetch_timeout = fetch_timeout
        self.cancel_event = cancel_event
        self.poll_interval = poll_interval

        self._executor = ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)),
            thread_name_prefix="segment-fetch",
        )
        self._futures: dict[int, list[Future]] = {}

    def __enter__(self) -> "SlicePrefetcher":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def submit(self, i: int) -> None:
        if i < 0 or i >= len(self.slices) or i in self._futures:
            return

        futures = []
        for segment in self.slices[i].segments.values():
            futures.append(
                self._executor.submit(self.fetcher.fetch, segment, self.fetch_timeout)
            )
        self._futures[i] = futures
        logger.debug("Queued %d segment fetches for slice %d", len(futures), i)

    def wait(self, i: int) -> None:
        self.submit(i)
        for ahead in range(1, self.lookahead + 1):
            self.submit(i + ahead)

        # one budget for the whole slice, not per segment
        deadline = None
        if self.fetch_timeout is not None:
            deadline = time.monotonic() + self.fetch_timeout

        for future in self._futures[i]:
            self._wait_future(future, i, deadline)

    def _wait_future(self, future: Future, i: int, deadline: float | None) -> None:
        while True:
            if self.cancel_event is not None and self.cancel_event.is_set():
                raise AssemblyCancelledError("assembly cancelled while fetching segments")

            try:
                future.result(timeout=self.poll_interval)
                return
            except FutureTimeoutError:
                pass
            except SegmentFetchError:
                raise
            except Exception as exc:
                raise SegmentFetchError(f"fetch for slice {i} failed: {exc}") from exc

            if deadline is not None and time.monotonic() >= deadline:
                future.cancel()
                raise AssemblyTimeoutError(
                    f"segment fetch for slice {i} did not finish within {self.fetch_timeout:.1f}s"
                )

    def close(self) -> None:
        for futures in self._futures.values():
            for future in futures:
                future.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)
