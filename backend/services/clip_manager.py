import logging
from queue import Empty, Full, Queue
from threading import Event, Thread
from typing import Any, Iterator

from pipeline.assembler import ClipAssembler
from pipeline.errors import AssemblyCancelledError
from pipeline.models import AssemblyResult, ClipPlan, RequestVars
from storage.segment_index import SegmentIndex


logger = logging.getLogger(__name__)


class QueueSink:
    """
    Byte sink handing chunks from the assembler thread to a response
    iterator. The producer ends the stream with ``finish()`` or ``fail()``,
    so a consumer can tell a complete stream from a cut one.
    """

    def __init__(self, max_chunks: int, cancel_event: Event, put_interval: float = 0.25):
        self._queue: Queue = Queue(maxsize=max_chunks)
        self._cancel_event = cancel_event
        self._put_interval = put_interval

    def write(self, data: bytes) -> None:
        if not self._put(("data", bytes(data))):
            raise AssemblyCancelledError("stream consumer went away")

    def finish(self) -> None:
        self._put(("done", None))

    def fail(self, exc: BaseException) -> None:
        self._put(("error", exc))

    def chunks(self) -> Iterator[bytes]:
        while True:
            try:
                kind, payload = self._queue.get(timeout=self._put_interval)
            except Empty:
                if self._cancel_event.is_set():
                    raise AssemblyCancelledError("stream cancelled")
                continue

            if kind == "data":
                yield payload
            elif kind == "done":
                return
            else:
                raise payload

    def _put(self, item: tuple[str, Any]) -> bool:
        while not self._cancel_event.is_set():
            try:
                self._queue.put(item, timeout=self._put_interval)
                return True
            except Full:
                continue
        return False


class ClipManager:
    def __init__(
        self,
        assembler: ClipAssembler,
        index: SegmentIndex,
        queue_chunks: int = 64,
    ):
        self.assembler = assembler
        self.index = index
        self.queue_chunks = queue_chunks

    def open_stream(self, rv: RequestVars) -> tuple[ClipPlan, Iterator[bytes]]:
        """
        Plan the request up front so "no data" and format warnings are known
        before any byte is sent, then hand back a lazy chunk iterator.
        """
        plan = self.assembler.plan(rv)
        return plan, self._stream_chunks(plan)

    def _stream_chunks(self, plan: ClipPlan) -> Iterator[bytes]:
        cancel_event = Event()
        sink = QueueSink(self.queue_chunks, cancel_event)

        def _run() -> None:
            try:
                self.assembler.stream(plan, sink, cancel_event=cancel_event)
            except Exception as exc:
                if not cancel_event.is_set():
                    logger.error("Stream for mission %d failed: %s", plan.request.mission, exc)
                sink.fail(exc)
                return
            sink.finish()

        worker = Thread(target=_run, name=f"clip-stream-{plan.request.mission}", daemon=True)
        worker.start()

        try:
            yield from sink.chunks()
        finally:
            # consumer finished or went away; stop any running processes
            cancel_event.set()

    def export(self, rv: RequestVars) -> AssemblyResult:
        return self.assembler.save(rv)

    def list_segments(self, channel_id: str, limit: int, offset: int) -> list[dict]:
        rows = self.index.list_channel_segments(channel_id, limit=limit, offset=offset)
        return [
            {
                "channel_id": channel,
                "start": start,
                "end": end,
                "url": url,
            }
            for start, end, url, channel in rows
        ]
