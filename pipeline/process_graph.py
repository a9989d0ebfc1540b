import logging
import signal
import subprocess
import tempfile
import time
from dataclasses import dataclass
from threading import Event, Lock, Thread
from typing import IO, Any, BinaryIO, Callable, Sequence

from pipeline.errors import (
    AssemblyCancelledError,
    AssemblyError,
    AssemblyTimeoutError,
    ProcessFailedError,
    ToolNotFoundError,
)


logger = logging.getLogger(__name__)

STDERR_TAIL_BYTES = 2000
SIGPIPE_STATUS = -int(getattr(signal, "SIGPIPE", 13))


@dataclass(frozen=True)
class Stage:
    name: str
    argv: tuple[str, ...]

    def describe(self) -> str:
        return " ".join(self.argv)


@dataclass
class _StageProcess:
    stage: Stage
    proc: subprocess.Popen
    stderr: IO[bytes]
    drained: bool = True


class ProcessPipeline:
    """
    A chain of processes connected by OS pipes.

    ``sources`` run one after another and their output is concatenated, in
    order, into the stdin of the first ``chain`` stage. A single source is
    wired straight into the chain. Each chain stage feeds the next one; the
    last stage either writes into ``sink`` or produces its own output file.

    ``before_source(i)`` runs before source ``i`` is started, which is where
    callers block until that source's inputs exist.
    """

    def __init__(
        self,
        sources: Sequence[Stage],
        chain: Sequence[Stage],
        sink: BinaryIO | Any | None = None,
        before_source: Callable[[int], None] | None = None,
        cancel_event: Event | None = None,
        timeout: float | None = None,
        poll_interval: float = 0.05,
        chunk_size: int = 64 * 1024,
        kill_grace_seconds: float = 2.0,
    ):
        if not sources:
            raise ValueError("at least one source stage is required")
        if not chain:
            raise ValueError("at least one chain stage is required")

        self.sources = list(sources)
        self.chain = list(chain)
        self.sink = sink
        self.before_source = before_source
        self.cancel_event = cancel_event
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.chunk_size = chunk_size
        self.kill_grace_seconds = kill_grace_seconds

        self._lock = Lock()
        self._running: list[_StageProcess] = []
        self._source_runs: list[_StageProcess] = []
        self._chain_runs: list[_StageProcess] = []
        self._threads: list[Thread] = []
        self._thread_error: BaseException | None = None
        self._aborted = Event()
        self._bytes_written = 0

    # --------------------
    # Lifecycle
    # --------------------

    def run(self) -> int:
        """
        Start every stage, wait for all of them and return the number of
        bytes written to the sink.
        """
        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        try:
            self._start()
            self._wait(deadline)
            self._check_exit_codes()
            return self._bytes_written
        finally:
            self._cleanup()

    def _start(self) -> None:
        if len(self.sources) == 1:
            self._call_before_source(0)
            source = self._spawn(self.sources[0], stdin=subprocess.DEVNULL, stdout=subprocess.PIPE)
            self._source_runs.append(source)
            self._start_chain(source.proc.stdout)
            # the first chain stage holds the read end now
            source.proc.stdout.close()
        else:
            self._start_chain(subprocess.PIPE)
            head = self._chain_runs[0].proc.stdin
            self._start_thread("concat", self._pump_sources, head)

        if self.sink is not None:
            self._start_thread("sink", self._pump_sink, self._chain_runs[-1].proc.stdout)

    def _start_chain(self, first_stdin: Any) -> None:
        stdin = first_stdin
        for j, stage in enumerate(self.chain):
            last = j == len(self.chain) - 1
            stdout = subprocess.PIPE if (not last or self.sink is not None) else subprocess.DEVNULL
            run = self._spawn(stage, stdin=stdin, stdout=stdout)
            self._chain_runs.append(run)
            if j > 0:
                stdin.close()
            stdin = run.proc.stdout

    def _spawn(self, stage: Stage, stdin: Any, stdout: Any) -> _StageProcess:
        if self._aborted.is_set():
            raise AssemblyCancelledError("pipeline aborted")

        logger.debug("running %s: %s", stage.name, stage.describe())
        stderr = tempfile.TemporaryFile()
        try:
            proc = subprocess.Popen(list(stage.argv), stdin=stdin, stdout=stdout, stderr=stderr)
        except FileNotFoundError as exc:
            stderr.close()
            raise ToolNotFoundError(f"{stage.name} executable not found: {stage.argv[0]}") from exc

        run = _StageProcess(stage=stage, proc=proc, stderr=stderr)
        with self._lock:
            self._running.append(run)
        return run

    def _call_before_source(self, i: int) -> None:
        if self.before_source is not None:
            self.before_source(i)

    # --------------------
    # Byte-stream edges
    # --------------------

    def _start_thread(self, name: str, target: Callable[..., None], *args: Any) -> None:
        def _guarded() -> None:
            try:
                target(*args)
            except BaseException as exc:
                with self._lock:
                    if self._thread_error is None:
                        self._thread_error = exc

        thread = Thread(target=_guarded, name=f"pipeline-{name}", daemon=True)
        self._threads.append(thread)
        thread.start()

    def _pump_sources(self, head: BinaryIO) -> None:
        try:
            for i, stage in enumerate(self.sources):
                self._call_before_source(i)
                if self._aborted.is_set():
                    return

                run = self._spawn(stage, stdin=subprocess.DEVNULL, stdout=subprocess.PIPE)
                self._source_runs.append(run)

                drained = self._copy(run.proc.stdout, head)
                run.proc.stdout.close()
                if not drained:
                    # downstream stopped reading, later sources are not needed
                    run.drained = False
                    self._terminate(run)
                    return

                run.proc.wait()
                if run.proc.returncode != 0:
                    return
        finally:
            try:
                head.close()
            except OSError:
                pass

    def _copy(self, src: BinaryIO, dst: BinaryIO) -> bool:
        while not self._aborted.is_set():
            chunk = src.read1(self.chunk_size)
            if not chunk:
                return True
            try:
                dst.write(chunk)
                dst.flush()
            except (BrokenPipeError, ValueError):
                return False
        return True

    def _pump_sink(self, src: BinaryIO) -> None:
        while True:
            chunk = src.read1(self.chunk_size)
            if not chunk:
                return
            try:
                self.sink.write(chunk)
            except (OSError, ValueError) as exc:
                raise AssemblyCancelledError(f"output sink closed: {exc}") from exc
            self._bytes_written += len(chunk)

    # --------------------
    # Waiting and teardown
    # --------------------

    def _wait(self, deadline: float | None) -> None:
        while True:
            if self.cancel_event is not None and self.cancel_event.is_set():
                self._abort()
                raise AssemblyCancelledError("assembly cancelled")

            if self._thread_error is not None:
                self._abort()
                raise self._translate(self._thread_error)

            if deadline is not None and time.monotonic() >= deadline:
                self._abort()
                raise AssemblyTimeoutError(f"pipeline did not finish within {self.timeout:.1f}s")

            if self._finished():
                break

            time.sleep(self.poll_interval)

        for thread in self._threads:
            thread.join()
        if self._thread_error is not None:
            raise self._translate(self._thread_error)

    def _finished(self) -> bool:
        if any(thread.is_alive() for thread in self._threads):
            return False
        with self._lock:
            running = list(self._running)
        return all(run.proc.poll() is not None for run in running)

    def _translate(self, exc: BaseException) -> AssemblyError:
        if isinstance(exc, AssemblyError):
            return exc
        return AssemblyError(f"pipeline edge failed: {exc}")

    def _check_exit_codes(self) -> None:
        failures = [run for run in self._source_runs if run.drained and run.proc.returncode != 0]
        failures += [run for run in self._chain_runs if run.proc.returncode != 0]
        if not failures:
            return

        failed = failures[0]
        if failed.proc.returncode == SIGPIPE_STATUS and len(failures) > 1:
            # upstream only died because a later stage went away
            failed = failures[1]

        stderr = self._stderr_tail(failed)
        logger.error(
            "%s failed with status %s: %s",
            failed.stage.name,
            failed.proc.returncode,
            stderr or "<no stderr>",
        )
        raise ProcessFailedError(failed.stage.name, failed.proc.returncode, stderr)

    def _stderr_tail(self, run: _StageProcess) -> str:
        try:
            run.stderr.seek(0, 2)
            size = run.stderr.tell()
            run.stderr.seek(max(0, size - STDERR_TAIL_BYTES))
            return run.stderr.read().decode("utf-8", errors="replace").strip()
        except (OSError, ValueError):
            return ""

    def _terminate(self, run: _StageProcess) -> None:
        if run.proc.poll() is not None:
            return
        run.proc.terminate()
        try:
            run.proc.wait(timeout=self.kill_grace_seconds)
        except subprocess.TimeoutExpired:
            run.proc.kill()
            run.proc.wait()

    def _abort(self) -> None:
        self._aborted.set()
        with self._lock:
            running = list(self._running)
        for run in running:
            if run.proc.poll() is None:
                logger.info("terminating %s (pid %s)", run.stage.name, run.proc.pid)
                self._terminate(run)
        for thread in self._threads:
            thread.join(timeout=self.kill_grace_seconds)

    def _cleanup(self) -> None:
        with self._lock:
            running = list(self._running)

        if any(run.proc.poll() is None for run in running):
            self._abort()

        for run in running:
            for stream in (run.proc.stdin, run.proc.stdout):
                if stream is None:
                    continue
                try:
                    stream.close()
                except OSError:
                    pass
            if logger.isEnabledFor(logging.DEBUG) and run.proc.returncode == 0:
                tail = self._stderr_tail(run)
                if tail:
                    logger.debug("%s stderr: %s", run.stage.name, tail)
            run.stderr.close()
