"""
Stream Forwarder

Bridges a running session subprocess to a remote subscriber. Raw chunks from
the child's stdout and stderr go through one LineDemultiplexer per pipe; the
resulting events are mapped to JSON envelopes and handed to an EventSink in
the order they were produced.

Whatever happens (spawn failure, non-zero exit, timeout, a sink that raises)
the subscriber gets exactly one terminal `complete` or `error` envelope, then
the [DONE] sentinel, and the sink is closed exactly once.
"""

import json
import logging
import os
import queue
import signal
import subprocess
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from django.conf import settings

from app_builder.services.line_demux import STDERR, STDOUT, LineDemultiplexer
from app_builder.services.types import Event
from app_builder.types import EventKind

logger = logging.getLogger(__name__)


DONE_FRAME = "data: [DONE]\n\n"
READ_SIZE = 4096

Chunk = Tuple[str, bytes]


def sse_event(data: Dict[str, Any]) -> str:
    """Format an envelope as one SSE frame."""
    return f"data: {json.dumps(data)}\n\n"


class EventSink(ABC):
    """Destination for delivered envelopes."""

    @abstractmethod
    def send(self, envelope: Dict[str, Any]) -> None:
        """Deliver one envelope."""

    @abstractmethod
    def send_done(self) -> None:
        """Deliver the end-of-stream sentinel."""

    @abstractmethod
    def close(self) -> None:
        """Release the sink. No sends are expected afterwards."""


class SSEQueueSink(EventSink):
    """
    Thread-safe sink that buffers SSE frames for a streaming response.

    The forwarder thread sends; Django iterates the sink as the body of a
    StreamingHttpResponse. Iteration ends once the sink is closed and every
    frame before the close has been yielded.

    Usage:
        sink = SSEQueueSink()
        threading.Thread(target=forwarder.run, args=(argv,), daemon=True).start()
        return StreamingHttpResponse(sink, content_type="text/event-stream")
    """

    _CLOSED = object()

    def __init__(self):
        self._queue: "queue.Queue" = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, envelope: Dict[str, Any]) -> None:
        self._put(sse_event(envelope))

    def send_done(self) -> None:
        self._put(DONE_FRAME)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(self._CLOSED)

    def _put(self, frame: str) -> None:
        with self._lock:
            if self._closed:
                logger.debug("Dropping frame sent after close")
                return
            self._queue.put(frame)

    def __iter__(self) -> Iterator[str]:
        while True:
            frame = self._queue.get()
            if frame is self._CLOSED:
                return
            yield frame


class ListSink(EventSink):
    """Sink that records envelopes in memory (used by the CLI and tests)."""

    def __init__(self):
        self.envelopes: List[Dict[str, Any]] = []
        self.done = 0
        self.close_count = 0

    def send(self, envelope: Dict[str, Any]) -> None:
        self.envelopes.append(envelope)

    def send_done(self) -> None:
        self.done += 1

    def close(self) -> None:
        self.close_count += 1


class StreamForwarder:
    """
    Forwards one session's subprocess output to an EventSink.

    Not reusable: each forwarder owns the demultiplexers of a single session.

    Usage:
        forwarder = StreamForwarder(SSEQueueSink())
        forwarder.run([sys.executable, "manage.py", "modify_app", sandbox_id, message])
        forwarder.terminal_event  # Event(COMPLETE) or Event(ERROR, ...)
    """

    def __init__(
        self,
        sink: EventSink,
        forward_tool_results: Optional[bool] = None,
        flush_partial: Optional[bool] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.sink = sink
        self.forward_tool_results = (
            forward_tool_results
            if forward_tool_results is not None
            else getattr(settings, "STREAM_FORWARD_TOOL_RESULTS", False)
        )
        self.flush_partial = (
            flush_partial
            if flush_partial is not None
            else getattr(settings, "STREAM_FLUSH_PARTIAL_LINES", True)
        )
        self.timeout_seconds = (
            timeout_seconds
            if timeout_seconds is not None
            else getattr(settings, "SESSION_TIMEOUT_SECONDS", 2203)
        )

        self._demuxers = {
            STDOUT: LineDemultiplexer(STDOUT),
            STDERR: LineDemultiplexer(STDERR),
        }
        self.terminal_event: Optional[Event] = None
        self.exit_code: Optional[int] = None
        self.event_count = 0
        self._timed_out = False
        self._closed = False

    def feed(self, stream: str, chunk: bytes) -> None:
        """Demultiplex one chunk from the named pipe and deliver its events."""
        for event in self._demuxers[stream].feed(chunk):
            self._deliver(event)

    def forward(self, chunks: Iterable[Chunk], wait: Callable[[], Optional[int]]) -> None:
        """
        Consume (stream, bytes) chunks to exhaustion, then report termination.

        Args:
            chunks: Chunks in arrival order
            wait: Returns the child's exit code once both pipes are drained
        """
        try:
            for stream, chunk in chunks:
                self.feed(stream, chunk)
            for stream in (STDOUT, STDERR):
                for event in self._demuxers[stream].finish(flush_partial=self.flush_partial):
                    self._deliver(event)
            self._terminate(wait())
        except Exception as e:
            logger.exception("Stream forwarding failed")
            self._fail(f"Stream forwarding failed: {e}")
        finally:
            self._close()

    def run(
        self,
        command: List[str],
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> None:
        """Spawn the session subprocess and forward its output until it exits."""
        run_env = {**os.environ, **(env or {}), "PYTHONUNBUFFERED": "1"}
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=run_env,
                cwd=cwd,
                start_new_session=True,
            )
        except OSError as e:
            logger.error("Failed to start session process %s: %s", command[:3], e)
            self._fail(f"Failed to start process: {e}")
            self._close()
            return

        logger.info("Session process started (pid %d)", process.pid)
        timer = None
        if self.timeout_seconds:
            timer = threading.Timer(self.timeout_seconds, self._expire, args=(process,))
            timer.daemon = True
            timer.start()
        try:
            self.forward(self._read_pipes(process), wait=process.wait)
        finally:
            if timer is not None:
                timer.cancel()
            if process.poll() is None:
                self._kill(process)
                process.wait()

    def _read_pipes(self, process: subprocess.Popen) -> Iterator[Chunk]:
        """Yield chunks from both pipes, in arrival order, until both hit EOF."""
        chunks: "queue.Queue[Tuple[str, Optional[bytes]]]" = queue.Queue()

        def pump(stream: str, pipe) -> None:
            try:
                for chunk in iter(lambda: pipe.read1(READ_SIZE), b""):
                    chunks.put((stream, chunk))
            except (OSError, ValueError) as e:
                logger.debug("Reading %s stopped: %s", stream, e)
            finally:
                chunks.put((stream, None))

        readers = [
            threading.Thread(target=pump, args=(STDOUT, process.stdout), daemon=True),
            threading.Thread(target=pump, args=(STDERR, process.stderr), daemon=True),
        ]
        for reader in readers:
            reader.start()

        open_pipes = len(readers)
        while open_pipes:
            stream, chunk = chunks.get()
            if chunk is None:
                open_pipes -= 1
                continue
            yield stream, chunk

    def _expire(self, process: subprocess.Popen) -> None:
        if process.poll() is not None:
            return
        logger.warning("Session process %d exceeded %ss, killing it", process.pid, self.timeout_seconds)
        self._timed_out = True
        self._kill(process)

    def _kill(self, process: subprocess.Popen) -> None:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            process.kill()

    def _deliver(self, event: Event) -> None:
        if event.kind == EventKind.TOOL_RESULT and not self.forward_tool_results:
            return
        self.sink.send(event.to_envelope())
        self.event_count += 1

    def _terminate(self, exit_code: Optional[int]) -> None:
        self.exit_code = exit_code
        if self._timed_out:
            self._send_terminal(
                Event(EventKind.ERROR, {"message": f"Session timed out after {self.timeout_seconds}s"})
            )
        elif exit_code == 0:
            self._send_terminal(Event(EventKind.COMPLETE))
        else:
            self._send_terminal(
                Event(EventKind.ERROR, {"message": f"Process exited with code {exit_code}"})
            )

    def _send_terminal(self, event: Event) -> None:
        if self.terminal_event is not None:
            return
        self.terminal_event = event
        self.sink.send(event.to_envelope())
        self.event_count += 1
        self.sink.send_done()

    def _fail(self, message: str) -> None:
        """Best-effort error envelope and sentinel; the sink may itself be broken."""
        try:
            self._send_terminal(Event(EventKind.ERROR, {"message": message}))
        except Exception as e:
            logger.warning("Could not deliver error event: %s", e)

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.sink.close()
        except Exception as e:
            logger.warning("Closing event sink failed: %s", e)
