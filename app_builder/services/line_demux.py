"""
Line Demultiplexer

Turns a raw, arbitrarily chunked byte stream from a subprocess pipe into an
ordered sequence of typed events. Each instance owns exactly one partial-line
buffer, so independent streams (and independent sessions) never share state.

Bytes, not text, are buffered: a multi-byte UTF-8 character split across two
chunks is only decoded once its line is complete.
"""

import logging
from typing import List, Optional

from app_builder.services import event_codec
from app_builder.services.types import Event
from app_builder.types import EventKind

logger = logging.getLogger(__name__)


STDOUT = "stdout"
STDERR = "stderr"

# Substrings that mark a line as internal diagnostic output
NOISE_MARKERS = ("[Claude]:", "[Tool]:", "__")

# Unmarked stderr lines are only forwarded when they look like failures
STDERR_FAILURE_MARKERS = ("Error", "Failed")


def is_noise(text: str) -> bool:
    """Check whether an unmarked line is internal diagnostic noise."""
    return any(marker in text for marker in NOISE_MARKERS)


class LineDemultiplexer:
    """
    Reassembles complete lines from chunks and classifies each into an Event.

    Usage:
        demux = LineDemultiplexer()
        for chunk in chunks:
            for event in demux.feed(chunk):
                deliver(event)
        for event in demux.finish(flush_partial=True):
            deliver(event)
    """

    def __init__(self, stream: str = STDOUT):
        self.stream = stream
        self._buffer = bytearray()
        self._finished = False

    @property
    def pending(self) -> bytes:
        """Bytes of the current unterminated line (for inspection only)."""
        return bytes(self._buffer)

    def feed(self, chunk: bytes) -> List[Event]:
        """
        Append a chunk and return events for every line it completes.

        Args:
            chunk: Raw bytes from the pipe (may be empty or end mid-line)

        Returns:
            Events in the order their source lines appeared
        """
        if self._finished:
            raise RuntimeError(f"{self.stream} demultiplexer already finished")
        if not chunk:
            return []

        self._buffer.extend(chunk)
        *complete, tail = self._buffer.split(b"\n")
        self._buffer = bytearray(tail)

        events: List[Event] = []
        for raw_line in complete:
            event = self.classify(raw_line)
            if event is not None:
                events.append(event)
        return events

    def finish(self, flush_partial: bool = False) -> List[Event]:
        """
        Signal end of stream.

        The unterminated trailing fragment, if any, is classified as a
        best-effort line when flush_partial is set and discarded otherwise.
        """
        leftover = bytes(self._buffer)
        self._buffer.clear()
        self._finished = True

        if not leftover:
            return []
        if not flush_partial:
            logger.debug(
                "Discarding %d unterminated bytes at end of %s",
                len(leftover),
                self.stream,
            )
            return []

        event = self.classify(leftover)
        return [event] if event is not None else []

    def classify(self, raw_line: bytes) -> Optional[Event]:
        """Classify one complete line (without its terminator) into at most one Event."""
        text = raw_line.decode("utf-8", errors="replace").rstrip("\r")
        output = text.strip()
        if not output:
            return None

        if event_codec.find_marker(text) is not None:
            return event_codec.decode(text)

        if is_noise(output):
            return None

        if self.stream == STDERR:
            if not any(marker in output for marker in STDERR_FAILURE_MARKERS):
                return None
            return Event(
                EventKind.PROGRESS,
                {"message": output, "level": "error", "stream": STDERR},
            )

        return Event(EventKind.PROGRESS, {"message": output})
