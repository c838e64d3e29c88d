"""
Event Codec

Embeds progress events in ordinary text lines so they survive a plain,
line-buffered stdout pipe. A line carries one marker token immediately
followed by a compact JSON object:

    __TOOL_USE__{"name": "Read", "input": {"file_path": "app/page.tsx"}}

Decoding looks for the marker anywhere in the line, so log prefixes in front
of it are ignored. A marker followed by text that is not a JSON object
decodes to nothing instead of raising; one corrupted line must not take the
rest of the stream down with it.
"""

import json
import logging
from typing import Any, Callable, Dict, Optional

from app_builder.services.types import Event
from app_builder.types import EventKind

logger = logging.getLogger(__name__)


MARKER_TOKENS: Dict[EventKind, str] = {
    EventKind.ASSISTANT_MESSAGE: "__CLAUDE_MESSAGE__",
    EventKind.TOOL_USE: "__TOOL_USE__",
    EventKind.TOOL_RESULT: "__TOOL_RESULT__",
    EventKind.HEALING_MESSAGE: "__CLAUDE_FIX__",
    EventKind.HEALING_TOOL: "__TOOL_FIX__",
    EventKind.HEALING_START: "__HEALING_START__",
    EventKind.HEALING_END: "__HEALING_END__",
    EventKind.HEAL_SUCCESS: "__HEAL_SUCCESS__",
    EventKind.HEAL_FAILED: "__HEAL_FAILED__",
    EventKind.MODIFICATION_COMPLETE: "__MODIFICATION_COMPLETE__",
}

# Kinds whose marker carries no payload
PAYLOADLESS_KINDS = frozenset({
    EventKind.HEALING_START,
    EventKind.HEALING_END,
    EventKind.MODIFICATION_COMPLETE,
})

# Kinds that still produce an event when the payload is unreadable
LENIENT_KINDS = frozenset({
    EventKind.HEAL_SUCCESS,
    EventKind.HEAL_FAILED,
})


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return str(value)


def encode(kind: EventKind, payload: Optional[Dict[str, Any]] = None) -> str:
    """
    Encode an event as a single marker-tagged line (without the newline).

    Args:
        kind: A marker-carried event kind
        payload: JSON-serializable payload fields

    Returns:
        The marker token followed by the JSON payload

    Raises:
        ValueError: If the kind has no marker token (forwarder-only kinds)
    """
    token = MARKER_TOKENS.get(kind)
    if token is None:
        raise ValueError(f"Event kind {kind} has no marker token")
    if kind in PAYLOADLESS_KINDS and not payload:
        return token
    # json.dumps escapes control characters, so the result is always one line
    return token + json.dumps(payload or {}, ensure_ascii=False, default=_json_default)


def find_marker(line: str) -> Optional[EventKind]:
    """Return the kind of the earliest marker token in the line, if any."""
    found = None
    found_at = len(line)
    for kind, token in MARKER_TOKENS.items():
        index = line.find(token)
        if index != -1 and index < found_at:
            found, found_at = kind, index
    return found


def decode(line: str) -> Optional[Event]:
    """
    Decode a marker-tagged line into an Event.

    Returns None when the line carries no marker, or when the payload after
    the marker is not a JSON object (except for the lenient heal status kinds,
    which decode to an event without payload fields).
    """
    kind = find_marker(line)
    if kind is None:
        return None

    token = MARKER_TOKENS[kind]
    if kind in PAYLOADLESS_KINDS:
        return Event(kind)

    raw = line[line.index(token) + len(token):].strip()
    try:
        payload = json.loads(raw)
    except ValueError:
        payload = None

    if not isinstance(payload, dict):
        if kind in LENIENT_KINDS:
            return Event(kind)
        logger.debug("Dropping malformed %s line: %.200s", token, line)
        return None

    payload.pop("type", None)
    return Event(kind, payload)


class MarkerEmitter:
    """
    Producer-side writer for marker lines.

    Wraps a `write(text)` callable (for example a management command's
    stdout) and flushes after every line so the consumer sees progress as it
    happens rather than when a pipe buffer fills.

    Usage:
        emitter = MarkerEmitter(self.stdout.write, flush=self.stdout.flush)
        emitter.say("Build verification attempt 1/3...")
        emitter.emit(EventKind.TOOL_USE, name="Read", input={"file_path": "a.ts"})
    """

    def __init__(self, write: Callable[[str], Any], flush: Optional[Callable[[], Any]] = None):
        self._write = write
        self._flush = flush

    def emit(self, kind: EventKind, **payload: Any) -> None:
        """Write one marker-tagged event line."""
        self._write_line(encode(kind, payload))

    def say(self, text: str) -> None:
        """Write plain human-readable progress, one line per text line."""
        for line in str(text).splitlines() or [""]:
            self._write_line(line)

    def _write_line(self, line: str) -> None:
        self._write(line + "\n")
        if self._flush is not None:
            self._flush()
