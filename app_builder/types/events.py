"""
Progress Event Types

Kinds of events that flow from a session subprocess to the client.
"""

from enum import StrEnum


class EventKind(StrEnum):
    """Kind of a progress event."""

    # Carried by marker tokens in subprocess output
    ASSISTANT_MESSAGE = "assistant_message"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    HEALING_MESSAGE = "healing_message"  # Agent text during a repair attempt
    HEALING_TOOL = "healing_tool"  # Agent tool call during a repair attempt
    HEALING_START = "healing_start"
    HEALING_END = "healing_end"
    HEAL_SUCCESS = "heal_success"
    HEAL_FAILED = "heal_failed"
    MODIFICATION_COMPLETE = "modification_complete"

    # Derived from unmarked lines
    PROGRESS = "progress"

    # Produced by the forwarder only
    ERROR = "error"
    COMPLETE = "complete"


class DeliveredType(StrEnum):
    """The `type` field of an envelope delivered to the client."""

    CLAUDE_MESSAGE = "claude_message"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    HEALING_MESSAGE = "healing_message"
    HEALING_TOOL = "healing_tool"
    HEALING_STATUS = "healing_status"
    MODIFICATION_COMPLETE = "modification_complete"
    PROGRESS = "progress"
    ERROR = "error"
    COMPLETE = "complete"


class HealingStatus(StrEnum):
    """The `status` field of a healing_status envelope."""

    STARTING = "starting"
    ENDED = "ended"
    SUCCESS = "success"
    FAILED = "failed"
