"""
Shared Types for Services

Common dataclasses used across the event codec, demultiplexer, repair loop,
and session orchestration.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from app_builder.types import (
    AttemptOutcome,
    DeliveredType,
    EventKind,
    HealingStatus,
    LoopPhase,
)


_HEALING_STATUS_BY_KIND = {
    EventKind.HEALING_START: HealingStatus.STARTING,
    EventKind.HEALING_END: HealingStatus.ENDED,
    EventKind.HEAL_SUCCESS: HealingStatus.SUCCESS,
    EventKind.HEAL_FAILED: HealingStatus.FAILED,
}

# Payload fields copied into the envelope for each kind, in order
_ENVELOPE_FIELDS = {
    EventKind.ASSISTANT_MESSAGE: (DeliveredType.CLAUDE_MESSAGE, ("content",)),
    EventKind.TOOL_USE: (DeliveredType.TOOL_USE, ("name", "input")),
    EventKind.TOOL_RESULT: (DeliveredType.TOOL_RESULT, ("result",)),
    EventKind.HEALING_MESSAGE: (DeliveredType.HEALING_MESSAGE, ("content", "attempt")),
    EventKind.HEALING_TOOL: (DeliveredType.HEALING_TOOL, ("name", "input", "attempt")),
    EventKind.MODIFICATION_COMPLETE: (DeliveredType.MODIFICATION_COMPLETE, ()),
    EventKind.PROGRESS: (DeliveredType.PROGRESS, ("message", "level", "stream")),
    EventKind.ERROR: (DeliveredType.ERROR, ("message",)),
    EventKind.COMPLETE: (DeliveredType.COMPLETE, ()),
}


@dataclass(frozen=True)
class Event:
    """A typed, immutable progress event derived from one output line."""

    kind: EventKind
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.kind in (EventKind.COMPLETE, EventKind.ERROR)

    def to_envelope(self) -> Dict[str, Any]:
        """Build the JSON envelope delivered to the remote subscriber."""
        status = _HEALING_STATUS_BY_KIND.get(self.kind)
        if status is not None:
            envelope: Dict[str, Any] = {
                "type": DeliveredType.HEALING_STATUS.value,
                "status": status.value,
            }
            if self.kind == EventKind.HEAL_FAILED:
                for key in ("error", "attempts"):
                    if key in self.data:
                        envelope[key] = self.data[key]
            return envelope

        delivered_type, fields = _ENVELOPE_FIELDS[self.kind]
        envelope = {"type": delivered_type.value}
        for key in fields:
            if key in self.data:
                envelope[key] = self.data[key]
        return envelope


@dataclass(frozen=True)
class BuildResult:
    """Outcome of one build verification command."""

    success: bool
    output: str = ""
    timed_out: bool = False


@dataclass(frozen=True)
class RepairAttempt:
    """One iteration of the build-repair loop."""

    number: int
    outcome: AttemptOutcome
    diagnostic: str = ""


@dataclass(frozen=True)
class LoopState:
    """Current state of the build-repair loop."""

    phase: LoopPhase
    attempt: int
    diagnostic: str = ""


@dataclass(frozen=True)
class RepairLoopResult:
    """Terminal result of a build-repair loop run."""

    outcome: LoopPhase
    attempts: int  # Build verifications performed
    repairs: int  # Repair invocations performed
    diagnostic: str = ""  # Output of the last failed build, if any

    @property
    def succeeded(self) -> bool:
        return self.outcome == LoopPhase.SUCCEEDED


@dataclass(frozen=True)
class CommandResult:
    """Result of a command run inside a sandbox."""

    exit_code: Optional[int]
    output: str = ""
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


@dataclass(frozen=True)
class AgentMessage:
    """A single message emitted by the generation agent."""

    type: str  # text, tool_use, result
    text: str = ""
    name: str = ""
    input: Dict[str, Any] = field(default_factory=dict)
    result: Optional[str] = None


@dataclass
class SessionOutcome:
    """What a session orchestrator run produced."""

    sandbox_id: str
    project_dir: str
    build_succeeded: bool
    heal_attempts: int = 0
    server_healthy: bool = False
    preview_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sandbox_id": self.sandbox_id,
            "project_dir": self.project_dir,
            "build_succeeded": self.build_succeeded,
            "heal_attempts": self.heal_attempts,
            "server_healthy": self.server_healthy,
            "preview_url": self.preview_url,
        }
