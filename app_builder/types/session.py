"""
Session and Repair Loop Types
"""

from enum import StrEnum


class SessionKind(StrEnum):
    """Which end-to-end flow a session runs."""

    GENERATE = "generate"
    MODIFY = "modify"


class SessionStatus(StrEnum):
    """Lifecycle of a streamed build session."""

    RUNNING = "running"
    COMPLETE = "complete"  # Subprocess exited 0
    FAILED = "failed"  # Spawn failure, non-zero exit, or timeout


class LoopPhase(StrEnum):
    """States of the build-repair loop."""

    VERIFYING = "verifying"
    HEALING = "healing"
    SUCCEEDED = "succeeded"
    EXHAUSTED_RETRIES = "exhausted_retries"

    @property
    def is_terminal(self) -> bool:
        return self in (LoopPhase.SUCCEEDED, LoopPhase.EXHAUSTED_RETRIES)


class AttemptOutcome(StrEnum):
    """Outcome of a single build verification attempt."""

    SUCCESS = "success"
    FAILED_WILL_RETRY = "failed_will_retry"
    FAILED_EXHAUSTED = "failed_exhausted"
