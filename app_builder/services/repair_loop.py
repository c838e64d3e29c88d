"""
Build-Repair Loop

Bounded build -> verify -> repair cycle. Each failed build's output is handed
verbatim to a corrective generation step, then the build is retried, up to a
fixed number of verification attempts.

The policy lives in a pure transition function (next_state) so it can be
tested without any I/O; BuildRepairLoop drives it and reports every phase
change through the marker protocol.

States:
    Verifying(n) --build ok--------------------> Succeeded
    Verifying(n) --build failed, n < max-------> Healing(n)
    Verifying(n) --build failed, n == max------> ExhaustedRetries
    Healing(n)   --repair returned or raised---> Verifying(n + 1)
"""

import logging
from typing import Callable, Optional, Sequence

from django.conf import settings

from app_builder.prompts import build_error_fix_prompt
from app_builder.services.event_codec import MarkerEmitter
from app_builder.services.generation_agent import DEFAULT_ALLOWED_TOOLS, GenerationAgent
from app_builder.services.types import (
    AgentMessage,
    BuildResult,
    LoopState,
    RepairAttempt,
    RepairLoopResult,
)
from app_builder.types import AttemptOutcome, EventKind, LoopPhase

logger = logging.getLogger(__name__)


DEFAULT_MAX_ATTEMPTS = 3
HEAL_FAILED_MESSAGE = "Build verification failed after multiple fix attempts"
# heal_failed carries only the end of the build output, where the errors are
DIAGNOSTIC_TAIL_CHARS = 2000

BuildCheck = Callable[[], BuildResult]
Repair = Callable[[str, int], None]


def initial_state() -> LoopState:
    return LoopState(phase=LoopPhase.VERIFYING, attempt=1)


def next_state(
    state: LoopState,
    max_attempts: int,
    build_result: Optional[BuildResult] = None,
) -> LoopState:
    """
    Compute the loop state that follows the given one.

    Args:
        state: Current (non-terminal) state
        max_attempts: Build verification ceiling
        build_result: Outcome of the build, required when verifying

    Raises:
        ValueError: On a terminal state, or a verifying state without a build result
    """
    if state.phase.is_terminal:
        raise ValueError(f"Loop already finished in state {state.phase}")

    if state.phase == LoopPhase.HEALING:
        return LoopState(phase=LoopPhase.VERIFYING, attempt=state.attempt + 1)

    if build_result is None:
        raise ValueError("A build result is required to leave the verifying state")
    if build_result.success:
        return LoopState(phase=LoopPhase.SUCCEEDED, attempt=state.attempt)
    if state.attempt < max_attempts:
        return LoopState(
            phase=LoopPhase.HEALING,
            attempt=state.attempt,
            diagnostic=build_result.output,
        )
    return LoopState(
        phase=LoopPhase.EXHAUSTED_RETRIES,
        attempt=state.attempt,
        diagnostic=build_result.output,
    )


def attempt_outcome(state_after: LoopState) -> AttemptOutcome:
    """Map the state that follows a verification to that attempt's outcome."""
    if state_after.phase == LoopPhase.SUCCEEDED:
        return AttemptOutcome.SUCCESS
    if state_after.phase == LoopPhase.HEALING:
        return AttemptOutcome.FAILED_WILL_RETRY
    return AttemptOutcome.FAILED_EXHAUSTED


class BuildRepairLoop:
    """
    Runs verification attempts strictly one after another, never in parallel.

    Usage:
        loop = BuildRepairLoop(emitter, max_attempts=3)
        result = loop.run(build_check=runtime_build, repair=CorrectiveRepair(...))
        if not result.succeeded:
            # Degraded: the dev server may still be started
            ...
    """

    def __init__(self, emitter: MarkerEmitter, max_attempts: Optional[int] = None):
        if max_attempts is None:
            max_attempts = getattr(settings, "APP_BUILDER_MAX_HEAL_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.emitter = emitter
        self.max_attempts = max_attempts

    def run(self, build_check: BuildCheck, repair: Repair) -> RepairLoopResult:
        """
        Drive the loop to a terminal state.

        Args:
            build_check: Runs the build and reports success or failure with output
            repair: Called with (diagnostic, attempt) to attempt a fix

        Returns:
            RepairLoopResult with outcome SUCCEEDED or EXHAUSTED_RETRIES
        """
        state = initial_state()
        repairs = 0

        while not state.phase.is_terminal:
            if state.phase == LoopPhase.VERIFYING:
                self.emitter.say(
                    f"Build verification attempt {state.attempt}/{self.max_attempts}..."
                )
                build_result = self._check(build_check)
                state = next_state(state, self.max_attempts, build_result)
                attempt = RepairAttempt(
                    number=state.attempt,
                    outcome=attempt_outcome(state),
                    diagnostic=build_result.output,
                )
                self._report(attempt, build_result)
            else:
                repairs += 1
                self._heal(repair, state)
                state = next_state(state, self.max_attempts)

        if state.phase == LoopPhase.SUCCEEDED:
            self.emitter.say("Build successful!")
            if repairs:
                self.emitter.emit(EventKind.HEAL_SUCCESS, attempts=state.attempt)
        else:
            self.emitter.say(f"Build still failing after {self.max_attempts} attempts")
            self.emitter.emit(
                EventKind.HEAL_FAILED,
                error=HEAL_FAILED_MESSAGE,
                attempts=state.attempt,
                diagnostic=(state.diagnostic or "")[-DIAGNOSTIC_TAIL_CHARS:],
            )

        logger.info(
            "Build-repair loop finished: %s after %d attempt(s), %d repair(s)",
            state.phase,
            state.attempt,
            repairs,
        )
        return RepairLoopResult(
            outcome=state.phase,
            attempts=state.attempt,
            repairs=repairs,
            diagnostic=state.diagnostic,
        )

    def _check(self, build_check: BuildCheck) -> BuildResult:
        try:
            return build_check()
        except Exception as e:
            logger.exception("Build check raised")
            return BuildResult(success=False, output=f"Build check failed: {e}")

    def _report(self, attempt: RepairAttempt, build_result: BuildResult) -> None:
        if attempt.outcome == AttemptOutcome.SUCCESS:
            return
        if build_result.timed_out:
            self.emitter.say(f"Build timed out (attempt {attempt.number}/{self.max_attempts})")
        else:
            self.emitter.say(f"Build failed (attempt {attempt.number}/{self.max_attempts})")
        if attempt.diagnostic:
            self.emitter.say("Build errors:")
            self.emitter.say(attempt.diagnostic)

    def _heal(self, repair: Repair, state: LoopState) -> None:
        self.emitter.say("Attempting to fix build errors...")
        self.emitter.emit(EventKind.HEALING_START)
        try:
            repair(state.diagnostic, state.attempt)
        except Exception as e:
            # A failed repair still counts against the ceiling
            logger.warning("Repair attempt %d failed: %s", state.attempt, e)
            self.emitter.say(f"Build fixing failed: {e}")
        finally:
            self.emitter.emit(EventKind.HEALING_END)


class CorrectiveRepair:
    """
    Repair callable that asks the generation agent to fix a failed build.

    The agent's own messages are re-emitted as healing_message/healing_tool
    events tagged with the attempt number, so a subscriber can tell repair
    output apart from the initial generation.
    """

    def __init__(
        self,
        agent: GenerationAgent,
        emitter: MarkerEmitter,
        cwd: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        max_turns: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        allowed_tools: Sequence[str] = DEFAULT_ALLOWED_TOOLS,
    ):
        self.agent = agent
        self.emitter = emitter
        self.cwd = cwd
        self.max_attempts = max_attempts
        self.max_turns = max_turns or getattr(settings, "APP_BUILDER_FIX_MAX_TURNS", 8)
        self.timeout_seconds = timeout_seconds or getattr(
            settings, "APP_BUILDER_FIX_TIMEOUT_SECONDS", 300
        )
        self.allowed_tools = allowed_tools

    def __call__(self, diagnostic: str, attempt: int) -> None:
        self.emitter.emit(
            EventKind.HEALING_MESSAGE,
            content="Analyzing build errors and creating fixes...",
            attempt=attempt,
        )
        prompt = build_error_fix_prompt(diagnostic, attempt, self.max_attempts)

        def on_message(message: AgentMessage) -> None:
            if message.type == "text":
                self.emitter.emit(EventKind.HEALING_MESSAGE, content=message.text, attempt=attempt)
            elif message.type == "tool_use":
                self.emitter.emit(
                    EventKind.HEALING_TOOL,
                    name=message.name,
                    input=message.input,
                    attempt=attempt,
                )

        self.agent.run(
            prompt,
            cwd=self.cwd,
            allowed_tools=self.allowed_tools,
            max_turns=self.max_turns,
            timeout_seconds=self.timeout_seconds,
            on_message=on_message,
        )
        self.emitter.say("Build error fixing completed")
