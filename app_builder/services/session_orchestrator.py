"""
Session Orchestrator

End-to-end generate and modify flows. SessionOrchestrator runs inside the
session subprocess (a management command) and reports progress exclusively
through marker lines on stdout. SessionLauncher is its HTTP-side
counterpart: it spawns that subprocess and streams its output to the
subscriber through a StreamForwarder.

Generate:
    prepare project -> initial generation -> npm install -> build-repair loop
    -> dev server -> health check -> preview URL

Modify:
    stop dev server -> modification -> build-repair loop -> dev server
    -> health check -> modification_complete
"""

import logging
import sys
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from django.conf import settings
from django.db import close_old_connections
from django.utils import timezone

from app_builder.models import BuildSession
from app_builder.prompts import build_generation_prompt, build_modification_prompt
from app_builder.services.event_codec import MarkerEmitter
from app_builder.services.exceptions import GenerationTimeoutError
from app_builder.services.generation_agent import DEFAULT_ALLOWED_TOOLS, GenerationAgent
from app_builder.services.repair_loop import BuildRepairLoop, CorrectiveRepair
from app_builder.services.sandbox_runtime import SandboxRuntime
from app_builder.services.stream_forwarder import SSEQueueSink, StreamForwarder
from app_builder.services.types import AgentMessage, BuildResult, RepairLoopResult, SessionOutcome
from app_builder.types import EventKind, SessionKind, SessionStatus

logger = logging.getLogger(__name__)

PROJECT_CHECK_TIMEOUT_SECONDS = 30
HEALTH_CHECK_TIMEOUT_SECONDS = 5


@dataclass
class SessionConfig:
    """Tunables for one orchestrated session."""

    max_heal_attempts: int = 3
    build_command: str = "npm run build"
    build_timeout_seconds: float = 180
    install_command: str = "npm install"
    install_timeout_seconds: float = 300
    generation_timeout_seconds: float = 600
    fix_timeout_seconds: float = 300
    generation_max_turns: int = 20
    modification_max_turns: int = 12
    fix_max_turns: int = 8
    dev_server_command: str = "npm run dev"
    dev_server_port: int = 3000
    server_start_wait_seconds: float = 8.0

    @classmethod
    def from_settings(cls) -> "SessionConfig":
        return cls(
            max_heal_attempts=getattr(settings, "APP_BUILDER_MAX_HEAL_ATTEMPTS", 3),
            build_command=getattr(settings, "APP_BUILDER_BUILD_COMMAND", "npm run build"),
            build_timeout_seconds=getattr(settings, "APP_BUILDER_BUILD_TIMEOUT_SECONDS", 180),
            install_timeout_seconds=getattr(settings, "APP_BUILDER_INSTALL_TIMEOUT_SECONDS", 300),
            generation_timeout_seconds=getattr(settings, "APP_BUILDER_GENERATION_TIMEOUT_SECONDS", 600),
            fix_timeout_seconds=getattr(settings, "APP_BUILDER_FIX_TIMEOUT_SECONDS", 300),
            generation_max_turns=getattr(settings, "APP_BUILDER_GENERATION_MAX_TURNS", 20),
            modification_max_turns=getattr(settings, "APP_BUILDER_MODIFICATION_MAX_TURNS", 12),
            fix_max_turns=getattr(settings, "APP_BUILDER_FIX_MAX_TURNS", 8),
            dev_server_port=getattr(settings, "APP_BUILDER_DEV_SERVER_PORT", 3000),
            server_start_wait_seconds=getattr(settings, "APP_BUILDER_SERVER_START_WAIT_SECONDS", 8.0),
        )

    def worst_case_seconds(self) -> float:
        """Longest a session can run when every step hits its own timeout."""
        return (
            self.generation_timeout_seconds
            + self.install_timeout_seconds
            + self.max_heal_attempts * self.build_timeout_seconds
            + max(self.max_heal_attempts - 1, 0) * self.fix_timeout_seconds
            + PROJECT_CHECK_TIMEOUT_SECONDS
            + self.server_start_wait_seconds
            + HEALTH_CHECK_TIMEOUT_SECONDS
        )


class SessionOrchestrator:
    """
    Runs one generate or modify session against a sandbox.

    Usage:
        emitter = MarkerEmitter(self.stdout.write, flush=self.stdout.flush)
        orchestrator = SessionOrchestrator(runtime, get_generation_agent(), emitter)
        outcome = orchestrator.modify("Make the header blue")
    """

    def __init__(
        self,
        runtime: SandboxRuntime,
        agent: GenerationAgent,
        emitter: MarkerEmitter,
        config: Optional[SessionConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runtime = runtime
        self.agent = agent
        self.emitter = emitter
        self.config = config or SessionConfig.from_settings()
        self._sleep = sleep

    def generate(self, prompt: str) -> SessionOutcome:
        """
        Generate a new application in the sandbox and serve it.

        Raises:
            GenerationError: If the generation agent cannot be run at all
        """
        project_dir = self.runtime.project_dir
        self.emitter.say(f"Using sandbox: {self.runtime.sandbox_id}")
        self.runtime.ensure_project_dir()
        self.emitter.say(f"Project directory: {project_dir}")

        self.emitter.say("Running code generation. This may take several minutes...")
        self._run_agent(
            build_generation_prompt(prompt),
            max_turns=self.config.generation_max_turns,
            timeout_seconds=self.config.generation_timeout_seconds,
        )

        outcome = SessionOutcome(
            sandbox_id=self.runtime.sandbox_id,
            project_dir=project_dir,
            build_succeeded=False,
        )
        if not self._is_nextjs_project():
            self.emitter.say("No Next.js package.json found, skipping build and server start")
            return outcome

        self._install_dependencies()
        loop_result = self._verify_and_repair()
        outcome.build_succeeded = loop_result.succeeded
        outcome.heal_attempts = loop_result.repairs
        outcome.server_healthy = self._serve()
        outcome.preview_url = self.runtime.preview_url(self.config.dev_server_port)

        self.emitter.say(f"Sandbox ID: {outcome.sandbox_id}")
        self.emitter.say(f"Preview URL: {outcome.preview_url}")
        logger.info("Generation session finished: %s", outcome.to_dict())
        return outcome

    def modify(self, request: str) -> SessionOutcome:
        """
        Apply a modification request to an existing application.

        Raises:
            GenerationError: If the generation agent cannot be run at all
        """
        project_dir = self.runtime.project_dir
        self.emitter.say(f"Starting modification for sandbox: {self.runtime.sandbox_id}")
        self.emitter.say(f"Request: {request}")

        self.runtime.stop_dev_server()
        self._run_agent(
            build_modification_prompt(request, project_dir),
            max_turns=self.config.modification_max_turns,
            timeout_seconds=self.config.generation_timeout_seconds,
        )

        self.emitter.say("Testing the modified application...")
        loop_result = self._verify_and_repair()
        if loop_result.succeeded:
            self.emitter.say("Build successful after modifications")
        else:
            self.emitter.say("Build verification failed after modifications")

        healthy = self._serve()
        self.emitter.emit(EventKind.MODIFICATION_COMPLETE)

        outcome = SessionOutcome(
            sandbox_id=self.runtime.sandbox_id,
            project_dir=project_dir,
            build_succeeded=loop_result.succeeded,
            heal_attempts=loop_result.repairs,
            server_healthy=healthy,
            preview_url=self.runtime.preview_url(self.config.dev_server_port),
        )
        logger.info("Modification session finished: %s", outcome.to_dict())
        return outcome

    def _run_agent(self, instruction: str, max_turns: int, timeout_seconds: float) -> None:
        def on_message(message: AgentMessage) -> None:
            if message.type == "text":
                self.emitter.emit(EventKind.ASSISTANT_MESSAGE, content=message.text)
            elif message.type == "tool_use":
                self.emitter.emit(EventKind.TOOL_USE, name=message.name, input=message.input)
            elif message.type == "result":
                # The run's final summary, delivered to clients as tool_result
                self.emitter.emit(EventKind.TOOL_RESULT, result=message.result)

        try:
            count = self.agent.run(
                instruction,
                cwd=self.runtime.project_dir,
                allowed_tools=DEFAULT_ALLOWED_TOOLS,
                max_turns=max_turns,
                timeout_seconds=timeout_seconds,
                on_message=on_message,
            )
        except GenerationTimeoutError as e:
            # A slow agent still may have written usable files; let the build decide
            logger.warning("Generation step timed out: %s", e)
            self.emitter.say(f"Generation step timed out after {timeout_seconds}s, continuing")
            return
        self.emitter.say(f"Generation complete ({count} messages)")

    def _is_nextjs_project(self) -> bool:
        result = self.runtime.exec(
            "test -f package.json && grep -q next package.json",
            timeout_seconds=PROJECT_CHECK_TIMEOUT_SECONDS,
        )
        return result.success

    def _install_dependencies(self) -> None:
        self.emitter.say("Installing project dependencies...")
        result = self.runtime.exec(
            self.config.install_command,
            timeout_seconds=self.config.install_timeout_seconds,
        )
        if result.timed_out:
            self.emitter.say("Warning: npm install timed out")
        elif not result.success:
            self.emitter.say("Warning: npm install had issues:")
            self.emitter.say(result.output)
        else:
            self.emitter.say("Dependencies installed")

    def _build(self) -> BuildResult:
        result = self.runtime.exec(
            self.config.build_command,
            timeout_seconds=self.config.build_timeout_seconds,
        )
        return BuildResult(success=result.success, output=result.output, timed_out=result.timed_out)

    def _verify_and_repair(self) -> RepairLoopResult:
        self.emitter.say("Verifying build and fixing any errors...")
        repair = CorrectiveRepair(
            self.agent,
            self.emitter,
            cwd=self.runtime.project_dir,
            max_attempts=self.config.max_heal_attempts,
            max_turns=self.config.fix_max_turns,
            timeout_seconds=self.config.fix_timeout_seconds,
        )
        loop = BuildRepairLoop(self.emitter, max_attempts=self.config.max_heal_attempts)
        return loop.run(build_check=self._build, repair=repair)

    def _serve(self) -> bool:
        """Start the dev server and report whether it answers with 200."""
        port = self.config.dev_server_port
        self.emitter.say("Starting development server in background...")
        self.runtime.start_dev_server(self.config.dev_server_command, port)
        self.emitter.say("Waiting for server to start...")
        self._sleep(self.config.server_start_wait_seconds)

        status = self.runtime.http_status(port)
        if status == 200:
            self.emitter.say("Server is running!")
            return True
        self.emitter.say("Server might still be starting, check dev-server.log")
        return False


class SessionLauncher:
    """
    Starts a session subprocess and streams it to an SSE sink.

    Usage:
        session, sink = get_session_launcher().start(SessionKind.MODIFY, message, sandbox_id)
        return StreamingHttpResponse(sink, content_type="text/event-stream")
    """

    COMMANDS = {
        SessionKind.GENERATE: "generate_app",
        SessionKind.MODIFY: "modify_app",
    }

    def __init__(self, manage_py: Optional[Path] = None, python: Optional[str] = None):
        self.manage_py = Path(manage_py or Path(settings.BASE_DIR) / "manage.py")
        self.python = python or sys.executable

    def build_command(self, kind: SessionKind, prompt: str, sandbox_id: Optional[str] = None) -> List[str]:
        """argv for the management command that runs the session."""
        if not sandbox_id:
            raise ValueError(f"{kind} session needs a sandbox id")
        argv = [self.python, str(self.manage_py), self.COMMANDS[kind]]
        if kind == SessionKind.GENERATE:
            argv += ["--sandbox-id", sandbox_id]
            # "--" keeps a prompt starting with a dash from parsing as an option
            return argv + ["--", prompt]
        return argv + ["--", sandbox_id, prompt]

    def start(self, kind: SessionKind, prompt: str, sandbox_id: Optional[str] = None) -> Tuple[BuildSession, SSEQueueSink]:
        """
        Record and launch a session. A generate request without a sandbox gets
        its id here, so the row and the client know it before the subprocess runs.
        """
        if kind == SessionKind.GENERATE and not sandbox_id:
            sandbox_id = str(uuid.uuid4())
        session = BuildSession.objects.create(
            kind=kind,
            prompt=prompt,
            sandbox_id=sandbox_id,
        )
        sink = SSEQueueSink()
        forwarder = StreamForwarder(sink)
        argv = self.build_command(kind, prompt, sandbox_id)

        thread = threading.Thread(
            target=self._run,
            args=(session.pk, forwarder, argv),
            name=f"session-{session.pk}",
            daemon=True,
        )
        thread.start()
        logger.info("Started %s session %s for sandbox %s", kind, session.pk, sandbox_id)
        return session, sink

    def _run(self, session_id, forwarder: StreamForwarder, argv: List[str]) -> None:
        try:
            forwarder.run(argv, cwd=str(self.manage_py.parent))
        finally:
            try:
                self.record_outcome(session_id, forwarder)
            finally:
                close_old_connections()

    def record_outcome(self, session_id, forwarder: StreamForwarder) -> None:
        """Persist the terminal state of a finished session."""
        terminal = forwarder.terminal_event
        if terminal is not None and terminal.kind == EventKind.COMPLETE:
            status, error_message = SessionStatus.COMPLETE, ""
        else:
            status = SessionStatus.FAILED
            error_message = terminal.data.get("message", "") if terminal is not None else "Session ended without a result"

        BuildSession.objects.filter(pk=session_id).update(
            status=status,
            exit_code=forwarder.exit_code,
            error_message=error_message,
            event_count=forwarder.event_count,
            completed_at=timezone.now(),
        )
        logger.info("Session %s finished: %s (exit code %s)", session_id, status, forwarder.exit_code)


# Singleton instance
_session_launcher: Optional[SessionLauncher] = None


def get_session_launcher() -> SessionLauncher:
    """Get singleton session launcher instance."""
    global _session_launcher
    if _session_launcher is None:
        _session_launcher = SessionLauncher()
    return _session_launcher
