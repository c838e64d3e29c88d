"""
Tests for session orchestration

Covers:
- Generate flow: generation, install, build-repair loop, server, preview URL
- Modify flow: server restart ordering and modification_complete
- Generation timeouts and hard failures
- SessionLauncher command lines and outcome bookkeeping
"""

import sys
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from app_builder.models import BuildSession
from app_builder.services.event_codec import MarkerEmitter, decode
from app_builder.services.exceptions import GenerationError, GenerationTimeoutError
from app_builder.services.generation_agent import GenerationAgent
from app_builder.services.sandbox_runtime import SandboxRuntime
from app_builder.services.session_orchestrator import (
    SessionConfig,
    SessionLauncher,
    SessionOrchestrator,
)
from app_builder.services.stream_forwarder import ListSink, StreamForwarder
from app_builder.services.types import AgentMessage, CommandResult, Event
from app_builder.types import EventKind, SessionKind, SessionStatus


BUILD_ERROR = "Module not found: Can't resolve '@/components/Header'"


class FakeRuntime(SandboxRuntime):
    """In-memory sandbox that answers commands from a script."""

    def __init__(self, results=None, http_status=200, journal=None):
        super().__init__("sbx-test")
        self.results = {key: list(value) for key, value in (results or {}).items()}
        self.status = http_status
        self.journal = journal if journal is not None else []
        self.commands = []

    @property
    def project_dir(self):
        return "/sandboxes/sbx-test/website-project"

    def ensure_project_dir(self):
        self.journal.append("ensure_project_dir")

    def exec(self, command, *, cwd=None, env=None, timeout_seconds=None):
        self.commands.append(command)
        self.journal.append(f"exec:{command}")
        for prefix, results in self.results.items():
            if command.startswith(prefix):
                return results.pop(0) if len(results) > 1 else results[0]
        return CommandResult(exit_code=0)

    def start_dev_server(self, command, port):
        self.journal.append(f"start:{command}:{port}")

    def stop_dev_server(self):
        self.journal.append("stop")

    def http_status(self, port, path="/"):
        return self.status

    def preview_url(self, port):
        return f"http://sandbox.test:{port}"

    def destroy(self):
        self.journal.append("destroy")


class FakeAgent(GenerationAgent):
    """Agent that replays canned messages, or raises, per invocation."""

    def __init__(self, messages=None, errors=None, journal=None):
        self.messages = messages or []
        self.errors = list(errors or [])
        self.journal = journal if journal is not None else []
        self.calls = []

    def run(self, instruction, *, cwd, allowed_tools=(), max_turns=20, timeout_seconds=600, on_message=None):
        self.calls.append({"instruction": instruction, "max_turns": max_turns, "cwd": cwd})
        self.journal.append(f"agent:{max_turns}")
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error
        for message in self.messages:
            on_message(message)
        return len(self.messages)


def make_orchestrator(runtime, agent, **config):
    lines = []
    config.setdefault("server_start_wait_seconds", 0)
    orchestrator = SessionOrchestrator(
        runtime,
        agent,
        MarkerEmitter(lines.append),
        config=SessionConfig(**config),
        sleep=lambda seconds: None,
    )
    return orchestrator, lines


def marker_kinds(lines):
    return [event.kind for event in (decode(line) for line in lines) if event is not None]


NEXT_PROJECT = CommandResult(exit_code=0)
FAILED_BUILD = CommandResult(exit_code=1, output=BUILD_ERROR)
PASSING_BUILD = CommandResult(exit_code=0, output="Compiled successfully")


class TestGenerate:
    """Tests for SessionOrchestrator.generate()."""

    def test_generation_with_one_repair(self):
        runtime = FakeRuntime(results={
            "test -f package.json": [NEXT_PROJECT],
            "npm run build": [FAILED_BUILD, PASSING_BUILD],
        })
        agent = FakeAgent(messages=[
            AgentMessage(type="text", text="Creating the home page"),
            AgentMessage(type="tool_use", name="Write", input={"file_path": "app/page.tsx"}),
        ])
        orchestrator, lines = make_orchestrator(runtime, agent)

        outcome = orchestrator.generate("A recipe sharing site")

        assert outcome.build_succeeded
        assert outcome.heal_attempts == 1
        assert outcome.server_healthy
        assert outcome.preview_url == "http://sandbox.test:3000"
        assert outcome.sandbox_id == "sbx-test"

        assert [call["max_turns"] for call in agent.calls] == [20, 8]
        assert "A recipe sharing site" in agent.calls[0]["instruction"]
        assert BUILD_ERROR in agent.calls[1]["instruction"]
        assert "npm install" in runtime.commands
        assert runtime.commands.count("npm run build") == 2

        kinds = marker_kinds(lines)
        assert kinds[:2] == [EventKind.ASSISTANT_MESSAGE, EventKind.TOOL_USE]
        assert EventKind.HEALING_START in kinds
        assert kinds[-1] == EventKind.HEAL_SUCCESS
        assert "Preview URL: http://sandbox.test:3000\n" in lines

    def test_agent_final_result_is_sent_as_tool_result(self):
        runtime = FakeRuntime(results={"npm run build": [PASSING_BUILD]})
        agent = FakeAgent(messages=[AgentMessage(type="result", result="Created 6 files")])
        orchestrator, lines = make_orchestrator(runtime, agent)

        orchestrator.generate("A blog")

        events = [event for event in (decode(line) for line in lines) if event is not None]
        assert events[0] == Event(EventKind.TOOL_RESULT, {"result": "Created 6 files"})

    def test_server_started_after_build(self):
        journal = []
        runtime = FakeRuntime(results={"npm run build": [PASSING_BUILD]}, journal=journal)
        orchestrator, _ = make_orchestrator(runtime, FakeAgent(journal=journal))

        orchestrator.generate("")

        assert journal[0] == "ensure_project_dir"
        build_index = journal.index("exec:npm run build")
        assert journal.index("start:npm run dev:3000") > build_index
        assert journal.index("exec:npm install") < build_index

    def test_exhausted_build_still_serves(self):
        runtime = FakeRuntime(results={"npm run build": [FAILED_BUILD]}, http_status=500)
        agent = FakeAgent()
        orchestrator, lines = make_orchestrator(runtime, agent, max_heal_attempts=3)

        outcome = orchestrator.generate("A blog")

        assert not outcome.build_succeeded
        assert outcome.heal_attempts == 2
        assert not outcome.server_healthy
        assert len(agent.calls) == 3
        assert marker_kinds(lines)[-1] == EventKind.HEAL_FAILED
        assert "Server might still be starting, check dev-server.log\n" in lines

    def test_non_next_project_skips_build(self):
        runtime = FakeRuntime(results={"test -f package.json": [CommandResult(exit_code=1)]})
        orchestrator, _ = make_orchestrator(runtime, FakeAgent())

        outcome = orchestrator.generate("A static page")

        assert not outcome.build_succeeded
        assert outcome.preview_url is None
        assert "npm run build" not in runtime.commands

    def test_generation_failure_propagates(self):
        agent = FakeAgent(errors=[GenerationError("ANTHROPIC_API_KEY is not configured")])
        orchestrator, _ = make_orchestrator(FakeRuntime(), agent)
        with pytest.raises(GenerationError):
            orchestrator.generate("A blog")

    def test_generation_timeout_continues_to_build(self):
        runtime = FakeRuntime(results={"npm run build": [PASSING_BUILD]})
        agent = FakeAgent(errors=[GenerationTimeoutError("Generation timed out after 600s")])
        orchestrator, lines = make_orchestrator(runtime, agent)

        outcome = orchestrator.generate("A blog")

        assert outcome.build_succeeded
        assert any("timed out" in line for line in lines)


class TestModify:
    """Tests for SessionOrchestrator.modify()."""

    def test_stops_server_before_modifying(self):
        journal = []
        runtime = FakeRuntime(results={"npm run build": [PASSING_BUILD]}, journal=journal)
        agent = FakeAgent(journal=journal)
        orchestrator, lines = make_orchestrator(runtime, agent)

        outcome = orchestrator.modify("Make the header blue")

        assert journal.index("stop") < journal.index("agent:12")
        assert journal.index("agent:12") < journal.index("exec:npm run build")
        assert journal.index("start:npm run dev:3000") > journal.index("exec:npm run build")
        assert outcome.build_succeeded
        assert "Make the header blue" in agent.calls[0]["instruction"]
        assert runtime.project_dir in agent.calls[0]["instruction"]
        assert marker_kinds(lines)[-1] == EventKind.MODIFICATION_COMPLETE

    def test_modification_complete_even_when_build_fails(self):
        runtime = FakeRuntime(results={"npm run build": [FAILED_BUILD]})
        agent = FakeAgent()
        orchestrator, lines = make_orchestrator(runtime, agent, max_heal_attempts=2)

        outcome = orchestrator.modify("Add a contact page")

        assert not outcome.build_succeeded
        assert outcome.heal_attempts == 1
        kinds = marker_kinds(lines)
        assert kinds[-2:] == [EventKind.HEAL_FAILED, EventKind.MODIFICATION_COMPLETE]
        assert "Build verification failed after modifications\n" in lines


class TestSessionConfig:
    """Tests for session limits read from settings."""

    def test_session_timeout_covers_every_step_ceiling(self, settings):
        config = SessionConfig.from_settings()
        assert config.worst_case_seconds() < settings.SESSION_TIMEOUT_SECONDS
        assert StreamForwarder(ListSink()).timeout_seconds == settings.SESSION_TIMEOUT_SECONDS

    def test_worst_case_counts_builds_and_fixes(self):
        config = SessionConfig(
            max_heal_attempts=3,
            build_timeout_seconds=180,
            fix_timeout_seconds=300,
            generation_timeout_seconds=600,
            install_timeout_seconds=300,
            server_start_wait_seconds=8,
        )
        assert config.worst_case_seconds() == 600 + 300 + 3 * 180 + 2 * 300 + 30 + 8 + 5


class TestSessionLauncher:
    """Tests for the HTTP-side launcher."""

    def test_modify_command(self):
        launcher = SessionLauncher(manage_py=Path("/srv/app/manage.py"), python="/usr/bin/python3")
        assert launcher.build_command(SessionKind.MODIFY, "-make it pop", "sbx1") == [
            "/usr/bin/python3", "/srv/app/manage.py", "modify_app", "--", "sbx1", "-make it pop",
        ]

    def test_generate_command(self):
        launcher = SessionLauncher(manage_py=Path("/srv/app/manage.py"), python="/usr/bin/python3")
        assert launcher.build_command(SessionKind.GENERATE, "A blog", "sbx1") == [
            "/usr/bin/python3", "/srv/app/manage.py", "generate_app", "--sandbox-id", "sbx1", "--", "A blog",
        ]
        with pytest.raises(ValueError):
            launcher.build_command(SessionKind.GENERATE, "A blog")

    @pytest.mark.django_db
    def test_new_sandbox_id_is_assigned_before_launch(self):
        launcher = SessionLauncher(manage_py=Path("/srv/app/manage.py"), python="/usr/bin/python3")
        with patch("app_builder.services.session_orchestrator.threading.Thread") as thread:
            session, _ = launcher.start(SessionKind.GENERATE, "A blog")

        session.refresh_from_db()
        assert len(session.sandbox_id) == 36
        argv = thread.call_args.kwargs["args"][2]
        assert argv[3:5] == ["--sandbox-id", session.sandbox_id]
        thread.return_value.start.assert_called_once()

    @pytest.mark.django_db
    def test_existing_sandbox_id_is_kept(self):
        launcher = SessionLauncher(manage_py=Path("/srv/app/manage.py"), python="/usr/bin/python3")
        with patch("app_builder.services.session_orchestrator.threading.Thread") as thread:
            session, _ = launcher.start(SessionKind.MODIFY, "Add a footer", "sbx1")

        assert session.sandbox_id == "sbx1"
        assert thread.call_args.kwargs["args"][2][-2:] == ["sbx1", "Add a footer"]

    def test_defaults_to_project_manage_py(self):
        launcher = SessionLauncher()
        assert launcher.manage_py.name == "manage.py"
        assert launcher.python == sys.executable

    @pytest.mark.django_db
    def test_record_complete_outcome(self):
        session = BuildSession.objects.create(kind=SessionKind.MODIFY, sandbox_id="sbx1", prompt="x")
        forwarder = Mock(terminal_event=Event(EventKind.COMPLETE), exit_code=0, event_count=12)

        SessionLauncher().record_outcome(session.pk, forwarder)

        session.refresh_from_db()
        assert session.status == SessionStatus.COMPLETE
        assert session.exit_code == 0
        assert session.event_count == 12
        assert session.completed_at is not None
        assert session.is_finished

    @pytest.mark.django_db
    def test_record_failed_outcome(self):
        session = BuildSession.objects.create(kind=SessionKind.GENERATE, prompt="x")
        forwarder = Mock(
            terminal_event=Event(EventKind.ERROR, {"message": "Process exited with code 1"}),
            exit_code=1,
            event_count=3,
        )

        SessionLauncher().record_outcome(session.pk, forwarder)

        session.refresh_from_db()
        assert session.status == SessionStatus.FAILED
        assert session.error_message == "Process exited with code 1"
