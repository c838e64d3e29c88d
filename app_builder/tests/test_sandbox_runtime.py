"""
Tests for the local sandbox runtime, the removal task, and the CLI commands
"""

import time
from unittest.mock import Mock, patch

import httpx
import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from app_builder import tasks
from app_builder.services.exceptions import GenerationError, SandboxNotFoundError
from app_builder.services.sandbox_runtime import LocalSandboxProvider
from app_builder.services.types import SessionOutcome


@pytest.fixture
def provider(tmp_path):
    return LocalSandboxProvider(root=tmp_path, project_dirname="website-project")


class TestLocalSandboxProvider:
    """Tests for sandbox lookup and lifecycle."""

    def test_create_makes_project_dir(self, provider, tmp_path):
        runtime = provider.create("sbx1")
        assert runtime.sandbox_id == "sbx1"
        assert (tmp_path / "sbx1" / "website-project").is_dir()

    def test_create_generates_id(self, provider):
        runtime = provider.create()
        assert len(runtime.sandbox_id) == 36

    def test_get_missing_sandbox(self, provider):
        with pytest.raises(SandboxNotFoundError) as exc_info:
            provider.get("nope")
        assert str(exc_info.value) == "Sandbox nope not found"

    def test_path_like_ids_never_resolve(self, provider):
        for sandbox_id in ("../etc", "a/b", "", ".hidden"):
            with pytest.raises(SandboxNotFoundError):
                provider.get(sandbox_id)

    def test_get_or_create(self, provider):
        created = provider.get_or_create("sbx2")
        assert provider.get_or_create("sbx2").root_dir == created.root_dir

    def test_destroy(self, provider, tmp_path):
        provider.create("sbx3")
        provider.destroy("sbx3")
        assert not (tmp_path / "sbx3").exists()
        with pytest.raises(SandboxNotFoundError):
            provider.destroy("sbx3")


class TestLocalSandboxRuntime:
    """Tests for command execution inside a local sandbox."""

    def test_exec_combines_output(self, provider):
        runtime = provider.create("sbx1")
        result = runtime.exec("echo out; echo err 1>&2")
        assert result.success
        assert result.exit_code == 0
        assert "out" in result.output
        assert "err" in result.output

    def test_exec_runs_in_project_dir(self, provider):
        runtime = provider.create("sbx1")
        result = runtime.exec("pwd")
        assert result.output.endswith("website-project")

    def test_exec_failure(self, provider):
        result = provider.create("sbx1").exec("echo broken; exit 3")
        assert not result.success
        assert result.exit_code == 3
        assert result.output == "broken"

    def test_exec_timeout_is_reported_not_raised(self, provider):
        result = provider.create("sbx1").exec("sleep 5", timeout_seconds=0.2)
        assert result.timed_out
        assert not result.success
        assert result.exit_code is None

    def test_timeout_kills_nested_processes(self, provider, tmp_path):
        """A timed-out build's child processes must not outlive the step."""
        marker = tmp_path / "late-write"
        result = provider.create("sbx1").exec(f"sh -c 'sleep 2; touch {marker}'; true", timeout_seconds=0.3)
        assert result.timed_out
        time.sleep(3)
        assert not marker.exists()

    def test_stop_without_server_is_noop(self, provider):
        provider.create("sbx1").stop_dev_server()

    def test_http_status_unreachable(self, provider):
        runtime = provider.create("sbx1")
        with patch("app_builder.services.sandbox_runtime.httpx.get", side_effect=httpx.ConnectError("refused")):
            assert runtime.http_status(3000) is None

    def test_http_status(self, provider):
        runtime = provider.create("sbx1")
        with patch("app_builder.services.sandbox_runtime.httpx.get", return_value=Mock(status_code=200)) as get:
            assert runtime.http_status(4321) == 200
        assert get.call_args.args[0] == "http://localhost:4321/"

    def test_preview_url(self, provider):
        assert provider.create("sbx1").preview_url(3000) == "http://localhost:3000"


class TestRemoveSandboxTask:
    """Tests for the Celery removal task."""

    def test_removes_sandbox(self, provider):
        provider.create("sbx1")
        with patch.object(tasks, "get_sandbox_provider", return_value=provider):
            assert tasks.remove_sandbox("sbx1") is True

    def test_already_removed(self, provider):
        with patch.object(tasks, "get_sandbox_provider", return_value=provider):
            assert tasks.remove_sandbox("sbx1") is False


class TestCommands:
    """Tests for the session management commands."""

    def test_modify_unknown_sandbox_fails(self, provider):
        with patch("app_builder.management.commands.modify_app.get_sandbox_provider", return_value=provider):
            with pytest.raises(CommandError):
                call_command("modify_app", "missing", "Add", "a", "footer")

    def test_modify_runs_orchestrator(self, provider):
        provider.create("sbx1")
        orchestrator = Mock()
        with patch("app_builder.management.commands.modify_app.get_sandbox_provider", return_value=provider), \
                patch("app_builder.management.commands.modify_app.get_generation_agent"), \
                patch("app_builder.management.commands.modify_app.SessionOrchestrator", return_value=orchestrator):
            call_command("modify_app", "sbx1", "Add", "a", "footer")
        orchestrator.modify.assert_called_once_with("Add a footer")

    def test_generate_failure_is_command_error(self, provider):
        orchestrator = Mock()
        orchestrator.generate.side_effect = GenerationError("ANTHROPIC_API_KEY is not configured")
        with patch("app_builder.management.commands.generate_app.get_sandbox_provider", return_value=provider), \
                patch("app_builder.management.commands.generate_app.get_generation_agent"), \
                patch("app_builder.management.commands.generate_app.SessionOrchestrator", return_value=orchestrator):
            with pytest.raises(CommandError):
                call_command("generate_app", "A", "blog")

    def test_generate_reports_result(self, provider, capsys):
        orchestrator = Mock()
        orchestrator.generate.return_value = SessionOutcome(
            sandbox_id="sbx1", project_dir="/tmp/x", build_succeeded=True
        )
        with patch("app_builder.management.commands.generate_app.get_sandbox_provider", return_value=provider), \
                patch("app_builder.management.commands.generate_app.get_generation_agent"), \
                patch("app_builder.management.commands.generate_app.SessionOrchestrator", return_value=orchestrator):
            call_command("generate_app", "--sandbox-id", "sbx1", "A", "blog")
        orchestrator.generate.assert_called_once_with("A blog")
        assert "Website generated!" in capsys.readouterr().out

    def test_remove_sandbox_command(self, provider, tmp_path):
        provider.create("sbx1")
        with patch("app_builder.management.commands.remove_sandbox.get_sandbox_provider", return_value=provider):
            call_command("remove_sandbox", "sbx1")
        assert not (tmp_path / "sbx1").exists()
