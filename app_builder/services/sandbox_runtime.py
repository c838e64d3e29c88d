"""
Sandbox Runtime

The isolated environment a session builds and serves the application in.
Provisioning is an external concern; this module defines the interface the
session orchestrator talks to and a local implementation that keeps each
sandbox in its own directory under settings.SANDBOX_ROOT.

Layout of a local sandbox:
    <SANDBOX_ROOT>/<sandbox_id>/
        website-project/     # the generated application
        dev-server.log
        dev-server.pid
"""

import logging
import os
import re
import shutil
import signal
import subprocess
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

import httpx
from django.conf import settings

from app_builder.services.exceptions import SandboxCommandError, SandboxNotFoundError
from app_builder.services.types import CommandResult

logger = logging.getLogger(__name__)


SANDBOX_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")
DEV_SERVER_LOG = "dev-server.log"
DEV_SERVER_PID = "dev-server.pid"


class SandboxRuntime(ABC):
    """
    Abstract base class for sandbox runtimes.

    Usage:
        runtime = get_sandbox_provider().get(sandbox_id)
        result = runtime.exec("npm run build", timeout_seconds=180)
        if not result.success:
            print(result.output)
    """

    def __init__(self, sandbox_id: str):
        self.sandbox_id = sandbox_id

    @property
    @abstractmethod
    def project_dir(self) -> str:
        """Directory holding the generated application."""

    @abstractmethod
    def ensure_project_dir(self) -> None:
        """Create the project directory if it does not exist yet."""

    @abstractmethod
    def exec(
        self,
        command: str,
        *,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> CommandResult:
        """
        Run a shell command to completion.

        Stdout and stderr are combined into CommandResult.output. A timeout
        is reported as CommandResult(timed_out=True), never raised.
        """

    @abstractmethod
    def start_dev_server(self, command: str, port: int) -> None:
        """Start the application server in the background."""

    @abstractmethod
    def stop_dev_server(self) -> None:
        """Stop a previously started application server, if running."""

    @abstractmethod
    def http_status(self, port: int, path: str = "/") -> Optional[int]:
        """Return the HTTP status served on the port, or None if unreachable."""

    @abstractmethod
    def preview_url(self, port: int) -> str:
        """Public address for the application served on the port."""

    @abstractmethod
    def destroy(self) -> None:
        """Tear down the sandbox and everything in it."""


class LocalSandboxRuntime(SandboxRuntime):
    """SandboxRuntime backed by a local directory and local processes."""

    def __init__(self, sandbox_id: str, root_dir: Path, project_dirname: str = "website-project"):
        super().__init__(sandbox_id)
        self.root_dir = Path(root_dir)
        self._project_dir = self.root_dir / project_dirname

    @property
    def project_dir(self) -> str:
        return str(self._project_dir)

    def ensure_project_dir(self) -> None:
        self._project_dir.mkdir(parents=True, exist_ok=True)

    def exec(
        self,
        command: str,
        *,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> CommandResult:
        run_env = {**os.environ, **(env or {})}
        logger.debug("[%s] exec: %s", self.sandbox_id, command)
        try:
            process = subprocess.Popen(
                command,
                shell=True,
                cwd=cwd or self.project_dir,
                env=run_env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                start_new_session=True,
            )
        except OSError as e:
            raise SandboxCommandError(f"Could not run {command!r}: {e}") from e

        try:
            output, _ = process.communicate(timeout=timeout_seconds)
        except subprocess.TimeoutExpired:
            # The shell is only the group leader; npm and node run beneath it
            self._kill_group(process)
            output, _ = process.communicate()
            logger.warning("[%s] command timed out after %ss: %s", self.sandbox_id, timeout_seconds, command)
            return CommandResult(exit_code=None, output=(output or "").strip(), timed_out=True)

        return CommandResult(exit_code=process.returncode, output=(output or "").strip())

    def _kill_group(self, process: subprocess.Popen) -> None:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError) as e:
            logger.debug("[%s] process group already gone: %s", self.sandbox_id, e)

    def start_dev_server(self, command: str, port: int) -> None:
        self.stop_dev_server()
        log_path = self.root_dir / DEV_SERVER_LOG
        env = {**os.environ, "PORT": str(port)}
        with open(log_path, "ab") as log_file:
            process = subprocess.Popen(
                command,
                shell=True,
                cwd=self.project_dir,
                env=env,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        (self.root_dir / DEV_SERVER_PID).write_text(str(process.pid), encoding="utf-8")
        logger.info("[%s] dev server started (pid %d)", self.sandbox_id, process.pid)

    def stop_dev_server(self) -> None:
        pid_path = self.root_dir / DEV_SERVER_PID
        if not pid_path.exists():
            return
        try:
            pid = int(pid_path.read_text(encoding="utf-8").strip())
            os.killpg(pid, signal.SIGTERM)
            logger.info("[%s] dev server stopped (pid %d)", self.sandbox_id, pid)
        except (ValueError, ProcessLookupError, PermissionError) as e:
            logger.debug("[%s] no dev server to stop: %s", self.sandbox_id, e)
        finally:
            pid_path.unlink(missing_ok=True)

    def http_status(self, port: int, path: str = "/") -> Optional[int]:
        try:
            response = httpx.get(f"http://localhost:{port}{path}", timeout=5.0)
        except httpx.HTTPError as e:
            logger.debug("[%s] health check failed: %s", self.sandbox_id, e)
            return None
        return response.status_code

    def preview_url(self, port: int) -> str:
        return f"http://localhost:{port}"

    def destroy(self) -> None:
        self.stop_dev_server()
        shutil.rmtree(self.root_dir, ignore_errors=True)
        logger.info("[%s] sandbox removed", self.sandbox_id)


class LocalSandboxProvider:
    """Creates, resolves, and removes local sandboxes."""

    def __init__(self, root: Optional[Path] = None, project_dirname: Optional[str] = None):
        self.root = Path(root or getattr(settings, "SANDBOX_ROOT", "sandboxes"))
        self.project_dirname = project_dirname or getattr(
            settings, "SANDBOX_PROJECT_DIRNAME", "website-project"
        )

    def create(self, sandbox_id: Optional[str] = None) -> LocalSandboxRuntime:
        """Create a sandbox (and its empty project directory)."""
        sandbox_id = sandbox_id or str(uuid.uuid4())
        runtime = self._runtime(sandbox_id)
        runtime.ensure_project_dir()
        logger.info("Sandbox created: %s", sandbox_id)
        return runtime

    def get(self, sandbox_id: str) -> LocalSandboxRuntime:
        """Resolve an existing sandbox, raising SandboxNotFoundError if absent."""
        runtime = self._runtime(sandbox_id)
        if not runtime.root_dir.is_dir():
            raise SandboxNotFoundError(sandbox_id)
        return runtime

    def get_or_create(self, sandbox_id: Optional[str] = None) -> LocalSandboxRuntime:
        if sandbox_id:
            try:
                return self.get(sandbox_id)
            except SandboxNotFoundError:
                pass
        return self.create(sandbox_id)

    def destroy(self, sandbox_id: str) -> None:
        self.get(sandbox_id).destroy()

    def _runtime(self, sandbox_id: str) -> LocalSandboxRuntime:
        if not SANDBOX_ID_PATTERN.match(sandbox_id or ""):
            raise SandboxNotFoundError(sandbox_id)
        return LocalSandboxRuntime(sandbox_id, self.root / sandbox_id, self.project_dirname)


# Singleton instance
_sandbox_provider: Optional[LocalSandboxProvider] = None


def get_sandbox_provider() -> LocalSandboxProvider:
    """Get singleton sandbox provider instance."""
    global _sandbox_provider
    if _sandbox_provider is None:
        _sandbox_provider = LocalSandboxProvider()
    return _sandbox_provider
