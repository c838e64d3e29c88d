"""
Custom exceptions for the app builder services.
"""


class AppBuilderError(Exception):
    """Base exception for app builder errors."""


class GenerationError(AppBuilderError):
    """Raised when the generation agent cannot be invoked or fails outright."""


class SandboxNotFoundError(AppBuilderError):
    """Raised when a sandbox id does not resolve to a workspace."""

    def __init__(self, sandbox_id: str):
        super().__init__(f"Sandbox {sandbox_id} not found")
        self.sandbox_id = sandbox_id


class SandboxCommandError(AppBuilderError):
    """Raised when a required sandbox command fails."""

    def __init__(self, message: str, exit_code: int = None, output: str = None):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class GenerationTimeoutError(GenerationError):
    """Raised when a generation agent run exceeds its wall-clock limit."""
