"""
Generation Agent

Wraps the agent from claude-agent-sdk as an opaque capability: it
takes a natural-language instruction and a tool allowlist, works inside a
project directory, and reports each assistant text, tool call, and final
result as an AgentMessage through a callback.

Turn limits are enforced by the agent itself; the wall-clock timeout is
enforced here. Both a timeout and an SDK failure surface as GenerationError.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKError,
    ResultMessage,
    TextBlock,
    ToolUseBlock,
    query,
)
from django.conf import settings

from app_builder.services.exceptions import GenerationError, GenerationTimeoutError
from app_builder.services.types import AgentMessage

logger = logging.getLogger(__name__)


DEFAULT_ALLOWED_TOOLS = (
    "Read",
    "Write",
    "Edit",
    "MultiEdit",
    "Bash",
    "LS",
    "Glob",
    "Grep",
)

MessageCallback = Callable[[AgentMessage], None]


class GenerationAgent(ABC):
    """
    Abstract base class for code generation agents.

    Usage:
        agent = get_generation_agent()
        agent.run(
            "Fix the build error below ...",
            cwd="/sandboxes/abc/website-project",
            allowed_tools=DEFAULT_ALLOWED_TOOLS,
            max_turns=8,
            timeout_seconds=300,
            on_message=handle_message,
        )
    """

    @abstractmethod
    def run(
        self,
        instruction: str,
        *,
        cwd: str,
        allowed_tools: Sequence[str] = DEFAULT_ALLOWED_TOOLS,
        max_turns: int = 20,
        timeout_seconds: float = 600,
        on_message: Optional[MessageCallback] = None,
    ) -> int:
        """
        Run the agent to completion.

        Returns:
            Number of messages reported through on_message

        Raises:
            GenerationError: If the agent cannot be invoked, fails, or times out
        """


class ClaudeCodeAgent(GenerationAgent):
    """GenerationAgent backed by claude-agent-sdk's query()."""

    def __init__(self, api_key: Optional[str] = None, permission_mode: str = "acceptEdits"):
        self.api_key = api_key if api_key is not None else getattr(settings, "ANTHROPIC_API_KEY", "")
        self.permission_mode = permission_mode

    def run(
        self,
        instruction: str,
        *,
        cwd: str,
        allowed_tools: Sequence[str] = DEFAULT_ALLOWED_TOOLS,
        max_turns: int = 20,
        timeout_seconds: float = 600,
        on_message: Optional[MessageCallback] = None,
    ) -> int:
        if not self.api_key:
            raise GenerationError("ANTHROPIC_API_KEY is not configured")

        options = ClaudeAgentOptions(
            allowed_tools=list(allowed_tools),
            max_turns=max_turns,
            cwd=cwd,
            permission_mode=self.permission_mode,
            env={"ANTHROPIC_API_KEY": self.api_key},
        )
        logger.info(
            "Running generation agent in %s (max_turns=%d, timeout=%ss)",
            cwd,
            max_turns,
            timeout_seconds,
        )
        try:
            return asyncio.run(
                asyncio.wait_for(
                    self._drain(instruction, options, on_message),
                    timeout=timeout_seconds,
                )
            )
        except asyncio.TimeoutError as e:
            raise GenerationTimeoutError(f"Generation timed out after {timeout_seconds}s") from e
        except ClaudeSDKError as e:
            raise GenerationError(f"Generation agent failed: {e}") from e

    async def _drain(
        self,
        instruction: str,
        options: ClaudeAgentOptions,
        on_message: Optional[MessageCallback],
    ) -> int:
        count = 0
        async for message in query(prompt=instruction, options=options):
            for agent_message in self._convert(message):
                count += 1
                if on_message is not None:
                    on_message(agent_message)
        return count

    def _convert(self, message) -> list:
        """Flatten one SDK message into AgentMessages."""
        if isinstance(message, AssistantMessage):
            converted = []
            for block in message.content:
                if isinstance(block, TextBlock):
                    converted.append(AgentMessage(type="text", text=block.text))
                elif isinstance(block, ToolUseBlock):
                    converted.append(
                        AgentMessage(type="tool_use", name=block.name, input=dict(block.input or {}))
                    )
            return converted
        if isinstance(message, ResultMessage):
            if message.is_error:
                logger.warning("Generation agent finished with error: %s", message.result)
            return [AgentMessage(type="result", result=message.result)]
        return []


# Singleton instance
_generation_agent: Optional[GenerationAgent] = None


def get_generation_agent() -> GenerationAgent:
    """Get singleton generation agent instance."""
    global _generation_agent
    if _generation_agent is None:
        _generation_agent = ClaudeCodeAgent()
    return _generation_agent
