"""
Services layer for sandbox generation sessions

session_orchestrator is imported directly by callers since it depends on
the ORM and must not load before Django is configured.
"""
from .event_codec import MarkerEmitter, decode, encode
from .line_demux import LineDemultiplexer
from .repair_loop import BuildRepairLoop, CorrectiveRepair, next_state
from .generation_agent import GenerationAgent, ClaudeCodeAgent, get_generation_agent
from .sandbox_runtime import (
    LocalSandboxProvider,
    SandboxRuntime,
    get_sandbox_provider,
)
from .stream_forwarder import SSEQueueSink, StreamForwarder

__all__ = [
    'MarkerEmitter',
    'decode',
    'encode',
    'LineDemultiplexer',
    'BuildRepairLoop',
    'CorrectiveRepair',
    'next_state',
    'GenerationAgent',
    'ClaudeCodeAgent',
    'get_generation_agent',
    'LocalSandboxProvider',
    'SandboxRuntime',
    'get_sandbox_provider',
    'SSEQueueSink',
    'StreamForwarder',
]
