"""Sandboxed agent runs.

This module manages remote sandboxes for the agent:
- Sandbox reuse per pull request, one-shot sandboxes otherwise
- Repository clone and checkout inside the sandbox
- Agent runtime install, driver invocation and reply extraction
"""

from src.smolpaws.sandbox.cache import SandboxCache
from src.smolpaws.sandbox.models import AgentRunResult, ExecResult, LlmConfig, RepoContext, RunMode
from src.smolpaws.sandbox.orchestrator import SandboxOrchestrator
from src.smolpaws.sandbox.provider import (
    Sandbox,
    SandboxCommandError,
    SandboxError,
    SandboxProvider,
)

__all__ = [
    "AgentRunResult",
    "ExecResult",
    "LlmConfig",
    "RepoContext",
    "RunMode",
    "Sandbox",
    "SandboxCache",
    "SandboxCommandError",
    "SandboxError",
    "SandboxOrchestrator",
    "SandboxProvider",
]
