"""Sandbox provider interface and errors.

A provider creates remote sandboxes; a sandbox executes shell commands and
can be deleted. The Daytona adapter in ``daytona.py`` is the production
implementation, tests use in-memory fakes.
"""

import asyncio
import logging
from typing import Optional, Protocol, runtime_checkable

from src.smolpaws.sandbox.models import ExecResult
from src.smolpaws.sandbox.shell import wrap_bash

logger = logging.getLogger(__name__)


class SandboxError(Exception):
    """Raised when a sandbox cannot be created or used."""

    pass


class SandboxCommandError(SandboxError):
    """Raised when a sandbox command exits non-zero or exceeds its deadline.

    The command text is never part of the message since it may embed an
    installation token.

    Attributes:
        command_name: Short label of the failed step (e.g. "git clone").
        exit_code: Exit code, or None on timeout.
        output: Captured command output.
    """

    def __init__(
        self,
        command_name: str,
        exit_code: Optional[int],
        output: str = "",
    ):
        self.command_name = command_name
        self.exit_code = exit_code
        self.output = output
        if exit_code is None:
            message = f"Sandbox command timed out: {command_name}"
        else:
            message = f"Sandbox command failed: {command_name} (exit {exit_code})"
        super().__init__(message)


@runtime_checkable
class Sandbox(Protocol):
    """A running remote sandbox."""

    async def exec(self, command: str, timeout: Optional[int] = None) -> ExecResult:
        """Run a shell command line and return its exit code and output."""
        ...

    async def delete(self) -> None:
        ...


@runtime_checkable
class SandboxProvider(Protocol):
    """Creates sandboxes."""

    async def create(self, auto_stop_minutes: int) -> Sandbox:
        """Create a sandbox that stops itself after the given idle minutes."""
        ...


async def run_shell(
    sandbox: Sandbox,
    command: str,
    command_name: str,
    timeout_seconds: int,
) -> str:
    """Run a command in a bash login shell inside the sandbox.

    Args:
        sandbox: Target sandbox.
        command: Shell command line; every interpolated value must already
            be quoted.
        command_name: Label used in logs and errors instead of the command.
        timeout_seconds: Deadline for the whole call.

    Returns:
        The command output.

    Raises:
        SandboxCommandError: On a non-zero exit or when the deadline passes.
    """
    try:
        result = await asyncio.wait_for(
            sandbox.exec(wrap_bash(command), timeout=timeout_seconds),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError as exc:
        logger.error(
            "Sandbox command timed out",
            extra={"command_name": command_name, "timeout": timeout_seconds},
        )
        raise SandboxCommandError(command_name, None) from exc

    if result.exit_code != 0:
        logger.error(
            "Sandbox command failed",
            extra={"command_name": command_name, "exit_code": result.exit_code},
        )
        raise SandboxCommandError(command_name, result.exit_code, result.output)

    return result.output
