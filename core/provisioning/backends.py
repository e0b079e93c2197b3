"""
Step execution backends.

The executor is handed exactly one StepBackend, chosen once from the
ExecutionPolicy:

- DaemonBackend: root steps go to the privileged daemon over IPC,
  non-root steps run locally as the current user
- SudoBackend:   root steps run under `sudo -n` (single host / dev)
- DirectBackend: every step runs as the current user

Backends are only called for live runs; dry-run never dispatches.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from core.errors import ExecutionError
from core.provisioning.ipc import ProvisionerIPCClient
from core.provisioning.models import CommandResult
from core.provisioning.policy import ExecutionMode, ExecutionPolicy
from core.provisioning.schemas import ProvisionStep

logger = logging.getLogger(__name__)

EXIT_TIMEOUT = 124
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127


async def run_local(argv: list[str], timeout_ms: int) -> CommandResult:
    """
    Run argv without a shell, capturing output.

    A timeout kills the process and yields exit code 124; a missing or
    non-executable binary yields 127 / 126, mirroring the shell.
    """
    if not argv:
        raise ExecutionError("Empty command")

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        return CommandResult(code=EXIT_NOT_FOUND, stderr=f"{argv[0]}: command not found")
    except PermissionError:
        return CommandResult(code=EXIT_NOT_EXECUTABLE, stderr=f"{argv[0]}: permission denied")

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        proc.kill()
        stdout, stderr = await proc.communicate()
        logger.warning(f"Command timed out after {timeout_ms}ms: {argv[0]}")
        return CommandResult(
            code=EXIT_TIMEOUT,
            stdout=stdout.decode("utf-8", "replace"),
            stderr=stderr.decode("utf-8", "replace") + f"\nTimed out after {timeout_ms}ms",
        )

    return CommandResult(
        code=proc.returncode if proc.returncode is not None else 1,
        stdout=stdout.decode("utf-8", "replace"),
        stderr=stderr.decode("utf-8", "replace"),
    )


class StepBackend(ABC):
    """Dispatches one plan step for a live run."""

    name: str = "abstract"

    @abstractmethod
    async def run(self, step: ProvisionStep) -> CommandResult:
        ...


class DirectBackend(StepBackend):
    """Run every step as the current user."""

    name = "direct"

    async def run(self, step: ProvisionStep) -> CommandResult:
        return await run_local(list(step.command), step.timeout_ms)


class SudoBackend(StepBackend):
    """Wrap root steps in non-interactive sudo."""

    name = "sudo"

    def __init__(self, sudo_path: str = "sudo"):
        self.sudo_path = sudo_path

    async def run(self, step: ProvisionStep) -> CommandResult:
        argv = list(step.command)
        if step.requires_root:
            argv = [self.sudo_path, "-n", *argv]
        return await run_local(argv, step.timeout_ms)


class DaemonBackend(StepBackend):
    """Delegate root steps to the privileged daemon."""

    name = "daemon"

    def __init__(self, client: ProvisionerIPCClient):
        self.client = client

    async def run(self, step: ProvisionStep) -> CommandResult:
        if not step.requires_root:
            return await run_local(list(step.command), step.timeout_ms)
        return await self.client.run_command(
            command=step.executable,
            args=step.args,
            timeout_ms=step.timeout_ms,
            dry_run=False,
            step_key=step.key,
        )


def build_step_backend(policy: ExecutionPolicy, settings=None, client: Optional[ProvisionerIPCClient] = None) -> StepBackend:
    """Select the backend for the configured execution mode."""
    if policy.mode == ExecutionMode.DAEMON:
        return DaemonBackend(client or ProvisionerIPCClient.from_settings(settings))
    if policy.mode == ExecutionMode.SUDO:
        return SudoBackend()
    return DirectBackend()
