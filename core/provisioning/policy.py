"""Execution policy handed to the executor at construction time."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ExecutionMode(str, Enum):
    DAEMON = "daemon"   # root steps go to the privileged daemon
    SUDO = "sudo"       # root steps run under `sudo -n`
    DIRECT = "direct"   # everything runs as the current user


@dataclass(frozen=True)
class ExecutionPolicy:
    """
    How steps are dispatched and whether live runs are allowed at all.

    execution_enabled is the global kill switch: when False, any non dry-run
    job aborts before its first command is sent.
    """
    mode: ExecutionMode = ExecutionMode.DAEMON
    execution_enabled: bool = False

    @classmethod
    def from_settings(cls, settings: Optional[object] = None) -> "ExecutionPolicy":
        if settings is None:
            from config.settings import get_settings
            settings = get_settings()
        prov = settings.provisioning
        return cls(mode=ExecutionMode(prov.mode), execution_enabled=bool(prov.exec_enabled))
