"""
Client for the privileged provisioner daemon.

The control plane never holds root. Root steps are sent, one command per
connection, to a trusted daemon listening on a local Unix socket:

    -> {"token", "command", "args", "timeoutMs", "dryRun", "stepKey"}\\n
    <- {"ok", "code", "stdout", "stderr", "skipped", "error"}\\n

A watchdog of max(2000, timeout_ms + 2000) ms covers connect and exchange;
when it fires the transport is aborted and ProvisionerTimeoutError raised.

The bearer token is never logged and never included in error messages.
"""

import asyncio
import json
import logging
from typing import Optional, Union

from pydantic import SecretStr

from core.errors import (
    ExecutionError,
    ProvisionerRejectedError,
    ProvisionerTimeoutError,
    ProvisionerTransportError,
)
from core.provisioning.models import CommandResult

logger = logging.getLogger(__name__)

MIN_WATCHDOG_MS = 2000
WATCHDOG_GRACE_MS = 2000
MAX_RESPONSE_BYTES = 4 * 1024 * 1024


def watchdog_ms(timeout_ms: int) -> int:
    return max(MIN_WATCHDOG_MS, int(timeout_ms) + WATCHDOG_GRACE_MS)


class ProvisionerIPCClient:
    """
    One request/response exchange per Unix-socket connection.

    Usage:
        client = ProvisionerIPCClient("/run/tenantops-provisioner.sock", token)
        result = await client.run_command("/usr/sbin/useradd", ["-m", "oc-acme"], timeout_ms=10000)
    """

    def __init__(
        self,
        socket_path: str,
        token: Union[str, SecretStr, None],
        max_response_bytes: int = MAX_RESPONSE_BYTES,
    ):
        self.socket_path = socket_path
        if isinstance(token, SecretStr):
            token = token.get_secret_value()
        self._token = SecretStr(token or "")
        self._max_response_bytes = max_response_bytes

    @classmethod
    def from_settings(cls, settings=None) -> "ProvisionerIPCClient":
        if settings is None:
            from config.settings import get_settings
            settings = get_settings()
        prov = settings.provisioning
        return cls(prov.socket_path, prov.daemon_token)

    def __repr__(self) -> str:
        return f"ProvisionerIPCClient(socket_path={self.socket_path!r})"

    async def run_command(
        self,
        command: str,
        args: list[str],
        timeout_ms: int,
        dry_run: bool = False,
        step_key: Optional[str] = None,
    ) -> CommandResult:
        """
        Ask the daemon to run one command.

        Returns:
            CommandResult; a non-zero code means the command itself failed.

        Raises:
            ExecutionError: no token configured (nothing is sent)
            ProvisionerRejectedError: daemon refused the command
            ProvisionerTimeoutError: watchdog expired
            ProvisionerTransportError: socket error or unparsable response
        """
        token = self._token.get_secret_value()
        if not token:
            raise ExecutionError("Provisioner daemon token is not configured (PROVISION_DAEMON_TOKEN)")

        payload = {
            "token": token,
            "command": command,
            "args": list(args),
            "timeoutMs": int(timeout_ms),
            "dryRun": bool(dry_run),
            "stepKey": step_key,
        }
        limit_ms = watchdog_ms(timeout_ms)
        logger.debug(
            f"Provisioner request step={step_key} command={command} args={args} "
            f"dry_run={dry_run} watchdog={limit_ms}ms"
        )

        try:
            response = await asyncio.wait_for(self._exchange(payload), timeout=limit_ms / 1000)
        except asyncio.TimeoutError:
            logger.error(f"Provisioner watchdog expired after {limit_ms}ms (step {step_key})")
            raise ProvisionerTimeoutError(
                f"Provisioner socket timeout after {limit_ms}ms (step {step_key})"
            ) from None

        return self._to_result(response, step_key)

    async def _exchange(self, payload: dict) -> dict:
        writer = None
        try:
            reader, writer = await asyncio.open_unix_connection(
                self.socket_path, limit=self._max_response_bytes,
            )
            writer.write((json.dumps(payload) + "\n").encode("utf-8"))
            await writer.drain()

            line = await reader.readline()
        except (OSError, ValueError) as e:
            # ValueError: response line exceeded the stream limit
            raise ProvisionerTransportError(f"Provisioner socket error: {e}") from None
        finally:
            if writer is not None:
                # abort() also covers the watchdog cancelling us mid-read
                writer.transport.abort()

        if not line.endswith(b"\n"):
            raise ProvisionerTransportError("Provisioner closed the connection without a response")

        try:
            response = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ProvisionerTransportError(f"Invalid provisioner response: {e}") from None
        if not isinstance(response, dict):
            raise ProvisionerTransportError("Invalid provisioner response: expected a JSON object")
        return response

    @staticmethod
    def _to_result(response: dict, step_key: Optional[str]) -> CommandResult:
        code = response.get("code")
        has_code = isinstance(code, int) and not isinstance(code, bool)
        stdout = str(response.get("stdout") or "")
        stderr = str(response.get("stderr") or "")

        if response.get("ok"):
            return CommandResult(
                code=code if has_code else 0,
                stdout=stdout,
                stderr=stderr,
                skipped=bool(response.get("skipped")),
            )

        if has_code and code != 0:
            # The daemon ran the command and it exited non-zero
            return CommandResult(code=code, stdout=stdout, stderr=stderr)

        detail = " | ".join(str(p) for p in (response.get("error"), stderr, stdout) if p)
        logger.warning(f"Provisioner rejected step {step_key}: {detail or 'no reason given'}")
        raise ProvisionerRejectedError(f"Provisioner rejected step {step_key}: {detail or 'no reason given'}")
