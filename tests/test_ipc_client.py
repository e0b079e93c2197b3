"""
Tests for the privileged daemon client.

A real asyncio Unix-socket server plays the daemon.
"""

import asyncio
import contextlib
import json
import logging
import shutil
import tempfile

import pytest

from core.errors import (
    ExecutionError,
    ProvisionerRejectedError,
    ProvisionerTimeoutError,
    ProvisionerTransportError,
)
from core.provisioning import ipc
from core.provisioning.ipc import ProvisionerIPCClient, watchdog_ms

TOKEN = "s3cr3t-daemon-token-value"


@pytest.fixture
def socket_path():
    # AF_UNIX paths are limited to ~108 bytes; pytest tmp_path can exceed that
    tmpdir = tempfile.mkdtemp(prefix="tops-", dir="/tmp")
    yield f"{tmpdir}/p.sock"
    shutil.rmtree(tmpdir, ignore_errors=True)


@contextlib.asynccontextmanager
async def fake_daemon(path, reply):
    """Serve one-line requests; reply(request) returns the raw bytes to send back (or None)."""
    received = []

    async def handler(reader, writer):
        line = await reader.readline()
        if line:
            received.append(json.loads(line))
        try:
            raw = reply(received[-1] if received else None)
            if raw is None:
                # Never answer; wait for the client to give up
                with contextlib.suppress(ConnectionError):
                    await reader.read()
            else:
                writer.write(raw)
                await writer.drain()
        finally:
            writer.close()

    server = await asyncio.start_unix_server(handler, path=path)
    try:
        yield received
    finally:
        server.close()
        await server.wait_closed()


def _json_reply(payload):
    return lambda request: (json.dumps(payload) + "\n").encode()


class TestWatchdog:
    @pytest.mark.parametrize("timeout_ms,expected", [(0, 2000), (10, 2012), (15000, 17000)])
    def test_watchdog_ms(self, timeout_ms, expected):
        assert watchdog_ms(timeout_ms) == expected


class TestRunCommand:
    @pytest.mark.asyncio
    async def test_success(self, socket_path):
        async with fake_daemon(socket_path, _json_reply({"ok": True, "code": 0, "stdout": "created"})) as received:
            client = ProvisionerIPCClient(socket_path, TOKEN)
            result = await client.run_command(
                "/usr/sbin/useradd", ["-m", "oc-acme"], timeout_ms=10000, step_key="create-linux-user",
            )

        assert result.ok
        assert result.code == 0
        assert result.stdout == "created"
        assert received == [{
            "token": TOKEN,
            "command": "/usr/sbin/useradd",
            "args": ["-m", "oc-acme"],
            "timeoutMs": 10000,
            "dryRun": False,
            "stepKey": "create-linux-user",
        }]

    @pytest.mark.asyncio
    async def test_ok_without_code(self, socket_path):
        async with fake_daemon(socket_path, _json_reply({"ok": True, "skipped": True})):
            result = await ProvisionerIPCClient(socket_path, TOKEN).run_command("/bin/true", [], 1000)
        assert result.code == 0
        assert result.skipped is True

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_a_result(self, socket_path):
        reply = _json_reply({"ok": False, "code": 9, "stderr": "userdel: user is logged in"})
        async with fake_daemon(socket_path, reply):
            result = await ProvisionerIPCClient(socket_path, TOKEN).run_command("/usr/sbin/userdel", ["oc-acme"], 1000)
        assert not result.ok
        assert result.code == 9
        assert result.stderr == "userdel: user is logged in"

    @pytest.mark.asyncio
    async def test_rejection(self, socket_path):
        async with fake_daemon(socket_path, _json_reply({"ok": False, "error": "command not allowed"})):
            client = ProvisionerIPCClient(socket_path, TOKEN)
            with pytest.raises(ProvisionerRejectedError, match="rejected step rm-all: command not allowed"):
                await client.run_command("/bin/rm", ["-rf", "/"], 1000, step_key="rm-all")

    @pytest.mark.asyncio
    async def test_zero_code_without_ok_is_rejection(self, socket_path):
        async with fake_daemon(socket_path, _json_reply({"ok": False, "code": 0, "stderr": "bad token"})):
            with pytest.raises(ProvisionerRejectedError, match="bad token"):
                await ProvisionerIPCClient(socket_path, TOKEN).run_command("/bin/true", [], 1000)

    @pytest.mark.asyncio
    async def test_timeout(self, socket_path, monkeypatch):
        monkeypatch.setattr(ipc, "MIN_WATCHDOG_MS", 100)
        monkeypatch.setattr(ipc, "WATCHDOG_GRACE_MS", 0)

        async with fake_daemon(socket_path, lambda request: None):
            client = ProvisionerIPCClient(socket_path, TOKEN)
            with pytest.raises(ProvisionerTimeoutError, match=r"timeout after 100ms \(step slow\)"):
                await client.run_command("/bin/sleep", ["60"], 50, step_key="slow")

    @pytest.mark.asyncio
    async def test_invalid_json(self, socket_path):
        async with fake_daemon(socket_path, lambda request: b"not json\n"):
            with pytest.raises(ProvisionerTransportError, match="Invalid provisioner response"):
                await ProvisionerIPCClient(socket_path, TOKEN).run_command("/bin/true", [], 1000)

    @pytest.mark.asyncio
    async def test_non_object_json(self, socket_path):
        async with fake_daemon(socket_path, lambda request: b"[1, 2]\n"):
            with pytest.raises(ProvisionerTransportError, match="expected a JSON object"):
                await ProvisionerIPCClient(socket_path, TOKEN).run_command("/bin/true", [], 1000)

    @pytest.mark.asyncio
    async def test_closed_without_response(self, socket_path):
        async with fake_daemon(socket_path, lambda request: b""):
            with pytest.raises(ProvisionerTransportError, match="without a response"):
                await ProvisionerIPCClient(socket_path, TOKEN).run_command("/bin/true", [], 1000)

    @pytest.mark.asyncio
    async def test_socket_missing(self, socket_path):
        with pytest.raises(ProvisionerTransportError, match="Provisioner socket error"):
            await ProvisionerIPCClient(socket_path, TOKEN).run_command("/bin/true", [], 1000)

    @pytest.mark.asyncio
    async def test_missing_token_never_connects(self, socket_path):
        async with fake_daemon(socket_path, _json_reply({"ok": True})) as received:
            with pytest.raises(ExecutionError, match="token is not configured"):
                await ProvisionerIPCClient(socket_path, "").run_command("/bin/true", [], 1000)
        assert received == []


class TestTokenHandling:
    @pytest.mark.asyncio
    async def test_token_never_logged(self, socket_path, caplog):
        caplog.set_level(logging.DEBUG, logger="core.provisioning.ipc")
        async with fake_daemon(socket_path, _json_reply({"ok": False, "error": "denied"})):
            with pytest.raises(ProvisionerRejectedError) as exc_info:
                await ProvisionerIPCClient(socket_path, TOKEN).run_command("/bin/true", [], 1000, step_key="s")

        assert caplog.records
        assert TOKEN not in caplog.text
        assert TOKEN not in str(exc_info.value)

    def test_repr_hides_token(self, socket_path):
        client = ProvisionerIPCClient(socket_path, TOKEN)
        assert TOKEN not in repr(client)
        assert TOKEN not in str(vars(client))

    def test_from_settings(self, monkeypatch):
        from config.settings import get_settings

        monkeypatch.setenv("PROVISION_SOCKET_PATH", "/run/test.sock")
        monkeypatch.setenv("PROVISION_DAEMON_TOKEN", TOKEN)
        get_settings.cache_clear()

        client = ProvisionerIPCClient.from_settings()
        assert client.socket_path == "/run/test.sock"
        assert client._token.get_secret_value() == TOKEN
