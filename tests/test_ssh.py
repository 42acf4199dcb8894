from __future__ import annotations

from types import SimpleNamespace

import asyncssh
import pytest

from machinekit.exceptions import RemoteCommandError
from machinekit.transport.ssh import SSHTransport


class FakeRemoteFile:
    def __init__(self, sftp: FakeSFTP, path: str) -> None:
        self._sftp = sftp
        self._path = path

    async def __aenter__(self) -> FakeRemoteFile:
        return self

    async def __aexit__(self, *_: object) -> None:
        pass

    async def write(self, data: bytes) -> None:
        self._sftp.files[self._path] = data

    async def read(self) -> bytes:
        return self._sftp.files[self._path]


class FakeSFTP:
    def __init__(self) -> None:
        self.files: dict[str, bytes] = {"/etc/hostname": b"e2e-ABCD1234-0\n"}
        self.modes: dict[str, int] = {}

    async def __aenter__(self) -> FakeSFTP:
        return self

    async def __aexit__(self, *_: object) -> None:
        pass

    def open(self, path: str, mode: str) -> FakeRemoteFile:
        return FakeRemoteFile(self, path)

    async def chmod(self, path: str, mode: int) -> None:
        self.modes[path] = mode


class FakeConnection:
    def __init__(self, results: dict[str, tuple]) -> None:
        self.results = results
        self.commands: list[str] = []
        self.sftp = FakeSFTP()
        self.closed = False

    async def run(self, command, check=False, timeout=None, stderr=None, encoding="utf-8"):
        self.commands.append(command)
        stdout, err, status = self.results.get(command, ("", "", 0))
        if stderr is asyncssh.STDOUT:
            stdout, err = stdout + err, None
        if encoding is None:
            stdout = stdout.encode()
            err = err.encode() if err is not None else None
        return SimpleNamespace(stdout=stdout, stderr=err, exit_status=status)

    def start_sftp_client(self) -> FakeSFTP:
        return self.sftp

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        pass


@pytest.fixture
def connections(monkeypatch: pytest.MonkeyPatch):
    opened: list[tuple[FakeConnection, dict]] = []
    results: dict[str, tuple] = {}

    async def fake_connect(host, **kwargs):
        if host == "10.0.0.99":
            raise ConnectionRefusedError("Connection refused")
        conn = FakeConnection(results)
        opened.append((conn, {"host": host, **kwargs}))
        return conn

    monkeypatch.setattr(asyncssh, "connect", fake_connect)
    return SimpleNamespace(opened=opened, results=results)


@pytest.fixture
def transport() -> SSHTransport:
    return SSHTransport(host="10.0.0.1", user="docker", key_path="/e2e/id_rsa")


class TestRun:
    @pytest.mark.asyncio
    async def test_returns_trimmed_combined_output(self, transport, connections):
        connections.results["uptime"] = (" up 1 min\n", "warning: x\n", 0)
        assert await transport.run("uptime") == "up 1 min\nwarning: x"

    @pytest.mark.asyncio
    async def test_connects_without_host_key_checks(self, transport, connections):
        await transport.run("true")
        conn, kwargs = connections.opened[0]
        assert kwargs["known_hosts"] is None
        assert kwargs["username"] == "docker"
        assert kwargs["client_keys"] == ["/e2e/id_rsa"]
        assert kwargs["connect_timeout"] == 8.0
        assert conn.closed

    @pytest.mark.asyncio
    async def test_nonzero_exit_carries_output(self, transport, connections):
        connections.results["sudo false"] = ("", "sudo: no tty present\n", 1)

        with pytest.raises(RemoteCommandError) as exc_info:
            await transport.run("sudo false")

        err = exc_info.value
        assert err.exit_status == 1
        assert err.output == "sudo: no tty present"
        assert err.host == "10.0.0.1"

    @pytest.mark.asyncio
    async def test_connection_failure(self, connections):
        transport = SSHTransport(host="10.0.0.99", user="docker", key_path="/e2e/id_rsa")
        with pytest.raises(RemoteCommandError, match="connection failed") as exc_info:
            await transport.run("uptime")
        assert exc_info.value.exit_status is None

    @pytest.mark.asyncio
    async def test_run_bytes_returns_raw_stdout(self, transport, connections):
        connections.results["sudo cat /etc/hosts"] = ("127.0.0.1 localhost\n", "", 0)
        assert await transport.run_bytes("sudo cat /etc/hosts") == b"127.0.0.1 localhost\n"

    @pytest.mark.asyncio
    async def test_run_bytes_failure_uses_stderr(self, transport, connections):
        connections.results["sudo cat /nope"] = ("", "No such file or directory", 1)
        with pytest.raises(RemoteCommandError, match="No such file"):
            await transport.run_bytes("sudo cat /nope")


class TestConnectionReuse:
    @pytest.mark.asyncio
    async def test_one_connection_per_call_by_default(self, transport, connections):
        await transport.run("a")
        await transport.run("b")
        assert len(connections.opened) == 2
        assert not transport.is_connected

    @pytest.mark.asyncio
    async def test_context_manager_shares_connection(self, transport, connections):
        async with transport as t:
            assert t.is_connected
            await t.run("a")
            await t.run("b")
        assert len(connections.opened) == 1
        assert connections.opened[0][0].commands == ["a", "b"]
        assert connections.opened[0][0].closed
        assert not transport.is_connected


class TestFiles:
    @pytest.mark.asyncio
    async def test_write_bytes_sets_mode(self, transport, connections):
        async with transport as t:
            await t.write_bytes("/home/docker/key.pem", b"secret")
        sftp = connections.opened[0][0].sftp
        assert sftp.files["/home/docker/key.pem"] == b"secret"
        assert sftp.modes["/home/docker/key.pem"] == 0o600

    @pytest.mark.asyncio
    async def test_read_bytes(self, transport, connections):
        assert await transport.read_bytes("/etc/hostname") == b"e2e-ABCD1234-0\n"
