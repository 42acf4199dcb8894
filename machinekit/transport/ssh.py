"""Shell and file access to test machines over asyncssh.

Command output is returned with stderr folded into stdout, which is what
readiness probes and failure messages want to show.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field

import asyncssh
from loguru import logger

from machinekit.constants import DEFAULT_SSH_CONNECT_TIMEOUT, DEFAULT_SSH_PORT
from machinekit.exceptions import RemoteCommandError


@dataclass
class SSHTransport:
    """SSH access to one machine, bound to its address, user and key.

    Host keys are never verified: test machines are short-lived and their
    addresses are recycled between batches. There is no retry here; callers
    that expect transient failures poll with await_converge.

    Each call opens and closes its own connection unless the transport is
    used as an async context manager, in which case one connection is
    shared by every call inside the block.

    Example:
        >>> transport = SSHTransport(
        ...     host="192.168.122.10",
        ...     user="docker",
        ...     key_path="/e2e/id_rsa",
        ... )
        >>> out = await transport.run("uptime")

    As context manager:
        >>> async with SSHTransport(...) as t:
        ...     await t.run("hostname")
        ...     await t.write_bytes("/tmp/x", b"data")
    """

    host: str
    user: str
    key_path: str
    port: int = DEFAULT_SSH_PORT
    connect_timeout: float = DEFAULT_SSH_CONNECT_TIMEOUT
    command_timeout: float | None = None

    _conn: asyncssh.SSHClientConnection | None = field(default=None, repr=False)

    async def _open(self) -> asyncssh.SSHClientConnection:
        try:
            return await asyncssh.connect(
                self.host,
                port=self.port,
                username=self.user,
                client_keys=[self.key_path],
                known_hosts=None,
                connect_timeout=self.connect_timeout,
            )
        except (OSError, asyncssh.Error, asyncio.TimeoutError) as exc:
            raise RemoteCommandError(self.host, "<connect>", str(exc)) from exc

    async def connect(self) -> None:
        """Establish a connection shared by subsequent calls."""
        if self._conn is None:
            self._conn = await self._open()

    async def close(self) -> None:
        """Close the shared connection."""
        if self._conn is not None:
            self._conn.close()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._conn.wait_closed(), timeout=5.0)
            self._conn = None

    async def __aenter__(self) -> SSHTransport:
        await self.connect()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    @property
    def is_connected(self) -> bool:
        """Whether a shared connection is established."""
        return self._conn is not None

    @contextlib.asynccontextmanager
    async def _connection(self):
        if self._conn is not None:
            yield self._conn
            return
        conn = await self._open()
        try:
            yield conn
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # Command Execution
    # -------------------------------------------------------------------------

    async def run(self, command: str, timeout: float | None = None) -> str:
        """Execute command and return its combined stdout/stderr, trimmed.

        Raises:
            RemoteCommandError: If the connection fails or the command exits
                with a non-zero status. The output is attached.
        """
        logger.debug("SSH {user}@{host}: {command}", user=self.user, host=self.host, command=command)
        async with self._connection() as conn:
            try:
                result = await conn.run(
                    command,
                    check=False,
                    timeout=self.command_timeout if timeout is None else timeout,
                    stderr=asyncssh.STDOUT,
                )
            except (OSError, asyncssh.Error) as exc:
                raise RemoteCommandError(self.host, command, str(exc)) from exc

        output = str(result.stdout or "").strip()
        code = result.exit_status
        if code != 0:
            # None means the remote process died on a signal
            raise RemoteCommandError(self.host, command, output, exit_status=-1 if code is None else code)
        return output

    async def run_bytes(self, command: str, timeout: float | None = None) -> bytes:
        """Execute command and return raw stdout bytes (e.g. an archive stream)."""
        async with self._connection() as conn:
            try:
                result = await conn.run(
                    command,
                    check=False,
                    timeout=self.command_timeout if timeout is None else timeout,
                    encoding=None,
                )
            except (OSError, asyncssh.Error) as exc:
                raise RemoteCommandError(self.host, command, str(exc)) from exc

        if result.exit_status != 0:
            stderr = (result.stderr or b"").decode(errors="replace").strip()
            raise RemoteCommandError(self.host, command, stderr, exit_status=result.exit_status or -1)
        return result.stdout or b""

    # -------------------------------------------------------------------------
    # File Transfer
    # -------------------------------------------------------------------------

    async def read_bytes(self, remote: str) -> bytes:
        """Read a remote file using SFTP."""
        async with self._connection() as conn, conn.start_sftp_client() as sftp, sftp.open(remote, "rb") as f:
            return await f.read()

    async def write_bytes(self, remote: str, content: bytes, mode: int = 0o600) -> None:
        """Write binary content to a remote file using SFTP, then set its mode."""
        logger.debug("SSH {host}: writing {size} bytes to {remote}", host=self.host, size=len(content), remote=remote)
        async with self._connection() as conn, conn.start_sftp_client() as sftp:
            async with sftp.open(remote, "wb") as f:
                await f.write(content)
            await sftp.chmod(remote, mode)
