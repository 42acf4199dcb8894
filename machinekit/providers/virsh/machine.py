from __future__ import annotations

import asyncio
import shlex
import ssl
from contextlib import suppress
from pathlib import Path
from typing import BinaryIO

import aiodocker
from loguru import logger

from machinekit.constants import DEFAULT_ENGINE_REQUEST_TIMEOUT
from machinekit.engine import open_engine
from machinekit.exceptions import (
    ConvergeTimeoutError,
    HypervisorCommandError,
    MachineTimeoutError,
    ProvisioningError,
)
from machinekit.machine import MachineState
from machinekit.providers.virsh import cli
from machinekit.providers.virsh.config import Virsh
from machinekit.providers.virsh.domain import descriptor_file, render_domain_xml
from machinekit.transport.ssh import SSHTransport
from machinekit.wait import await_converge

log = logger.bind(driver="virsh")

_NEVER_DEFINED = frozenset({MachineState.CREATED, MachineState.DISK_CLONED})


class VirshMachine:
    """A KVM domain backed by a linked clone of the shared base image."""

    def __init__(
        self,
        name: str,
        config: Virsh,
        tls_context: ssl.SSLContext | None = None,
    ) -> None:
        self._name = name
        self._config = config
        self._tls = tls_context
        self.base_disk: Path = config.base_image
        self.disk_path: Path | None = None
        self.cpu_count = config.cpu_count
        self.memory_mb = config.memory_mb
        self.state = MachineState.CREATED
        # Cached once discovered, stable afterwards
        self._ip = ""
        self._internal_ip = ""

    def __repr__(self) -> str:
        return f"VirshMachine(name={self._name!r}, ip={self._ip!r}, state={self.state.value})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def ip(self) -> str:
        return self._ip

    @property
    def internal_ip(self) -> str:
        return self._internal_ip

    @property
    def docker_host(self) -> str:
        return f"tcp://{self._ip}:{self._config.engine_port}" if self._ip else ""

    @property
    def transport(self) -> SSHTransport:
        if not self._ip:
            raise ProvisioningError(f"{self._name} has no address yet")
        return SSHTransport(
            host=self._ip,
            user=self._config.ssh_user,
            key_path=str(self._config.ssh_key_path),
        )

    def engine_api(self, timeout: float | None = None) -> aiodocker.Docker:
        return open_engine(
            f"https://{self._ip}:{self._config.engine_port}",
            self._tls,
            timeout or DEFAULT_ENGINE_REQUEST_TIMEOUT,
        )

    def connection_env(self) -> str:
        """Shell exports pointing a local docker CLI at this machine."""
        return "\n".join([
            f"export DOCKER_HOST={self.docker_host}",
            "export DOCKER_TLS_VERIFY=1",
            f"export DOCKER_CERT_PATH={self._config.disk_dir}",
        ])

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    async def clone_disk(self) -> None:
        clone = self.base_disk.parent / f"{self._name}.qcow2"
        if clone.exists():
            raise ProvisioningError(
                f"Linked clone {clone} of base disk {self.base_disk} already exists"
            )
        log.debug("Creating linked clone {clone} with base disk {base}", clone=clone, base=self.base_disk)
        # Removal deletes this path even if qemu-img fails midway
        self.disk_path = clone
        out = await cli.run(
            "qemu-img", "create", "-f", "qcow2", "-o", "backing_fmt=qcow2",
            "-b", str(self.base_disk), str(clone),
        )
        log.debug(out)
        self.state = MachineState.DISK_CLONED

    async def define(self) -> None:
        if self.disk_path is None or self.state is not MachineState.DISK_CLONED:
            raise ProvisioningError(f"{self._name} has no disk, clone it first")
        log.debug("Defining domain {name}", name=self._name)
        xml = render_domain_xml(
            name=self._name,
            memory_mb=self.memory_mb,
            cpu_count=self.cpu_count,
            disk_path=self.disk_path,
            network=self._config.network,
        )
        with descriptor_file(self.disk_path.parent / f"{self._name}.xml", xml) as path:
            await cli.run("virsh", "define", str(path))
        self.state = MachineState.DEFINED

    # -------------------------------------------------------------------------
    # Power
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Power on, then wait for an address and for SSH to answer.

        Both waits share ``start_timeout``. On expiry the domain is left
        running; the caller decides whether to remove it.
        """
        await cli.run("virsh", "start", self._name)
        self.state = MachineState.STARTED

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.start_timeout

        def remaining() -> float:
            return max(0.0, deadline - loop.time())

        try:
            log.debug("Waiting for IP to appear for {name}", name=self._name)
            await await_converge(
                self._discover_ip,
                interval=self._config.ip_poll_interval,
                timeout=remaining(),
                description=f"address of {self._name}",
            )
            self.state = MachineState.NETWORK_READY
            log.debug("Machine {name} has IP {ip}", name=self._name, ip=self._ip)

            await await_converge(
                lambda: self._probe_ssh(remaining()),
                interval=self._config.ssh_poll_interval,
                timeout=remaining(),
                description=f"ssh on {self._name}",
            )
            self.state = MachineState.SSH_READY
        except ConvergeTimeoutError as exc:
            raise MachineTimeoutError(self._name, "start", str(exc.__cause__ or exc)) from exc

    async def _discover_ip(self) -> None:
        out = await cli.run("virsh", "-q", "domifaddr", self._name)
        ip = cli.parse_domifaddr_ipv4(out)
        if ip is None:
            raise RuntimeError(f"{self._name} has no IPv4 address yet")
        self._ip = ip
        self._internal_ip = ip

    async def _probe_ssh(self, timeout: float) -> None:
        uptime = await self.ssh("uptime", timeout=timeout)
        log.debug("{name} has been up {uptime}", name=self._name, uptime=uptime)

    async def stop(self) -> None:
        """Gracefully shut down the machine."""
        try:
            await cli.run("virsh", "shutdown", self._name)
        except HypervisorCommandError as exc:
            log.error(exc.output)
            raise
        self.state = MachineState.STOPPED

    async def kill(self) -> None:
        """Forcefully stop the domain and wait until it is gone.

        Likely to corrupt the disk; do not use on a machine you intend to
        start again.
        """
        try:
            await cli.run("virsh", "destroy", self._name)
        except HypervisorCommandError as exc:
            log.error(exc.output)
            raise

        # destroy returns before the domain is actually down
        try:
            await await_converge(
                self._confirm_stopped,
                interval=self._config.kill_poll_interval,
                timeout=self._config.kill_timeout,
                description=f"{self._name} to stop",
            )
        except ConvergeTimeoutError as exc:
            raise MachineTimeoutError(self._name, "stop", str(exc.__cause__ or exc)) from exc
        self.state = MachineState.KILLED

    async def _confirm_stopped(self) -> None:
        if await self.is_running():
            raise RuntimeError(f"{self._name} is still running")

    async def is_running(self) -> bool:
        if not self._name:
            return False
        try:
            out = await cli.run("virsh", "-q", "list")
        except HypervisorCommandError as exc:
            log.info("Failed to get list - assuming no VMs: {err}", err=exc)
            return False
        return self._name in cli.parse_running_domains(out)

    # -------------------------------------------------------------------------
    # Removal
    # -------------------------------------------------------------------------

    def _skip_removal(self) -> bool:
        if self._config.preserve_machines:
            log.info("Skipping removal of machine {name} with preserve_machines set", name=self._name)
            return True
        if not self._name:
            log.warning("Machine already removed, nothing to do")
            return True
        return False

    async def remove(self) -> None:
        """Destroy the domain, unregister it and delete its disk."""
        if self._skip_removal():
            return
        if await self.is_running():
            with suppress(HypervisorCommandError, MachineTimeoutError):
                await self.kill()

        try:
            if self.state in _NEVER_DEFINED:
                log.debug("Domain {name} was never defined, deleting its disk only", name=self._name)
            else:
                args = ["undefine", self._name]
                if self.disk_path is not None:
                    args = ["undefine", "--storage", str(self.disk_path), self._name]
                try:
                    await cli.run("virsh", *args)
                except HypervisorCommandError as exc:
                    log.error(exc.output)
                    raise
        finally:
            # If the disk still exists, nuke it, but ignore errors
            if self.disk_path is not None:
                with suppress(OSError):
                    self.disk_path.unlink(missing_ok=True)

        log.info("Machine {name} deleted", name=self._name)
        self._tombstone()

    async def remove_preserve_disk(self) -> None:
        """Unregister the domain but keep its disk for inspection."""
        if self._skip_removal():
            return
        if await self.is_running():
            await self.stop()

        if self.state not in _NEVER_DEFINED:
            try:
                await cli.run("virsh", "undefine", self._name)
            except HypervisorCommandError as exc:
                log.error(exc.output)
                raise

        log.info("Preserving {disk}", disk=self.disk_path)
        log.info("Machine {name} deleted", name=self._name)
        self._tombstone()

    def _tombstone(self) -> None:
        self._name = ""
        self.state = MachineState.REMOVED

    # -------------------------------------------------------------------------
    # Remote access
    # -------------------------------------------------------------------------

    async def ssh(self, command: str, timeout: float | None = None) -> str:
        """Run a command over SSH and return its combined output."""
        return await self.transport.run(command, timeout=timeout)

    async def set_hostname(self) -> None:
        name = shlex.quote(self._name)
        await self.ssh(f"sudo hostname {name}; sudo sed -e 's/.*/{self._name}/' -i /etc/hostname")

    async def write_file(self, path: str, data: bytes | BinaryIO) -> None:
        """Write data to a file on the machine with 0600 perms."""
        content = data if isinstance(data, bytes) else data.read()
        await self.transport.write_bytes(path, content, mode=0o600)

    async def cat_host_file(self, path: str) -> bytes:
        return await self.transport.run_bytes(f"sudo cat {shlex.quote(path)}")

    async def tar_host_dir(self, path: str) -> bytes:
        """Contents of a directory on the machine as a tar archive."""
        return await self.transport.run_bytes(f"sudo tar -C {shlex.quote(path)} -cf - .")
