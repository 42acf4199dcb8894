from __future__ import annotations

import asyncio
import ssl

from loguru import logger

from machinekit.engine import load_tls_context, verify_engine
from machinekit.exceptions import ConfigurationError, RemoteCommandError
from machinekit.machine import MachineDriver, MachineState
from machinekit.providers.virsh.config import DISK_DIR_ENV, Virsh
from machinekit.providers.virsh.machine import VirshMachine

log = logger.bind(driver="virsh")


class VirshDriver(MachineDriver[VirshMachine]):
    """Creates test machines as local KVM domains through virsh."""

    def __init__(self, config: Virsh) -> None:
        self._config = config
        self._tls: ssl.SSLContext | None = None
        # Serializes disk/domain mutation across batches sharing this driver
        self._hypervisor_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "virsh"

    @property
    def name_prefix(self) -> str:
        return self._config.name_prefix

    @property
    def config(self) -> Virsh:
        return self._config

    async def validate(self) -> None:
        config = self._config
        if config.disk_dir is None:
            raise ConfigurationError(
                f"To use the virsh driver, set {DISK_DIR_ENV} to point to "
                "where your base OS disks and ssh key live"
            )
        if not config.base_image.is_file():
            raise ConfigurationError(f"Unable to locate base image {config.base_image}")
        if not config.ssh_key_path.is_file():
            raise ConfigurationError(f"Unable to locate ssh key {config.ssh_key_path}")
        self._tls = load_tls_context(config.tls_cert, config.tls_key, config.tls_ca)
        log.debug(
            "Using base image {image} ({cpus} vCPU, {memory} MB)",
            image=config.base_image, cpus=config.cpu_count, memory=config.memory_mb,
        )

    def new_machine(self, name: str) -> VirshMachine:
        return VirshMachine(name, self._config, tls_context=self._tls)

    async def provision(self, machine: VirshMachine) -> None:
        async with self._hypervisor_lock:
            await machine.clone_disk()
            await machine.define()
        await machine.start()
        log.info("Machine {name} started at {ip}", name=machine.name, ip=machine.ip)

    async def verify(self, machine: VirshMachine) -> None:
        try:
            await machine.set_hostname()
        except RemoteCommandError as exc:
            log.warning("Failed to set hostname to {name}: {err}", name=machine.name, err=exc)

        await verify_engine(
            machine,
            timeout=self._config.engine_timeout,
            interval=self._config.engine_poll_interval,
        )
        machine.state = MachineState.ENGINE_VERIFIED
