from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from machinekit.constants import (
    DEFAULT_ENGINE_POLL_INTERVAL,
    DEFAULT_ENGINE_PORT,
    DEFAULT_ENGINE_TIMEOUT,
    DEFAULT_IP_POLL_INTERVAL,
    DEFAULT_KILL_POLL_INTERVAL,
    DEFAULT_KILL_TIMEOUT,
    DEFAULT_SSH_POLL_INTERVAL,
    DEFAULT_START_TIMEOUT,
)

if TYPE_CHECKING:
    from machinekit.providers.virsh.provider import VirshDriver

_DEFAULT_OS = "ubuntu16.04"

DISK_DIR_ENV = "VIRSH_DISK_DIR"
OS_ENV = "VIRSH_OS"
PRESERVE_ENV = "PRESERVE_TEST_MACHINE"


@dataclass(frozen=True, slots=True)
class Virsh:
    """libvirt driver configuration.

    Runs test machines as KVM domains managed through ``virsh``, each
    booted from a copy-on-write clone of a shared base image.

    ``disk_dir`` holds everything the driver needs from the host:

    - ``<os_variant>.qcow2``: base image
    - ``id_rsa``: SSH key accepted by ``ssh_user`` on the image
    - ``cert.pem``, ``key.pem``, ``ca.pem``: engine TLS material

    Example:
        >>> config = Virsh.from_env(memory_mb=4096)
        >>> machines = await get_test_machines(config, 3)
    """

    disk_dir: Path | None = None
    os_variant: str = _DEFAULT_OS
    ssh_user: str = "docker"
    cpu_count: int = 1
    memory_mb: int = 2048
    network: str = "default"
    name_prefix: str = "e2e"
    engine_port: int = DEFAULT_ENGINE_PORT
    preserve_machines: bool = False

    start_timeout: float = DEFAULT_START_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    engine_timeout: float = DEFAULT_ENGINE_TIMEOUT
    ip_poll_interval: float = DEFAULT_IP_POLL_INTERVAL
    ssh_poll_interval: float = DEFAULT_SSH_POLL_INTERVAL
    kill_poll_interval: float = DEFAULT_KILL_POLL_INTERVAL
    engine_poll_interval: float = DEFAULT_ENGINE_POLL_INTERVAL

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> Virsh:
        """Read driver settings from the environment once.

        Explicit keyword overrides win over environment values.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        if disk_dir := env.get(DISK_DIR_ENV):
            values["disk_dir"] = Path(disk_dir)
        if os_variant := env.get(OS_ENV):
            values["os_variant"] = os_variant
        if env.get(PRESERVE_ENV):
            values["preserve_machines"] = True
        values.update(overrides)
        if isinstance(values.get("disk_dir"), str):
            values["disk_dir"] = Path(values["disk_dir"])
        return cls(**values)

    def _in_disk_dir(self, name: str) -> Path:
        if self.disk_dir is None:
            raise ValueError(f"disk_dir is not set ({DISK_DIR_ENV})")
        return self.disk_dir / name

    @property
    def base_image(self) -> Path:
        return self._in_disk_dir(f"{self.os_variant}.qcow2")

    @property
    def ssh_key_path(self) -> Path:
        return self._in_disk_dir("id_rsa")

    @property
    def tls_cert(self) -> Path:
        return self._in_disk_dir("cert.pem")

    @property
    def tls_key(self) -> Path:
        return self._in_disk_dir("key.pem")

    @property
    def tls_ca(self) -> Path:
        return self._in_disk_dir("ca.pem")

    async def create_driver(self) -> VirshDriver:
        from machinekit.providers.virsh.provider import VirshDriver
        return VirshDriver(self)
