"""Machine and driver interfaces.

A Machine is the uniform capability set test code works against, whatever
backs it. A MachineDriver knows how to bring machines of one kind into
existence; the orchestrator only ever talks to these two protocols.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, BinaryIO, Protocol, runtime_checkable

if TYPE_CHECKING:
    import aiodocker


class MachineState(str, Enum):
    """Lifecycle of a test machine."""

    CREATED = "created"
    DISK_CLONED = "disk_cloned"
    DEFINED = "defined"
    STARTED = "started"
    NETWORK_READY = "network_ready"
    SSH_READY = "ssh_ready"
    ENGINE_VERIFIED = "engine_verified"
    STOPPED = "stopped"
    KILLED = "killed"
    REMOVED = "removed"


@runtime_checkable
class Machine(Protocol):
    """Capabilities every test machine exposes."""

    @property
    def name(self) -> str:
        """Unique name within the batch. Empty once the machine is removed."""
        ...

    @property
    def docker_host(self) -> str:
        """Engine endpoint, e.g. ``tcp://10.0.0.2:2376``."""
        ...

    @property
    def ip(self) -> str: ...

    @property
    def internal_ip(self) -> str:
        """Address other machines use to reach this one (swarm advertise)."""
        ...

    def engine_api(self, timeout: float | None = None) -> aiodocker.Docker:
        """Client for the machine's engine API. The caller closes it."""
        ...

    async def is_running(self) -> bool: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def kill(self) -> None: ...

    async def remove(self) -> None: ...

    async def remove_preserve_disk(self) -> None: ...

    async def ssh(self, command: str, timeout: float | None = None) -> str: ...

    async def write_file(self, path: str, data: bytes | BinaryIO) -> None: ...

    async def cat_host_file(self, path: str) -> bytes: ...

    async def tar_host_dir(self, path: str) -> bytes: ...

    def connection_env(self) -> str: ...


@runtime_checkable
class MachineDriver[M: Machine](Protocol):
    """Creates machines of one kind for the orchestrator.

    Implementations hold only immutable config. Batch state lives in the
    orchestrator that calls these methods.
    """

    @property
    def name(self) -> str:
        """Driver name (e.g., 'virsh')."""
        ...

    @property
    def name_prefix(self) -> str:
        """Prefix for generated machine names."""
        ...

    async def validate(self) -> None:
        """Check preconditions before anything is created.

        Raises:
            ConfigurationError: If required configuration or files are missing.
        """
        ...

    def new_machine(self, name: str) -> M:
        """Build an unprovisioned machine object."""
        ...

    async def provision(self, machine: M) -> None:
        """Create and power on the machine.

        Called sequentially for every machine in a batch, because these
        steps mutate shared hypervisor state.
        """
        ...

    async def verify(self, machine: M) -> None:
        """Bring a started machine to full readiness.

        Called concurrently for every machine in a batch.
        """
        ...
