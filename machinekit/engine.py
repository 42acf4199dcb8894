"""Engine API access for test machines.

Clients are plain ``aiodocker.Docker`` instances talking TLS to the
engine's TCP port. The same client certificate is shared by every machine
of a batch, so hostnames are never checked.
"""

from __future__ import annotations

import ssl
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING

import aiodocker
import aiohttp
from loguru import logger

from machinekit.constants import (
    DEFAULT_ENGINE_POLL_INTERVAL,
    DEFAULT_ENGINE_REQUEST_TIMEOUT,
    DEFAULT_ENGINE_TIMEOUT,
)
from machinekit.exceptions import ConfigurationError, ConvergeTimeoutError, MachineTimeoutError
from machinekit.wait import await_converge

if TYPE_CHECKING:
    from machinekit.machine import Machine


def load_tls_context(cert: Path, key: Path, ca: Path) -> ssl.SSLContext:
    """Build a client TLS context from a cert/key pair and a CA bundle.

    Raises:
        ConfigurationError: If any of the files is missing or unreadable.
    """
    try:
        ctx = ssl.create_default_context(cafile=str(ca))
        ctx.load_cert_chain(certfile=str(cert), keyfile=str(key))
    except (OSError, ssl.SSLError) as exc:
        raise ConfigurationError(f"Unable to load engine TLS material: {exc}") from exc

    # Short-lived VMs on recycled IPs share one set of certs
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def open_engine(
    url: str,
    ssl_context: ssl.SSLContext | None,
    timeout: float | None = DEFAULT_ENGINE_REQUEST_TIMEOUT,
) -> aiodocker.Docker:
    """Create an engine client for ``url`` (``https://host:port``).

    Must be called from a running event loop. The caller closes the client,
    usually with ``async with``.
    """
    return aiodocker.Docker(
        url=url,
        ssl_context=ssl_context,
        timeout=aiohttp.ClientTimeout(total=timeout),
    )


async def check_engine(machine: Machine) -> None:
    """One readiness probe: the engine answers version and info calls."""
    async with machine.engine_api() as docker:
        version = await docker.version()
        info = await docker.system.info()
    if not info.get("ServerVersion"):
        raise RuntimeError(f"Engine on {machine.name} returned no server version")
    logger.debug(
        "Engine on {name} is up (version={version}, os={os})",
        name=machine.name, version=version.get("Version"), os=info.get("OperatingSystem"),
    )


async def verify_engine(
    machine: Machine,
    timeout: float = DEFAULT_ENGINE_TIMEOUT,
    interval: float = DEFAULT_ENGINE_POLL_INTERVAL,
) -> None:
    """Wait until the machine's engine API is usable.

    Raises:
        MachineTimeoutError: If the engine does not answer within timeout.
    """
    name = machine.name
    try:
        await await_converge(
            lambda: check_engine(machine),
            interval=interval,
            timeout=timeout,
            description=f"engine on {name}",
        )
    except ConvergeTimeoutError as exc:
        raise MachineTimeoutError(name, "verify engine on", str(exc.__cause__ or exc)) from exc


def running_tasks_check(
    docker: aiodocker.Docker,
    service_id: str,
    replicas: int,
) -> Callable[[], Awaitable[None]]:
    """Predicate for await_converge: service has exactly ``replicas`` running tasks.

    Example:
        >>> await await_converge(
        ...     running_tasks_check(docker, service["ID"], 3),
        ...     interval=1.0,
        ...     timeout=60.0,
        ... )
    """

    async def check() -> None:
        tasks = await docker.tasks.list(filters={"service": service_id})
        running = sum(1 for task in tasks if task.get("Status", {}).get("State") == "running")
        if running != replicas:
            raise RuntimeError(
                f"Service {service_id} has {running} running tasks, expected {replicas}"
            )

    return check
