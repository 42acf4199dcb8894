"""Driver registry.

Selects a machine driver from a configuration object so callers never
branch on driver type themselves. Driver modules are imported lazily.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loguru import logger

from machinekit.constants import DEFAULT_BATCH_TIMEOUT
from machinekit.exceptions import ConfigurationError

if TYPE_CHECKING:
    from machinekit.machine import Machine, MachineDriver
    from machinekit.providers.virsh.config import Virsh

log = logger.bind(component="registry")

type DriverConfig = Virsh


async def create_driver(config: DriverConfig) -> MachineDriver[Any]:
    """Create the driver for a configuration object."""
    from machinekit.providers.virsh.config import Virsh

    log.debug("Creating driver for config={config_type}", config_type=type(config).__name__)

    match config:
        case Virsh():
            return await config.create_driver()
        case _:
            raise ConfigurationError(
                f"No driver registered for {type(config).__name__}. "
                f"Available drivers: Virsh"
            )


async def get_test_machines(
    config: DriverConfig,
    count: int,
    timeout: float = DEFAULT_BATCH_TIMEOUT,
) -> list[Machine]:
    """Create ``count`` ready test machines with the driver ``config`` selects."""
    from machinekit.orchestrator import MachineSet

    driver = await create_driver(config)
    return await MachineSet(driver, timeout=timeout).create(count)
