"""Machine set orchestration.

Creates a batch of machines through a MachineDriver with all-or-nothing
semantics: the caller gets exactly the requested number of verified
machines, or an exception and no surviving machines.

Hypervisor-mutating steps (disk clone, domain define, power on) run one
machine at a time. Readiness verification is independent per machine and
runs concurrently, so wall-clock time tracks the slowest machine rather
than the sum.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

from loguru import logger

from machinekit.constants import DEFAULT_BATCH_TIMEOUT
from machinekit.exceptions import BatchTimeoutError, ConfigurationError
from machinekit.machine import Machine, MachineDriver
from machinekit.naming import batch_names, new_batch_id

log = logger.bind(component="orchestrator")


class MachineSet[M: Machine]:
    """Creates and tears down batches of machines for one driver.

    Args:
        driver: Driver that knows how to create the machines.
        timeout: Hard deadline for a whole batch in seconds. On expiry
            in-flight work is cancelled and the batch rolled back.

    Example:
        >>> machines = await MachineSet(VirshDriver(Virsh.from_env())).create(3)
        >>> try:
        ...     info = await bootstrap_cluster(machines)
        ... finally:
        ...     await remove_all(machines)
    """

    def __init__(
        self,
        driver: MachineDriver[M],
        timeout: float = DEFAULT_BATCH_TIMEOUT,
    ) -> None:
        self._driver = driver
        self._timeout = timeout

    async def create(self, count: int) -> list[M]:
        """Create ``count`` ready machines, or none.

        Raises:
            ConfigurationError: If preconditions are not met; nothing is created.
            BatchTimeoutError: If the batch misses its deadline.
            Exception: The first provisioning or readiness failure observed.
        """
        if count < 1:
            raise ConfigurationError(f"Machine count must be at least 1, got {count}")
        await self._driver.validate()

        batch_id = new_batch_id()
        log.debug(
            "Attempting {driver} machine creation for {count} nodes (batch {batch})",
            driver=self._driver.name, count=count, batch=batch_id,
        )
        machines: list[M] = []
        deadline = asyncio.timeout(self._timeout)

        try:
            async with deadline:
                for name in batch_names(self._driver.name_prefix, count, batch_id):
                    machine = self._driver.new_machine(name)
                    machines.append(machine)
                    await self._driver.provision(machine)

                failures = await self._verify_all(machines)
        except (Exception, asyncio.CancelledError) as exc:
            await remove_all(machines)
            # Machine-level timeouts are TimeoutErrors too; only an expired
            # batch deadline becomes a BatchTimeoutError
            if deadline.expired():
                log.error("Batch {batch} timed out after {timeout}s", batch=batch_id, timeout=self._timeout)
                raise BatchTimeoutError(count, self._timeout) from exc
            raise

        if failures:
            log.error(
                "{failed}/{count} machines in batch {batch} failed readiness: {err}",
                failed=len(failures), count=count, batch=batch_id, err=failures[0],
            )
            await remove_all(machines)
            raise failures[0]

        log.info("Batch {batch} ready: {names}", batch=batch_id, names=[m.name for m in machines])
        return machines

    async def _verify_all(self, machines: Sequence[M]) -> list[BaseException]:
        """Verify every machine concurrently; failures in completion order."""
        failures: list[BaseException] = []

        async def verify(machine: M) -> None:
            try:
                await self._driver.verify(machine)
            except Exception as exc:
                log.warning("Readiness check failed on {name}: {err}", name=machine.name, err=exc)
                failures.append(exc)

        await asyncio.gather(*(verify(m) for m in machines))
        return failures


async def remove_all(machines: Sequence[Machine]) -> None:
    """Best-effort removal of every machine, one at a time.

    Removal errors are logged, never raised.
    """
    for machine in machines:
        name = machine.name
        try:
            await machine.remove()
        except Exception as exc:
            log.warning("Failed to remove machine {name}: {err}", name=name or "<removed>", err=exc)
