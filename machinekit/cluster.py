"""Swarm bootstrap across a set of ready machines.

The first machine initializes the control plane and becomes the leader.
Its worker join token and manager address are captured once, right after
init, and every other machine joins with that same snapshot, one at a
time. Joining against a freshly initialized manager is ordering-sensitive,
so workers are never joined in parallel.

There is no retry and no partial rollback: on failure the caller tears down
the whole batch.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from machinekit.constants import DEFAULT_SWARM_LISTEN_ADDR
from machinekit.exceptions import BootstrapError, ConfigurationError
from machinekit.machine import Machine

log = logger.bind(component="cluster")


class BootstrapState(str, Enum):
    UNSTARTED = "unstarted"
    LEADER_INITIALIZED = "leader_initialized"
    WORKERS_JOINING = "workers_joining"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ClusterInfo:
    """Result of a successful bootstrap.

    Attributes:
        leader: Machine that initialized the swarm.
        listen_addr: Listen address passed to init and every join.
        join_token: Worker join token, valid for the lifetime of the swarm.
        remote_manager: Manager address workers joined through.
        workers: Machines joined as workers, in join order.
    """

    leader: Machine
    listen_addr: str
    join_token: str
    remote_manager: str
    workers: tuple[Machine, ...] = ()


class ClusterBootstrap:
    """One-shot swarm bootstrap over an ordered machine list.

    State moves unstarted → leader_initialized → workers_joining → complete,
    or to failed from any state. ``joined`` counts workers joined so far.
    """

    def __init__(
        self,
        machines: Sequence[Machine],
        listen_addr: str = DEFAULT_SWARM_LISTEN_ADDR,
    ) -> None:
        if not machines:
            raise ConfigurationError("Cannot bootstrap a cluster without machines")
        self._machines = tuple(machines)
        self._listen_addr = listen_addr
        self.state = BootstrapState.UNSTARTED
        self.joined = 0

    @property
    def leader(self) -> Machine:
        return self._machines[0]

    async def run(self) -> ClusterInfo:
        if self.state is not BootstrapState.UNSTARTED:
            raise RuntimeError(f"Bootstrap already ran (state={self.state.value})")
        try:
            token, manager = await self._init_leader()
            self.state = BootstrapState.WORKERS_JOINING
            for machine in self._machines[1:]:
                await self._join(machine, token, manager)
                self.joined += 1
        except BaseException:
            self.state = BootstrapState.FAILED
            raise

        self.state = BootstrapState.COMPLETE
        log.info(
            "Swarm ready: leader {leader}, {count} workers",
            leader=self.leader.name, count=self.joined,
        )
        return ClusterInfo(
            leader=self.leader,
            listen_addr=self._listen_addr,
            join_token=token,
            remote_manager=manager,
            workers=self._machines[1:],
        )

    async def _init_leader(self) -> tuple[str, str]:
        leader = self.leader
        log.debug("Initializing swarm on {name}", name=leader.name)

        async with leader.engine_api() as docker:
            try:
                await docker.swarm.init(
                    listen_addr=self._listen_addr,
                    advertise_addr=leader.internal_ip,
                )
            except Exception as exc:
                raise BootstrapError("init", leader.name, str(exc)) from exc
            self.state = BootstrapState.LEADER_INITIALIZED

            try:
                swarm = await docker.swarm.inspect()
                info = await docker.system.info()
                token = swarm["JoinTokens"]["Worker"]
                manager = info["Swarm"]["RemoteManagers"][0]["Addr"]
            except Exception as exc:
                raise BootstrapError("inspect", leader.name, str(exc)) from exc

        return token, manager

    async def _join(self, machine: Machine, token: str, manager: str) -> None:
        log.debug("Joining {name} as worker", name=machine.name)
        async with machine.engine_api() as docker:
            try:
                await docker.swarm.join(
                    remote_addrs=[manager],
                    join_token=token,
                    listen_addr=self._listen_addr,
                )
            except Exception as exc:
                raise BootstrapError("join", machine.name, str(exc)) from exc


async def bootstrap_cluster(
    machines: Sequence[Machine],
    listen_addr: str = DEFAULT_SWARM_LISTEN_ADDR,
) -> ClusterInfo:
    """Initialize a swarm on ``machines[0]`` and join the rest as workers."""
    return await ClusterBootstrap(machines, listen_addr).run()
