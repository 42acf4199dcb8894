"""machinekit - ephemeral test machines and swarm bootstrap for e2e tests.

Example:

    from machinekit import Virsh, bootstrap_cluster, get_test_machines, remove_all

    machines = await get_test_machines(Virsh.from_env(), 3)
    try:
        cluster = await bootstrap_cluster(machines)
        ...
    finally:
        await remove_all(machines)
"""

from machinekit.cluster import BootstrapState, ClusterBootstrap, ClusterInfo, bootstrap_cluster
from machinekit.engine import running_tasks_check, verify_engine
from machinekit.exceptions import (
    BatchTimeoutError,
    BootstrapError,
    ConfigurationError,
    ConvergeTimeoutError,
    DeadlineExceededError,
    HypervisorCommandError,
    MachinekitError,
    MachineTimeoutError,
    ProvisioningError,
    RemoteCommandError,
)
from machinekit.logging import LogConfig, logging_enabled, setup_logging, teardown_logging
from machinekit.machine import Machine, MachineDriver, MachineState
from machinekit.orchestrator import MachineSet, remove_all
from machinekit.providers import create_driver, get_test_machines
from machinekit.providers.virsh import Virsh, VirshDriver, VirshMachine
from machinekit.transport import SSHTransport
from machinekit.wait import await_converge

__all__ = [
    # Orchestration
    "MachineSet",
    "remove_all",
    "get_test_machines",
    "create_driver",
    # Cluster
    "bootstrap_cluster",
    "ClusterBootstrap",
    "ClusterInfo",
    "BootstrapState",
    # Polling
    "await_converge",
    "running_tasks_check",
    "verify_engine",
    # Machines
    "Machine",
    "MachineDriver",
    "MachineState",
    "Virsh",
    "VirshDriver",
    "VirshMachine",
    "SSHTransport",
    # Logging
    "LogConfig",
    "logging_enabled",
    "setup_logging",
    "teardown_logging",
    # Exceptions
    "MachinekitError",
    "ConfigurationError",
    "ProvisioningError",
    "HypervisorCommandError",
    "RemoteCommandError",
    "BootstrapError",
    "DeadlineExceededError",
    "ConvergeTimeoutError",
    "MachineTimeoutError",
    "BatchTimeoutError",
]
