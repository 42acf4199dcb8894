"""Custom exception hierarchy for machinekit.

All machinekit-specific exceptions inherit from MachinekitError, enabling
callers to catch every provisioning failure with a single except clause.
Timeouts additionally inherit from the builtin TimeoutError so they can be
told apart from hard failures.
"""

from __future__ import annotations


class MachinekitError(Exception):
    """Base exception for all machinekit errors."""


class ConfigurationError(MachinekitError):
    """Raised for invalid configuration or missing required settings."""


class ProvisioningError(MachinekitError):
    """Raised when a step of machine provisioning fails."""


class HypervisorCommandError(ProvisioningError):
    """Raised when a hypervisor CLI command exits with a non-zero status."""

    def __init__(self, command: str, returncode: int, output: str) -> None:
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(f"{command} failed (exit {returncode}): {output}")


class RemoteCommandError(MachinekitError):
    """Raised when a command run over SSH fails or cannot connect."""

    def __init__(
        self,
        host: str,
        command: str,
        output: str,
        exit_status: int | None = None,
    ) -> None:
        self.host = host
        self.command = command
        self.output = output
        self.exit_status = exit_status
        status = "connection failed" if exit_status is None else f"exit {exit_status}"
        super().__init__(f"ssh {host} {command!r} ({status}): {output}")


class BootstrapError(MachinekitError):
    """Raised when swarm initialization or a worker join fails."""

    def __init__(self, phase: str, machine: str, error: str) -> None:
        self.phase = phase
        self.machine = machine
        self.error = error
        super().__init__(f"Bootstrap phase '{phase}' failed on {machine}: {error}")


class DeadlineExceededError(MachinekitError, TimeoutError):
    """Raised when an operation exceeds its deadline."""


class ConvergeTimeoutError(DeadlineExceededError):
    """Raised when a polled predicate does not converge in time."""


class MachineTimeoutError(DeadlineExceededError):
    """Raised when a machine lifecycle operation does not finish in time."""

    def __init__(self, machine: str, operation: str, reason: str = "") -> None:
        self.machine = machine
        self.operation = operation
        message = f"Unable to {operation} {machine} within timeout"
        super().__init__(f"{message}: {reason}" if reason else message)


class BatchTimeoutError(DeadlineExceededError):
    """Raised when a whole provisioning batch misses its deadline."""

    def __init__(self, count: int, timeout: float) -> None:
        self.count = count
        self.timeout = timeout
        super().__init__(f"Unable to create {count} machines within {timeout:.0f}s")
