"""Transport layer for machinekit.

Provides async SSH transport for remote command execution and file transfer.
"""

from .ssh import SSHTransport

__all__ = [
    "SSHTransport",
]
