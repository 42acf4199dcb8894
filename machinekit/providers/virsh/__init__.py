"""libvirt (virsh) machine driver."""

from machinekit.providers.virsh.config import Virsh
from machinekit.providers.virsh.machine import VirshMachine
from machinekit.providers.virsh.provider import VirshDriver

__all__ = ["Virsh", "VirshDriver", "VirshMachine"]
