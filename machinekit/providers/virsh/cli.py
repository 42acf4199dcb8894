from __future__ import annotations

import asyncio
import ipaddress
import re

from loguru import logger

from machinekit.exceptions import HypervisorCommandError

_RUNNING_DOMAIN = re.compile(r"(\S+)\s+running\b")
_IPV4_MARKER = re.compile(r"ipv4\s+([^/\s]+)")


async def run(binary: str, *args: str, timeout: float | None = None) -> str:
    """Run a hypervisor command, returning its combined output trimmed."""
    cmd = f"{binary} {' '.join(args)}"
    logger.debug("Running {cmd}", cmd=cmd)
    proc = await asyncio.create_subprocess_exec(
        binary, *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except BaseException:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise
    out = stdout.decode(errors="replace").strip()
    if proc.returncode != 0:
        raise HypervisorCommandError(cmd, proc.returncode or -1, out)
    return out


def parse_running_domains(output: str) -> list[str]:
    """Names of running domains in ``virsh -q list`` output.

    >>> parse_running_domains(" 3    e2e-0A1B2C3D-0   running")
    ['e2e-0A1B2C3D-0']
    """
    names: list[str] = []
    for line in output.splitlines():
        line = line.strip()
        if match := _RUNNING_DOMAIN.search(line):
            names.append(match.group(1))
    return names


def parse_domifaddr_ipv4(output: str) -> str | None:
    """IPv4 address from the first line of ``virsh -q domifaddr`` output.

    >>> parse_domifaddr_ipv4(" vnet0  52:54:00:aa:bb:cc  ipv4  192.168.122.45/24")
    '192.168.122.45'
    """
    lines = output.strip().splitlines()
    if not lines:
        return None
    match = _IPV4_MARKER.search(lines[0])
    if match is None:
        return None
    try:
        return str(ipaddress.IPv4Address(match.group(1)))
    except ValueError:
        return None
