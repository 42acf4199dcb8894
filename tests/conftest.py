from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from machinekit.exceptions import HypervisorCommandError
from machinekit.providers.virsh import cli
from machinekit.providers.virsh.config import Virsh

# =============================================================================
# Engine / machine fakes
# =============================================================================


class FakeSwarm:
    def __init__(self, docker: FakeDocker) -> None:
        self._docker = docker

    async def init(self, *, listen_addr: str, advertise_addr: str) -> str:
        self._docker.record("init", listen_addr=listen_addr, advertise_addr=advertise_addr)
        if self._docker.machine.fail_on == "init":
            raise RuntimeError("swarm init refused")
        return "node-id"

    async def inspect(self) -> dict:
        cluster = self._docker.machine.cluster
        cluster.inspects += 1
        self._docker.record("inspect")
        if self._docker.machine.fail_on == "inspect":
            raise RuntimeError("This node is not a swarm manager")
        return {"JoinTokens": {"Worker": f"SWMTKN-worker-{cluster.inspects}", "Manager": "SWMTKN-manager"}}

    async def join(self, *, remote_addrs: list[str], join_token: str, listen_addr: str) -> bool:
        await asyncio.sleep(self._docker.machine.join_delay)
        self._docker.record(
            "join", remote_addrs=tuple(remote_addrs), join_token=join_token, listen_addr=listen_addr,
        )
        if self._docker.machine.fail_on == "join":
            raise RuntimeError("join rejected")
        return True


class FakeSystem:
    def __init__(self, docker: FakeDocker) -> None:
        self._docker = docker

    async def info(self) -> dict:
        self._docker.record("info")
        return {
            "ServerVersion": "17.06.0-ce",
            "OperatingSystem": "Ubuntu 16.04",
            "Swarm": {"RemoteManagers": [{"NodeID": "abc", "Addr": "10.0.0.1:2377"}]},
        }


class FakeTasks:
    def __init__(self, states: list[str]) -> None:
        self.states = states
        self.filters: list[dict] = []

    async def list(self, *, filters: dict | None = None) -> list[dict]:
        self.filters.append(filters or {})
        return [{"ID": f"t{i}", "Status": {"State": s}} for i, s in enumerate(self.states)]


class FakeDocker:
    def __init__(self, machine: FakeMachine) -> None:
        self.machine = machine
        self.swarm = FakeSwarm(self)
        self.system = FakeSystem(self)
        self.closed = False

    def record(self, call: str, **kwargs: object) -> None:
        self.machine.cluster.calls.append((call, self.machine.name, kwargs))

    async def version(self) -> dict:
        self.machine.engine_probes += 1
        if self.machine.engine_probes <= self.machine.engine_failures:
            raise ConnectionRefusedError(f"engine on {self.machine.name} not up")
        return {"Version": "17.06.0-ce"}

    async def __aenter__(self) -> FakeDocker:
        return self

    async def __aexit__(self, *_: object) -> None:
        self.closed = True


class FakeCluster:
    """Shared call log for every fake machine of one test."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict]] = []
        self.inspects = 0

    def names(self, call: str) -> list[str]:
        return [name for c, name, _ in self.calls if c == call]

    def kwargs(self, call: str) -> list[dict]:
        return [kw for c, _, kw in self.calls if c == call]


class FakeMachine:
    def __init__(
        self,
        name: str,
        cluster: FakeCluster | None = None,
        *,
        ip: str = "10.0.0.1",
        fail_on: str | None = None,
        join_delay: float = 0.0,
        engine_failures: int = 0,
        remove_error: Exception | None = None,
    ) -> None:
        self._name = name
        self.cluster = cluster or FakeCluster()
        self.ip = ip
        self.internal_ip = ip
        self.fail_on = fail_on
        self.join_delay = join_delay
        self.engine_failures = engine_failures
        self.engine_probes = 0
        self.remove_error = remove_error
        self.removals = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def docker_host(self) -> str:
        return f"tcp://{self.ip}:2376"

    def engine_api(self, timeout: float | None = None) -> FakeDocker:
        return FakeDocker(self)

    async def remove(self) -> None:
        self.removals += 1
        self.cluster.calls.append(("remove", self._name, {}))
        if self.remove_error is not None:
            raise self.remove_error
        self._name = ""


@pytest.fixture
def fake_cluster() -> FakeCluster:
    return FakeCluster()


# =============================================================================
# Hypervisor CLI fake
# =============================================================================


class FakeHypervisor:
    """Stands in for cli.run, emulating virsh and qemu-img."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.running: set[str] = set()
        self.address = "192.168.122.10"
        self.address_after = 1
        self.destroy_lag = 0
        self.defined_xml: dict[str, str] = {}
        self.failures: dict[str, HypervisorCommandError] = {}
        self._addr_polls: dict[str, int] = {}
        self._list_polls_after_destroy: dict[str, int] = {}

    def commands(self, verb: str) -> list[tuple[str, ...]]:
        return [c for c in self.calls if verb in c[:3]]

    async def __call__(self, binary: str, *args: str, timeout: float | None = None) -> str:
        self.calls.append((binary, *args))
        verb = args[1] if args and args[0] == "-q" else (args[0] if args else "")
        if verb in self.failures:
            raise self.failures[verb]

        if binary == "qemu-img":
            Path(args[-1]).write_bytes(b"qcow2")
            return f"Formatting '{args[-1]}', fmt=qcow2"

        match verb:
            case "define":
                path = Path(args[1])
                xml = path.read_text()
                name = xml.split("<name>")[1].split("</name>")[0]
                self.defined_xml[name] = xml
                return f"Domain {name} defined from {path}"
            case "start":
                self.running.add(args[1])
                return f"Domain {args[1]} started"
            case "domifaddr":
                name = args[2]
                self._addr_polls[name] = self._addr_polls.get(name, 0) + 1
                if self._addr_polls[name] < self.address_after:
                    return ""
                return f" vnet0      52:54:00:12:34:56    ipv4         {self.address}/24"
            case "list":
                for name, remaining in list(self._list_polls_after_destroy.items()):
                    if remaining <= 0:
                        self.running.discard(name)
                        del self._list_polls_after_destroy[name]
                    else:
                        self._list_polls_after_destroy[name] = remaining - 1
                return "\n".join(
                    f" {i}     {name}   running" for i, name in enumerate(sorted(self.running), 1)
                )
            case "destroy":
                self._list_polls_after_destroy[args[1]] = self.destroy_lag
                return f"Domain {args[1]} destroyed"
            case "shutdown":
                self.running.discard(args[1])
                return f"Domain {args[1]} is being shutdown"
            case "undefine":
                return f"Domain {args[-1]} has been undefined"
        return ""


@pytest.fixture
def hypervisor(monkeypatch: pytest.MonkeyPatch) -> FakeHypervisor:
    fake = FakeHypervisor()
    monkeypatch.setattr(cli, "run", fake)
    return fake


@pytest.fixture
def disk_dir(tmp_path: Path) -> Path:
    (tmp_path / "ubuntu16.04.qcow2").write_bytes(b"base")
    (tmp_path / "id_rsa").write_text("key")
    return tmp_path


@pytest.fixture
def virsh_config(disk_dir: Path) -> Virsh:
    return Virsh(
        disk_dir=disk_dir,
        start_timeout=1.0,
        kill_timeout=0.3,
        engine_timeout=0.5,
        ip_poll_interval=0.01,
        ssh_poll_interval=0.01,
        kill_poll_interval=0.01,
        engine_poll_interval=0.01,
    )
