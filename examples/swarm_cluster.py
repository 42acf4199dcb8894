"""Three-node swarm on local KVM machines.

Creates a batch of machines, bootstraps a swarm across them, runs a
replicated service and waits for every replica to be running.

Requirements:
    - libvirt with the "default" network, virsh and qemu-img on PATH
    - VIRSH_DISK_DIR containing ubuntu16.04.qcow2, id_rsa and the engine
      TLS material (cert.pem, key.pem, ca.pem)
"""

import asyncio

import machinekit as mk


async def main() -> None:
    machines = await mk.get_test_machines(mk.Virsh.from_env(), 3)
    try:
        info = await mk.bootstrap_cluster(machines)
        for machine in machines:
            print(f"{machine.name}: {machine.docker_host}")

        async with info.leader.engine_api() as docker:
            service = await docker.services.create(
                task_template={"ContainerSpec": {"Image": "busybox", "Args": ["sleep", "3600"]}},
                name="sleepers",
                mode={"Replicated": {"Replicas": 3}},
            )
            await mk.await_converge(
                mk.running_tasks_check(docker, service["ID"], 3),
                interval=1.0,
                timeout=120.0,
                description="3 running sleepers",
            )
        print(info.leader.connection_env())
    finally:
        await mk.remove_all(machines)


if __name__ == "__main__":
    with mk.logging_enabled(mk.LogConfig.from_env()):
        asyncio.run(main())
