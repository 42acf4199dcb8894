from __future__ import annotations

import contextlib
from collections.abc import Iterator
from pathlib import Path
from xml.sax.saxutils import escape

_DOMAIN_XML = """\
<domain type='kvm'>
  <name>{name}</name>
  <memory unit='M'>{memory_mb}</memory>
  <vcpu>{cpu_count}</vcpu>
  <features><acpi/><apic/><pae/></features>
  <cpu mode='host-passthrough'></cpu>
  <os>
    <type>hvm</type>
    <boot dev='hd'/>
    <bootmenu enable='no'/>
  </os>
  <devices>
    <disk type='file' device='disk'>
      <driver name='qemu' type='qcow2' cache='unsafe' io='threads'/>
      <source file='{disk_path}'/>
      <target dev='vda' bus='virtio'/>
    </disk>
    <graphics type='vnc' autoport='yes' listen='127.0.0.1'>
      <listen type='address' address='127.0.0.1'/>
    </graphics>
    <interface type='network'>
      <source network='{network}'/>
      <model type='virtio'/>
    </interface>
  </devices>
</domain>
"""

_ATTR_ENTITIES = {"'": "&apos;", '"': "&quot;"}


def render_domain_xml(
    name: str,
    memory_mb: int,
    cpu_count: int,
    disk_path: Path | str,
    network: str = "default",
) -> str:
    """Render the libvirt domain descriptor for one test machine."""
    return _DOMAIN_XML.format(
        name=escape(name),
        memory_mb=int(memory_mb),
        cpu_count=int(cpu_count),
        disk_path=escape(str(disk_path), _ATTR_ENTITIES),
        network=escape(network, _ATTR_ENTITIES),
    )


@contextlib.contextmanager
def descriptor_file(path: Path, xml: str) -> Iterator[Path]:
    """Write a domain descriptor for the duration of the block, then delete it."""
    path.write_text(xml, encoding="utf-8")
    try:
        yield path
    finally:
        path.unlink(missing_ok=True)
