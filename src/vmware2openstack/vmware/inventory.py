"""Typed source-VM snapshot: disks and NICs split out of the device list."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from pyVmomi import vim

from vmware2openstack.config import normalize_mac
from vmware2openstack.exceptions import ReconcileError
from vmware2openstack.utils.logging import get_logger
from vmware2openstack.vmware.client import VSphereClient

logger = get_logger(__name__)


@dataclass(frozen=True)
class SourceDisk:
    """One virtual disk of the source VM."""
    key: int                 # vSphere device key
    disk_object_id: str      # e.g. "1-2000", used by the legacy volume scheme
    label: str = ""
    size_gb: float = 0.0


@dataclass(frozen=True)
class SourceNIC:
    """One network adapter of the source VM."""
    mac_address: str
    label: str = ""
    summary: str = ""
    network: str = ""


@dataclass(frozen=True)
class SourceVM:
    """Immutable view of a VM taken once per reconciliation run.

    ``disks`` and ``nics`` keep the order vSphere reports devices in; disk
    order becomes the target boot order.
    """
    ref: str                 # managed object id, e.g. "vm-42"
    name: str
    disks: tuple[SourceDisk, ...] = field(default_factory=tuple)
    nics: tuple[SourceNIC, ...] = field(default_factory=tuple)

    def nic_by_mac(self, mac_address: str) -> Optional[SourceNIC]:
        mac = normalize_mac(mac_address)
        return next((n for n in self.nics if n.mac_address == mac), None)

    def model_dump(self) -> dict:
        """Serialize to dict for JSON output."""
        return {
            "ref": self.ref,
            "name": self.name,
            "disks": [{"key": d.key, "disk_object_id": d.disk_object_id,
                       "label": d.label, "size_gb": d.size_gb} for d in self.disks],
            "nics": [{"mac": n.mac_address, "label": n.label,
                      "summary": n.summary, "network": n.network} for n in self.nics],
        }


def _description(device) -> tuple[str, str]:
    info = getattr(device, "deviceInfo", None)
    if info is None:
        return "", ""
    return info.label or "", info.summary or ""


def _nic_network(device) -> str:
    backing = device.backing
    if backing is None:
        return ""
    if getattr(backing, "network", None) is not None:
        return backing.network.name
    if getattr(backing, "port", None) is not None:
        return f"dvs-{backing.port.portgroupKey}"
    return getattr(backing, "deviceName", "") or ""


def extract_disks(devices: list) -> tuple[SourceDisk, ...]:
    disks = []
    for device in devices:
        if not isinstance(device, vim.vm.device.VirtualDisk):
            continue
        label, _ = _description(device)
        disks.append(SourceDisk(
            key=device.key,
            disk_object_id=device.diskObjectId or "",
            label=label or f"disk-{device.key}",
            size_gb=round((device.capacityInKB or 0) / 1024 / 1024, 2),
        ))
    return tuple(disks)


def extract_nics(devices: list) -> tuple[SourceNIC, ...]:
    nics = []
    for device in devices:
        if not isinstance(device, vim.vm.device.VirtualEthernetCard):
            continue
        label, summary = _description(device)
        nics.append(SourceNIC(
            mac_address=normalize_mac(device.macAddress or ""),
            label=label,
            summary=summary,
            network=_nic_network(device),
        ))
    return tuple(nics)


def source_vm_from_object(vm: vim.VirtualMachine) -> SourceVM:
    """Build a SourceVM from a VirtualMachine managed object."""
    config = vm.config
    if config is None:
        raise ReconcileError(f"VM {vm._moId} has no configuration (inaccessible or orphaned?)")
    devices = list(config.hardware.device) if config.hardware else []
    return SourceVM(
        ref=vm._moId,
        name=config.name,
        disks=extract_disks(devices),
        nics=extract_nics(devices),
    )


class VMInventory:
    """Reads source VMs from a vCenter connection."""

    def __init__(self, client: VSphereClient):
        self.client = client

    def get_source_vm(self, vm_name: str) -> SourceVM:
        vm = source_vm_from_object(self.client.find_vm(vm_name))
        logger.info(f"VM '{vm.name}' ({vm.ref}): {len(vm.disks)} disk(s), {len(vm.nics)} NIC(s)")
        return vm
