"""OpenStack resource views used during reconciliation.

These hold transient references only; nothing is cached between runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

SERVER_ACTIVE = "ACTIVE"
SERVER_ERROR = "ERROR"


@dataclass
class TargetVolume:
    """A Cinder volume."""
    id: str
    name: str = ""
    status: str = ""
    size_gb: int = 0
    bootable: bool = False
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "TargetVolume":
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            status=data.get("status", ""),
            size_gb=int(data.get("size") or 0),
            bootable=str(data.get("bootable", "false")).lower() == "true",
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class TargetPort:
    """A Neutron port."""
    id: str
    network_id: str
    mac_address: str = ""
    name: str = ""
    fixed_ips: list[dict[str, str]] = field(default_factory=list)
    security_groups: list[str] = field(default_factory=list)
    created: bool = False    # True when this run created the port

    @classmethod
    def from_api(cls, data: dict[str, Any], created: bool = False) -> "TargetPort":
        return cls(
            id=data["id"],
            network_id=data.get("network_id", ""),
            mac_address=data.get("mac_address", ""),
            name=data.get("name") or "",
            fixed_ips=list(data.get("fixed_ips") or []),
            security_groups=list(data.get("security_groups") or []),
            created=created,
        )


@dataclass(frozen=True)
class BlockDeviceMapping:
    """One entry of a server's block_device_mapping_v2."""
    boot_index: int
    uuid: str
    source_type: str = "volume"
    destination_type: str = "volume"

    def to_api(self) -> dict[str, Any]:
        return {
            "boot_index": self.boot_index,
            "uuid": self.uuid,
            "source_type": self.source_type,
            "destination_type": self.destination_type,
        }


@dataclass
class TargetInstance:
    """A Nova server created for a migrated VM."""
    id: str
    name: str
    flavor_ref: str
    status: str = "BUILD"
    port_ids: list[str] = field(default_factory=list)
    block_devices: list[BlockDeviceMapping] = field(default_factory=list)
    fault: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.status == SERVER_ACTIVE
