"""Find the pre-created Cinder volume backing each source disk.

Volumes are created ahead of time by the transfer pipeline and tagged with
ownership metadata. Two naming schemes exist: the current one keyed by the
vSphere device key, and a legacy one keyed by the disk object id. The
legacy scheme is only consulted when the current one finds nothing, and
each scheme is held to the zero/one/many rule on its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from vmware2openstack.exceptions import AmbiguousMatchError, VolumeNotFound
from vmware2openstack.openstack.models import TargetVolume
from vmware2openstack.utils.deadline import Deadline
from vmware2openstack.utils.logging import get_logger

if TYPE_CHECKING:
    from vmware2openstack.openstack.client import BlockStorageAPI
    from vmware2openstack.vmware.inventory import SourceDisk

logger = get_logger(__name__)

OWNER_TAG = "migrate_kit"


def volume_name(vm_ref: str, disk: "SourceDisk") -> str:
    return f"{vm_ref}-{disk.key}"


def legacy_volume_name(vm_ref: str, disk: "SourceDisk") -> str:
    return f"{vm_ref}-{disk.disk_object_id}"


def volume_metadata(vm_ref: str, disk: "SourceDisk") -> dict[str, str]:
    return {OWNER_TAG: "true", "vm": vm_ref, "disk": str(disk.key)}


def legacy_volume_metadata(vm_ref: str, disk: "SourceDisk") -> dict[str, str]:
    return {OWNER_TAG: "true", "vm": vm_ref, "disk": disk.disk_object_id}


@dataclass(frozen=True)
class VolumeLookup:
    """One naming/metadata scheme to query volumes with."""
    scheme: str
    name: str
    metadata: Optional[dict[str, str]]
    deprecated: bool = False


class VolumeResolver:
    """Resolves a SourceDisk to exactly one TargetVolume."""

    def __init__(self, block_storage: "BlockStorageAPI", unsafe_volume_by_name: bool = False):
        self.block_storage = block_storage
        self.unsafe_volume_by_name = unsafe_volume_by_name

    def lookups(self, vm_ref: str, disk: "SourceDisk") -> list[VolumeLookup]:
        """Lookup strategies in the order they are tried."""
        current_metadata = None if self.unsafe_volume_by_name else volume_metadata(vm_ref, disk)
        return [
            VolumeLookup("current", volume_name(vm_ref, disk), current_metadata),
            VolumeLookup(
                "legacy",
                legacy_volume_name(vm_ref, disk),
                legacy_volume_metadata(vm_ref, disk),
                deprecated=True,
            ),
        ]

    def resolve(
        self, vm_ref: str, disk: "SourceDisk", deadline: Optional[Deadline] = None
    ) -> TargetVolume:
        """Return the volume for ``disk``.

        Raises:
            VolumeNotFound: no scheme matched
            AmbiguousMatchError: a scheme matched more than one volume
        """
        for lookup in self.lookups(vm_ref, disk):
            matches = self.block_storage.list_volumes(lookup.name, lookup.metadata, deadline)
            if not matches:
                logger.debug(f"No {lookup.scheme} volume named '{lookup.name}'")
                continue

            if len(matches) > 1:
                raise AmbiguousMatchError(
                    "volume",
                    f"disk {disk.key} of VM {vm_ref} ({lookup.scheme} name '{lookup.name}')",
                    [m["id"] for m in matches],
                )

            if lookup.deprecated:
                logger.warning(
                    f"Using deprecated volume name and metadata format for disk {disk.key} "
                    f"of VM {vm_ref} (volume '{lookup.name}')"
                )

            volume = TargetVolume.from_api(
                self.block_storage.get_volume(matches[0]["id"], deadline)
            )
            logger.info(f"Disk {disk.key} ({disk.label}) → volume {volume.id}")
            return volume

        raise VolumeNotFound(vm_ref, disk.key)
