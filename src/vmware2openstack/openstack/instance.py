"""Create the Nova server for a migrated VM and wait for it to run.

Disk volumes are resolved in inventory order before anything is submitted,
so a missing or ambiguous volume never leaves a half-built server behind.
Once submitted, the server is never rolled back: a timeout or error during
the wait is reported with the server id for the caller to inspect.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Optional, Sequence

from vmware2openstack.exceptions import (
    CancelledError,
    InstanceFailedError,
    ProvisionTimeoutError,
    ReconcileError,
)
from vmware2openstack.openstack.models import (
    SERVER_ACTIVE,
    SERVER_ERROR,
    BlockDeviceMapping,
    TargetInstance,
    TargetPort,
)
from vmware2openstack.utils.deadline import Deadline
from vmware2openstack.utils.logging import get_logger

if TYPE_CHECKING:
    from vmware2openstack.openstack.client import ComputeAPI
    from vmware2openstack.openstack.volumes import VolumeResolver
    from vmware2openstack.vmware.inventory import SourceVM

logger = get_logger(__name__)

DEFAULT_WAIT_TIMEOUT = 300.0


class InstanceProvisioner:
    """Builds and submits the server request, then waits for ACTIVE."""

    def __init__(
        self,
        compute: "ComputeAPI",
        volume_resolver: "VolumeResolver",
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
        poll_interval: float = 5.0,
    ):
        self.compute = compute
        self.volume_resolver = volume_resolver
        self.wait_timeout = wait_timeout
        self.poll_interval = poll_interval

    def block_devices(
        self, vm: "SourceVM", deadline: Optional[Deadline] = None
    ) -> list[BlockDeviceMapping]:
        """One volume-backed mapping per disk; boot index is the disk's position."""
        devices = []
        for index, disk in enumerate(vm.disks):
            volume = self.volume_resolver.resolve(vm.ref, disk, deadline)
            devices.append(BlockDeviceMapping(boot_index=index, uuid=volume.id))
        return devices

    def provision(
        self,
        vm: "SourceVM",
        flavor_ref: str,
        ports: Sequence[TargetPort],
        deadline: Optional[Deadline] = None,
    ) -> TargetInstance:
        """Create the server for ``vm`` and block until it is ACTIVE.

        Raises:
            VolumeNotFound, AmbiguousMatchError: before submission
            ProvisionTimeoutError: not ACTIVE within ``wait_timeout``
            InstanceFailedError: the server went to ERROR
            CancelledError: the caller's deadline expired or was cancelled
        """
        deadline = deadline or Deadline()
        return self.submit(vm, flavor_ref, ports, self.block_devices(vm, deadline), deadline)

    def submit(
        self,
        vm: "SourceVM",
        flavor_ref: str,
        ports: Sequence[TargetPort],
        devices: Sequence[BlockDeviceMapping],
        deadline: Optional[Deadline] = None,
    ) -> TargetInstance:
        """Submit one create request with already-resolved volumes, then wait."""
        deadline = deadline or Deadline()
        instance = TargetInstance(
            id="",
            name=vm.name,
            flavor_ref=flavor_ref,
            port_ids=[p.id for p in ports],
            block_devices=list(devices),
        )
        request = {
            "name": instance.name,
            "flavorRef": flavor_ref,
            "networks": [{"port": pid} for pid in instance.port_ids],
            "block_device_mapping_v2": [d.to_api() for d in devices],
        }

        logger.info(f"Creating server '{vm.name}' (flavor {flavor_ref}, "
                    f"{len(devices)} volume(s), {len(instance.port_ids)} port(s))")
        try:
            server = self.compute.create_server(request, deadline)
        except ReconcileError as e:
            if e.outcome_unknown:
                logger.warning(f"No response to the create request for '{vm.name}'; "
                               f"the server may exist, check before re-running")
            raise
        instance.id = server["id"]
        instance.status = server.get("status", instance.status)
        logger.info(f"Server submitted: {instance.id}")

        try:
            self.wait_for_active(instance, deadline.child(self.wait_timeout))
        except ReconcileError as e:
            e.instance_id = instance.id
            raise
        return instance

    def wait_for_active(self, instance: TargetInstance, wait: Deadline) -> TargetInstance:
        """Poll until ACTIVE, ERROR, cancellation or ``wait`` expiry."""
        start = time.monotonic()
        while True:
            if wait.cancelled:
                raise CancelledError(f"Cancelled while waiting for server {instance.id}",
                                     instance_id=instance.id)
            if wait.expired:
                raise ProvisionTimeoutError(instance.id, time.monotonic() - start, instance.status)

            try:
                server = self.compute.get_server(instance.id, wait)
            except CancelledError as e:
                if wait.cancelled:
                    raise CancelledError(f"Cancelled while waiting for server {instance.id}",
                                         instance_id=instance.id) from e
                raise ProvisionTimeoutError(
                    instance.id, time.monotonic() - start, instance.status
                ) from e

            instance.status = server.get("status", "UNKNOWN")
            if instance.status == SERVER_ACTIVE:
                logger.info(f"[green]Server {instance.id} is ACTIVE[/green]")
                return instance
            if instance.status == SERVER_ERROR:
                instance.fault = (server.get("fault") or {}).get("message", "")
                raise InstanceFailedError(instance.id, instance.fault)

            logger.info(f"Server status: {instance.status} "
                        f"({time.monotonic() - start:.0f}s elapsed)")
            if not wait.sleep(self.poll_interval):
                raise CancelledError(f"Cancelled while waiting for server {instance.id}",
                                     instance_id=instance.id)
