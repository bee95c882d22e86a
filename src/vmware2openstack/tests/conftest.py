"""In-memory stand-ins for the OpenStack service clients."""

import itertools

import pytest

from vmware2openstack.config import NetworkMapping, NetworkMappingTable
from vmware2openstack.openstack.client import ClientSet
from vmware2openstack.vmware.inventory import SourceDisk, SourceNIC, SourceVM

NET_1 = "6b1b5d8e-0b1c-4c39-9b8f-2f7c1f0e0a01"
NET_2 = "6b1b5d8e-0b1c-4c39-9b8f-2f7c1f0e0a02"
SUBNET_1 = "0f4a3c2e-7d1b-4e5f-8a9b-1c2d3e4f5a01"


class FakeBlockStorage:
    def __init__(self, volumes=None):
        self.volumes = list(volumes or [])
        self.list_calls = []
        self.get_calls = []

    def add(self, vol_id, name, metadata=None, status="available"):
        self.volumes.append({"id": vol_id, "name": name, "metadata": metadata or {},
                             "status": status, "size": 10})

    def list_volumes(self, name, metadata=None, deadline=None):
        self.list_calls.append((name, metadata))
        found = []
        for v in self.volumes:
            if v["name"] != name:
                continue
            if metadata and any(v["metadata"].get(k) != val for k, val in metadata.items()):
                continue
            found.append({"id": v["id"], "name": v["name"]})
        return found

    def get_volume(self, volume_id, deadline=None):
        self.get_calls.append(volume_id)
        return next(v for v in self.volumes if v["id"] == volume_id)


class FakeNetworking:
    def __init__(self):
        self.ports = []
        self.created = []
        self._ids = itertools.count(1)

    def add(self, port_id, network_id, mac_address):
        self.ports.append({"id": port_id, "network_id": network_id, "mac_address": mac_address})

    def list_ports(self, network_id, mac_address, deadline=None):
        return [p for p in self.ports
                if p["network_id"] == network_id and p["mac_address"] == mac_address]

    def create_port(self, port, deadline=None):
        created = dict(port, id=f"port-{next(self._ids)}")
        self.created.append(port)
        self.ports.append(created)
        return created


class FakeCompute:
    """Reports each status in ``statuses`` once, then repeats the last."""

    def __init__(self, statuses=("BUILD", "ACTIVE"), fault=None, on_poll=None, create_error=None):
        self.statuses = list(statuses)
        self.create_error = create_error
        self.fault = fault
        self.on_poll = on_poll
        self.created = []
        self.polls = 0

    def create_server(self, server, deadline=None):
        if self.create_error:
            raise self.create_error
        self.created.append(server)
        return {"id": f"server-{len(self.created)}", "status": "BUILD"}

    def get_server(self, server_id, deadline=None):
        if self.on_poll:
            self.on_poll(self.polls)
        status = self.statuses[min(self.polls, len(self.statuses) - 1)]
        self.polls += 1
        server = {"id": server_id, "status": status}
        if self.fault:
            server["fault"] = {"message": self.fault}
        return server


@pytest.fixture
def source_vm():
    return SourceVM(
        ref="vm-42",
        name="web-prod-01",
        disks=(
            SourceDisk(key=2000, disk_object_id="1-2000", label="Hard disk 1"),
            SourceDisk(key=2001, disk_object_id="1-2001", label="Hard disk 2"),
        ),
        nics=(
            SourceNIC(mac_address="aa:bb", label="Network adapter 1", summary="VM Network"),
            SourceNIC(mac_address="00:50:56:aa:bb:02", label="Network adapter 2", summary="Backup"),
        ),
    )


@pytest.fixture
def block_storage(source_vm):
    """Both disks have a volume under the current scheme."""
    bs = FakeBlockStorage()
    for disk, vol_id in zip(source_vm.disks, ("vol-a", "vol-b")):
        bs.add(vol_id, f"vm-42-{disk.key}",
               {"migrate_kit": "true", "vm": "vm-42", "disk": str(disk.key)})
    return bs


@pytest.fixture
def networking():
    return FakeNetworking()


@pytest.fixture
def compute():
    return FakeCompute()


@pytest.fixture
def clients(block_storage, networking, compute):
    return ClientSet(block_storage=block_storage, compute=compute, networking=networking)


@pytest.fixture
def mappings():
    return NetworkMappingTable(mappings=[
        NetworkMapping(mac_address="AA:BB", network_id=NET_1),
        NetworkMapping(mac_address="00:50:56:aa:bb:02", network_id=NET_2,
                       subnet_id=SUBNET_1, ip_address="10.0.0.12"),
    ])
