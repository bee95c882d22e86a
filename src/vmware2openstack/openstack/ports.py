"""Find or create the Neutron port for each mapped source NIC.

Ports are keyed by (network, MAC address). Neutron does not enforce that
pair to be unique, so duplicates are detected here and reported instead of
being picked from.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from vmware2openstack.exceptions import AmbiguousMatchError, MappingNotFoundError
from vmware2openstack.openstack.models import TargetPort
from vmware2openstack.utils.deadline import Deadline
from vmware2openstack.utils.logging import get_logger

if TYPE_CHECKING:
    from vmware2openstack.config import NetworkMapping, NetworkMappingTable
    from vmware2openstack.openstack.client import NetworkingAPI
    from vmware2openstack.vmware.inventory import SourceNIC, SourceVM

logger = get_logger(__name__)


class PortReconciler:
    """Reuses existing ports or creates them, one per network mapping."""

    def __init__(self, networking: "NetworkingAPI", security_groups: Optional[list[str]] = None):
        self.networking = networking
        self.security_groups = security_groups

    def reconcile(
        self,
        vm: "SourceVM",
        mappings: "NetworkMappingTable",
        deadline: Optional[Deadline] = None,
    ) -> list[TargetPort]:
        """Return one port per mapping, in mapping order.

        Every mapping is checked against the VM's NICs before any port is
        looked up, so a stale mapping never leaves half the ports created.

        Raises:
            MappingNotFoundError: a mapped MAC is not on the VM
            AmbiguousMatchError: several ports share the network and MAC
        """
        nics = self.check_mappings(vm, mappings)

        ports = []
        for mapping, nic in zip(mappings, nics):
            ports.append(self.ensure_port(mapping, nic, deadline))
        return ports

    def check_mappings(self, vm: "SourceVM", mappings: "NetworkMappingTable") -> list["SourceNIC"]:
        """The NIC behind each mapping, in mapping order. Makes no API calls."""
        return [self._nic_for(vm, mapping) for mapping in mappings]

    def _nic_for(self, vm: "SourceVM", mapping: "NetworkMapping") -> "SourceNIC":
        nic = vm.nic_by_mac(mapping.mac_address)
        if nic is None:
            available = [n.mac_address for n in vm.nics]
            logger.error(f"MAC {mapping.mac_address} from mapping not on VM {vm.name}; "
                         f"available: {', '.join(available) or 'none'}")
            raise MappingNotFoundError(mapping.mac_address, available)
        return nic

    def ensure_port(
        self,
        mapping: "NetworkMapping",
        nic: "SourceNIC",
        deadline: Optional[Deadline] = None,
    ) -> TargetPort:
        network_id = str(mapping.network_id)
        existing = self.networking.list_ports(network_id, mapping.mac_address, deadline)

        if len(existing) > 1:
            raise AmbiguousMatchError(
                "port",
                f"network {network_id} and MAC {mapping.mac_address}",
                [p["id"] for p in existing],
            )

        if existing:
            port = TargetPort.from_api(existing[0])
            logger.info(f"Port {port.id} already exists for {mapping.mac_address} on {network_id}")
            return port

        port = TargetPort.from_api(
            self.networking.create_port(self.port_request(mapping, nic), deadline),
            created=True,
        )
        logger.info(f"Port {port.id} created for {mapping.mac_address} on {network_id}")
        return port

    def port_request(self, mapping: "NetworkMapping", nic: "SourceNIC") -> dict[str, Any]:
        """Body of the Neutron create-port request for one mapping."""
        body: dict[str, Any] = {
            "network_id": str(mapping.network_id),
            "mac_address": mapping.mac_address,
            "name": nic.label,
            "description": nic.summary,
        }

        if mapping.unmanaged:
            if mapping.ip_address is not None:
                logger.warning(f"Ignoring ip {mapping.ip_address} for {mapping.mac_address}: "
                               f"no subnet given, port is unmanaged")
            return body

        fixed_ip: dict[str, str] = {"subnet_id": str(mapping.subnet_id)}
        if mapping.ip_address is not None:
            fixed_ip["ip_address"] = str(mapping.ip_address)
        body["fixed_ips"] = [fixed_ip]
        if self.security_groups is not None:
            body["security_groups"] = list(self.security_groups)
        return body
