"""vmware2openstack — provision OpenStack servers for migrated VMware VMs."""

__version__ = "0.1.0"
