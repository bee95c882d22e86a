"""Error types raised while reconciling a VM into OpenStack.

Every error is scoped to one migration attempt. Nothing here is retried
internally; callers decide whether to halt or continue.
"""

from __future__ import annotations

from typing import Optional, Sequence


class ReconcileError(Exception):
    """Base class for all vmware2openstack errors."""

    # Set once a server has been submitted, so callers can tell
    # "created but unverified" apart from "not created".
    instance_id: Optional[str] = None

    # True when the request was sent but no response came back, so the
    # remote side may have acted on it.
    outcome_unknown: bool = False


class ConfigurationError(ReconcileError):
    """Invalid or incomplete configuration (credentials, catalog, mappings)."""


class NotFoundError(ReconcileError):
    """No target resource matches a source entity."""


class VolumeNotFound(NotFoundError):
    """No pre-created volume matches a source disk under any naming scheme."""

    def __init__(self, vm_ref: str, disk_key: int):
        self.vm_ref = vm_ref
        self.disk_key = disk_key
        super().__init__(f"No volume found for disk {disk_key} of VM {vm_ref}")


class AmbiguousMatchError(ReconcileError):
    """More than one target resource matches where at most one may exist."""

    def __init__(self, kind: str, criteria: str, matches: Sequence[str]):
        self.kind = kind
        self.criteria = criteria
        self.matches = list(matches)
        super().__init__(
            f"Multiple {kind}s found for {criteria}: {', '.join(self.matches)}"
        )


class MappingNotFoundError(ReconcileError):
    """A network mapping names a MAC address the VM does not have."""

    def __init__(self, mac_address: str, available: Sequence[str]):
        self.mac_address = mac_address
        self.available = list(available)
        super().__init__(
            f"No NIC found for mapped MAC address: {mac_address} "
            f"(available: {', '.join(self.available) or 'none'})"
        )


class UpstreamAPIError(ReconcileError):
    """The OpenStack API rejected a request or could not be reached."""

    def __init__(
        self,
        method: str,
        url: str,
        status_code: Optional[int] = None,
        body: str = "",
    ):
        self.method = method
        self.url = url
        self.status_code = status_code
        self.body = body
        status = status_code if status_code is not None else "no response"
        detail = f": {body[:200]}" if body else ""
        super().__init__(f"{method} {url} failed ({status}){detail}")


class InstanceError(ReconcileError):
    """Failure after the server was submitted; the server may exist."""

    def __init__(self, message: str, instance_id: Optional[str] = None):
        self.instance_id = instance_id
        super().__init__(message)

    @property
    def instance_created(self) -> bool:
        return self.instance_id is not None


class ProvisionTimeoutError(InstanceError, TimeoutError):
    """The server did not become ACTIVE before the wait deadline."""

    def __init__(self, instance_id: str, timeout: float, last_status: str):
        self.timeout = timeout
        self.last_status = last_status
        super().__init__(
            f"Server {instance_id} not ACTIVE after {timeout:.0f}s (status: {last_status})",
            instance_id=instance_id,
        )


class InstanceFailedError(InstanceError):
    """The server reached the ERROR state."""

    def __init__(self, instance_id: str, fault: str = ""):
        self.fault = fault
        msg = f"Server {instance_id} entered ERROR state"
        if fault:
            msg += f": {fault}"
        super().__init__(msg, instance_id=instance_id)


class CancelledError(InstanceError):
    """The caller's deadline expired or the run was cancelled."""
