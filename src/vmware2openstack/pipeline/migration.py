"""Provisioning pipeline — inventory, volumes, ports, then the server.

One run reconciles a single VM. Batches run VMs one after another under
the caller's deadline, producing one result per VM.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Protocol

from vmware2openstack.config import BatchProvisionPlan, ReconcileOptions, VMProvisionPlan
from vmware2openstack.exceptions import ReconcileError
from vmware2openstack.openstack.instance import InstanceProvisioner
from vmware2openstack.openstack.models import BlockDeviceMapping, TargetInstance, TargetPort
from vmware2openstack.openstack.ports import PortReconciler
from vmware2openstack.openstack.volumes import VolumeResolver
from vmware2openstack.utils.deadline import Deadline
from vmware2openstack.utils.logging import get_logger

if TYPE_CHECKING:
    from vmware2openstack.openstack.client import ClientSet
    from vmware2openstack.vmware.inventory import SourceVM

logger = get_logger(__name__)


class SourceInventory(Protocol):
    def get_source_vm(self, vm_name: str) -> "SourceVM": ...


@dataclass
class ProvisionState:
    """Artifacts handed from one stage to the next within a single run."""
    plan: VMProvisionPlan
    options: ReconcileOptions
    vm: Optional["SourceVM"] = None
    block_devices: list[BlockDeviceMapping] = field(default_factory=list)
    ports: list[TargetPort] = field(default_factory=list)
    instance: Optional[TargetInstance] = None


@dataclass
class ProvisionResult:
    """Result of provisioning one VM."""
    success: bool
    vm_name: str
    instance_id: Optional[str] = None
    port_ids: list[str] = field(default_factory=list)
    created_port_ids: list[str] = field(default_factory=list)
    duration: str = ""
    failed_stage: Optional[str] = None
    error: Optional[str] = None
    exception: Optional[BaseException] = None
    completed_stages: list[str] = field(default_factory=list)
    submission_unknown: bool = False    # create request sent, no response

    @property
    def instance_created(self) -> bool:
        """True when a server exists even though the run may have failed."""
        return self.instance_id is not None


class ProvisionPipeline:
    """Runs the reconciliation stages for VMs.

    Stages (executed in order):
    1. inventory — read the source VM's disks and NICs once
    2. volumes   — resolve every disk to its volume (read-only)
    3. ports     — find or create one port per network mapping
    4. instance  — create the server and wait for ACTIVE

    Volumes are resolved before ports so a missing or ambiguous volume
    stops the run before anything is created.

    Re-running after a failure is safe: existing ports are reused and the
    volume lookups never create anything.
    """

    STAGES = ["inventory", "volumes", "ports", "instance"]

    def __init__(
        self,
        clients: "ClientSet",
        inventory: SourceInventory,
        options: Optional[ReconcileOptions] = None,
    ):
        self.clients = clients
        self.inventory = inventory
        self.options = options or ReconcileOptions()

    def run(self, plan: VMProvisionPlan, deadline: Optional[Deadline] = None) -> ProvisionResult:
        """Provision one VM. Errors are captured in the result, never raised."""
        deadline = deadline or Deadline()
        state = ProvisionState(plan=plan, options=plan.options(self.options))
        start_time = time.time()
        completed: list[str] = []

        logger.info(f"[bold]Provisioning {plan.vm_name}[/bold] → flavor {plan.flavor}")

        for stage_name in self.STAGES:
            logger.info(f"[cyan]▶ Stage: {stage_name}[/cyan]")
            try:
                getattr(self, f"_stage_{stage_name}")(state, deadline)
            except Exception as e:
                elapsed = time.time() - start_time
                logger.error(f"[red]✗ Stage {stage_name} failed: {e}[/red]")
                instance_id = getattr(e, "instance_id", None)
                if instance_id:
                    logger.warning(f"Server {instance_id} was created but not verified ACTIVE; "
                                   f"it has been left in place")
                submission_unknown = (
                    stage_name == "instance"
                    and instance_id is None
                    and getattr(e, "outcome_unknown", False)
                )
                return ProvisionResult(
                    success=False,
                    vm_name=plan.vm_name,
                    instance_id=instance_id,
                    port_ids=[p.id for p in state.ports],
                    created_port_ids=[p.id for p in state.ports if p.created],
                    duration=f"{elapsed:.0f}s",
                    failed_stage=stage_name,
                    error=str(e),
                    exception=e,
                    completed_stages=completed,
                    submission_unknown=submission_unknown,
                )
            completed.append(stage_name)
            logger.info(f"[green]✓ Stage {stage_name} complete[/green]")

        elapsed = time.time() - start_time
        logger.info(f"[bold green]{plan.vm_name} provisioned in {elapsed:.0f}s[/bold green]")
        return ProvisionResult(
            success=True,
            vm_name=plan.vm_name,
            instance_id=state.instance.id if state.instance else None,
            port_ids=[p.id for p in state.ports],
            created_port_ids=[p.id for p in state.ports if p.created],
            duration=f"{elapsed:.0f}s",
            completed_stages=completed,
        )

    def run_batch(
        self,
        batch: BatchProvisionPlan,
        continue_on_error: bool = False,
        deadline: Optional[Deadline] = None,
    ) -> list[ProvisionResult]:
        """Provision VMs in plan order, stopping at the first failure unless told not to."""
        deadline = deadline or Deadline()
        results = []
        for i, plan in enumerate(batch.vms, 1):
            if deadline.cancelled:
                logger.warning(f"Batch cancelled before {plan.vm_name}")
                break
            logger.info(f"[bold]VM {i}/{len(batch.vms)}[/bold]")
            result = self.run(plan, deadline)
            results.append(result)
            if not result.success and not continue_on_error:
                logger.error(f"Stopping batch after failure of {plan.vm_name}")
                break
        return results

    # ─── Stage implementations ───────────────────────────────────────

    def _provisioner(self, options: ReconcileOptions) -> InstanceProvisioner:
        resolver = VolumeResolver(self.clients.block_storage, options.unsafe_volume_by_name)
        return InstanceProvisioner(
            self.clients.compute,
            resolver,
            wait_timeout=options.wait_timeout,
            poll_interval=options.poll_interval,
        )

    def _stage_inventory(self, state: ProvisionState, deadline: Deadline) -> None:
        deadline.check()
        state.vm = self.inventory.get_source_vm(state.plan.vm_name)
        if not state.vm.disks:
            raise ReconcileError(f"VM {state.vm.name} has no disks to attach")

    def _stage_volumes(self, state: ProvisionState, deadline: Deadline) -> None:
        state.block_devices = self._provisioner(state.options).block_devices(state.vm, deadline)

    def _stage_ports(self, state: ProvisionState, deadline: Deadline) -> None:
        reconciler = PortReconciler(self.clients.networking, state.options.security_groups)
        mappings = state.plan.network_mappings
        nics = reconciler.check_mappings(state.vm, mappings)
        # recorded one by one so a later failure still reports earlier ports
        for mapping, nic in zip(mappings, nics):
            state.ports.append(reconciler.ensure_port(mapping, nic, deadline))

    def _stage_instance(self, state: ProvisionState, deadline: Deadline) -> None:
        state.instance = self._provisioner(state.options).submit(
            state.vm, state.plan.flavor, state.ports, state.block_devices, deadline
        )
