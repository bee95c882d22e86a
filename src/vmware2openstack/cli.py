"""CLI entry point for vmware2openstack."""

from __future__ import annotations

import json
import sys
from typing import Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from vmware2openstack import __version__
from vmware2openstack.config import (
    AppConfig,
    BatchProvisionPlan,
    NetworkMappingTable,
    VMProvisionPlan,
)
from vmware2openstack.exceptions import ReconcileError
from vmware2openstack.utils.deadline import Deadline
from vmware2openstack.utils.logging import set_log_level

console = Console()


def load_config(config_path: str | None) -> AppConfig:
    """Load configuration from file or environment."""
    try:
        if config_path:
            return AppConfig.from_yaml(config_path)
        return AppConfig.from_env_and_args()
    except (ValidationError, OSError) as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        console.print("Provide a --config file or set VCENTER_* and OS_* environment variables.")
        sys.exit(1)


def connect_vsphere(config: AppConfig):
    from vmware2openstack.vmware.client import VSphereClient

    client = VSphereClient()
    pw = config.vmware.password.get_secret_value() if config.vmware.password else ""
    try:
        with console.status("[bold green]Connecting to vCenter..."):
            client.connect(config.vmware.vcenter, config.vmware.username, pw,
                           port=config.vmware.port, insecure=config.vmware.insecure)
    except ConnectionError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    return client


def connect_openstack(config: AppConfig, deadline: Optional[Deadline] = None):
    from vmware2openstack.openstack.client import ClientSet

    try:
        with console.status("[bold green]Authenticating to OpenStack..."):
            return ClientSet.connect(config.openstack, deadline)
    except ReconcileError as e:
        console.print(f"[red]OpenStack connection failed: {e}[/red]")
        sys.exit(1)


def read_source_vm(config: AppConfig, vm_name: str):
    from vmware2openstack.vmware.inventory import VMInventory

    client = connect_vsphere(config)
    try:
        return VMInventory(client).get_source_vm(vm_name)
    except ReconcileError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    finally:
        client.disconnect()


def parse_mappings(values: tuple[str, ...]) -> NetworkMappingTable:
    try:
        return NetworkMappingTable.from_cli(values)
    except (ValidationError, ValueError) as e:
        raise click.BadParameter(str(e), param_hint="--network-mapping")


def print_result(result) -> None:
    if result.success:
        console.print(f"\n[bold green]✅ {result.vm_name} provisioned[/bold green]")
        console.print(f"  Server ID: {result.instance_id}")
        console.print(f"  Ports: {', '.join(result.port_ids) or 'none'}")
        console.print(f"  Duration: {result.duration}")
        return

    console.print(f"\n[bold red]❌ {result.vm_name} failed at stage '{result.failed_stage}'[/bold red]")
    console.print(f"  Error: {result.error}")
    if result.instance_created:
        console.print(f"  [yellow]Server {result.instance_id} exists but was not verified ACTIVE; "
                      f"inspect it before re-running[/yellow]")
    elif result.submission_unknown:
        console.print("  [yellow]The create request got no response; a server may exist. "
                      "Check for it before re-running[/yellow]")
    if result.created_port_ids:
        console.print(f"  Ports created this run: {', '.join(result.created_port_ids)}")


@click.group()
@click.version_option(version=__version__, prog_name="vmware2openstack")
@click.option("--log-level", default="INFO",
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
def main(log_level: str):
    """Provision OpenStack servers for VMware VMs.

    Resolves the pre-created Cinder volumes of a VM's disks, finds or
    creates Neutron ports for its NICs, and boots a Nova server on them.
    Safe to re-run after a partial failure.
    """
    set_log_level(log_level)


@main.command()
@click.option("--vm", required=True, help="Source VM name in vCenter")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file")
@click.option("--format", "fmt", type=click.Choice(["table", "json"]), default="table")
def inventory(vm: str, config_path: str | None, fmt: str):
    """Show the disks and NICs reconciliation will work from."""
    config = load_config(config_path)
    source = read_source_vm(config, vm)

    if fmt == "json":
        console.print_json(json.dumps(source.model_dump()))
        return

    disks = Table(title=f"Disks — {source.name} ({source.ref})")
    disks.add_column("Boot index", justify="right")
    disks.add_column("Key", justify="right", style="cyan")
    disks.add_column("Disk object ID")
    disks.add_column("Label")
    disks.add_column("Size (GB)", justify="right")
    for i, d in enumerate(source.disks):
        disks.add_row(str(i), str(d.key), d.disk_object_id, d.label, f"{d.size_gb:.1f}")
    console.print(disks)

    nics = Table(title="NICs")
    nics.add_column("MAC", style="cyan")
    nics.add_column("Label")
    nics.add_column("Summary")
    nics.add_column("Network", style="magenta")
    for n in source.nics:
        nics.add_row(n.mac_address, n.label, n.summary, n.network)
    console.print(nics)


@main.command()
@click.option("--vm", required=True, help="Source VM name in vCenter")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file")
@click.option("--unsafe-volume-by-name", is_flag=True, default=False,
              help="Match volumes by name only, ignoring ownership metadata")
def volumes(vm: str, config_path: str | None, unsafe_volume_by_name: bool):
    """Check that every disk resolves to exactly one volume (read-only)."""
    from vmware2openstack.openstack.volumes import VolumeResolver, volume_name

    config = load_config(config_path)
    source = read_source_vm(config, vm)

    clients = connect_openstack(config)
    resolver = VolumeResolver(
        clients.block_storage,
        unsafe_volume_by_name or config.reconcile.unsafe_volume_by_name,
    )

    table = Table(title=f"Volumes for {source.name} ({source.ref})")
    table.add_column("Boot index", justify="right")
    table.add_column("Disk", style="cyan")
    table.add_column("Expected name")
    table.add_column("Volume")
    table.add_column("Status")

    failed = False
    for i, disk in enumerate(source.disks):
        try:
            vol = resolver.resolve(source.ref, disk)
            table.add_row(str(i), str(disk.key), volume_name(source.ref, disk), vol.id, vol.status)
        except ReconcileError as e:
            failed = True
            table.add_row(str(i), str(disk.key), volume_name(source.ref, disk), "-", f"[red]{e}[/red]")

    console.print(table)
    if failed:
        sys.exit(1)


@main.command()
@click.option("--vm", required=True, help="Source VM name in vCenter")
@click.option("--network-mapping", "mappings", multiple=True, required=True,
              help="mac=..,network-id=..[,subnet-id=..][,ip=..] (repeatable, order is NIC order)")
@click.option("--security-group", "security_groups", multiple=True,
              help="Security group for managed-subnet ports (repeatable)")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file")
def ports(vm: str, mappings: tuple[str, ...], security_groups: tuple[str, ...],
          config_path: str | None):
    """Find or create the Neutron ports for a VM's mapped NICs."""
    from vmware2openstack.openstack.ports import PortReconciler

    table_in = parse_mappings(mappings)
    config = load_config(config_path)
    source = read_source_vm(config, vm)

    clients = connect_openstack(config)
    groups = list(security_groups) if security_groups else config.reconcile.security_groups
    try:
        result = PortReconciler(clients.networking, groups).reconcile(source, table_in)
    except ReconcileError as e:
        console.print(f"[bold red]❌ {e}[/bold red]")
        sys.exit(1)

    table = Table(title=f"Ports for {source.name}")
    table.add_column("#", justify="right")
    table.add_column("MAC", style="cyan")
    table.add_column("Network")
    table.add_column("Port")
    table.add_column("Action", style="green")
    for i, port in enumerate(result):
        table.add_row(str(i), port.mac_address, port.network_id, port.id,
                      "created" if port.created else "reused")
    console.print(table)


@main.command()
@click.option("--vm", required=True, help="Source VM name in vCenter")
@click.option("--flavor", required=True, help="Nova flavor reference")
@click.option("--network-mapping", "mappings", multiple=True,
              help="mac=..,network-id=..[,subnet-id=..][,ip=..] (repeatable, order is NIC order)")
@click.option("--security-group", "security_groups", multiple=True,
              help="Security group for managed-subnet ports (repeatable)")
@click.option("--unsafe-volume-by-name", is_flag=True, default=False,
              help="Match volumes by name only, ignoring ownership metadata")
@click.option("--timeout", type=float, default=None, help="Overall deadline in seconds")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file")
def provision(vm: str, flavor: str, mappings: tuple[str, ...], security_groups: tuple[str, ...],
              unsafe_volume_by_name: bool, timeout: float | None, config_path: str | None):
    """Reconcile volumes and ports, then create the server for one VM."""
    from vmware2openstack.pipeline.migration import ProvisionPipeline
    from vmware2openstack.vmware.inventory import VMInventory

    plan = VMProvisionPlan(
        vm_name=vm,
        flavor=flavor,
        network_mappings=parse_mappings(mappings),
        security_groups=list(security_groups) or None,
        unsafe_volume_by_name=True if unsafe_volume_by_name else None,
    )
    config = load_config(config_path)
    deadline = Deadline(timeout)

    client = connect_vsphere(config)
    try:
        clients = connect_openstack(config, deadline)
        pipeline = ProvisionPipeline(clients, VMInventory(client), config.reconcile)
        result = pipeline.run(plan, deadline)
    finally:
        client.disconnect()

    print_result(result)
    if not result.success:
        sys.exit(1)


@main.command("provision-batch")
@click.option("--plan", "plan_path", required=True, type=click.Path(exists=True),
              help="Batch provisioning plan YAML")
@click.option("--continue-on-error", is_flag=True, default=False,
              help="Keep going after a VM fails")
@click.option("--timeout", type=float, default=None, help="Overall deadline in seconds")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file")
def provision_batch(plan_path: str, continue_on_error: bool, timeout: float | None,
                    config_path: str | None):
    """Provision every VM of a batch plan, one at a time."""
    from vmware2openstack.pipeline.migration import ProvisionPipeline
    from vmware2openstack.vmware.inventory import VMInventory

    try:
        batch = BatchProvisionPlan.from_yaml(plan_path)
    except ValidationError as e:
        console.print(f"[red]Invalid plan {plan_path}: {e}[/red]")
        sys.exit(1)
    config = load_config(config_path)
    deadline = Deadline(timeout)

    client = connect_vsphere(config)
    try:
        clients = connect_openstack(config, deadline)
        pipeline = ProvisionPipeline(clients, VMInventory(client), config.reconcile)
        results = pipeline.run_batch(batch, continue_on_error=continue_on_error, deadline=deadline)
    finally:
        client.disconnect()

    table = Table(title="Batch results")
    table.add_column("VM", style="cyan")
    table.add_column("Result")
    table.add_column("Server")
    table.add_column("Failed stage")
    table.add_column("Error")
    for r in results:
        table.add_row(
            r.vm_name,
            "[green]ok[/green]" if r.success else "[red]failed[/red]",
            r.instance_id or "-",
            r.failed_stage or "",
            r.error or "",
        )
    console.print(table)

    skipped = len(batch.vms) - len(results)
    if skipped:
        console.print(f"[yellow]{skipped} VM(s) not attempted[/yellow]")
    if skipped or any(not r.success for r in results):
        sys.exit(1)


if __name__ == "__main__":
    main()
