"""Tests for the click commands, with vCenter and OpenStack replaced by fakes."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from click.testing import CliRunner

from vmware2openstack import cli
from vmware2openstack.config import ReconcileOptions
from vmware2openstack.tests.conftest import NET_1, NET_2, SUBNET_1

MAPPING_1 = f"mac=aa:bb,network-id={NET_1}"
MAPPING_2 = f"mac=00:50:56:aa:bb:02,network-id={NET_2},subnet-id={SUBNET_1}"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def wired(monkeypatch, source_vm, clients):
    """Point the CLI helpers at in-memory fakes."""
    config = SimpleNamespace(reconcile=ReconcileOptions(poll_interval=0.01))
    vsphere = MagicMock()
    monkeypatch.setattr(cli, "load_config", lambda path: config)
    monkeypatch.setattr(cli, "read_source_vm", lambda cfg, name: source_vm)
    monkeypatch.setattr(cli, "connect_vsphere", lambda cfg: vsphere)
    monkeypatch.setattr(cli, "connect_openstack", lambda cfg, deadline=None: clients)
    monkeypatch.setattr(
        "vmware2openstack.vmware.inventory.VMInventory",
        lambda client: SimpleNamespace(get_source_vm=lambda name: source_vm),
    )
    return SimpleNamespace(config=config, vsphere=vsphere, clients=clients)


def test_help(runner):
    result = runner.invoke(cli.main, ["--help"])
    assert result.exit_code == 0
    for command in ("inventory", "volumes", "ports", "provision", "provision-batch"):
        assert command in result.output


def test_ports_creates_then_reuses(runner, wired, networking):
    args = ["ports", "--vm", "web-prod-01", "--network-mapping", MAPPING_1,
            "--network-mapping", MAPPING_2, "--security-group", "sg-web"]

    first = runner.invoke(cli.main, args)
    second = runner.invoke(cli.main, args)

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    assert "created" in first.output
    assert "reused" in second.output
    assert len(networking.created) == 2
    assert networking.created[1]["security_groups"] == ["sg-web"]


def test_ports_unknown_mac_exits_nonzero(runner, wired, networking):
    result = runner.invoke(cli.main, ["ports", "--vm", "web-prod-01",
                                      "--network-mapping", f"mac=de:ad:be:ef:00:01,network-id={NET_1}"])
    assert result.exit_code == 1
    assert networking.created == []


def test_bad_mapping_is_usage_error(runner, wired):
    result = runner.invoke(cli.main, ["ports", "--vm", "web-prod-01",
                                      "--network-mapping", "mac=aa:bb,vlan=3"])
    assert result.exit_code == 2
    assert "--network-mapping" in result.output


def test_volumes_lists_each_disk(runner, wired):
    result = runner.invoke(cli.main, ["volumes", "--vm", "web-prod-01"])
    assert result.exit_code == 0, result.output
    assert "vol-a" in result.output
    assert "vol-b" in result.output


def test_volumes_missing_disk_exits_nonzero(runner, wired, block_storage):
    del block_storage.volumes[1]
    result = runner.invoke(cli.main, ["volumes", "--vm", "web-prod-01"])
    assert result.exit_code == 1


def test_provision(runner, wired, compute):
    result = runner.invoke(cli.main, ["provision", "--vm", "web-prod-01", "--flavor", "m1.large",
                                      "--network-mapping", MAPPING_1])
    assert result.exit_code == 0, result.output
    assert "server-1" in result.output
    assert compute.created[0]["flavorRef"] == "m1.large"
    wired.vsphere.disconnect.assert_called_once()


def test_provision_failure_exits_nonzero(runner, wired, block_storage, compute, networking):
    block_storage.add("vol-dup", "vm-42-2000", {"migrate_kit": "true", "vm": "vm-42", "disk": "2000"})
    result = runner.invoke(cli.main, ["provision", "--vm", "web-prod-01", "--flavor", "m1.large",
                                      "--network-mapping", MAPPING_1])
    assert result.exit_code == 1
    assert "volumes" in result.output
    assert compute.created == []
    assert networking.created == []


def test_provision_batch(runner, wired, tmp_path, compute):
    plan = tmp_path / "plan.yaml"
    plan.write_text(
        "vms:\n"
        "  - vm_name: web-prod-01\n"
        "    flavor: m1.large\n"
        "    network_mappings:\n"
        f"      - {MAPPING_1}\n"
    )
    result = runner.invoke(cli.main, ["provision-batch", "--plan", str(plan)])
    assert result.exit_code == 0, result.output
    assert len(compute.created) == 1


def test_provision_batch_empty_plan(runner, wired, tmp_path):
    plan = tmp_path / "plan.yaml"
    plan.write_text("")
    result = runner.invoke(cli.main, ["provision-batch", "--plan", str(plan)])
    assert result.exit_code == 1
    assert "Invalid plan" in result.output
