"""Tests for resolving source disks to pre-created volumes."""

import logging

import pytest

from vmware2openstack.exceptions import AmbiguousMatchError, VolumeNotFound
from vmware2openstack.openstack.volumes import (
    VolumeResolver,
    legacy_volume_name,
    volume_metadata,
    volume_name,
)


class TestNaming:
    def test_current_scheme_uses_device_key(self, source_vm):
        disk = source_vm.disks[0]
        assert volume_name("vm-42", disk) == "vm-42-2000"
        assert volume_metadata("vm-42", disk) == {"migrate_kit": "true", "vm": "vm-42", "disk": "2000"}

    def test_legacy_scheme_uses_disk_object_id(self, source_vm):
        assert legacy_volume_name("vm-42", source_vm.disks[0]) == "vm-42-1-2000"


class TestResolve:
    def test_single_current_match(self, source_vm, block_storage):
        resolver = VolumeResolver(block_storage)
        volume = resolver.resolve("vm-42", source_vm.disks[1])

        assert volume.id == "vol-b"
        assert volume.status == "available"
        assert block_storage.get_calls == ["vol-b"]

    def test_current_match_never_queries_legacy(self, source_vm, block_storage):
        VolumeResolver(block_storage).resolve("vm-42", source_vm.disks[0])
        assert [name for name, _ in block_storage.list_calls] == ["vm-42-2000"]

    def test_metadata_must_match(self, source_vm, block_storage):
        block_storage.volumes[0]["metadata"]["vm"] = "vm-99"
        with pytest.raises(VolumeNotFound):
            VolumeResolver(block_storage).resolve("vm-42", source_vm.disks[0])

    def test_unsafe_mode_matches_on_name_only(self, source_vm, block_storage):
        block_storage.volumes[0]["metadata"] = {}
        volume = VolumeResolver(block_storage, unsafe_volume_by_name=True).resolve(
            "vm-42", source_vm.disks[0]
        )
        assert volume.id == "vol-a"
        assert block_storage.list_calls[0] == ("vm-42-2000", None)

    def test_legacy_fallback_warns(self, source_vm, caplog):
        from vmware2openstack.tests.conftest import FakeBlockStorage

        bs = FakeBlockStorage()
        bs.add("vol-old", "vm-42-1-2000", {"migrate_kit": "true", "vm": "vm-42", "disk": "1-2000"})

        with caplog.at_level(logging.WARNING):
            volume = VolumeResolver(bs).resolve("vm-42", source_vm.disks[0])

        assert volume.id == "vol-old"
        assert [name for name, _ in bs.list_calls] == ["vm-42-2000", "vm-42-1-2000"]
        assert any("deprecated" in r.getMessage() for r in caplog.records)

    def test_unsafe_mode_keeps_legacy_metadata(self, source_vm):
        from vmware2openstack.tests.conftest import FakeBlockStorage

        bs = FakeBlockStorage()
        lookups = VolumeResolver(bs, unsafe_volume_by_name=True).lookups("vm-42", source_vm.disks[0])
        assert lookups[0].metadata is None
        assert lookups[1].metadata == {"migrate_kit": "true", "vm": "vm-42", "disk": "1-2000"}

    def test_not_found_under_both_schemes(self, source_vm):
        from vmware2openstack.tests.conftest import FakeBlockStorage

        bs = FakeBlockStorage()
        with pytest.raises(VolumeNotFound) as exc:
            VolumeResolver(bs).resolve("vm-42", source_vm.disks[0])
        assert exc.value.disk_key == 2000
        assert len(bs.list_calls) == 2
        assert bs.get_calls == []

    def test_ambiguous_current_match(self, source_vm, block_storage):
        block_storage.add("vol-dup", "vm-42-2000",
                          {"migrate_kit": "true", "vm": "vm-42", "disk": "2000"})

        with pytest.raises(AmbiguousMatchError) as exc:
            VolumeResolver(block_storage).resolve("vm-42", source_vm.disks[0])

        assert exc.value.matches == ["vol-a", "vol-dup"]
        assert len(block_storage.list_calls) == 1
        assert block_storage.get_calls == []

    def test_ambiguous_legacy_match(self, source_vm):
        from vmware2openstack.tests.conftest import FakeBlockStorage

        bs = FakeBlockStorage()
        legacy = {"migrate_kit": "true", "vm": "vm-42", "disk": "1-2000"}
        bs.add("vol-x", "vm-42-1-2000", dict(legacy))
        bs.add("vol-y", "vm-42-1-2000", dict(legacy))

        with pytest.raises(AmbiguousMatchError):
            VolumeResolver(bs).resolve("vm-42", source_vm.disks[0])

    def test_schemes_are_not_merged(self, source_vm, block_storage):
        """A current hit wins even if a legacy volume also exists."""
        block_storage.add("vol-old", "vm-42-1-2000",
                          {"migrate_kit": "true", "vm": "vm-42", "disk": "1-2000"})
        volume = VolumeResolver(block_storage).resolve("vm-42", source_vm.disks[0])
        assert volume.id == "vol-a"
