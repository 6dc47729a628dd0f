# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

from types import SimpleNamespace

import pytest

from vmoperator.api.types import VirtualMachineVolume, VsphereVolumeSource
from vmoperator.core.exceptions import ValidationError
from vmoperator.vmware.disks import disk_resize_device_changes

GiB = 1024 ** 3


def _disk(key, capacity):
    return SimpleNamespace(key=key, capacityInBytes=capacity, capacityInKB=capacity // 1024)


def _vol(name, key, capacity):
    return VirtualMachineVolume(name=name, vsphere_volume=VsphereVolumeSource(device_key=key, capacity=capacity))


@pytest.mark.unit
class TestDiskResize:
    def test_grow(self):
        disk = _disk(2000, 10 * GiB)

        changes = disk_resize_device_changes([_vol("root", 2000, 20 * GiB)], [disk])

        assert len(changes) == 1
        assert changes[0]["operation"] == "edit"
        assert changes[0]["device"] is disk
        assert disk.capacityInBytes == 20 * GiB
        assert disk.capacityInKB == 20 * GiB // 1024

    def test_equal_size_no_change(self):
        disk = _disk(2000, 10 * GiB)

        assert disk_resize_device_changes([_vol("root", 2000, 10 * GiB)], [disk]) == []

    def test_shrink_rejected(self):
        disk = _disk(2000, 10 * GiB)

        with pytest.raises(ValidationError, match="cannot shrink"):
            disk_resize_device_changes([_vol("root", 2000, 5 * GiB)], [disk])
        assert disk.capacityInBytes == 10 * GiB

    def test_unknown_key_rejected(self):
        with pytest.raises(ValidationError, match="device key 3000"):
            disk_resize_device_changes([_vol("data", 3000, GiB)], [_disk(2000, GiB)])

    def test_nothing_mutated_when_a_later_volume_fails(self):
        a = _disk(2000, 10 * GiB)
        b = _disk(2001, 10 * GiB)

        with pytest.raises(ValidationError):
            disk_resize_device_changes([_vol("a", 2000, 20 * GiB), _vol("b", 2001, GiB)], [a, b])
        assert a.capacityInBytes == 10 * GiB

    def test_non_disks_and_pvc_volumes_ignored(self):
        nic = SimpleNamespace(key=4000)
        pvc_only = VirtualMachineVolume(name="pvc")

        assert disk_resize_device_changes([pvc_only], [nic, _disk(2000, GiB)]) == []
