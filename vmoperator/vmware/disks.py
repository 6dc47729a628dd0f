# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/vmware/disks.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List

from ..api.types import VirtualMachineVolume
from ..core.exceptions import ValidationError


def _is_virtual_disk(device: Any) -> bool:
    return type(device).__name__.split(".")[-1] == "VirtualDisk" or hasattr(device, "capacityInBytes")


def disk_resize_device_changes(volumes: Iterable[VirtualMachineVolume], devices: Iterable[Any]) -> List[Dict[str, Any]]:
    """
    Edit changes growing the VM's existing disks to the capacities requested
    by vsphereVolume entries. Disks are matched by device key. Shrinking and
    unknown keys are rejected; nothing is changed in that case.
    """
    disks = {int(d.key): d for d in devices if _is_virtual_disk(d)}
    pending = []

    for volume in volumes:
        vv = volume.vsphere_volume
        if vv is None or vv.device_key is None:
            continue

        disk = disks.get(int(vv.device_key))
        if disk is None:
            raise ValidationError(
                code=2,
                msg=f"could not find volume with device key {vv.device_key}",
                context={"volume": volume.name, "device_key": vv.device_key},
            )

        current = int(disk.capacityInBytes or 0)
        wanted = int(vv.capacity)
        if wanted < current:
            raise ValidationError(
                code=2,
                msg=f"cannot shrink disk with device key {vv.device_key} from {current} bytes to {wanted} bytes",
                context={"volume": volume.name, "device_key": vv.device_key},
            )
        if wanted > current:
            pending.append((disk, wanted))

    changes: List[Dict[str, Any]] = []
    for disk, wanted in pending:
        disk.capacityInBytes = wanted
        disk.capacityInKB = wanted // 1024
        changes.append({"_typeName": "VirtualDeviceConfigSpec", "operation": "edit", "device": disk})
    return changes
