# SPDX-License-Identifier: LGPL-3.0-or-later
# vmoperator/provider/instance_storage.py
from __future__ import annotations

import uuid

from ..api import constants as C
from ..api.types import (
    InstanceVolumeClaim,
    PersistentVolumeClaimSource,
    VirtualMachine,
    VirtualMachineClass,
    VirtualMachineVolume,
)


def is_configured(vm: VirtualMachine) -> bool:
    return any(
        v.persistent_volume_claim is not None and v.persistent_volume_claim.instance_volume_claim is not None
        for v in vm.spec.volumes
    )


def add_instance_storage_volumes(vm: VirtualMachine, vm_class: VirtualMachineClass) -> bool:
    """
    Materialises the class's instance storage as PVC volumes on the VM.
    Runs once: a VM that already carries instance volumes is left alone.
    Returns True when volumes were added.
    """
    if is_configured(vm):
        return False
    storage = vm_class.spec.hardware.instance_storage
    if not storage.volumes:
        return False
    for vol in storage.volumes:
        name = C.INSTANCE_STORAGE_PVC_NAME_PREFIX + str(uuid.uuid4())
        vm.spec.volumes.append(
            VirtualMachineVolume(
                name=name,
                persistent_volume_claim=PersistentVolumeClaimSource(
                    claim_name=name,
                    instance_volume_claim=InstanceVolumeClaim(storage_class=storage.storage_class, size=vol.size),
                ),
            )
        )
    return True
