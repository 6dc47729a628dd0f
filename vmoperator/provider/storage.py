# SPDX-License-Identifier: LGPL-3.0-or-later
# vmoperator/provider/storage.py
from __future__ import annotations

from typing import Any, Dict, List

from ..api import constants as C
from ..api.types import VirtualMachine
from ..core.exceptions import ValidationError


def vm_storage_class_names(vm: VirtualMachine) -> List[str]:
    """The VM's own storage class plus those of its instance volumes, in order."""
    names: List[str] = []
    if vm.spec.storage_class:
        names.append(vm.spec.storage_class)
    for vol in vm.spec.volumes:
        pvc = vol.persistent_volume_claim
        if pvc is not None and pvc.instance_volume_claim is not None:
            sc = pvc.instance_volume_claim.storage_class
            if sc and sc not in names:
                names.append(sc)
    return names


def get_vm_storage_policy_ids(store: Any, vm: VirtualMachine) -> Dict[str, str]:
    """storage class name -> storage policy ID"""
    out: Dict[str, str] = {}
    for name in vm_storage_class_names(vm):
        params = store.get_storage_class_parameters(name)
        policy_id = params.get(C.STORAGE_POLICY_ID_PARAMETER, "")
        if not policy_id:
            raise ValidationError(
                code=2,
                msg=f"StorageClass {name} does not have '{C.STORAGE_POLICY_ID_PARAMETER}' parameter",
                context={"storage_class": name},
            )
        out[name] = policy_id
    return out


def get_disk_provisioning_type(store: Any, storage_class: str) -> str:
    """
    Provisioning type requested by the storage class (thin, thick,
    eagerZeroedThick). Empty means the storage policy decides.
    """
    if not storage_class:
        return ""
    return store.get_storage_class_parameters(storage_class).get(C.DISK_PROVISIONING_PARAMETER, "")
