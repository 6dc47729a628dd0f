# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/provider/prereqs.py
"""
Fetches the objects a VM depends on: class, image, resource policy and
metadata source. A missing dependency marks the VM's prereq condition
False with a reason naming what is missing.
"""
from __future__ import annotations

import json
from typing import Any, Optional

from ..api import constants as C
from ..api.types import (
    Condition,
    VirtualMachine,
    VirtualMachineClass,
    VirtualMachineImage,
    VirtualMachineSetResourcePolicy,
    VMMetadata,
    set_condition,
)
from ..core.exceptions import NotFoundError, ValidationError
from ..vmware.config_spec import ConfigSpec, parse_class_config_spec


def mark_prereq_ready(vm: VirtualMachine) -> None:
    set_condition(vm.status.conditions, Condition(type=C.PREREQ_READY_CONDITION, status="True"))


def _mark_not_ready(vm: VirtualMachine, reason: str, message: str) -> None:
    set_condition(
        vm.status.conditions,
        Condition(type=C.PREREQ_READY_CONDITION, status="False", reason=reason, message=message),
    )


def get_vm_class(store: Any, vm: VirtualMachine) -> VirtualMachineClass:
    try:
        return store.get_vm_class(vm.spec.class_name)
    except NotFoundError as e:
        msg = f"Failed to get VirtualMachineClass {vm.spec.class_name}"
        _mark_not_ready(vm, "VirtualMachineClassNotFound", msg)
        raise e.with_context(vm=vm.namespaced_name, vm_class=vm.spec.class_name)


def get_vm_image(store: Any, vm: VirtualMachine) -> VirtualMachineImage:
    try:
        return store.get_vm_image(vm.spec.image_name)
    except NotFoundError as e:
        msg = f"Failed to get VirtualMachineImage {vm.spec.image_name}"
        _mark_not_ready(vm, "VirtualMachineImageNotFound", msg)
        raise e.with_context(vm=vm.namespaced_name, image=vm.spec.image_name)


def get_resource_policy(store: Any, vm: VirtualMachine) -> Optional[VirtualMachineSetResourcePolicy]:
    name = vm.spec.resource_policy_name
    if not name:
        return None
    try:
        return store.get_resource_policy(vm.namespace, name)
    except NotFoundError as e:
        _mark_not_ready(vm, "VirtualMachineSetResourcePolicyNotFound", f"Failed to get VirtualMachineSetResourcePolicy {name}")
        raise e.with_context(vm=vm.namespaced_name, resource_policy=name)


def get_vm_metadata(store: Any, vm: VirtualMachine) -> Optional[VMMetadata]:
    ref = vm.spec.vm_metadata
    if ref is None:
        return None
    try:
        if ref.config_map_name:
            data = store.get_config_map(vm.namespace, ref.config_map_name)
        elif ref.secret_name:
            data = store.get_secret(vm.namespace, ref.secret_name)
        else:
            data = {}
    except NotFoundError as e:
        source = ref.config_map_name or ref.secret_name
        _mark_not_ready(vm, "VirtualMachineMetadataNotFound", f"Failed to get VM metadata source {source}")
        raise e.with_context(vm=vm.namespaced_name, metadata=source)
    return VMMetadata(transport=ref.transport, data=dict(data))


def get_class_config_spec(vm_class: VirtualMachineClass) -> Optional[ConfigSpec]:
    raw = vm_class.spec.config_spec
    if not raw:
        return None
    try:
        return parse_class_config_spec(raw)
    except (ValueError, json.JSONDecodeError) as e:
        raise ValidationError(
            code=2,
            msg=f"VirtualMachineClass {vm_class.metadata.name} has an invalid configSpec: {e}",
            cause=e,
        )


def has_pvc(vm: VirtualMachine) -> bool:
    return any(v.persistent_volume_claim is not None for v in vm.spec.volumes)
