# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/vmware/virtualmachine.py
"""
Per-VM vSphere calls and the reconfigure diff.

build_reconfigure_spec() compares the desired config spec with the live
vim.vm.ConfigInfo and returns only what differs, so an unchanged VM never
receives a ReconfigVM_Task.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from ..core.context import ReconcileContext
from ..core.exceptions import VMwareError
from .config_spec import ConfigSpec, is_ethernet_card, parse_hardware_version, to_vim
from .tasks import TaskWaiter

POWERED_ON = "poweredOn"
POWERED_OFF = "poweredOff"


def moid(obj: Any) -> str:
    return str(getattr(obj, "_moId", "") or "")


def power_state(vm_obj: Any) -> str:
    return str(vm_obj.runtime.powerState)


def hardware_version(vm_obj: Any) -> int:
    return parse_hardware_version(str(getattr(vm_obj.config, "version", "") or ""))


def power_off(vm_obj: Any, waiter: TaskWaiter, ctx: Optional[ReconcileContext] = None) -> None:
    if power_state(vm_obj) != POWERED_OFF:
        waiter.wait(vm_obj.PowerOffVM_Task(), op="power off", target=moid(vm_obj), ctx=ctx)


def power_on(vm_obj: Any, waiter: TaskWaiter, ctx: Optional[ReconcileContext] = None) -> None:
    if power_state(vm_obj) != POWERED_ON:
        waiter.wait(vm_obj.PowerOnVM_Task(), op="power on", target=moid(vm_obj), ctx=ctx)


def set_power_state(vm_obj: Any, desired: str, waiter: TaskWaiter, ctx: Optional[ReconcileContext] = None) -> bool:
    """Returns True when a power operation was issued."""
    if not desired or power_state(vm_obj) == desired:
        return False
    if desired == POWERED_ON:
        power_on(vm_obj, waiter, ctx)
    elif desired == POWERED_OFF:
        power_off(vm_obj, waiter, ctx)
    else:
        raise VMwareError(code=2, msg=f"unsupported power state {desired!r}")
    return True


def destroy(vm_obj: Any, waiter: TaskWaiter, ctx: Optional[ReconcileContext] = None) -> None:
    power_off(vm_obj, waiter, ctx)
    waiter.wait(vm_obj.Destroy_Task(), op="destroy", target=moid(vm_obj), ctx=ctx)


def reconfigure(client: Any, vm_obj: Any, spec: ConfigSpec, waiter: TaskWaiter, ctx: Optional[ReconcileContext] = None) -> None:
    waiter.wait(client.reconfigure_vm(vm_obj, spec), op="reconfigure", target=moid(vm_obj), ctx=ctx)


def relocate(client: Any, vm_obj: Any, spec: Dict[str, Any], waiter: TaskWaiter, ctx: Optional[ReconcileContext] = None) -> None:
    waiter.wait(client.relocate_vm(vm_obj, spec), op="relocate", target=moid(vm_obj), ctx=ctx)


def first_ethernet_card(vm_obj: Any) -> Any:
    for device in vm_obj.config.hardware.device or []:
        if is_ethernet_card(device):
            return device
    raise VMwareError(code=50, msg=f"VM {moid(vm_obj)} doesn't have a network card")


def network_backing_change(nic: Any, network: Any) -> Dict[str, Any]:
    """Edit change pointing `nic` at `network`."""
    nic.backing = to_vim(
        {
            "_typeName": "VirtualEthernetCardNetworkBackingInfo",
            "deviceName": str(network.name),
            "network": network,
        }
    )
    return {"_typeName": "VirtualDeviceConfigSpec", "operation": "edit", "device": nic}


# ---------------------------------------------------------------------------
# reconfigure diff
# ---------------------------------------------------------------------------


def _alloc_diff(desired: Optional[Mapping[str, Any]], live: Any) -> Optional[Dict[str, Any]]:
    if not desired:
        return None
    changed = {}
    for key in ("reservation", "limit"):
        if key in desired and desired[key] != getattr(live, key, None):
            changed[key] = desired[key]
    if not changed:
        return None
    return dict(desired)


def _live_extra_config(live_config: Any) -> Dict[str, str]:
    return {str(o.key): str(o.value) for o in getattr(live_config, "extraConfig", None) or []}


def merged_vapp_config_spec(in_props: Mapping[str, str], vm_props: List[Any]) -> Optional[Dict[str, Any]]:
    """
    vApp property edits for user-configurable properties that already exist
    on the VM (from the OVF) and whose value differs. Other keys are ignored.
    """
    edits = []
    for prop in vm_props or []:
        if not getattr(prop, "userConfigurable", False):
            continue
        if prop.id not in in_props or prop.value == in_props[prop.id]:
            continue
        prop.value = in_props[prop.id]
        edits.append({"_typeName": "VAppPropertySpec", "operation": "edit", "info": prop})
    if not edits:
        return None
    return {"_typeName": "VmConfigSpec", "property": edits}


def build_reconfigure_spec(
    desired: ConfigSpec,
    live_config: Any,
    *,
    extra_config: Optional[Mapping[str, str]] = None,
    first_boot: bool = False,
    disk_changes: Optional[List[Dict[str, Any]]] = None,
    vapp_config: Optional[Dict[str, Any]] = None,
) -> ConfigSpec:
    """Empty dict when the live VM already matches."""
    out: ConfigSpec = {}
    hw = getattr(live_config, "hardware", None)

    if desired.get("numCPUs") and desired["numCPUs"] != getattr(hw, "numCPU", None):
        out["numCPUs"] = desired["numCPUs"]
    if desired.get("memoryMB") and desired["memoryMB"] != getattr(hw, "memoryMB", None):
        out["memoryMB"] = desired["memoryMB"]

    cpu = _alloc_diff(desired.get("cpuAllocation"), getattr(live_config, "cpuAllocation", None))
    if cpu:
        out["cpuAllocation"] = cpu
    mem = _alloc_diff(desired.get("memoryAllocation"), getattr(live_config, "memoryAllocation", None))
    if mem:
        out["memoryAllocation"] = mem

    live_ec = _live_extra_config(live_config)
    ec_changes = [
        {"_typeName": "OptionValue", "key": k, "value": v}
        for k, v in sorted((extra_config or {}).items())
        if live_ec.get(k) != v
    ]
    if ec_changes:
        out["extraConfig"] = ec_changes

    if first_boot and desired.get("firmware") and desired["firmware"] != getattr(live_config, "firmware", None):
        out["firmware"] = desired["firmware"]

    if disk_changes:
        out["deviceChange"] = list(disk_changes)

    if vapp_config:
        out["vAppConfig"] = vapp_config

    if out:
        out["_typeName"] = "VirtualMachineConfigSpec"
    return out
