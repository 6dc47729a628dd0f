# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/vmware/resourcepool.py
"""
Resource pool and folder helpers keyed by MoID.

The reconcile hot path only looks children up; creation and deletion are
used by resource policy management and tooling.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from ..api.types import ResourcePoolSpec
from ..core.context import ReconcileContext
from ..core.exceptions import NotFoundError, TaskFailedError, VMwareError
from .config_spec import to_vim
from .tasks import TaskWaiter


def _moid(obj: Any) -> str:
    return str(getattr(obj, "_moId", "") or "")


def _kind(obj: Any) -> str:
    return type(obj).__name__.split(".")[-1]


def get_resource_pool_by_moid(client: Any, rp_moid: str) -> Any:
    rp = client.ref("ResourcePool", rp_moid)
    if not client.exists(rp):
        raise NotFoundError(code=44, msg=f"ResourcePool {rp_moid} not found", context={"resource_pool": rp_moid})
    return rp


def get_resource_pool_owner(client: Any, rp_moid: str) -> str:
    """MoID of the ClusterComputeResource owning the pool."""
    rp = client.ref("ResourcePool", rp_moid)
    owner = getattr(rp, "owner", None)
    if owner is None:
        raise VMwareError(code=50, msg=f"ResourcePool {rp_moid} has no owner", context={"resource_pool": rp_moid})
    return _moid(owner)


def _find_child(client: Any, parent: Any, name: str, expected: str) -> Optional[Any]:
    child = client.find_child(parent, name)
    if child is None:
        return None
    if _kind(child) != expected:
        raise VMwareError(
            code=50,
            msg=f"{expected} child {name!r} is not a {expected} but a {_kind(child)}",
            context={"parent": _moid(parent), "name": name},
        )
    return child


def find_child_resource_pool(client: Any, parent_rp_moid: str, name: str) -> Optional[Any]:
    return _find_child(client, client.ref("ResourcePool", parent_rp_moid), name, "ResourcePool")


def get_child_resource_pool(client: Any, parent_rp_moid: str, name: str) -> Any:
    child = find_child_resource_pool(client, parent_rp_moid, name)
    if child is None:
        raise NotFoundError(
            code=44,
            msg=f"ResourcePool child {name!r} not found under parent ResourcePool {parent_rp_moid}",
            context={"parent": parent_rp_moid, "name": name},
        )
    return child


def does_child_resource_pool_exist(client: Any, parent_rp_moid: str, name: str) -> bool:
    return find_child_resource_pool(client, parent_rp_moid, name) is not None


def get_child_folder(client: Any, parent_folder_moid: str, name: str) -> Any:
    child = _find_child(client, client.ref("Folder", parent_folder_moid), name, "Folder")
    if child is None:
        raise NotFoundError(
            code=44,
            msg=f"Folder child {name!r} not found under parent Folder {parent_folder_moid}",
            context={"parent": parent_folder_moid, "name": name},
        )
    return child


def resource_config_spec(spec: ResourcePoolSpec) -> Dict[str, Any]:
    """
    ResourceConfigSpec for a child pool. Unset reservations are 0 and unset
    limits are -1 (unlimited), with expandable reservations.
    """

    def alloc(reservation: int, limit: int) -> Dict[str, Any]:
        return {
            "_typeName": "ResourceAllocationInfo",
            "reservation": int(reservation or 0),
            "limit": int(limit) if limit else -1,
            "expandableReservation": True,
            "shares": {"_typeName": "SharesInfo", "level": "normal", "shares": 0},
        }

    return {
        "_typeName": "ResourceConfigSpec",
        "cpuAllocation": alloc(spec.reservations.cpu, spec.limits.cpu),
        "memoryAllocation": alloc(spec.reservations.memory_mb, spec.limits.memory_mb),
    }


def create_or_update_child_resource_pool(client: Any, parent_rp_moid: str, spec: ResourcePoolSpec) -> str:
    """MoID of the child pool `spec.name`, created when absent."""
    parent = client.ref("ResourcePool", parent_rp_moid)
    child = _find_child(client, parent, spec.name, "ResourcePool")
    config = to_vim(resource_config_spec(spec))
    if child is None:
        child = parent.CreateResourcePool(name=spec.name, spec=config)
    else:
        child.UpdateConfig(name=None, config=config)
    return _moid(child)


def delete_child_resource_pool(
    client: Any,
    waiter: TaskWaiter,
    parent_rp_moid: str,
    name: str,
    *,
    ctx: Optional[ReconcileContext] = None,
) -> None:
    """Destroys the child pool; an absent child is not an error."""
    child = find_child_resource_pool(client, parent_rp_moid, name)
    if child is None:
        return
    rp_moid = _moid(child)
    try:
        waiter.wait(child.Destroy_Task(), op="destroy ResourcePool", target=rp_moid, ctx=ctx)
    except TaskFailedError as e:
        raise TaskFailedError(
            code=e.code,
            msg=f"destroy ResourcePool {rp_moid} task failed: {e.msg}",
            cause=e,
            context=dict(e.context or {}, resource_pool=rp_moid),
        )
