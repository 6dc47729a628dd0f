# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/provider/binding.py
"""
Resolves the folder and resource pool MoIDs a new VM is created under.
"""
from __future__ import annotations

from typing import Any

from ..api import constants as C
from ..api.types import VirtualMachine
from ..controlplane import topology
from ..vmware.resourcepool import get_child_folder, get_child_resource_pool
from .args import VMCreateArgs


def _moid(obj: Any) -> str:
    return str(getattr(obj, "_moId", "") or "")


def resolve_folder_and_pool(store: Any, client: Any, vm: VirtualMachine, args: VMCreateArgs) -> None:
    """
    Fills args.folder_moid and args.resource_pool_moid.

    When placement already chose a pool only the namespace folder is looked
    up. Child pools and folders named by the resource policy must already
    exist; a missing child raises NotFoundError.
    """
    if not args.resource_pool_moid:
        folder_moid, rp_moid = topology.get_namespace_folder_and_pool_moid(
            store, vm.metadata.label(C.ZONE_LABEL), vm.namespace
        )
        if args.child_resource_pool_name:
            rp_moid = _moid(get_child_resource_pool(client, rp_moid, args.child_resource_pool_name))
        args.resource_pool_moid = rp_moid
        args.folder_moid = folder_moid
    else:
        args.folder_moid = topology.get_namespace_folder_moid(store, vm.namespace)

    if args.child_folder_name:
        args.folder_moid = _moid(get_child_folder(client, args.folder_moid, args.child_folder_name))
