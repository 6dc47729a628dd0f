# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/controlplane/topology.py
"""
Namespace folder and resource pool lookups over AvailabilityZone objects.

An AvailabilityZone maps each Supervisor namespace to the vSphere folder
that holds its VMs and to one or more resource pools (one per cluster in
the zone).
"""
from __future__ import annotations

from typing import Any, Dict, List, Tuple

from ..api.types import AvailabilityZone
from ..core.exceptions import NotFoundError


def list_zones(store: Any) -> List[AvailabilityZone]:
    zones = store.list_availability_zones()
    if not zones:
        raise NotFoundError(code=44, msg="no AvailabilityZones found")
    return zones


def get_zone(store: Any, zone_name: str) -> AvailabilityZone:
    for zone in list_zones(store):
        if zone.name == zone_name:
            return zone
    raise NotFoundError(code=44, msg=f"AvailabilityZone {zone_name!r} not found", context={"zone": zone_name})


def get_namespace_folder_moid(store: Any, namespace: str) -> str:
    """The namespace folder is shared by every zone; the first match wins."""
    for zone in list_zones(store):
        info = zone.namespaces.get(namespace)
        if info is not None and info.folder_moid:
            return info.folder_moid
    raise NotFoundError(code=44, msg=f"namespace {namespace!r} has no folder in any AvailabilityZone", context={"namespace": namespace})


def get_namespace_folder_and_pool_moid(store: Any, zone_name: str, namespace: str) -> Tuple[str, str]:
    """
    Root folder and resource pool of `namespace` in `zone_name`. With no zone
    name the first zone that carries the namespace is used.
    """
    zones = [get_zone(store, zone_name)] if zone_name else list_zones(store)
    for zone in zones:
        info = zone.namespaces.get(namespace)
        if info is None:
            continue
        if not info.folder_moid or not info.pool_moids:
            raise NotFoundError(
                code=44,
                msg=f"namespace {namespace!r} is missing folder or resource pool in zone {zone.name!r}",
                context={"namespace": namespace, "zone": zone.name},
            )
        return info.folder_moid, info.pool_moids[0]
    raise NotFoundError(
        code=44,
        msg=f"namespace {namespace!r} not found in AvailabilityZone {zone_name or '(any)'}",
        context={"namespace": namespace, "zone": zone_name},
    )


def get_namespace_pool_moids_by_zone(store: Any, zone_name: str, namespace: str) -> Dict[str, List[str]]:
    """zone name -> namespace pool MoIDs, limited to `zone_name` when set."""
    zones = [get_zone(store, zone_name)] if zone_name else list_zones(store)
    out: Dict[str, List[str]] = {}
    for zone in zones:
        info = zone.namespaces.get(namespace)
        if info is not None and info.pool_moids:
            out[zone.name] = list(info.pool_moids)
    return out
