# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/vmware/placement.py
"""
Pre-create placement: pick the resource pool (and host, for instance
storage) a new VM lands on.

Placement only runs when something must be chosen:
  - zone placement: the VM carries no zone label yet
  - host placement: instance storage pins the VM to one ESXi host
Otherwise the resource binding step derives the pool from topology.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from ..api import constants as C
from ..api.types import VirtualMachine
from ..controlplane import topology
from ..core.exceptions import PlacementError
from ..core.logger import Log
from ..provider.args import VMCreateArgs
from ..provider.instance_storage import is_configured as instance_storage_configured
from .config_spec import ConfigSpec
from .resourcepool import find_child_resource_pool, get_resource_pool_owner


@dataclass
class Recommendation:
    pool_moid: str
    host_moid: str = ""
    rating: int = 0


@dataclass
class PlacementResult:
    pool_moid: str
    host_moid: str = ""
    zone_name: str = ""
    zone_placement: bool = False
    instance_storage_placement: bool = False


class PlacementScorer(Protocol):
    def recommend(self, candidates: List[str], spec: ConfigSpec, *, need_host: bool) -> Optional[Recommendation]:
        ...


def _moid(obj: Any) -> str:
    return str(getattr(obj, "_moId", "") or "")


class ClusterPlacementScorer:
    """
    Asks DRS (ClusterComputeResource.PlaceVm) of each candidate pool's
    cluster and keeps the highest rated recommendation.
    """

    def __init__(self, client: Any, *, logger: Optional[logging.Logger] = None):
        self.client = client
        self.logger = logger or Log.get("placement")

    def recommend(self, candidates: List[str], spec: ConfigSpec, *, need_host: bool) -> Optional[Recommendation]:
        best: Optional[Recommendation] = None
        for pool_moid in candidates:
            cluster_moid = get_resource_pool_owner(self.client, pool_moid)
            cluster = self.client.ref("ClusterComputeResource", cluster_moid)
            result = self.client.place_vm(cluster, spec)
            for rec in getattr(result, "recommendations", None) or []:
                host_moid = ""
                for action in getattr(rec, "action", None) or []:
                    host = getattr(action, "targetHost", None)
                    if host is not None:
                        host_moid = _moid(host)
                        break
                if need_host and not host_moid:
                    continue
                rating = int(getattr(rec, "rating", 0) or 0)
                Log.trace(self.logger, "candidate pool=%s host=%s rating=%d", pool_moid, host_moid, rating)
                if best is None or rating > best.rating:
                    best = Recommendation(pool_moid=pool_moid, host_moid=host_moid, rating=rating)
        return best


class PlacementResolver:
    def __init__(self, store: Any, client: Any, scorer: PlacementScorer, *, logger: Optional[logging.Logger] = None):
        self.store = store
        self.client = client
        self.scorer = scorer
        self.logger = logger or Log.get("placement")

    def _candidates(self, vm: VirtualMachine, zone_name: str, child_pool_name: str) -> Dict[str, str]:
        """pool MoID -> zone name"""
        out: Dict[str, str] = {}
        by_zone = topology.get_namespace_pool_moids_by_zone(self.store, zone_name, vm.namespace)
        for zone in sorted(by_zone):
            for pool_moid in by_zone[zone]:
                if child_pool_name:
                    child = find_child_resource_pool(self.client, pool_moid, child_pool_name)
                    if child is None:
                        self.logger.debug("no child pool %r under %s (zone %s)", child_pool_name, pool_moid, zone)
                        continue
                    pool_moid = _moid(child)
                out[pool_moid] = zone
        return out

    def place(self, vm: VirtualMachine, args: VMCreateArgs) -> Optional[PlacementResult]:
        zone_label = vm.metadata.label(C.ZONE_LABEL)
        zone_placement = not zone_label
        host_placement = instance_storage_configured(vm)

        if not zone_placement and not host_placement:
            return None

        candidates = self._candidates(vm, zone_label, args.child_resource_pool_name)
        if not candidates:
            raise PlacementError(
                code=60,
                msg=f"no placement candidates for {vm.namespaced_name}",
                context={"zone": zone_label, "child_pool": args.child_resource_pool_name},
            )

        if len(candidates) == 1 and not host_placement:
            pool_moid = next(iter(candidates))
            rec: Optional[Recommendation] = Recommendation(pool_moid=pool_moid)
        else:
            rec = self.scorer.recommend(list(candidates), args.placement_config_spec, need_host=host_placement)
        if rec is None:
            raise PlacementError(code=60, msg=f"placement returned no recommendation for {vm.namespaced_name}")

        result = PlacementResult(
            pool_moid=rec.pool_moid,
            host_moid=rec.host_moid,
            zone_name=candidates.get(rec.pool_moid, zone_label),
            zone_placement=zone_placement,
            instance_storage_placement=host_placement,
        )
        self._apply(vm, args, result)
        return result

    def _apply(self, vm: VirtualMachine, args: VMCreateArgs, result: PlacementResult) -> None:
        args.resource_pool_moid = result.pool_moid
        if result.host_moid:
            args.host_moid = result.host_moid

        if result.instance_storage_placement:
            if not args.host_moid:
                raise PlacementError(code=60, msg="placement result missing host required for instance storage")
            host_fqdn = self.client.host_fqdn(args.host_moid)
            vm.metadata.set_annotation(C.INSTANCE_STORAGE_SELECTED_NODE_MOID_ANNOTATION, args.host_moid)
            vm.metadata.set_annotation(C.INSTANCE_STORAGE_SELECTED_NODE_ANNOTATION, host_fqdn)

        if result.zone_placement:
            vm.metadata.set_label(C.ZONE_LABEL, result.zone_name)

        self.logger.info(
            "placed %s: pool=%s host=%s zone=%s", vm.namespaced_name, result.pool_moid, result.host_moid or "-", result.zone_name or "-"
        )
