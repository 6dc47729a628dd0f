# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/orchestrator/vm_reconciler.py
"""
VirtualMachine reconciler.

One pass per key:
  - object gone                  -> nothing to do
  - deletionTimestamp set        -> delete the vSphere VM (unless exported),
                                    phase Deleted, drop the finalizer
  - otherwise                    -> ensure finalizer, create or update

Metadata (finalizer, placement annotations and labels) is persisted even
when provisioning fails so that placement decisions survive a retry.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from ..api import constants as C
from ..api.types import VirtualMachine, VMPhase
from ..core.config import OperatorConfig
from ..core.context import ReconcileContext
from ..core.exceptions import NotFoundError
from ..core.logger import Log
from .result import ReconcileResult


class VirtualMachineReconciler:
    kind = "VirtualMachine"

    def __init__(self, store: Any, provider: Any, config: OperatorConfig, *, logger: Optional[logging.Logger] = None):
        self.store = store
        self.provider = provider
        self.config = config
        self.logger = logger or Log.get("vm-controller")

    def reconcile(self, namespace: str, name: str, ctx: ReconcileContext) -> ReconcileResult:
        ctx = ctx.with_values(vm=f"{namespace}/{name}")
        try:
            vm = self.store.get_vm(namespace, name)
        except NotFoundError:
            Log.trace(ctx.log, "VirtualMachine is gone")
            return ReconcileResult.done()

        if vm.metadata.being_deleted:
            self._reconcile_delete(vm, ctx)
            return ReconcileResult.done()
        return self._reconcile_normal(vm, ctx)

    def _reconcile_delete(self, vm: VirtualMachine, ctx: ReconcileContext) -> None:
        if C.VM_FINALIZER not in vm.metadata.finalizers:
            return

        if vm.metadata.has_annotation(C.EXPORT_ANNOTATION):
            ctx.log.info("VirtualMachine was exported; keeping the vSphere VM")
        else:
            Log.step(ctx.log, "Deleting VirtualMachine")
            self.provider.delete_virtual_machine(vm, ctx)

        vm.status.phase = VMPhase.DELETED.value
        self.store.update_vm_status(vm)
        vm.metadata.finalizers = [f for f in vm.metadata.finalizers if f != C.VM_FINALIZER]
        self.store.update_vm(vm)
        Log.ok(ctx.log, "VirtualMachine deleted")

    def _reconcile_normal(self, vm: VirtualMachine, ctx: ReconcileContext) -> ReconcileResult:
        if C.VM_FINALIZER not in vm.metadata.finalizers:
            vm.metadata.finalizers.append(C.VM_FINALIZER)
            self.store.update_vm(vm)

        try:
            ready = self.provider.create_or_update_virtual_machine(vm, ctx)
        except Exception:
            self._persist_metadata(vm, ctx)
            raise

        self.store.update_vm(vm)
        self.store.update_vm_status(vm)
        if not ready:
            return ReconcileResult.not_ready(self.config.not_ready_requeue_s)
        return ReconcileResult.done()

    def _persist_metadata(self, vm: VirtualMachine, ctx: ReconcileContext) -> None:
        try:
            self.store.update_vm(vm)
        except Exception as e:
            Log.warn(ctx.log, "Failed to persist VirtualMachine metadata after error", vm=vm.namespaced_name, error=str(e))
