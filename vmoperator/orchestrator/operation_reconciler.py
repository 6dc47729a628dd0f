# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/orchestrator/operation_reconciler.py
"""
Operation (migration request) reconciler.

Every OperationType maps to an ordered list of named steps. After each
step the step name is written to status.phase and persisted, so a
re-run starts after the last completed step and a finished Operation
(phase Completed) is never executed again.

  Import        CreateVM                    (entityName set)
                ImportEntities              (entity selector)
  Export        Export
  ColdMigration VerifySource -> VerifyDestination -> Export -> Relocate -> Import
  LiveMigration (no steps)

A failing step aborts the pipeline. Nothing already done is rolled back;
the MigrationStepError names the failed and the last completed step.
"""
from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..api import constants as C
from ..api.types import (
    Condition,
    EntityReference,
    ObjectMeta,
    Operation,
    OperationReference,
    OperationType,
    Plan,
    VirtualMachine,
    VirtualMachineStatus,
    VsphereVM,
    set_condition,
)
from ..core.context import ReconcileContext
from ..core.exceptions import Fatal, MigrationStepError, NotFoundError, UnsupportedError, VmOperatorError
from ..core.logger import Log
from ..core.logging_utils import log_step
from .result import ReconcileResult

PHASE_COMPLETED = "Completed"

StepFn = Callable[[Operation, ReconcileContext], None]
Step = Tuple[str, StepFn]


def import_operation_name(entity_name: str) -> str:
    return f"import-{entity_name}"


def import_plan_name(entity_name: str) -> str:
    return f"import-{entity_name}-plan"


class OperationReconciler:
    kind = "Operation"

    def __init__(
        self,
        store: Any,
        provider: Any,
        remote_factory: Any,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.remote_factory = remote_factory
        self.logger = logger or Log.get("operation-controller")

        self._handlers: Dict[OperationType, Callable[[Operation], List[Step]]] = {
            OperationType.IMPORT: self._import_steps,
            OperationType.EXPORT: self._export_steps,
            OperationType.COLD_MIGRATION: self._cold_migration_steps,
            OperationType.LIVE_MIGRATION: self._live_migration_steps,
        }
        missing = [t.value for t in OperationType if t not in self._handlers]
        if missing:
            raise Fatal(code=1, msg=f"no handler for operation types: {', '.join(missing)}")

    # ------------------------------------------------------------------
    # entry point
    # ------------------------------------------------------------------

    def reconcile(self, namespace: str, name: str, ctx: ReconcileContext) -> ReconcileResult:
        ctx = ctx.with_values(operation=f"{namespace}/{name}")
        try:
            op = self.store.get_operation(namespace, name)
        except NotFoundError:
            Log.trace(ctx.log, "Operation is gone")
            return ReconcileResult.done()

        if op.metadata.being_deleted or op.status.phase == PHASE_COMPLETED:
            return ReconcileResult.done()

        steps = self.steps_for(op)
        ctx = ctx.with_values(type=op.spec.operation_type)
        try:
            self._run_pipeline(op, steps, ctx)
        except MigrationStepError as e:
            set_condition(
                op.status.conditions,
                Condition(type=C.OPERATION_READY_CONDITION, status="False", reason=f"{e.context.get('step')}Failed", message=str(e)),
            )
            self._persist_status(op, ctx)
            raise
        return ReconcileResult.done()

    def steps_for(self, op: Operation) -> List[Step]:
        try:
            op_type = OperationType(op.spec.operation_type)
        except ValueError:
            raise UnsupportedError(
                code=2,
                msg=f"unsupported operation type {op.spec.operation_type!r}",
                context={"operation": op.namespaced_name},
            )
        return self._handlers[op_type](op)

    def _run_pipeline(self, op: Operation, steps: List[Step], ctx: ReconcileContext) -> None:
        names = [n for n, _ in steps]
        start = names.index(op.status.phase) + 1 if op.status.phase in names else 0
        last_completed = names[start - 1] if start else ""
        if start:
            ctx.log.info("Resuming after step %s", last_completed)

        for step_name, fn in steps[start:]:
            ctx.check(f"operation {op.namespaced_name}")
            try:
                with log_step(ctx.log, f"{op.spec.operation_type} step {step_name}"):
                    fn(op, ctx)
            except Exception as e:
                raise MigrationStepError(
                    code=1,
                    msg=f"{op.spec.operation_type} step {step_name} failed: {e}",
                    cause=e,
                    context={"operation": op.namespaced_name, "step": step_name, "last_completed_step": last_completed},
                )
            op.status.phase = step_name
            self.store.update_operation_status(op)
            last_completed = step_name

        op.status.phase = PHASE_COMPLETED
        set_condition(op.status.conditions, Condition(type=C.OPERATION_READY_CONDITION, status="True"))
        self.store.update_operation_status(op)
        Log.ok(ctx.log, "Operation completed")

    def _persist_status(self, op: Operation, ctx: ReconcileContext) -> None:
        try:
            self.store.update_operation_status(op)
        except VmOperatorError as e:
            Log.warn(ctx.log, "Failed to record Operation failure", operation=op.namespaced_name, error=str(e))

    # ------------------------------------------------------------------
    # pipelines
    # ------------------------------------------------------------------

    def _import_steps(self, op: Operation) -> List[Step]:
        if op.spec.entity_name:
            return [("CreateVM", self._step_create_vm)]
        return [("ImportEntities", self._step_import_entities)]

    def _export_steps(self, op: Operation) -> List[Step]:
        return [("Export", self._step_export)]

    def _cold_migration_steps(self, op: Operation) -> List[Step]:
        return [
            ("VerifySource", self._step_verify_source),
            ("VerifyDestination", self._step_verify_destination),
            ("Export", self._step_export),
            ("Relocate", self._step_relocate),
            ("Import", self._step_remote_import),
        ]

    def _live_migration_steps(self, op: Operation) -> List[Step]:
        return []

    # ------------------------------------------------------------------
    # steps
    # ------------------------------------------------------------------

    def _step_create_vm(self, op: Operation, ctx: ReconcileContext) -> None:
        name = op.spec.entity_name
        try:
            self.store.get_vm(op.namespace, name)
        except NotFoundError:
            vm = VirtualMachine(
                metadata=ObjectMeta(name=name, namespace=op.namespace),
                spec=copy.deepcopy(op.spec.vm_spec),
            )
            self.store.create_vm(vm)
            Log.ok(ctx.log, "VirtualMachine created from Operation", vm=vm.namespaced_name)
            return
        ctx.log.info("VirtualMachine %s/%s already exists", op.namespace, name)

    def _selected_vms(self, op: Operation) -> List[VsphereVM]:
        sel = op.spec.entities.entity_selector
        if sel is None:
            raise UnsupportedError(code=2, msg="unsupported entity reference: only entitySelector is supported")
        if sel.resource_pool:
            return self.provider.get_vsphere_vms_by_res_pool_name(sel.resource_pool)
        if sel.name_regex_pattern:
            raise UnsupportedError(code=2, msg="unsupported entity selector NameRegexPattern")
        if sel.selector is not None:
            raise UnsupportedError(code=2, msg="unsupported entity selector Selector")
        raise UnsupportedError(code=2, msg="unsupported entity selector")

    def resolve_entities(self, op: Operation) -> List[EntityReference]:
        return [
            EntityReference(kind=C.VSPHERE_VM_ENTITY_KIND, namespace="", name=v.name)
            for v in self._selected_vms(op)
        ]

    def _step_import_entities(self, op: Operation, ctx: ReconcileContext) -> None:
        vms = self._selected_vms(op)
        ctx.log.info("Resolved %d VM(s): %s", len(vms), ", ".join(v.name for v in vms))

        dest_ns = op.spec.destination.namespace or op.namespace
        folder_moid = self.provider.get_folder_moid_by_namespace(dest_ns)
        Log.step(ctx.log, "Moving VMs into namespace folder", folder=folder_moid, count=len(vms))
        self.provider.move_vms_into_folder(folder_moid, vms, ctx)

    def _step_export(self, op: Operation, ctx: ReconcileContext) -> None:
        try:
            vm = self.store.get_vm(op.namespace, op.spec.entity_name)
        except NotFoundError:
            if not op.status.entity_unique_id:
                raise
            ctx.log.info("VirtualMachine %s/%s is gone, already exported", op.namespace, op.spec.entity_name)
            return
        if not op.status.entity_unique_id and vm.status.unique_id:
            # a recorded MoID marks a missing VM as already exported
            op.status.entity_unique_id = vm.status.unique_id
            self.store.update_operation_status(op)
        if vm.metadata.set_annotation(C.EXPORT_ANNOTATION, "true"):
            self.store.update_vm(vm)
        if vm.metadata.being_deleted:
            return
        self.store.delete_vm(vm.namespace, vm.name)

    def _step_verify_source(self, op: Operation, ctx: ReconcileContext) -> None:
        vm = self.store.get_vm(op.namespace, op.spec.entity_name)
        if not vm.status.unique_id:
            raise VmOperatorError(code=1, msg=f"VirtualMachine {vm.namespaced_name} has no vSphere VM yet")
        op.status.entity_unique_id = vm.status.unique_id

    def _step_verify_destination(self, op: Operation, ctx: ReconcileContext) -> None:
        with self.remote_factory.build(op) as remote:
            version = remote.server_version()
        ctx.log.info("Destination cluster version %s", version)

    def _source_vm(self, op: Operation) -> VirtualMachine:
        # The VM object is gone after export; the recorded MoID still locates the vSphere VM.
        return VirtualMachine(
            metadata=ObjectMeta(name=op.spec.entity_name, namespace=op.namespace),
            spec=copy.deepcopy(op.spec.vm_spec),
            status=VirtualMachineStatus(unique_id=op.status.entity_unique_id),
        )

    def _step_relocate(self, op: Operation, ctx: ReconcileContext) -> None:
        vm = self._source_vm(op)
        self.provider.relocate_virtual_machine(vm, op.spec.relocate_spec, ctx)

    def import_operation_body(self, op: Operation, namespace: str) -> Dict[str, Any]:
        return {
            "apiVersion": C.API_VERSION,
            "kind": "Operation",
            "metadata": {"name": import_operation_name(op.spec.entity_name), "namespace": namespace},
            "spec": {
                "operationType": OperationType.IMPORT.value,
                "entityName": op.spec.entity_name,
                "vmSpec": op.spec.vm_spec.to_dict(),
            },
        }

    def import_plan(self, op: Operation, namespace: str) -> Plan:
        return Plan(
            metadata=ObjectMeta(name=import_plan_name(op.spec.entity_name), namespace=namespace),
            operations=[
                OperationReference(kind="Operation", namespace=namespace, name=import_operation_name(op.spec.entity_name))
            ],
        )

    def _step_remote_import(self, op: Operation, ctx: ReconcileContext) -> None:
        with self.remote_factory.build(op) as remote:
            ns = remote.namespace
            if not remote.create_operation(ns, self.import_operation_body(op, ns)):
                ctx.log.info("Import Operation already present on destination")
            if not remote.create_plan(ns, self.import_plan(op, ns).to_dict()):
                ctx.log.info("Import Plan already present on destination")
