# SPDX-License-Identifier: LGPL-3.0-or-later
"""
Operation pipelines: step ordering, persisted progress, resume and the
failure condition.
"""
from __future__ import annotations

from unittest.mock import ANY, MagicMock, Mock

import pytest

from fakes.fake_logger import FakeLogger
from fakes.fake_store import FakeStore
from vmoperator.api import constants as C
from vmoperator.api.types import (
    EntitiesReference,
    EntityReference,
    EntitySelector,
    ObjectMeta,
    ObjectReference,
    Operation,
    OperationSpec,
    OperationType,
    RelocateSpec,
    VirtualMachine,
    VirtualMachineSpec,
    VirtualMachineStatus,
    VsphereVM,
)
from vmoperator.core.context import ReconcileContext
from vmoperator.core.exceptions import (
    MigrationStepError,
    NotFoundError,
    UnsupportedError,
    VmOperatorError,
    is_retryable,
)
from vmoperator.orchestrator.operation_reconciler import (
    PHASE_COMPLETED,
    OperationReconciler,
    import_operation_name,
    import_plan_name,
)

COLD_STEPS = ["VerifySource", "VerifyDestination", "Export", "Relocate", "Import"]


def _op(op_type, *, entity_name="vm-1", phase="", **spec):
    op = Operation(
        metadata=ObjectMeta(name="op-1", namespace="ns"),
        spec=OperationSpec(
            operation_type=op_type,
            entity_name=entity_name,
            vm_spec=VirtualMachineSpec(class_name="small", image_name="ubuntu"),
            destination=ObjectReference(namespace="dest", name="supervisor-b"),
            relocate_spec=RelocateSpec(host_ip="10.0.0.9", resource_pool_name="dest-rp"),
            **spec,
        ),
    )
    op.status.phase = phase
    return op


def _source_vm(**meta):
    return VirtualMachine(
        metadata=ObjectMeta(name="vm-1", namespace="ns", finalizers=[C.VM_FINALIZER], **meta),
        spec=VirtualMachineSpec(class_name="small"),
        status=VirtualMachineStatus(phase="Updated", unique_id="vm-101"),
    )


def _remote_factory():
    factory = MagicMock()
    remote = factory.build.return_value.__enter__.return_value
    remote.namespace = "dest-ns"
    remote.server_version.return_value = "v1.27.1"
    remote.create_operation.return_value = True
    remote.create_plan.return_value = True
    return factory, remote


def _phases(store):
    return [c[3] for c in store.called("update_operation_status")]


def _stored(store):
    return store.operations[("ns", "op-1")]


def _ready(op):
    return next(c for c in op.status.conditions if c.type == C.OPERATION_READY_CONDITION)


@pytest.fixture
def ctx():
    return ReconcileContext.background()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def provider():
    return Mock()


@pytest.fixture
def remote_factory():
    return _remote_factory()


@pytest.fixture
def reconciler(store, provider, remote_factory):
    return OperationReconciler(store, provider, remote_factory[0], logger=FakeLogger())


@pytest.mark.unit
class TestStepTable:
    def test_every_type_has_steps(self, reconciler):
        for op_type in OperationType:
            assert isinstance(reconciler.steps_for(_op(op_type.value)), list)

    def test_cold_migration_order(self, reconciler):
        assert [n for n, _ in reconciler.steps_for(_op("ColdMigration"))] == COLD_STEPS

    def test_import_variants(self, reconciler):
        assert [n for n, _ in reconciler.steps_for(_op("Import"))] == ["CreateVM"]
        assert [n for n, _ in reconciler.steps_for(_op("Import", entity_name=""))] == ["ImportEntities"]

    def test_unknown_type(self, reconciler, store, ctx):
        store.add_operation(_op("Teleport"))

        with pytest.raises(UnsupportedError, match="Teleport"):
            reconciler.reconcile("ns", "op-1", ctx)
        assert _phases(store) == []


@pytest.mark.unit
class TestReconcileEntry:
    def test_gone(self, reconciler, ctx):
        assert not reconciler.reconcile("ns", "missing", ctx).wants_requeue

    def test_completed_is_not_rerun(self, reconciler, store, ctx):
        store.add_operation(_op("Import", phase=PHASE_COMPLETED))

        reconciler.reconcile("ns", "op-1", ctx)

        assert store.called("create_vm") == []
        assert _phases(store) == []

    def test_being_deleted_is_skipped(self, reconciler, store, ctx):
        op = _op("Import")
        op.metadata.deletion_timestamp = "2026-01-01T00:00:00Z"
        store.add_operation(op)

        reconciler.reconcile("ns", "op-1", ctx)

        assert store.called("create_vm") == []

    def test_live_migration_completes_without_steps(self, reconciler, store, provider, ctx):
        store.add_operation(_op("LiveMigration"))

        reconciler.reconcile("ns", "op-1", ctx)

        assert _phases(store) == [PHASE_COMPLETED]
        assert provider.mock_calls == []


@pytest.mark.unit
class TestImport:
    def test_create_vm_from_spec(self, reconciler, store, ctx):
        store.add_operation(_op("Import"))

        reconciler.reconcile("ns", "op-1", ctx)

        vm = store.vms[("ns", "vm-1")]
        assert vm.spec.class_name == "small"
        assert vm.spec.image_name == "ubuntu"
        assert _phases(store) == ["CreateVM", PHASE_COMPLETED]
        assert _ready(_stored(store)).status == "True"

        reconciler.reconcile("ns", "op-1", ctx)
        assert len(store.called("create_vm")) == 1

    def test_existing_vm_left_alone(self, reconciler, store, ctx):
        store.add_vm(_source_vm())
        store.add_operation(_op("Import"))

        reconciler.reconcile("ns", "op-1", ctx)

        assert store.called("create_vm") == []
        assert _stored(store).status.phase == PHASE_COMPLETED

    def test_import_by_resource_pool(self, reconciler, store, provider, ctx):
        vms = [VsphereVM(name="old-1", moid="vm-5"), VsphereVM(name="old-2", moid="vm-6")]
        provider.get_vsphere_vms_by_res_pool_name.return_value = vms
        provider.get_folder_moid_by_namespace.return_value = "group-v1"
        op = _op("Import", entity_name="", entities=EntitiesReference(entity_selector=EntitySelector(resource_pool="legacy")))
        op.spec.destination = ObjectReference()
        store.add_operation(op)

        reconciler.reconcile("ns", "op-1", ctx)

        provider.get_vsphere_vms_by_res_pool_name.assert_called_once_with("legacy")
        provider.get_folder_moid_by_namespace.assert_called_once_with("ns")
        provider.move_vms_into_folder.assert_called_once_with("group-v1", vms, ANY)
        assert _stored(store).status.phase == PHASE_COMPLETED

    def test_resolve_entities(self, reconciler, provider):
        provider.get_vsphere_vms_by_res_pool_name.return_value = [VsphereVM(name="old-1", moid="vm-5")]
        op = _op("Import", entity_name="", entities=EntitiesReference(entity_selector=EntitySelector(resource_pool="legacy")))

        assert reconciler.resolve_entities(op) == [EntityReference(kind=C.VSPHERE_VM_ENTITY_KIND, namespace="", name="old-1")]

    @pytest.mark.parametrize(
        "entities",
        [
            EntitiesReference(entity_selector=EntitySelector(name_regex_pattern="old-.*")),
            EntitiesReference(entity_selector=EntitySelector(selector={"matchLabels": {"app": "db"}})),
            EntitiesReference(entity_refs=[EntityReference(kind="VirtualMachine", namespace="ns", name="a")]),
        ],
    )
    def test_unsupported_selectors(self, reconciler, store, provider, ctx, entities):
        store.add_operation(_op("Import", entity_name="", entities=entities))

        with pytest.raises(MigrationStepError) as ei:
            reconciler.reconcile("ns", "op-1", ctx)

        assert isinstance(ei.value.cause, UnsupportedError)
        assert not is_retryable(ei.value)
        provider.move_vms_into_folder.assert_not_called()
        assert _ready(_stored(store)).reason == "ImportEntitiesFailed"


@pytest.mark.unit
class TestExport:
    def test_annotates_then_deletes(self, reconciler, store, ctx):
        store.add_vm(_source_vm())
        store.add_operation(_op("Export"))

        reconciler.reconcile("ns", "op-1", ctx)

        vm = store.vms[("ns", "vm-1")]
        assert vm.metadata.annotation(C.EXPORT_ANNOTATION) == "true"
        assert vm.metadata.being_deleted
        assert _phases(store) == ["", "Export", PHASE_COMPLETED]
        assert _stored(store).status.entity_unique_id == "vm-101"

    def test_delete_failure_leaves_vm_annotated(self, reconciler, store, ctx):
        store.add_vm(_source_vm())
        store.add_operation(_op("Export"))
        store.fail["delete_vm"] = VmOperatorError(code=1, msg="api server unavailable")

        with pytest.raises(MigrationStepError) as ei:
            reconciler.reconcile("ns", "op-1", ctx)

        assert ei.value.context["step"] == "Export"
        vm = store.vms[("ns", "vm-1")]
        assert vm.metadata.annotation(C.EXPORT_ANNOTATION) == "true"
        assert not vm.metadata.being_deleted
        op = _stored(store)
        assert op.status.phase == ""
        assert _ready(op).status == "False"
        assert _ready(op).reason == "ExportFailed"

    def test_already_deleting_is_not_deleted_again(self, reconciler, store, ctx):
        store.add_vm(_source_vm(annotations={C.EXPORT_ANNOTATION: "true"}, deletion_timestamp="2026-01-01T00:00:00Z"))
        store.add_operation(_op("Export"))

        reconciler.reconcile("ns", "op-1", ctx)

        assert store.called("delete_vm") == []
        assert store.called("update_vm") == []

    def test_missing_vm(self, reconciler, store, ctx):
        store.add_operation(_op("Export"))

        with pytest.raises(MigrationStepError) as ei:
            reconciler.reconcile("ns", "op-1", ctx)
        assert isinstance(ei.value.cause, NotFoundError)

    def test_rerun_after_vm_is_gone(self, reconciler, store, ctx):
        op = _op("Export")
        op.status.entity_unique_id = "vm-101"
        store.add_operation(op)

        reconciler.reconcile("ns", "op-1", ctx)

        op = _stored(store)
        assert op.status.phase == PHASE_COMPLETED
        assert _ready(op).status == "True"
        assert store.called("delete_vm") == []

    def test_phase_write_failure_then_rerun(self, reconciler, store, ctx):
        store.add_vm(_source_vm())
        store.add_operation(_op("Export"))
        real_update = store.update_operation_status

        def update(op):
            if op.status.phase == "Export":
                raise VmOperatorError(code=1, msg="api server unavailable")
            real_update(op)

        store.update_operation_status = update
        with pytest.raises(VmOperatorError):
            reconciler.reconcile("ns", "op-1", ctx)
        store.update_operation_status = real_update
        # finalizer removal by the VM reconciler
        del store.vms[("ns", "vm-1")]

        reconciler.reconcile("ns", "op-1", ctx)

        assert _stored(store).status.phase == PHASE_COMPLETED


@pytest.mark.unit
class TestColdMigration:
    def test_full_pipeline(self, reconciler, store, provider, remote_factory, ctx):
        _, remote = remote_factory
        store.add_vm(_source_vm())
        store.add_operation(_op("ColdMigration"))

        reconciler.reconcile("ns", "op-1", ctx)

        assert _phases(store) == COLD_STEPS + [PHASE_COMPLETED]
        assert _stored(store).status.entity_unique_id == "vm-101"

        vm, relocate_spec, _ = provider.relocate_virtual_machine.call_args.args
        assert vm.status.unique_id == "vm-101"
        assert vm.name == "vm-1"
        assert relocate_spec.host_ip == "10.0.0.9"

        ns, body = remote.create_operation.call_args.args
        assert ns == "dest-ns"
        assert body["metadata"] == {"name": "import-vm-1", "namespace": "dest-ns"}
        assert body["spec"]["operationType"] == "Import"
        ns, plan = remote.create_plan.call_args.args
        assert plan["metadata"]["name"] == "import-vm-1-plan"
        assert plan["spec"]["operations"] == [{"kind": "Operation", "namespace": "dest-ns", "name": "import-vm-1"}]

    def test_destination_failure_stops_before_export(self, reconciler, store, provider, remote_factory, ctx):
        _, remote = remote_factory
        remote.server_version.side_effect = VmOperatorError(code=1, msg="destination unreachable")
        store.add_vm(_source_vm())
        store.add_operation(_op("ColdMigration"))

        with pytest.raises(MigrationStepError) as ei:
            reconciler.reconcile("ns", "op-1", ctx)

        assert ei.value.context["step"] == "VerifyDestination"
        assert ei.value.context["last_completed_step"] == "VerifySource"
        vm = store.vms[("ns", "vm-1")]
        assert not vm.metadata.has_annotation(C.EXPORT_ANNOTATION)
        assert not vm.metadata.being_deleted
        provider.relocate_virtual_machine.assert_not_called()
        remote.create_operation.assert_not_called()

        op = _stored(store)
        assert op.status.phase == "VerifySource"
        assert _ready(op).reason == "VerifyDestinationFailed"

    def test_source_without_vsphere_vm(self, reconciler, store, ctx):
        vm = _source_vm()
        vm.status.unique_id = ""
        store.add_vm(vm)
        store.add_operation(_op("ColdMigration"))

        with pytest.raises(MigrationStepError) as ei:
            reconciler.reconcile("ns", "op-1", ctx)
        assert ei.value.context["step"] == "VerifySource"

    def test_resume_after_export(self, reconciler, store, provider, remote_factory, ctx):
        _, remote = remote_factory
        op = _op("ColdMigration", phase="Export")
        op.status.entity_unique_id = "vm-101"
        store.add_operation(op)

        reconciler.reconcile("ns", "op-1", ctx)

        assert store.called("get_vm") == []
        assert _phases(store) == ["Relocate", "Import", PHASE_COMPLETED]
        assert provider.relocate_virtual_machine.call_args.args[0].status.unique_id == "vm-101"
        remote.create_operation.assert_called_once()

    def test_resume_when_export_already_removed_vm(self, reconciler, store, provider, remote_factory, ctx):
        _, remote = remote_factory
        op = _op("ColdMigration", phase="VerifyDestination")
        op.status.entity_unique_id = "vm-101"
        store.add_operation(op)

        reconciler.reconcile("ns", "op-1", ctx)

        assert _phases(store) == ["Export", "Relocate", "Import", PHASE_COMPLETED]
        assert store.called("update_vm") == []
        provider.relocate_virtual_machine.assert_called_once()
        remote.create_operation.assert_called_once()

    def test_remote_objects_already_present(
self, reconciler, store, remote_factory, ctx):
        _, remote = remote_factory
        remote.create_operation.return_value = False
        remote.create_plan.return_value = False
        op = _op("ColdMigration", phase="Relocate")
        store.add_operation(op)

        reconciler.reconcile("ns", "op-1", ctx)

        assert _stored(store).status.phase == PHASE_COMPLETED

    def test_cancelled_context_stops_pipeline(self, reconciler, store, ctx):
        store.add_vm(_source_vm())
        store.add_operation(_op("ColdMigration"))
        ctx.cancel.set()

        with pytest.raises(VmOperatorError):
            reconciler.reconcile("ns", "op-1", ctx)
        assert _phases(store) == []


@pytest.mark.unit
class TestRemoteObjectNames:
    def test_names(self):
        assert import_operation_name("vm-1") == "import-vm-1"
        assert import_plan_name("vm-1") == "import-vm-1-plan"

    def test_import_body_carries_vm_spec(self, reconciler):
        body = reconciler.import_operation_body(_op("ColdMigration"), "dest-ns")

        assert body["apiVersion"] == C.API_VERSION
        assert body["kind"] == "Operation"
        assert body["spec"]["entityName"] == "vm-1"
        assert body["spec"]["vmSpec"]["className"] == "small"
