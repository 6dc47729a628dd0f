# SPDX-License-Identifier: LGPL-3.0-or-later
"""
VSphereVMProvider against an in-memory inventory: create, update,
admission, abort semantics and the non-reconcile operations.
"""
from __future__ import annotations

from types import SimpleNamespace

import pytest

from fakes.fake_logger import FakeLogger
from fakes.fake_store import FakeStore
from fakes.fake_vsphere import (
    Datastore,
    FakeVSphereClient,
    Folder,
    HostSystem,
    Network,
    ResourcePool,
    VirtualMachine as VimVM,
)
from vmoperator.api import constants as C
from vmoperator.api.types import (
    AvailabilityZone,
    Condition,
    InstanceStorage,
    InstanceStorageVolume,
    NamespaceInfo,
    NetworkInterface,
    ObjectMeta,
    PersistentVolumeClaimSource,
    RelocateSpec,
    VirtualMachine,
    VirtualMachineClass,
    VirtualMachineClassHardware,
    VirtualMachineClassSpec,
    VirtualMachineImage,
    VirtualMachineSetResourcePolicy,
    VirtualMachineSpec,
    VirtualMachineStatus,
    VirtualMachineVolume,
    VMMetadataRef,
    VsphereVM,
    VsphereVolumeSource,
)
from vmoperator.core.admission import AdmissionGate
from vmoperator.core.config import OperatorConfig
from vmoperator.core.context import ReconcileContext
from vmoperator.core.exceptions import NotFoundError, TaskFailedError, ValidationError, VmOperatorError
from vmoperator.provider.vm_provider import DEFER_CLOUD_INIT_KEY, VSphereVMProvider, render_extra_config
from vmoperator.vmware.tasks import TaskWaiter

GiB = 1024 ** 3


class VirtualVmxnet3(SimpleNamespace):
    pass


def _store():
    store = FakeStore()
    store.zones = [
        AvailabilityZone(name="zone-a", namespaces={"ns": NamespaceInfo(folder_moid="group-v1", pool_moids=["resgroup-1"])})
    ]
    store.classes["small"] = VirtualMachineClass(
        metadata=ObjectMeta(name="small"),
        spec=VirtualMachineClassSpec(hardware=VirtualMachineClassHardware(cpus=2, memory_mb=2048)),
    )
    store.images["ubuntu"] = VirtualMachineImage(
        metadata=ObjectMeta(name="ubuntu"), hardware_version=13, firmware="efi", image_name="ubuntu-22.04"
    )
    store.storage_classes["gold"] = {C.STORAGE_POLICY_ID_PARAMETER: "pol-gold", C.DISK_PROVISIONING_PARAMETER: "thin"}
    return store


def _vm(**spec):
    defaults = dict(
        class_name="small",
        image_name="ubuntu",
        storage_class="gold",
        power_state="poweredOn",
        network_interfaces=[NetworkInterface(network_name="vm-net")],
    )
    defaults.update(spec)
    return VirtualMachine(metadata=ObjectMeta(name="vm-1", namespace="ns"), spec=VirtualMachineSpec(**defaults))


def _provider(store, client, gate=None, **cfg):
    return VSphereVMProvider(
        store,
        client,
        OperatorConfig(**cfg),
        gate or AdmissionGate(),
        waiter=TaskWaiter(poll_interval_s=0.0),
        logger=FakeLogger(),
    )


@pytest.fixture
def store():
    return _store()


@pytest.fixture
def client():
    return FakeVSphereClient()


@pytest.fixture
def ctx():
    return ReconcileContext.background()


@pytest.mark.unit
class TestCreate:
    def test_create_then_update(self, store, client, ctx):
        provider = _provider(store, client)
        vm = _vm()

        assert provider.create_or_update_virtual_machine(vm, ctx) is True

        assert len(client.created) == 1
        folder, pool, host, spec = client.created[0]
        assert (folder, pool, host) == ("group-v1", "resgroup-1", "")
        assert spec["name"] == "vm-1"
        assert spec["vmProfile"][0]["profileId"] == "pol-gold"
        assert spec["deviceChange"][-1]["device"]["backing"]["deviceName"] == "vm-net"
        assert "version" not in spec

        assert vm.status.phase == "Updated"
        assert vm.status.unique_id == "vm-101"
        assert vm.status.host == "host-1"
        assert vm.status.zone == "zone-a"
        assert vm.metadata.label(C.ZONE_LABEL) == "zone-a"
        assert vm.metadata.annotation(C.FIRST_BOOT_DONE_ANNOTATION) == "true"
        assert client.vm_by_moid("vm-101").runtime.powerState == "poweredOn"
        assert client.reconfigured == []

    def test_second_pass_is_a_noop(self, store, client, ctx):
        provider = _provider(store, client, global_extra_config={"guestinfo.image": "$ImageName"})
        vm = _vm()

        provider.create_or_update_virtual_machine(vm, ctx)
        assert len(client.reconfigured) == 1
        assert client.reconfigured[0][1]["extraConfig"] == [
            {"_typeName": "OptionValue", "key": "guestinfo.image", "value": "ubuntu-22.04"}
        ]

        provider.create_or_update_virtual_machine(vm, ctx)

        assert len(client.created) == 1
        assert len(client.reconfigured) == 1

    def test_pvc_raises_hardware_version(self, store, client, ctx):
        vm = _vm(volumes=[VirtualMachineVolume(name="data", persistent_volume_claim=PersistentVolumeClaimSource(claim_name="data"))])

        _provider(store, client).create_or_update_virtual_machine(vm, ctx)

        assert client.created[0][3]["version"] == "vmx-15"

    def test_min_hardware_version_wins(self, store, client, ctx):
        _provider(store, client).create_or_update_virtual_machine(_vm(min_hardware_version=19), ctx)

        assert client.created[0][3]["version"] == "vmx-19"

    def test_admission_denied(self, store, client, ctx):
        gate = AdmissionGate()
        held, release = gate.try_acquire(1)
        assert held
        vm = _vm()

        ready = _provider(store, client, gate, max_concurrent_reconciles=1, max_create_vms_on_provider=100).create_or_update_virtual_machine(vm, ctx)

        assert ready is False
        assert client.created == []
        assert vm.status == VirtualMachineStatus()
        release()
        assert gate.in_flight == 0

    def test_storage_class_required(self, store, client, ctx):
        vm = _vm(storage_class="")

        with pytest.raises(ValidationError, match="StorageClass is required"):
            _provider(store, client).create_or_update_virtual_machine(vm, ctx)
        assert vm.status == VirtualMachineStatus()
        assert client.created == []

    def test_configured_datastore_without_storage_class(self, store, client, ctx):
        client.add(Datastore("datastore-1", name="ds1"))

        _provider(store, client, storage_class_required=False, datastore="ds1").create_or_update_virtual_machine(
            _vm(storage_class=""), ctx
        )

        spec = client.created[0][3]
        assert spec["files"]["vmPathName"] == "[ds1]"
        assert "vmProfile" not in spec

    def test_missing_datastore(self, store, client, ctx):
        with pytest.raises(ValidationError, match="ds-missing"):
            _provider(store, client, storage_class_required=False, datastore="ds-missing").create_or_update_virtual_machine(
                _vm(storage_class=""), ctx
            )

    def test_task_failure_restores_status_and_releases_slot(self, store, client, ctx):
        client.create_error = "Insufficient resources"
        gate = AdmissionGate()
        vm = _vm()

        with pytest.raises(TaskFailedError, match="Insufficient resources"):
            _provider(store, client, gate).create_or_update_virtual_machine(vm, ctx)

        assert vm.status.phase == ""
        assert vm.status.unique_id == ""
        assert gate.in_flight == 0

    def test_missing_class_aborts(self, store, client, ctx):
        with pytest.raises(NotFoundError):
            _provider(store, client).create_or_update_virtual_machine(_vm(class_name="huge"), ctx)
        assert client.created == []

    def test_cluster_modules_not_ready(self, store, client, ctx):
        store.policies[("ns", "tkg")] = VirtualMachineSetResourcePolicy(
            metadata=ObjectMeta(name="tkg", namespace="ns"), cluster_modules=["control-plane"]
        )

        with pytest.raises(VmOperatorError, match="cluster modules is not ready"):
            _provider(store, client).create_or_update_virtual_machine(_vm(resource_policy_name="tkg"), ctx)
        assert client.created == []

    def test_policy_being_deleted(self, store, client, ctx):
        store.policies[("ns", "tkg")] = VirtualMachineSetResourcePolicy(
            metadata=ObjectMeta(name="tkg", namespace="ns", deletion_timestamp="2026-01-01T00:00:00Z")
        )

        with pytest.raises(VmOperatorError, match="being deleted"):
            _provider(store, client).create_or_update_virtual_machine(_vm(resource_policy_name="tkg"), ctx)

    def test_policy_child_pool_and_folder(self, store, client, ctx):
        client.add(ResourcePool("resgroup-7", name="tkg-rp"), parent=ResourcePool("resgroup-1"))
        client.add(Folder("group-v7", name="tkg-folder"), parent=Folder("group-v1"))
        store.policies[("ns", "tkg")] = VirtualMachineSetResourcePolicy.from_dict(
            {
                "metadata": {"name": "tkg", "namespace": "ns"},
                "spec": {"resourcePool": {"name": "tkg-rp"}, "folder": {"name": "tkg-folder"}},
            }
        )

        _provider(store, client).create_or_update_virtual_machine(_vm(resource_policy_name="tkg"), ctx)

        folder, pool, _, _ = client.created[0]
        assert (folder, pool) == ("group-v7", "resgroup-7")


@pytest.mark.unit
class TestInstanceStorage:
    def _setup(self, store, client):
        storage = InstanceStorage(storage_class="local", volumes=[InstanceStorageVolume(size=GiB)])
        store.classes["small"].spec.hardware.instance_storage = storage
        store.storage_classes["local"] = {C.STORAGE_POLICY_ID_PARAMETER: "pol-local"}
        client.add(ResourcePool("resgroup-1", owner=SimpleNamespace(_moId="domain-c1")))
        client.placements["domain-c1"] = SimpleNamespace(
            recommendations=[SimpleNamespace(rating=1, action=[SimpleNamespace(targetHost=HostSystem("host-7"))])]
        )

    def test_waits_for_bound_pvcs_then_creates_on_host(self, store, client, ctx):
        self._setup(store, client)
        provider = _provider(store, client, instance_storage_enabled=True)
        vm = _vm()

        with pytest.raises(VmOperatorError, match="not bound"):
            provider.create_or_update_virtual_machine(vm, ctx)

        assert client.created == []
        assert len(vm.spec.volumes) == 1
        assert vm.metadata.annotation(C.INSTANCE_STORAGE_SELECTED_NODE_MOID_ANNOTATION) == "host-7"
        assert vm.metadata.annotation(C.INSTANCE_STORAGE_SELECTED_NODE_ANNOTATION) == "host-7.example.com"

        vm.metadata.set_annotation(C.INSTANCE_STORAGE_PVCS_BOUND_ANNOTATION, "true")
        provider.create_or_update_virtual_machine(vm, ctx)

        assert len(vm.spec.volumes) == 1
        _, pool, host, spec = client.created[0]
        assert (pool, host) == ("resgroup-1", "host-7")
        assert spec["version"] == "vmx-15"
        assert vm.status.host == "host-7"


@pytest.mark.unit
class TestUpdate:
    def _created(self, store, client, ctx, **cfg):
        provider = _provider(store, client, **cfg)
        vm = _vm()
        provider.create_or_update_virtual_machine(vm, ctx)
        return provider, vm, client.vm_by_moid(vm.status.unique_id)

    def test_class_change_reconfigures(self, store, client, ctx):
        provider, vm, vm_obj = self._created(store, client, ctx)
        store.classes["small"].spec.hardware.cpus = 4

        provider.create_or_update_virtual_machine(vm, ctx)

        assert client.reconfigured[-1][1]["numCPUs"] == 4
        assert vm_obj.config.hardware.numCPU == 4

    def test_disk_grow(self, store, client, ctx):
        provider, vm, vm_obj = self._created(store, client, ctx)
        disk = SimpleNamespace(key=2000, capacityInBytes=GiB, capacityInKB=GiB // 1024)
        vm_obj.config.hardware.device.append(disk)
        vm.spec.volumes.append(VirtualMachineVolume(name="root", vsphere_volume=VsphereVolumeSource(device_key=2000, capacity=2 * GiB)))

        provider.create_or_update_virtual_machine(vm, ctx)

        change = client.reconfigured[-1][1]["deviceChange"][0]
        assert change["device"] is disk
        assert disk.capacityInBytes == 2 * GiB

    def test_disk_shrink_rejected(self, store, client, ctx):
        provider, vm, vm_obj = self._created(store, client, ctx)
        vm_obj.config.hardware.device.append(SimpleNamespace(key=2000, capacityInBytes=2 * GiB, capacityInKB=0))
        vm.spec.volumes.append(VirtualMachineVolume(name="root", vsphere_volume=VsphereVolumeSource(device_key=2000, capacity=GiB)))

        with pytest.raises(ValidationError):
            provider.create_or_update_virtual_machine(vm, ctx)

    def test_power_off(self, store, client, ctx):
        provider, vm, vm_obj = self._created(store, client, ctx)
        vm.spec.power_state = "poweredOff"

        provider.create_or_update_virtual_machine(vm, ctx)

        assert vm_obj.runtime.powerState == "poweredOff"

    def test_defer_cloud_init_for_compatible_image(self, store, client, ctx):
        store.images["ubuntu"].conditions = [Condition(type=C.V1ALPHA1_COMPATIBLE_CONDITION, status="True")]

        self._created(store, client, ctx)

        keys = [o["key"] for o in client.reconfigured[0][1]["extraConfig"]]
        assert DEFER_CLOUD_INIT_KEY in keys

    def test_no_defer_with_cloud_init_transport(self, store, client, ctx):
        store.images["ubuntu"].conditions = [Condition(type=C.V1ALPHA1_COMPATIBLE_CONDITION, status="True")]
        store.config_maps[("ns", "md")] = {"user-data": "#cloud-config"}
        provider = _provider(store, client)
        vm = _vm(vm_metadata=VMMetadataRef(config_map_name="md", transport="CloudInit"))

        provider.create_or_update_virtual_machine(vm, ctx)

        assert client.reconfigured == []

    def test_vapp_properties_merged(self, store, client, ctx):
        store.config_maps[("ns", "md")] = {"hostname": "web-1"}
        provider, vm, vm_obj = self._created(store, client, ctx)
        prop = SimpleNamespace(id="hostname", value="", userConfigurable=True)
        vm_obj.config.vAppConfig = SimpleNamespace(property=[prop])
        vm.spec.vm_metadata = VMMetadataRef(config_map_name="md", transport="OvfEnv")

        provider.create_or_update_virtual_machine(vm, ctx)

        assert client.reconfigured[-1][1]["vAppConfig"]["property"][0]["info"] is prop
        assert prop.value == "web-1"


@pytest.mark.unit
class TestOtherOperations:
    def test_delete(self, store, client, ctx):
        provider = _provider(store, client)
        vm = _vm()
        provider.create_or_update_virtual_machine(vm, ctx)
        vm_obj = client.vm_by_moid(vm.status.unique_id)

        provider.delete_virtual_machine(vm, ctx)

        assert vm_obj.destroyed
        assert vm_obj.runtime.powerState == "poweredOff"

    def test_delete_absent_is_noop(self, store, client, ctx):
        _provider(store, client).delete_virtual_machine(_vm(), ctx)

    def test_lookup_by_namespace_folder(self, store, client, ctx):
        vm_obj = client.add(VimVM("vm-55", "vm-1"), parent=Folder("group-v1"))

        assert _provider(store, client)._get_vm(_vm()) is vm_obj

    def test_relocate(self, store, client, ctx, monkeypatch):
        monkeypatch.setattr("vmoperator.vmware.virtualmachine.to_vim", lambda v: v)
        provider = _provider(store, client)
        vm = _vm()
        provider.create_or_update_virtual_machine(vm, ctx)
        nic = VirtualVmxnet3(key=4000, backing=None)
        client.vm_by_moid(vm.status.unique_id).config.hardware.device.append(nic)
        host = client.add(HostSystem("host-9", name="10.0.0.9"))
        pool = client.add(ResourcePool("resgroup-9", name="dest-rp"))
        ds = client.add(Datastore("datastore-9", name="dest-ds"))
        net = client.add(Network("network-9", name="dest-net"))
        folder = client.add(Folder("group-v9", name="dest-folder"))

        provider.relocate_virtual_machine(
            vm,
            RelocateSpec(
                host_ip="10.0.0.9",
                resource_pool_name="dest-rp",
                datastore_name="dest-ds",
                vm_network_name="dest-net",
                folder_name="dest-folder",
            ),
            ctx,
        )

        moid, spec = client.relocated[0]
        assert moid == vm.status.unique_id
        assert (spec["host"], spec["pool"], spec["datastore"], spec["folder"]) == (host, pool, ds, folder)
        assert spec["deviceChange"][0]["device"] is nic
        assert nic.backing["network"] is net
        assert nic.backing["deviceName"] == "dest-net"

    def test_relocate_missing_destination(self, store, client, ctx):
        provider = _provider(store, client)
        vm = _vm()
        provider.create_or_update_virtual_machine(vm, ctx)

        with pytest.raises(NotFoundError):
            provider.relocate_virtual_machine(vm, RelocateSpec(host_ip="10.9.9.9"), ctx)

    def test_vms_by_pool_name(self, store, client):
        pool = client.add(ResourcePool("resgroup-3", name="legacy"))
        pool.vm = [VimVM("vm-5", "old-1"), VimVM("vm-6", "old-2")]

        assert _provider(store, client).get_vsphere_vms_by_res_pool_name("legacy") == [
            VsphereVM(name="old-1", moid="vm-5"),
            VsphereVM(name="old-2", moid="vm-6"),
        ]

    def test_move_into_folder(self, store, client, ctx):
        folder = client.add(Folder("group-v1"))
        provider = _provider(store, client)

        provider.move_vms_into_folder(provider.get_folder_moid_by_namespace("ns"), [VsphereVM("old-1", "vm-5")], ctx)

        assert [o._moId for o in folder.moved] == ["vm-5"]

    def test_hardware_version(self, store, client, ctx):
        provider = _provider(store, client)
        vm = _vm()
        with pytest.raises(NotFoundError):
            provider.get_virtual_machine_hardware_version(vm)

        provider.create_or_update_virtual_machine(vm, ctx)

        assert provider.get_virtual_machine_hardware_version(vm) == 19


@pytest.mark.unit
class TestRenderExtraConfig:
    def test_substitutes_image_values(self):
        out = render_extra_config({"a": "$ImageName-${Firmware}", "b": "plain"}, {"ImageName": "img", "Firmware": "efi"})

        assert out == {"a": "img-efi", "b": "plain"}

    def test_unrenderable_kept_verbatim(self):
        out = render_extra_config({"a": "$Missing", "b": "cost $"}, {"ImageName": "img"})

        assert out == {"a": "$Missing", "b": "cost $"}
