# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/provider/vm_provider.py
"""
vSphere VM provider.

create_or_update_virtual_machine() drives one VirtualMachine towards its
desired state:

  Absent -> Creating -> Created   (create path, gated by admission)
  Created -> Updated              (reconfigure only when something differs)

Every create sub-step may abort; an abort leaves the VM's status as it
was so the next reconcile starts over.
"""
from __future__ import annotations

import copy
import logging
import string
from typing import Any, List, Optional

from ..api import constants as C
from ..api.types import RelocateSpec, VirtualMachine, VMPhase, VsphereVM, condition_is_true
from ..controlplane import topology
from ..core.admission import AdmissionGate
from ..core.config import OperatorConfig
from ..core.context import ReconcileContext
from ..core.exceptions import NotFoundError, ValidationError, VmOperatorError
from ..core.logger import Log
from ..core.logging_utils import log_step
from ..vmware import virtualmachine as vmops
from ..vmware.config_spec import (
    apply_disk_provisioning,
    create_config_spec,
    create_config_spec_for_placement,
    hardware_version_for_pvc_and_pci_devices,
    is_ethernet_card,
    nic_device_changes,
    remove_devices,
)
from ..vmware.disks import disk_resize_device_changes
from ..vmware.placement import ClusterPlacementScorer, PlacementResolver
from ..vmware.resourcepool import get_child_folder
from ..vmware.tasks import TaskWaiter
from . import prereqs
from .args import VMCreateArgs, VMUpdateArgs
from .binding import resolve_folder_and_pool
from .instance_storage import add_instance_storage_volumes, is_configured as instance_storage_configured
from .storage import get_disk_provisioning_type, get_vm_storage_policy_ids

DEFER_CLOUD_INIT_KEY = "guestinfo.vmservice.defer-cloud-init"
CLOUD_INIT_TRANSPORT = "CloudInit"
VAPP_TRANSPORTS = ("OvfEnv", "vAppConfig")


def render_extra_config(global_extra_config: dict, values: dict) -> dict:
    """
    $Name placeholders in values are filled from the image; a value that
    does not render is kept verbatim.
    """
    out = {}
    for k, v in global_extra_config.items():
        try:
            out[k] = string.Template(v).substitute(values)
        except (KeyError, ValueError):
            out[k] = v
    return out


class VSphereVMProvider:
    def __init__(
        self,
        store: Any,
        client: Any,
        config: OperatorConfig,
        gate: AdmissionGate,
        *,
        waiter: Optional[TaskWaiter] = None,
        placement: Optional[PlacementResolver] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.client = client
        self.config = config
        self.gate = gate
        self.logger = logger or Log.get("provider")
        self.waiter = waiter or TaskWaiter(poll_interval_s=config.task_poll_interval_s, logger=self.logger)
        self.placement = placement or PlacementResolver(
            store, client, ClusterPlacementScorer(client, logger=self.logger), logger=self.logger
        )

    @property
    def max_deploy_threads(self) -> int:
        return self.config.max_deploy_threads

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------

    def _get_vm(self, vm: VirtualMachine) -> Any:
        """The VM's vSphere object, or None when it does not exist."""
        if vm.status.unique_id:
            vm_obj = self.client.vm_by_moid(vm.status.unique_id)
            if vm_obj is not None:
                return vm_obj

        try:
            folder_moid = topology.get_namespace_folder_moid(self.store, vm.namespace)
        except NotFoundError:
            return None
        folder = self.client.ref("Folder", folder_moid)
        vm_obj = self.client.find_child(folder, vm.name)
        if vm_obj is not None:
            return vm_obj

        policy_name = vm.spec.resource_policy_name
        if policy_name:
            try:
                policy = self.store.get_resource_policy(vm.namespace, policy_name)
                if policy.folder_name:
                    child = get_child_folder(self.client, folder_moid, policy.folder_name)
                    return self.client.find_child(child, vm.name)
            except NotFoundError:
                return None
        return None

    # ------------------------------------------------------------------
    # create / update
    # ------------------------------------------------------------------

    def create_or_update_virtual_machine(self, vm: VirtualMachine, ctx: ReconcileContext) -> bool:
        """
        Returns False when creation is not possible yet (admission denied);
        the caller requeues without treating it as a failure.
        """
        log = ctx.log.bind(vm=vm.namespaced_name)
        vm_obj = self._get_vm(vm)
        if vm_obj is None:
            vm_obj = self._create_virtual_machine(vm, ctx)
            if vm_obj is None:
                log.info("VM creation not ready")
                return False
        self._update_virtual_machine(vm, vm_obj, ctx)
        return True

    def _create_virtual_machine(self, vm: VirtualMachine, ctx: ReconcileContext) -> Any:
        log = ctx.log.bind(vm=vm.namespaced_name)
        original_status = copy.deepcopy(vm.status)
        try:
            args = self._create_get_args(vm)
            with log_step(log, "placement", level=logging.DEBUG):
                self.placement.place(vm, args)
            resolve_folder_and_pool(self.store, self.client, vm, args)
            self._create_is_ready(vm, args)
        except Exception:
            vm.status = original_status
            raise

        with self.gate.admit(self.max_deploy_threads) as granted:
            if not granted:
                log.info("Too many VirtualMachine creates in progress (limit %d); requeueing", self.max_deploy_threads)
                vm.status = original_status
                return None

            vm.status.phase = VMPhase.CREATING.value
            spec = self._final_create_spec(vm, args)
            Log.step(log, "Creating VirtualMachine", folder=args.folder_moid, pool=args.resource_pool_moid)
            try:
                task = self.client.create_vm(args.folder_moid, args.resource_pool_moid, args.host_moid, spec)
                vm_obj = self.waiter.wait(task, op="create VM", target=vm.namespaced_name, ctx=ctx)
            except Exception:
                vm.status = original_status
                raise

        vm.status.phase = VMPhase.CREATED.value
        vm.status.unique_id = vmops.moid(vm_obj)
        Log.ok(log, "VirtualMachine created", moid=vm.status.unique_id)
        return vm_obj

    def _create_get_args(self, vm: VirtualMachine) -> VMCreateArgs:
        vm_class = prereqs.get_vm_class(self.store, vm)
        vm_image = prereqs.get_vm_image(self.store, vm)
        policy = prereqs.get_resource_policy(self.store, vm)
        vm_md = prereqs.get_vm_metadata(self.store, vm)
        prereqs.mark_prereq_ready(vm)

        args = VMCreateArgs(vm_class=vm_class, vm_image=vm_image, vm_metadata=vm_md, resource_policy=policy)
        if policy is not None:
            args.child_resource_pool_name = policy.resource_pool.name
            args.child_folder_name = policy.folder_name
        if vm_class.spec.resources.has_cpu():
            args.min_cpu_freq = self.client.min_cpu_frequency()
        if self.config.vm_class_as_config_enabled:
            args.class_config_spec = prereqs.get_class_config_spec(vm_class)

        if self.config.instance_storage_enabled:
            # volumes must exist before the storage profiles are collected
            add_instance_storage_volumes(vm, vm_class)
            args.has_instance_storage = instance_storage_configured(vm)

        args.storage_classes_to_ids = get_vm_storage_policy_ids(self.store, vm)
        args.storage_profile_id = args.storage_classes_to_ids.get(vm.spec.storage_class, "")
        args.storage_provisioning = get_disk_provisioning_type(self.store, vm.spec.storage_class)

        self._create_gen_config_spec(vm, args)
        self._create_validate_args(vm, args)
        return args

    def _create_gen_config_spec(self, vm: VirtualMachine, args: VMCreateArgs) -> None:
        class_cs = None
        if args.class_config_spec is not None:
            # NICs are added after placement, once their backing is known
            class_cs = remove_devices(args.class_config_spec, is_ethernet_card)

        class_spec = args.vm_class.spec
        firmware = args.vm_image.firmware
        args.config_spec = create_config_spec(vm.name, class_spec, args.min_cpu_freq, firmware, class_cs)
        args.placement_config_spec = create_config_spec_for_placement(
            class_spec, args.min_cpu_freq, args.storage_classes_to_ids.values(), firmware, class_cs
        )

        if not args.config_spec.get("version"):
            version = hardware_version_for_pvc_and_pci_devices(
                args.vm_image.hardware_version, args.config_spec, prereqs.has_pvc(vm)
            )
            version = max(version, vm.spec.min_hardware_version)
            if version:
                args.config_spec["version"] = f"vmx-{version}"

    def _create_validate_args(self, vm: VirtualMachine, args: VMCreateArgs) -> None:
        cfg = self.config
        if cfg.storage_class_required:
            if not vm.spec.storage_class:
                raise ValidationError(code=2, msg="StorageClass is required but not specified", context={"vm": vm.namespaced_name})
            if not args.storage_profile_id:
                raise ValidationError(
                    code=2,
                    msg=f"no StorageProfile found for StorageClass {vm.spec.storage_class}",
                    context={"vm": vm.namespaced_name},
                )
        elif not vm.spec.storage_class:
            if not cfg.datastore:
                raise ValidationError(code=2, msg="no Datastore provided in configuration")
            try:
                ds = self.client.find_datastore(cfg.datastore)
            except NotFoundError as e:
                raise ValidationError(code=2, msg=f"failed to find Datastore {cfg.datastore}", cause=e)
            args.datastore_moid = vmops.moid(ds)
            args.datastore_name = cfg.datastore

    def _create_is_ready(self, vm: VirtualMachine, args: VMCreateArgs) -> None:
        policy = args.resource_policy
        if policy is not None:
            if policy.metadata.being_deleted:
                raise VmOperatorError(code=1, msg="cannot create VirtualMachine when its resource policy is being deleted")
            missing = [g for g in policy.cluster_modules if not policy.cluster_module_ids.get(g)]
            if missing:
                raise VmOperatorError(
                    code=1,
                    msg="VirtualMachineSetResourcePolicy cluster modules is not ready",
                    context={"missing": ",".join(missing)},
                )
        if args.has_instance_storage and not vm.metadata.has_annotation(C.INSTANCE_STORAGE_PVCS_BOUND_ANNOTATION):
            raise VmOperatorError(code=1, msg="instance storage PVCs are not bound yet")

    def _final_create_spec(self, vm: VirtualMachine, args: VMCreateArgs) -> dict:
        spec = apply_disk_provisioning(copy.deepcopy(args.config_spec), args.storage_provisioning)
        if args.storage_profile_id:
            spec["vmProfile"] = [{"_typeName": "VirtualMachineDefinedProfileSpec", "profileId": args.storage_profile_id}]
        datastore = args.datastore_name or self.config.datastore
        spec["files"] = {"_typeName": "VirtualMachineFileInfo", "vmPathName": f"[{datastore}]" if datastore else ""}
        nics = nic_device_changes(vm.spec.network_interfaces)
        if nics:
            spec["deviceChange"] = list(spec.get("deviceChange") or []) + nics
        return spec

    def _update_get_args(self, vm: VirtualMachine) -> VMUpdateArgs:
        vm_class = prereqs.get_vm_class(self.store, vm)
        policy = prereqs.get_resource_policy(self.store, vm)
        vm_md = prereqs.get_vm_metadata(self.store, vm)
        prereqs.mark_prereq_ready(vm)

        args = VMUpdateArgs(vm_class=vm_class, vm_metadata=vm_md, resource_policy=policy)
        if vm_class.spec.resources.has_cpu():
            args.min_cpu_freq = self.client.min_cpu_frequency()
        if self.config.vm_class_as_config_enabled:
            args.class_config_spec = prereqs.get_class_config_spec(vm_class)

        if self.is_first_boot(vm):
            image = prereqs.get_vm_image(self.store, vm)
            args.image_firmware = image.firmware
            args.extra_config = render_extra_config(self.config.global_extra_config, image.template_values())
            args.image_v1alpha1_compatible = condition_is_true(image.conditions, C.V1ALPHA1_COMPATIBLE_CONDITION)
            if args.image_v1alpha1_compatible and (vm_md is None or vm_md.transport != CLOUD_INIT_TRANSPORT):
                args.extra_config[DEFER_CLOUD_INIT_KEY] = "enabled"

        args.config_spec = create_config_spec(
            vm.name, vm_class.spec, args.min_cpu_freq, args.image_firmware, args.class_config_spec
        )
        return args

    @staticmethod
    def is_first_boot(vm: VirtualMachine) -> bool:
        return not vm.metadata.has_annotation(C.FIRST_BOOT_DONE_ANNOTATION)

    def _update_virtual_machine(self, vm: VirtualMachine, vm_obj: Any, ctx: ReconcileContext) -> None:
        log = ctx.log.bind(vm=vm.namespaced_name)
        first_boot = self.is_first_boot(vm)
        args = self._update_get_args(vm)

        live = vm_obj.config
        disk_changes = disk_resize_device_changes(vm.spec.volumes, live.hardware.device)
        vapp = None
        md = args.vm_metadata
        live_vapp = getattr(live, "vAppConfig", None)
        if md is not None and md.transport in VAPP_TRANSPORTS and live_vapp is not None:
            vapp = vmops.merged_vapp_config_spec(md.data, list(getattr(live_vapp, "property", None) or []))

        delta = vmops.build_reconfigure_spec(
            args.config_spec,
            live,
            extra_config=args.extra_config,
            first_boot=first_boot,
            disk_changes=disk_changes,
            vapp_config=vapp,
        )
        if delta:
            Log.step(log, "Reconfiguring VirtualMachine", keys=",".join(sorted(k for k in delta if k != "_typeName")))
            vmops.reconfigure(self.client, vm_obj, delta, self.waiter, ctx)
        else:
            log.debug("VirtualMachine config is up to date")

        if vmops.set_power_state(vm_obj, vm.spec.power_state, self.waiter, ctx):
            log.info("Power state set to %s", vm.spec.power_state)

        if first_boot:
            vm.metadata.set_annotation(C.FIRST_BOOT_DONE_ANNOTATION, "true")

        vm.status.phase = VMPhase.UPDATED.value
        vm.status.unique_id = vmops.moid(vm_obj)
        host = getattr(getattr(vm_obj, "runtime", None), "host", None)
        vm.status.host = str(getattr(host, "name", "") or "") if host is not None else ""
        vm.status.zone = vm.metadata.label(C.ZONE_LABEL)

    # ------------------------------------------------------------------
    # other operations
    # ------------------------------------------------------------------

    def delete_virtual_machine(self, vm: VirtualMachine, ctx: ReconcileContext) -> None:
        vm_obj = self._get_vm(vm)
        if vm_obj is None:
            ctx.log.debug("VirtualMachine %s has no vSphere VM; nothing to delete", vm.namespaced_name)
            return
        Log.step(ctx.log, "Deleting VirtualMachine", vm=vm.namespaced_name, moid=vmops.moid(vm_obj))
        vmops.destroy(vm_obj, self.waiter, ctx)

    def relocate_virtual_machine(self, vm: VirtualMachine, relocate_spec: RelocateSpec, ctx: ReconcileContext) -> None:
        log = ctx.log.bind(vm=vm.namespaced_name)
        vm_obj = self._get_vm(vm)
        if vm_obj is None:
            log.info("VirtualMachine has no vSphere VM; nothing to relocate")
            return

        rs = relocate_spec
        host = self.client.find_host(rs.host_ip)
        pool = self.client.find_resource_pool(rs.resource_pool_name)
        datastore = self.client.find_datastore(rs.datastore_name)
        network = self.client.find_network(rs.vm_network_name)
        folder = self.client.find_folder(rs.folder_name)
        nic_change = vmops.network_backing_change(vmops.first_ethernet_card(vm_obj), network)

        Log.step(
            log,
            "Relocating VirtualMachine",
            host=vmops.moid(host),
            pool=vmops.moid(pool),
            datastore=vmops.moid(datastore),
            folder=vmops.moid(folder),
        )
        spec = {
            "_typeName": "VirtualMachineRelocateSpec",
            "folder": folder,
            "datastore": datastore,
            "pool": pool,
            "host": host,
            "deviceChange": [nic_change],
        }
        vmops.relocate(self.client, vm_obj, spec, self.waiter, ctx)

    def get_vsphere_vms_by_res_pool_name(self, pool_name: str) -> List[VsphereVM]:
        pool = self.client.find_resource_pool(pool_name)
        return [VsphereVM(name=str(v.name), moid=vmops.moid(v)) for v in pool.vm or []]

    def get_folder_moid_by_namespace(self, namespace: str) -> str:
        return topology.get_namespace_folder_moid(self.store, namespace)

    def move_vms_into_folder(self, folder_moid: str, vms: List[VsphereVM], ctx: ReconcileContext) -> None:
        if not vms:
            return
        folder = self.client.ref("Folder", folder_moid)
        objs = [self.client.ref("VirtualMachine", v.moid) for v in vms]
        self.waiter.wait(folder.MoveIntoFolder_Task(list=objs), op="move into folder", target=folder_moid, ctx=ctx)

    def get_virtual_machine_hardware_version(self, vm: VirtualMachine) -> int:
        vm_obj = self._get_vm(vm)
        if vm_obj is None:
            raise NotFoundError(code=44, msg=f"vSphere VM for {vm.namespaced_name} not found")
        return vmops.hardware_version(vm_obj)
