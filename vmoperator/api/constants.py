# SPDX-License-Identifier: LGPL-3.0-or-later
# vmoperator/api/constants.py
from __future__ import annotations

GROUP = "vmoperator.vmware.com"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP}/{VERSION}"

TOPOLOGY_GROUP = "topology.tanzu.vmware.com"
TOPOLOGY_VERSION = "v1alpha1"

# plural resource names
VIRTUAL_MACHINES = "virtualmachines"
VIRTUAL_MACHINE_CLASSES = "virtualmachineclasses"
VIRTUAL_MACHINE_IMAGES = "virtualmachineimages"
VIRTUAL_MACHINE_SET_RESOURCE_POLICIES = "virtualmachinesetresourcepolicies"
OPERATIONS = "operations"
PLANS = "plans"
SUPERVISOR_LOCATIONS = "supervisorlocations"
VSPHERE_LOCATIONS = "vspherelocations"
AVAILABILITY_ZONES = "availabilityzones"

VM_FINALIZER = "virtualmachine.vmoperator.vmware.com"
OPERATION_FINALIZER = "Operation.mobilityservice.vmware.com"
PLAN_FINALIZER = "Plan.mobilityservice.vmware.com"

FIRST_BOOT_DONE_ANNOTATION = "virtualmachine.vmoperator.vmware.com/first-boot-done"
EXPORT_ANNOTATION = "vmoperator.vmware.com/export"
INSTANCE_STORAGE_SELECTED_NODE_MOID_ANNOTATION = "vmoperator.vmware.com/instance-storage-selected-node-moid"
INSTANCE_STORAGE_SELECTED_NODE_ANNOTATION = "vmoperator.vmware.com/instance-storage-selected-node"
INSTANCE_STORAGE_PVCS_BOUND_ANNOTATION = "vmoperator.vmware.com/instance-storage-pvcs-bound"

ZONE_LABEL = "topology.kubernetes.io/zone"

VSPHERE_VM_ENTITY_KIND = "VsphereVMEntity"

INSTANCE_STORAGE_PVC_NAME_PREFIX = "instance-pvc-"

STORAGE_POLICY_ID_PARAMETER = "storagePolicyID"
EPHEMERAL_STORAGE = "ephemeral-storage"
DISK_PROVISIONING_PARAMETER = "diskProvisioningType"

VC_VM_ANNOTATION = "Virtual Machine managed by the vSphere Virtual Machine service"
MANAGED_BY_EXTENSION_KEY = "com.vmware.vcenter.wcp"
MANAGED_BY_TYPE = "VirtualMachine"

MIN_HW_VERSION_FOR_PVC = 15
MIN_HW_VERSION_FOR_PCI_PASSTHRU = 17

PREREQ_READY_CONDITION = "VirtualMachinePrereqReady"
V1ALPHA1_COMPATIBLE_CONDITION = "VirtualMachineImageV1Alpha1Compatible"
OPERATION_READY_CONDITION = "Ready"
