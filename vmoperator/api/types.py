# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/api/types.py
"""
Desired-state objects as seen by the reconcilers.

The control plane stores them as camelCase JSON; from_dict()/to_dict()
translate at the store boundary so the rest of the code works with
attributes. Unknown fields are preserved in `raw` so that an update never
drops data written by another component.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from decimal import ROUND_CEILING, Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from kubernetes.utils import parse_quantity

from ..core.exceptions import ValidationError
from . import constants as C


def _d(v: Any) -> Dict[str, Any]:
    return v if isinstance(v, dict) else {}


def _l(v: Any) -> List[Any]:
    return v if isinstance(v, list) else []


def _prune(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v not in (None, "", [], {})}


MiB = 1 << 20


def _quantity(v: Any, what: str) -> Decimal:
    """Kubernetes resource quantity ("500m", "4Gi", 1024) as a Decimal; unset is 0."""
    if v is None or v == "":
        return Decimal(0)
    try:
        return parse_quantity(v)
    except (ValueError, TypeError, ArithmeticError) as e:
        raise ValidationError(code=2, msg=f"invalid quantity for {what}: {v!r}", cause=e, context={"field": what})


def millicores(v: Any, what: str = "cpu") -> int:
    return int((_quantity(v, what) * 1000).to_integral_value(rounding=ROUND_CEILING))


def mebibytes(v: Any, what: str = "memory") -> int:
    return int((_quantity(v, what) / MiB).to_integral_value(rounding=ROUND_CEILING))


def bytes_of(v: Any, what: str = "size") -> int:
    return int(_quantity(v, what).to_integral_value(rounding=ROUND_CEILING))


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


@dataclass
class ObjectMeta:
    name: str = ""
    namespace: str = ""
    uid: str = ""
    resource_version: str = ""
    labels: Optional[Dict[str, str]] = None
    annotations: Optional[Dict[str, str]] = None
    finalizers: List[str] = field(default_factory=list)
    deletion_timestamp: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ObjectMeta":
        d = _d(d)
        return cls(
            name=d.get("name", ""),
            namespace=d.get("namespace", ""),
            uid=d.get("uid", ""),
            resource_version=d.get("resourceVersion", ""),
            labels=dict(d["labels"]) if isinstance(d.get("labels"), dict) else None,
            annotations=dict(d["annotations"]) if isinstance(d.get("annotations"), dict) else None,
            finalizers=list(_l(d.get("finalizers"))),
            deletion_timestamp=d.get("deletionTimestamp"),
            raw=copy.deepcopy(d),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = copy.deepcopy(self.raw)
        out.update(
            _prune(
                {
                    "name": self.name,
                    "namespace": self.namespace,
                    "uid": self.uid,
                    "resourceVersion": self.resource_version,
                }
            )
        )
        for key, value in (("labels", self.labels), ("annotations", self.annotations)):
            if value is None:
                out.pop(key, None)
            else:
                out[key] = dict(value)
        out["finalizers"] = list(self.finalizers)
        if not self.finalizers:
            out.pop("finalizers")
        if self.deletion_timestamp:
            out["deletionTimestamp"] = self.deletion_timestamp
        return out

    # The maps are created on first write; readers never see None.

    def ensure_annotations(self) -> Dict[str, str]:
        if self.annotations is None:
            self.annotations = {}
        return self.annotations

    def ensure_labels(self) -> Dict[str, str]:
        if self.labels is None:
            self.labels = {}
        return self.labels

    def set_annotation(self, key: str, value: str) -> bool:
        """Returns True when the value changed."""
        ann = self.ensure_annotations()
        if ann.get(key) == value:
            return False
        ann[key] = value
        return True

    def has_annotation(self, key: str) -> bool:
        return key in (self.annotations or {})

    def annotation(self, key: str, default: str = "") -> str:
        return (self.annotations or {}).get(key, default)

    def set_label(self, key: str, value: str) -> bool:
        labels = self.ensure_labels()
        if labels.get(key) == value:
            return False
        labels[key] = value
        return True

    def label(self, key: str, default: str = "") -> str:
        return (self.labels or {}).get(key, default)

    @property
    def being_deleted(self) -> bool:
        return bool(self.deletion_timestamp)


@dataclass
class Condition:
    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: str = ""

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Condition":
        return cls(
            type=d.get("type", ""),
            status=d.get("status", "Unknown"),
            reason=d.get("reason", ""),
            message=d.get("message", ""),
            last_transition_time=d.get("lastTransitionTime", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _prune(
            {
                "type": self.type,
                "status": self.status,
                "reason": self.reason,
                "message": self.message,
                "lastTransitionTime": self.last_transition_time,
            }
        )


def set_condition(conditions: List[Condition], cond: Condition) -> None:
    for i, existing in enumerate(conditions):
        if existing.type == cond.type:
            if existing.status == cond.status and not cond.last_transition_time:
                cond.last_transition_time = existing.last_transition_time
            conditions[i] = cond
            return
    conditions.append(cond)


def condition_is_true(conditions: List[Condition], cond_type: str) -> bool:
    return any(c.type == cond_type and c.status == "True" for c in conditions)


# ---------------------------------------------------------------------------
# VirtualMachine
# ---------------------------------------------------------------------------


class VMPhase(str, Enum):
    CREATING = "Creating"
    CREATED = "Created"
    UPDATED = "Updated"
    DELETED = "Deleted"


@dataclass
class InstanceVolumeClaim:
    storage_class: str
    size: int  # bytes

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "InstanceVolumeClaim":
        return cls(storage_class=d.get("storageClass", ""), size=bytes_of(d.get("size"), "instanceVolumeClaim.size"))

    def to_dict(self) -> Dict[str, Any]:
        return {"storageClass": self.storage_class, "size": self.size}


@dataclass
class PersistentVolumeClaimSource:
    claim_name: str
    instance_volume_claim: Optional[InstanceVolumeClaim] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PersistentVolumeClaimSource":
        ivc = d.get("instanceVolumeClaim")
        return cls(
            claim_name=d.get("claimName", ""),
            instance_volume_claim=InstanceVolumeClaim.from_dict(ivc) if isinstance(ivc, dict) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"claimName": self.claim_name}
        if self.instance_volume_claim is not None:
            out["instanceVolumeClaim"] = self.instance_volume_claim.to_dict()
        return out


@dataclass
class VsphereVolumeSource:
    device_key: Optional[int] = None
    capacity: int = 0  # bytes

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "VsphereVolumeSource":
        dk = d.get("deviceKey")
        capacity = d.get("capacity")
        if isinstance(capacity, dict):
            capacity = capacity.get(C.EPHEMERAL_STORAGE)
        return cls(device_key=int(dk) if dk is not None else None, capacity=bytes_of(capacity, "vsphereVolume.capacity"))

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"capacity": {C.EPHEMERAL_STORAGE: str(self.capacity)}}
        if self.device_key is not None:
            out["deviceKey"] = self.device_key
        return out


@dataclass
class VirtualMachineVolume:
    name: str
    persistent_volume_claim: Optional[PersistentVolumeClaimSource] = None
    vsphere_volume: Optional[VsphereVolumeSource] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "VirtualMachineVolume":
        pvc = d.get("persistentVolumeClaim")
        vv = d.get("vsphereVolume")
        return cls(
            name=d.get("name", ""),
            persistent_volume_claim=PersistentVolumeClaimSource.from_dict(pvc) if isinstance(pvc, dict) else None,
            vsphere_volume=VsphereVolumeSource.from_dict(vv) if isinstance(vv, dict) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name}
        if self.persistent_volume_claim is not None:
            out["persistentVolumeClaim"] = self.persistent_volume_claim.to_dict()
        if self.vsphere_volume is not None:
            out["vsphereVolume"] = self.vsphere_volume.to_dict()
        return out


@dataclass
class NetworkInterface:
    network_name: str = ""
    network_type: str = ""

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "NetworkInterface":
        return cls(network_name=d.get("networkName", ""), network_type=d.get("networkType", ""))

    def to_dict(self) -> Dict[str, Any]:
        return _prune({"networkName": self.network_name, "networkType": self.network_type})


@dataclass
class VMMetadataRef:
    config_map_name: str = ""
    secret_name: str = ""
    transport: str = ""

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "VMMetadataRef":
        return cls(
            config_map_name=d.get("configMapName", ""),
            secret_name=d.get("secretName", ""),
            transport=d.get("transport", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _prune(
            {"configMapName": self.config_map_name, "secretName": self.secret_name, "transport": self.transport}
        )


@dataclass
class VirtualMachineSpec:
    class_name: str = ""
    image_name: str = ""
    storage_class: str = ""
    power_state: str = ""
    volumes: List[VirtualMachineVolume] = field(default_factory=list)
    network_interfaces: List[NetworkInterface] = field(default_factory=list)
    vm_metadata: Optional[VMMetadataRef] = None
    resource_policy_name: str = ""
    min_hardware_version: int = 0
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "VirtualMachineSpec":
        d = _d(d)
        md = d.get("vmMetadata")
        return cls(
            class_name=d.get("className", ""),
            image_name=d.get("imageName", ""),
            storage_class=d.get("storageClass", ""),
            power_state=d.get("powerState", ""),
            volumes=[VirtualMachineVolume.from_dict(v) for v in _l(d.get("volumes")) if isinstance(v, dict)],
            network_interfaces=[
                NetworkInterface.from_dict(n) for n in _l(d.get("networkInterfaces")) if isinstance(n, dict)
            ],
            vm_metadata=VMMetadataRef.from_dict(md) if isinstance(md, dict) else None,
            resource_policy_name=d.get("resourcePolicyName", ""),
            min_hardware_version=int(d.get("minHardwareVersion") or 0),
            raw=copy.deepcopy(d),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = copy.deepcopy(self.raw)
        out.update(
            {
                "className": self.class_name,
                "imageName": self.image_name,
                "storageClass": self.storage_class,
                "powerState": self.power_state,
                "volumes": [v.to_dict() for v in self.volumes],
                "networkInterfaces": [n.to_dict() for n in self.network_interfaces],
                "vmMetadata": self.vm_metadata.to_dict() if self.vm_metadata else None,
                "resourcePolicyName": self.resource_policy_name,
                "minHardwareVersion": self.min_hardware_version or None,
            }
        )
        return _prune(out)


@dataclass
class VirtualMachineStatus:
    phase: str = ""
    unique_id: str = ""
    host: str = ""
    zone: str = ""
    conditions: List[Condition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "VirtualMachineStatus":
        d = _d(d)
        return cls(
            phase=d.get("phase", ""),
            unique_id=d.get("uniqueID", ""),
            host=d.get("host", ""),
            zone=d.get("zone", ""),
            conditions=[Condition.from_dict(c) for c in _l(d.get("conditions")) if isinstance(c, dict)],
        )

    def to_dict(self) -> Dict[str, Any]:
        return _prune(
            {
                "phase": self.phase,
                "uniqueID": self.unique_id,
                "host": self.host,
                "zone": self.zone,
                "conditions": [c.to_dict() for c in self.conditions],
            }
        )


@dataclass
class VirtualMachine:
    metadata: ObjectMeta
    spec: VirtualMachineSpec = field(default_factory=VirtualMachineSpec)
    status: VirtualMachineStatus = field(default_factory=VirtualMachineStatus)

    kind = "VirtualMachine"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "VirtualMachine":
        return cls(
            metadata=ObjectMeta.from_dict(d.get("metadata")),
            spec=VirtualMachineSpec.from_dict(d.get("spec")),
            status=VirtualMachineStatus.from_dict(d.get("status")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apiVersion": C.API_VERSION,
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def namespaced_name(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"


# ---------------------------------------------------------------------------
# Class / Image / Policy / Metadata
# ---------------------------------------------------------------------------


@dataclass
class InstanceStorageVolume:
    size: int  # bytes

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "InstanceStorageVolume":
        return cls(size=bytes_of(d.get("size"), "instanceStorage.volumes.size"))


@dataclass
class InstanceStorage:
    storage_class: str = ""
    volumes: List[InstanceStorageVolume] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "InstanceStorage":
        d = _d(d)
        return cls(
            storage_class=d.get("storageClass", ""),
            volumes=[InstanceStorageVolume.from_dict(v) for v in _l(d.get("volumes")) if isinstance(v, dict)],
        )


@dataclass
class VGPUDevice:
    profile_name: str


@dataclass
class DynamicDirectPathIODevice:
    vendor_id: int
    device_id: int
    custom_label: str = ""


@dataclass
class VirtualMachineClassHardware:
    cpus: int = 0
    memory_mb: int = 0
    instance_storage: InstanceStorage = field(default_factory=InstanceStorage)
    vgpu_devices: List[VGPUDevice] = field(default_factory=list)
    dynamic_direct_path_io_devices: List[DynamicDirectPathIODevice] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "VirtualMachineClassHardware":
        d = _d(d)
        devices = _d(d.get("devices"))
        return cls(
            cpus=int(d.get("cpus") or 0),
            memory_mb=mebibytes(d.get("memory"), "hardware.memory"),
            instance_storage=InstanceStorage.from_dict(d.get("instanceStorage")),
            vgpu_devices=[VGPUDevice(profile_name=v.get("profileName", "")) for v in _l(devices.get("vgpuDevices"))],
            dynamic_direct_path_io_devices=[
                DynamicDirectPathIODevice(
                    vendor_id=int(v.get("vendorID") or 0),
                    device_id=int(v.get("deviceID") or 0),
                    custom_label=v.get("customLabel", ""),
                )
                for v in _l(devices.get("dynamicDirectPathIODevices"))
            ],
        )


@dataclass
class ResourceQuantities:
    cpu: int = 0  # millicores
    memory_mb: int = 0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ResourceQuantities":
        d = _d(d)
        return cls(cpu=millicores(d.get("cpu")), memory_mb=mebibytes(d.get("memory")))

    def is_zero(self) -> bool:
        return not self.cpu and not self.memory_mb


@dataclass
class VirtualMachineClassResources:
    requests: ResourceQuantities = field(default_factory=ResourceQuantities)
    limits: ResourceQuantities = field(default_factory=ResourceQuantities)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "VirtualMachineClassResources":
        d = _d(d)
        return cls(requests=ResourceQuantities.from_dict(d.get("requests")), limits=ResourceQuantities.from_dict(d.get("limits")))

    def has_cpu(self) -> bool:
        return bool(self.requests.cpu or self.limits.cpu)


@dataclass
class VirtualMachineClassSpec:
    hardware: VirtualMachineClassHardware = field(default_factory=VirtualMachineClassHardware)
    resources: VirtualMachineClassResources = field(default_factory=VirtualMachineClassResources)
    config_spec: Optional[str] = None  # JSON-encoded VirtualMachineConfigSpec

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "VirtualMachineClassSpec":
        d = _d(d)
        return cls(
            hardware=VirtualMachineClassHardware.from_dict(d.get("hardware")),
            resources=VirtualMachineClassResources.from_dict(_d(d.get("policies")).get("resources")),
            config_spec=d.get("configSpec") or None,
        )


@dataclass
class VirtualMachineClass:
    metadata: ObjectMeta
    spec: VirtualMachineClassSpec

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "VirtualMachineClass":
        return cls(metadata=ObjectMeta.from_dict(d.get("metadata")), spec=VirtualMachineClassSpec.from_dict(d.get("spec")))


@dataclass
class VirtualMachineImage:
    metadata: ObjectMeta
    hardware_version: int = 0
    image_type: str = ""
    firmware: str = ""
    image_name: str = ""
    content_library_uuid: str = ""
    conditions: List[Condition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "VirtualMachineImage":
        spec = _d(d.get("spec"))
        status = _d(d.get("status"))
        return cls(
            metadata=ObjectMeta.from_dict(d.get("metadata")),
            hardware_version=int(spec.get("hardwareVersion") or 0),
            image_type=spec.get("type", ""),
            firmware=status.get("firmware", ""),
            image_name=status.get("imageName", "") or _d(d.get("metadata")).get("name", ""),
            content_library_uuid=status.get("contentLibraryRef", {}).get("name", "") if isinstance(status.get("contentLibraryRef"), dict) else "",
            conditions=[Condition.from_dict(c) for c in _l(status.get("conditions")) if isinstance(c, dict)],
        )

    def template_values(self) -> Dict[str, str]:
        """Values available to global extra config templates."""
        return {
            "ImageName": self.image_name,
            "Firmware": self.firmware,
            "HardwareVersion": str(self.hardware_version or ""),
            "ContentLibraryUUID": self.content_library_uuid,
        }


@dataclass
class ResourcePoolSpec:
    name: str = ""
    reservations: ResourceQuantities = field(default_factory=ResourceQuantities)
    limits: ResourceQuantities = field(default_factory=ResourceQuantities)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ResourcePoolSpec":
        d = _d(d)
        return cls(
            name=d.get("name", ""),
            reservations=ResourceQuantities.from_dict(d.get("reservations")),
            limits=ResourceQuantities.from_dict(d.get("limits")),
        )


@dataclass
class VirtualMachineSetResourcePolicy:
    metadata: ObjectMeta
    resource_pool: ResourcePoolSpec = field(default_factory=ResourcePoolSpec)
    folder_name: str = ""
    cluster_modules: List[str] = field(default_factory=list)
    cluster_module_ids: Dict[str, str] = field(default_factory=dict)  # group name -> module uuid

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "VirtualMachineSetResourcePolicy":
        spec = _d(d.get("spec"))
        status = _d(d.get("status"))
        return cls(
            metadata=ObjectMeta.from_dict(d.get("metadata")),
            resource_pool=ResourcePoolSpec.from_dict(spec.get("resourcePool")),
            folder_name=_d(spec.get("folder")).get("name", ""),
            cluster_modules=[m.get("groupname", "") for m in _l(spec.get("clusterModules")) if isinstance(m, dict)],
            cluster_module_ids={
                m.get("groupName", ""): m.get("moduleUUID", "")
                for m in _l(status.get("clustermodules"))
                if isinstance(m, dict)
            },
        )


@dataclass
class VMMetadata:
    transport: str = ""
    data: Dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Migration requests
# ---------------------------------------------------------------------------


class OperationType(str, Enum):
    IMPORT = "Import"
    EXPORT = "Export"
    COLD_MIGRATION = "ColdMigration"
    LIVE_MIGRATION = "LiveMigration"


@dataclass
class ObjectReference:
    namespace: str = ""
    name: str = ""

    @classmethod
    def from_dict(cls, d: Any) -> "ObjectReference":
        d = _d(d)
        return cls(namespace=d.get("namespace", ""), name=d.get("name", ""))

    def to_dict(self) -> Dict[str, Any]:
        return _prune({"namespace": self.namespace, "name": self.name})


@dataclass
class OperationReference:
    kind: str = "Operation"
    namespace: str = ""
    name: str = ""

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "OperationReference":
        return cls(kind=d.get("kind", "Operation"), namespace=d.get("namespace", ""), name=d.get("name", ""))

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "namespace": self.namespace, "name": self.name}


@dataclass
class RelocateSpec:
    host_ip: str = ""
    resource_pool_name: str = ""
    datastore_name: str = ""
    vm_network_name: str = ""
    folder_name: str = ""

    @classmethod
    def from_dict(cls, d: Any) -> "RelocateSpec":
        d = _d(d)
        return cls(
            host_ip=d.get("hostIp", ""),
            resource_pool_name=d.get("resourcePoolName", ""),
            datastore_name=d.get("datastoreName", ""),
            vm_network_name=d.get("vmNetworkName", ""),
            folder_name=d.get("folderName", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hostIp": self.host_ip,
            "resourcePoolName": self.resource_pool_name,
            "datastoreName": self.datastore_name,
            "vmNetworkName": self.vm_network_name,
            "folderName": self.folder_name,
        }


@dataclass
class EntityReference:
    kind: str
    namespace: str
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "namespace": self.namespace, "name": self.name}


@dataclass
class EntitySelector:
    kind: str = ""
    namespace: str = ""
    selector: Optional[Dict[str, Any]] = None
    name_regex_pattern: str = ""
    resource_pool: str = ""

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "EntitySelector":
        sel = d.get("selector")
        return cls(
            kind=d.get("kind", ""),
            namespace=d.get("namespace", ""),
            selector=dict(sel) if isinstance(sel, dict) else None,
            name_regex_pattern=d.get("nameRegexPattern", ""),
            resource_pool=d.get("resourcePool", ""),
        )


@dataclass
class EntitiesReference:
    entity_refs: List[EntityReference] = field(default_factory=list)
    entity_selector: Optional[EntitySelector] = None

    @classmethod
    def from_dict(cls, d: Any) -> "EntitiesReference":
        d = _d(d)
        sel = d.get("entitySelector")
        return cls(
            entity_refs=[
                EntityReference(kind=r.get("kind", ""), namespace=r.get("namespace", ""), name=r.get("name", ""))
                for r in _l(d.get("entityRefs"))
                if isinstance(r, dict)
            ],
            entity_selector=EntitySelector.from_dict(sel) if isinstance(sel, dict) else None,
        )


@dataclass
class OperationSpec:
    operation_type: str = ""
    entity_name: str = ""
    entities: EntitiesReference = field(default_factory=EntitiesReference)
    vm_spec: VirtualMachineSpec = field(default_factory=VirtualMachineSpec)
    source: ObjectReference = field(default_factory=ObjectReference)
    destination: ObjectReference = field(default_factory=ObjectReference)
    relocate_spec: RelocateSpec = field(default_factory=RelocateSpec)

    @classmethod
    def from_dict(cls, d: Any) -> "OperationSpec":
        d = _d(d)
        return cls(
            operation_type=d.get("operationType", ""),
            entity_name=d.get("entityName", ""),
            entities=EntitiesReference.from_dict(d.get("entities")),
            vm_spec=VirtualMachineSpec.from_dict(d.get("vmSpec")),
            source=ObjectReference.from_dict(d.get("source")),
            destination=ObjectReference.from_dict(d.get("destination")),
            relocate_spec=RelocateSpec.from_dict(d.get("relocateSpec")),
        )


@dataclass
class OperationStatus:
    phase: str = ""
    task_ref: str = ""
    entity_unique_id: str = ""
    conditions: List[Condition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Any) -> "OperationStatus":
        d = _d(d)
        return cls(
            phase=d.get("phase", ""),
            task_ref=d.get("taskRef", ""),
            entity_unique_id=d.get("entityUniqueID", ""),
            conditions=[Condition.from_dict(c) for c in _l(d.get("conditions")) if isinstance(c, dict)],
        )

    def to_dict(self) -> Dict[str, Any]:
        return _prune(
            {
                "phase": self.phase,
                "taskRef": self.task_ref,
                "entityUniqueID": self.entity_unique_id,
                "conditions": [c.to_dict() for c in self.conditions],
            }
        )


@dataclass
class Operation:
    metadata: ObjectMeta
    spec: OperationSpec = field(default_factory=OperationSpec)
    status: OperationStatus = field(default_factory=OperationStatus)

    kind = "Operation"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Operation":
        return cls(
            metadata=ObjectMeta.from_dict(d.get("metadata")),
            spec=OperationSpec.from_dict(d.get("spec")),
            status=OperationStatus.from_dict(d.get("status")),
        )

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def namespaced_name(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"


@dataclass
class Plan:
    metadata: ObjectMeta
    operations: List[OperationReference] = field(default_factory=list)
    conditions: List[Condition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Plan":
        spec = _d(d.get("spec"))
        return cls(
            metadata=ObjectMeta.from_dict(d.get("metadata")),
            operations=[OperationReference.from_dict(o) for o in _l(spec.get("operations")) if isinstance(o, dict)],
            conditions=[
                Condition.from_dict(c) for c in _l(_d(d.get("status")).get("conditions")) if isinstance(c, dict)
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apiVersion": C.API_VERSION,
            "kind": "Plan",
            "metadata": {"name": self.metadata.name, "namespace": self.metadata.namespace},
            "spec": {"operations": [o.to_dict() for o in self.operations]},
        }


@dataclass
class SupervisorLocation:
    metadata: ObjectMeta
    host: str = ""
    port: int = 6443
    namespace: str = ""
    identity: ObjectReference = field(default_factory=ObjectReference)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SupervisorLocation":
        spec = _d(d.get("spec"))
        return cls(
            metadata=ObjectMeta.from_dict(d.get("metadata")),
            host=spec.get("host", ""),
            port=int(spec.get("port") or 6443),
            namespace=spec.get("namespace", ""),
            identity=ObjectReference.from_dict(spec.get("identity")),
        )

    @property
    def server(self) -> str:
        return f"https://{self.host}:{self.port}"


@dataclass
class VsphereLocation:
    metadata: ObjectMeta
    resource_pool: str = ""

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "VsphereLocation":
        return cls(metadata=ObjectMeta.from_dict(d.get("metadata")), resource_pool=_d(d.get("spec")).get("resourcePool", ""))


@dataclass
class VsphereVM:
    """An infrastructure VM discovered by inventory lookups."""
    name: str
    moid: str


# ---------------------------------------------------------------------------
# Topology
# ---------------------------------------------------------------------------


@dataclass
class NamespaceInfo:
    folder_moid: str = ""
    pool_moids: List[str] = field(default_factory=list)


@dataclass
class AvailabilityZone:
    name: str
    cluster_moids: List[str] = field(default_factory=list)
    namespaces: Dict[str, NamespaceInfo] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AvailabilityZone":
        spec = _d(d.get("spec"))
        namespaces: Dict[str, NamespaceInfo] = {}
        for ns, info in _d(spec.get("namespaces")).items():
            info = _d(info)
            pools = list(_l(info.get("poolMoIDs")))
            if not pools and info.get("poolMoId"):
                pools = [info["poolMoId"]]
            namespaces[ns] = NamespaceInfo(folder_moid=info.get("folderMoId", ""), pool_moids=pools)
        cluster_moids = list(_l(spec.get("clusterComputeResourceMoIDs")))
        if not cluster_moids and spec.get("clusterComputeResourceMoId"):
            cluster_moids = [spec["clusterComputeResourceMoId"]]
        return cls(name=_d(d.get("metadata")).get("name", ""), cluster_moids=cluster_moids, namespaces=namespaces)
