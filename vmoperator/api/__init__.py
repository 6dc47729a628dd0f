# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/api/__init__.py
from . import constants
from .types import (
    AvailabilityZone,
    Condition,
    EntitiesReference,
    EntityReference,
    EntitySelector,
    ObjectMeta,
    ObjectReference,
    Operation,
    OperationReference,
    OperationSpec,
    OperationStatus,
    OperationType,
    Plan,
    RelocateSpec,
    SupervisorLocation,
    VirtualMachine,
    VirtualMachineClass,
    VirtualMachineImage,
    VirtualMachineSetResourcePolicy,
    VirtualMachineSpec,
    VirtualMachineStatus,
    VirtualMachineVolume,
    VMMetadata,
    VMPhase,
    VsphereLocation,
    VsphereVM,
)

__all__ = [
    "constants",
    "AvailabilityZone",
    "Condition",
    "EntitiesReference",
    "EntityReference",
    "EntitySelector",
    "ObjectMeta",
    "ObjectReference",
    "Operation",
    "OperationReference",
    "OperationSpec",
    "OperationStatus",
    "OperationType",
    "Plan",
    "RelocateSpec",
    "SupervisorLocation",
    "VirtualMachine",
    "VirtualMachineClass",
    "VirtualMachineImage",
    "VirtualMachineSetResourcePolicy",
    "VirtualMachineSpec",
    "VirtualMachineStatus",
    "VirtualMachineVolume",
    "VMMetadata",
    "VMPhase",
    "VsphereLocation",
    "VsphereVM",
]
