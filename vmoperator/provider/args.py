# SPDX-License-Identifier: LGPL-3.0-or-later
# vmoperator/provider/args.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..api.types import VirtualMachineClass, VirtualMachineImage, VirtualMachineSetResourcePolicy, VMMetadata

ConfigSpec = Dict[str, Any]


@dataclass
class VMCreateArgs:
    """Everything the create path derives before calling vCenter."""
    vm_class: VirtualMachineClass
    vm_image: VirtualMachineImage
    vm_metadata: Optional[VMMetadata] = None
    resource_policy: Optional[VirtualMachineSetResourcePolicy] = None
    class_config_spec: Optional[ConfigSpec] = None
    min_cpu_freq: int = 0

    config_spec: ConfigSpec = field(default_factory=dict)
    placement_config_spec: ConfigSpec = field(default_factory=dict)

    storage_classes_to_ids: Dict[str, str] = field(default_factory=dict)
    storage_profile_id: str = ""
    storage_provisioning: str = ""
    datastore_moid: str = ""
    datastore_name: str = ""

    child_resource_pool_name: str = ""
    child_folder_name: str = ""
    resource_pool_moid: str = ""
    folder_moid: str = ""
    host_moid: str = ""

    has_instance_storage: bool = False


@dataclass
class VMUpdateArgs:
    vm_class: VirtualMachineClass
    vm_metadata: Optional[VMMetadata] = None
    resource_policy: Optional[VirtualMachineSetResourcePolicy] = None
    class_config_spec: Optional[ConfigSpec] = None
    min_cpu_freq: int = 0
    config_spec: ConfigSpec = field(default_factory=dict)
    # only populated on first boot
    extra_config: Dict[str, str] = field(default_factory=dict)
    image_firmware: str = ""
    image_v1alpha1_compatible: bool = False
