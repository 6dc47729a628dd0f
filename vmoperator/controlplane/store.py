# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/controlplane/store.py
"""
Desired-state store backed by the Kubernetes API.

Every read returns a typed object from vmoperator.api.types; every
ApiException is translated into the project taxonomy at this boundary:
404 -> NotFoundError, 409 -> ConflictError, anything else is re-raised as
VmOperatorError with the HTTP status in the context.
"""
from __future__ import annotations

import base64
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes import watch as k8s_watch
from kubernetes.client.rest import ApiException

from ..api import constants as C
from ..api.types import (
    AvailabilityZone,
    Operation,
    SupervisorLocation,
    VirtualMachine,
    VirtualMachineClass,
    VirtualMachineImage,
    VirtualMachineSetResourcePolicy,
    VsphereLocation,
)
from ..core.exceptions import ConflictError, NotFoundError, VmOperatorError

WatchEvent = Tuple[str, Dict[str, Any]]


def _translate(e: ApiException, what: str, **ctx: Any) -> VmOperatorError:
    status = getattr(e, "status", None)
    reason = getattr(e, "reason", "") or str(e)
    if status == 404:
        return NotFoundError(code=44, msg=f"{what} not found", cause=e, context=ctx or None)
    if status == 409:
        return ConflictError(code=49, msg=f"{what}: conflict ({reason})", cause=e, context=ctx or None)
    return VmOperatorError(code=1, msg=f"{what}: API error {status}: {reason}", cause=e, context=dict(ctx, status=status))


def build_api_client(
    *, kubeconfig: Optional[str] = None, in_cluster: bool = False, logger: Optional[logging.Logger] = None
) -> k8s_client.ApiClient:
    if in_cluster:
        k8s_config.load_incluster_config()
        if logger:
            logger.debug("Using in-cluster Kubernetes configuration")
    else:
        k8s_config.load_kube_config(config_file=kubeconfig)
        if logger:
            logger.debug("Using kubeconfig %s", kubeconfig or "(default)")
    return k8s_client.ApiClient()


class KubeStore:
    def __init__(self, api_client: Optional[k8s_client.ApiClient] = None, *, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("vmoperator.store")
        self.api_client = api_client or k8s_client.ApiClient()
        self.custom = k8s_client.CustomObjectsApi(self.api_client)
        self.core = k8s_client.CoreV1Api(self.api_client)
        self.storage = k8s_client.StorageV1Api(self.api_client)

    # ------------------------------------------------------------------
    # raw custom object helpers
    # ------------------------------------------------------------------

    def _get(self, plural: str, namespace: str, name: str, *, group: str = C.GROUP, version: str = C.VERSION) -> Dict[str, Any]:
        try:
            if namespace:
                return self.custom.get_namespaced_custom_object(group, version, namespace, plural, name)
            return self.custom.get_cluster_custom_object(group, version, plural, name)
        except ApiException as e:
            raise _translate(e, f"{plural} {namespace + '/' if namespace else ''}{name}", plural=plural, name=name)

    def _list(self, plural: str, namespace: str = "", *, group: str = C.GROUP, version: str = C.VERSION) -> List[Dict[str, Any]]:
        try:
            if namespace:
                resp = self.custom.list_namespaced_custom_object(group, version, namespace, plural)
            else:
                resp = self.custom.list_cluster_custom_object(group, version, plural)
        except ApiException as e:
            raise _translate(e, f"list {plural}", plural=plural, namespace=namespace)
        return list((resp or {}).get("items") or [])

    # ------------------------------------------------------------------
    # VirtualMachine
    # ------------------------------------------------------------------

    def get_vm(self, namespace: str, name: str) -> VirtualMachine:
        return VirtualMachine.from_dict(self._get(C.VIRTUAL_MACHINES, namespace, name))

    def list_vms(self, namespace: str = "") -> List[VirtualMachine]:
        return [VirtualMachine.from_dict(o) for o in self._list(C.VIRTUAL_MACHINES, namespace)]

    def create_vm(self, vm: VirtualMachine) -> VirtualMachine:
        body = vm.to_dict()
        body.pop("status", None)
        try:
            created = self.custom.create_namespaced_custom_object(C.GROUP, C.VERSION, vm.namespace, C.VIRTUAL_MACHINES, body)
        except ApiException as e:
            raise _translate(e, f"create VirtualMachine {vm.namespaced_name}", vm=vm.namespaced_name)
        return VirtualMachine.from_dict(created)

    def update_vm(self, vm: VirtualMachine) -> VirtualMachine:
        """
        Replaces metadata and spec. The caller's resourceVersion is sent so a
        concurrent writer surfaces as ConflictError. On success the caller's
        object picks up the new resourceVersion.
        """
        body = vm.to_dict()
        body.pop("status", None)
        try:
            updated = self.custom.replace_namespaced_custom_object(
                C.GROUP, C.VERSION, vm.namespace, C.VIRTUAL_MACHINES, vm.name, body
            )
        except ApiException as e:
            raise _translate(e, f"update VirtualMachine {vm.namespaced_name}", vm=vm.namespaced_name)
        out = VirtualMachine.from_dict(updated)
        vm.metadata.resource_version = out.metadata.resource_version
        return out

    def update_vm_status(self, vm: VirtualMachine) -> None:
        try:
            updated = self.custom.patch_namespaced_custom_object_status(
                C.GROUP, C.VERSION, vm.namespace, C.VIRTUAL_MACHINES, vm.name, {"status": vm.status.to_dict()}
            )
        except ApiException as e:
            raise _translate(e, f"update VirtualMachine status {vm.namespaced_name}", vm=vm.namespaced_name)
        rv = ((updated or {}).get("metadata") or {}).get("resourceVersion")
        if rv:
            vm.metadata.resource_version = rv

    def delete_vm(self, namespace: str, name: str) -> None:
        try:
            self.custom.delete_namespaced_custom_object(C.GROUP, C.VERSION, namespace, C.VIRTUAL_MACHINES, name)
        except ApiException as e:
            raise _translate(e, f"delete VirtualMachine {namespace}/{name}", vm=f"{namespace}/{name}")

    # ------------------------------------------------------------------
    # class / image / policy / metadata sources
    # ------------------------------------------------------------------

    def get_vm_class(self, name: str) -> VirtualMachineClass:
        return VirtualMachineClass.from_dict(self._get(C.VIRTUAL_MACHINE_CLASSES, "", name))

    def get_vm_image(self, name: str) -> VirtualMachineImage:
        return VirtualMachineImage.from_dict(self._get(C.VIRTUAL_MACHINE_IMAGES, "", name))

    def get_resource_policy(self, namespace: str, name: str) -> VirtualMachineSetResourcePolicy:
        return VirtualMachineSetResourcePolicy.from_dict(self._get(C.VIRTUAL_MACHINE_SET_RESOURCE_POLICIES, namespace, name))

    def get_config_map(self, namespace: str, name: str) -> Dict[str, str]:
        try:
            cm = self.core.read_namespaced_config_map(name, namespace)
        except ApiException as e:
            raise _translate(e, f"ConfigMap {namespace}/{name}", configmap=f"{namespace}/{name}")
        return dict(cm.data or {})

    def get_secret(self, namespace: str, name: str) -> Dict[str, str]:
        """Secret data, base64-decoded."""
        try:
            secret = self.core.read_namespaced_secret(name, namespace)
        except ApiException as e:
            raise _translate(e, f"Secret {namespace}/{name}", secret=f"{namespace}/{name}")
        return {k: base64.b64decode(v).decode("utf-8") for k, v in (secret.data or {}).items()}

    def get_storage_class_parameters(self, name: str) -> Dict[str, str]:
        try:
            sc = self.storage.read_storage_class(name)
        except ApiException as e:
            raise _translate(e, f"StorageClass {name}", storage_class=name)
        return dict(sc.parameters or {})

    # ------------------------------------------------------------------
    # migration objects
    # ------------------------------------------------------------------

    def get_operation(self, namespace: str, name: str) -> Operation:
        return Operation.from_dict(self._get(C.OPERATIONS, namespace, name))

    def list_operations(self, namespace: str = "") -> List[Operation]:
        return [Operation.from_dict(o) for o in self._list(C.OPERATIONS, namespace)]

    def update_operation_status(self, op: Operation) -> None:
        try:
            self.custom.patch_namespaced_custom_object_status(
                C.GROUP, C.VERSION, op.namespace, C.OPERATIONS, op.metadata.name, {"status": op.status.to_dict()}
            )
        except ApiException as e:
            raise _translate(e, f"update Operation status {op.namespaced_name}", operation=op.namespaced_name)

    def get_supervisor_location(self, namespace: str, name: str) -> SupervisorLocation:
        return SupervisorLocation.from_dict(self._get(C.SUPERVISOR_LOCATIONS, namespace, name))

    def get_vsphere_location(self, namespace: str, name: str) -> VsphereLocation:
        return VsphereLocation.from_dict(self._get(C.VSPHERE_LOCATIONS, namespace, name))

    # ------------------------------------------------------------------
    # topology
    # ------------------------------------------------------------------

    def list_availability_zones(self) -> List[AvailabilityZone]:
        items = self._list(C.AVAILABILITY_ZONES, group=C.TOPOLOGY_GROUP, version=C.TOPOLOGY_VERSION)
        return [AvailabilityZone.from_dict(o) for o in items]

    # ------------------------------------------------------------------
    # watches
    # ------------------------------------------------------------------

    def _list_fn(self, plural: str, namespace: str) -> Tuple[Callable[..., Any], Tuple[Any, ...]]:
        if namespace:
            return self.custom.list_namespaced_custom_object, (C.GROUP, C.VERSION, namespace, plural)
        return self.custom.list_cluster_custom_object, (C.GROUP, C.VERSION, plural)

    def watch(self, plural: str, namespace: str = "", *, timeout_s: int = 300) -> Iterator[WatchEvent]:
        """
        Yields (event_type, object) until the server closes the stream.
        The caller reconnects; a 410 Gone surfaces as VmOperatorError.
        """
        fn, args = self._list_fn(plural, namespace)
        w = k8s_watch.Watch()
        try:
            for event in w.stream(fn, *args, timeout_seconds=timeout_s):
                yield str(event.get("type", "")), event.get("object") or {}
        except ApiException as e:
            raise _translate(e, f"watch {plural}", plural=plural)
        finally:
            w.stop()
