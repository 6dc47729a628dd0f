# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/vmware/client.py
from __future__ import annotations

"""
vCenter session and inventory lookups for the VM provider.
"""

import logging
import socket
import ssl
import threading
from typing import Any, Dict, List, Optional, Sequence

# Optional: vSphere / vCenter integration (pyvmomi)
try:
    from pyVim.connect import Disconnect, SmartConnect  # type: ignore
    from pyVmomi import vim, vmodl  # type: ignore

    PYVMOMI_AVAILABLE = True
except Exception:  # pragma: no cover
    SmartConnect = None  # type: ignore
    Disconnect = None  # type: ignore
    vim = None  # type: ignore
    vmodl = None  # type: ignore
    PYVMOMI_AVAILABLE = False

from ..core.config import OperatorConfig
from ..core.exceptions import NotFoundError, VMwareError, wrap_vmware
from ..core.logger import Log
from ..core.retry import retry_operation
from .config_spec import to_vim


class VSphereClient:
    """
    Thin wrapper around a pyVmomi ServiceInstance.

    Lookups return managed object stubs; "not found" is reported as
    NotFoundError (or None for the *_or_none variants) so callers can tell
    a missing entity from a failed call.
    """

    def __init__(
        self,
        logger: logging.Logger,
        host: str,
        user: str,
        password: str,
        *,
        port: int = 443,
        insecure: bool = False,
        timeout: Optional[float] = None,
        datacenter: str = "",
    ) -> None:
        self.logger = logger
        self.host = (host or "").strip()
        self.user = (user or "").strip()
        self.password = password or ""
        self.port = int(port)
        self.insecure = bool(insecure)
        self.timeout = timeout
        self.datacenter = datacenter

        self.si: Any = None
        self._lock = threading.Lock()

        # caches
        self._min_cpu_freq: Optional[int] = None

    @classmethod
    def from_config(cls, logger: logging.Logger, cfg: OperatorConfig) -> "VSphereClient":
        return cls(
            logger,
            cfg.vc_host,
            cfg.vc_user,
            cfg.resolved_vc_password(),
            port=cfg.vc_port,
            insecure=cfg.vc_insecure,
            timeout=cfg.vc_timeout_s,
            datacenter=cfg.datacenter,
        )

    def has_creds(self) -> bool:
        return bool(self.host and self.user and self.password)

    # Context managers

    def __enter__(self) -> "VSphereClient":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        try:
            self.disconnect()
        finally:
            if exc_type is not None:
                self.logger.error("Exception in context: %s: %s", getattr(exc_type, "__name__", exc_type), exc_val)
        return False

    # Session

    def _require_pyvmomi(self) -> None:
        if not PYVMOMI_AVAILABLE:
            raise VMwareError(msg="pyvmomi not installed. Install: pip install pyvmomi")

    def _ssl_context(self) -> ssl.SSLContext:
        """
        SSL context for vCenter connections.

        SECURITY WARNING: insecure=True disables certificate verification and
        exposes the session to Man-in-the-Middle attacks.
        """
        if self.insecure:
            Log.warn_once(
                self.logger,
                ("vc-insecure", self.host),
                "TLS certificate verification is DISABLED for vCenter (insecure=True)",
                host=self.host,
            )
            ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
            return ctx
        return ssl.create_default_context()

    def _smart_connect(self, ctx: ssl.SSLContext) -> Any:
        if self.timeout is None:
            return SmartConnect(host=self.host, user=self.user, pwd=self.password, port=self.port, sslContext=ctx)  # type: ignore[misc]
        old_timeout = socket.getdefaulttimeout()
        socket.setdefaulttimeout(self.timeout)
        try:
            return SmartConnect(host=self.host, user=self.user, pwd=self.password, port=self.port, sslContext=ctx)  # type: ignore[misc]
        finally:
            socket.setdefaulttimeout(old_timeout)

    def connect(self) -> None:
        self._require_pyvmomi()
        if not self.has_creds():
            raise VMwareError(code=2, msg="vCenter host/user/password not configured")
        ctx = self._ssl_context()
        try:
            self.si = retry_operation(
                lambda: self._smart_connect(ctx),
                max_attempts=3,
                exceptions=(OSError, socket.timeout),
                operation_name=f"connect to vCenter {self.host}",
                logger=self.logger,
            )
        except Exception as e:
            self.si = None
            raise wrap_vmware(f"Failed to connect to vSphere: {e}", e, host=self.host)
        self.logger.info("Connected to vSphere: %s:%s", self.host, self.port)

    def disconnect(self) -> None:
        try:
            if self.si is not None:
                Disconnect(self.si)  # type: ignore[misc]
        except Exception as e:
            self.logger.error("Error during disconnect: %s", e)
        finally:
            self.si = None
            self._min_cpu_freq = None

    def ensure_connected(self) -> None:
        with self._lock:
            if self.si is None:
                self.connect()

    def content(self) -> Any:
        self.ensure_connected()
        try:
            return self.si.RetrieveContent()
        except Exception as e:
            raise wrap_vmware(f"Failed to retrieve content: {e}", e)

    # Managed object references

    def ref(self, type_name: str, moid: str) -> Any:
        """Stub for an existing managed object, e.g. ref("ResourcePool", "resgroup-9")."""
        self._require_pyvmomi()
        self.ensure_connected()
        return getattr(vim, type_name)(moid, self.si._stub)

    def exists(self, obj: Any) -> bool:
        try:
            _ = obj.name
            return True
        except vmodl.fault.ManagedObjectNotFound:  # type: ignore[union-attr]
            return False

    def _view(self, vim_types: Sequence[Any], root: Any = None) -> List[Any]:
        content = self.content()
        view = content.viewManager.CreateContainerView(root or content.rootFolder, list(vim_types), True)
        try:
            return list(view.view)
        finally:
            try:
                view.Destroy()
            except Exception as e:
                self.logger.debug("ContainerView.Destroy failed: %s", e)

    def find_by_name_or_none(self, vim_type: Any, name: str, *, root: Any = None) -> Any:
        target = (name or "").strip()
        for obj in self._view([vim_type], root):
            if str(getattr(obj, "name", "")).strip() == target:
                return obj
        return None

    def find_by_name(self, vim_type: Any, name: str, *, root: Any = None) -> Any:
        obj = self.find_by_name_or_none(vim_type, name, root=root)
        if obj is None:
            kind = getattr(vim_type, "__name__", str(vim_type)).split(".")[-1]
            raise NotFoundError(code=44, msg=f"{kind} {name!r} not found", context={"kind": kind, "name": name})
        return obj

    def find_child(self, parent: Any, name: str) -> Any:
        """SearchIndex.FindChild(); None when `name` is not a direct child of `parent`."""
        return self.content().searchIndex.FindChild(entity=parent, name=name)

    # Inventory lookups used by the provider

    def vm_by_moid(self, moid: str) -> Any:
        vm = self.ref("VirtualMachine", moid)
        return vm if self.exists(vm) else None

    def find_host(self, ip_or_name: str) -> Any:
        idx = self.content().searchIndex
        host = idx.FindByIp(datacenter=None, ip=ip_or_name, vmSearch=False)
        if host is None:
            host = idx.FindByDnsName(datacenter=None, dnsName=ip_or_name, vmSearch=False)
        if host is None:
            host = self.find_by_name(vim.HostSystem, ip_or_name)
        return host

    def find_resource_pool(self, name: str) -> Any:
        return self.find_by_name(vim.ResourcePool, name)

    def find_datastore(self, name: str) -> Any:
        return self.find_by_name(vim.Datastore, name)

    def find_network(self, name: str) -> Any:
        return self.find_by_name(vim.Network, name)

    def find_folder(self, name: str) -> Any:
        return self.find_by_name(vim.Folder, name)

    def host_fqdn(self, host_moid: str) -> str:
        host = self.ref("HostSystem", host_moid)
        dns = getattr(getattr(getattr(host, "config", None), "network", None), "dnsConfig", None)
        name = str(getattr(dns, "hostName", "") or "")
        domain = str(getattr(dns, "domainName", "") or "")
        if name:
            return f"{name}.{domain}" if domain else name
        return str(host.name)

    def min_cpu_frequency(self) -> int:
        """Lowest host CPU frequency (MHz) in the inventory; cached per session."""
        if self._min_cpu_freq is None:
            freqs = [
                int(h.summary.hardware.cpuMhz)
                for h in self._view([vim.HostSystem])
                if getattr(getattr(h.summary, "hardware", None), "cpuMhz", None)
            ]
            if not freqs:
                raise VMwareError(code=50, msg="no ESXi hosts report a CPU frequency")
            self._min_cpu_freq = min(freqs)
        return self._min_cpu_freq

    # Calls that take a config spec dict

    def create_vm(self, folder_moid: str, pool_moid: str, host_moid: str, spec: Dict[str, Any]) -> Any:
        folder = self.ref("Folder", folder_moid)
        pool = self.ref("ResourcePool", pool_moid)
        host = self.ref("HostSystem", host_moid) if host_moid else None
        return folder.CreateVM_Task(config=to_vim(spec), pool=pool, host=host)

    def reconfigure_vm(self, vm_obj: Any, spec: Dict[str, Any]) -> Any:
        return vm_obj.ReconfigVM_Task(spec=to_vim(spec))

    def relocate_vm(self, vm_obj: Any, spec: Dict[str, Any]) -> Any:
        return vm_obj.RelocateVM_Task(spec=to_vim(spec), priority=vim.VirtualMachine.MovePriority.defaultPriority)

    def place_vm(self, cluster: Any, spec: Dict[str, Any]) -> Any:
        placement = to_vim({"_typeName": "PlacementSpec", "placementType": "create", "configSpec": spec})
        return cluster.PlaceVm(placementSpec=placement)
