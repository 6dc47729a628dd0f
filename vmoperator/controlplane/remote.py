# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/controlplane/remote.py
"""
Clients for the destination control plane of a migration.

A client is built per call from the Operation's SupervisorLocation and the
certificate/key pair in its identity Secret. Nothing is cached: the
credentials may rotate between migration attempts.
"""
from __future__ import annotations

import logging
import os
import tempfile
from typing import Any, Dict, List, Optional

from kubernetes import client as k8s_client
from kubernetes.client.rest import ApiException

try:  # pragma: no cover
    import urllib3  # type: ignore
except Exception:  # pragma: no cover
    urllib3 = None  # type: ignore

from ..api import constants as C
from ..api.types import Operation, SupervisorLocation
from ..core.exceptions import ValidationError, VmOperatorError
from ..core.logger import Log

TLS_CERT_KEY = "tls.crt"
TLS_KEY_KEY = "tls.key"


def _write_private(data: str, suffix: str) -> str:
    fd, path = tempfile.mkstemp(prefix="vmop-remote-", suffix=suffix)
    try:
        os.fchmod(fd, 0o600)
        os.write(fd, data.encode("utf-8"))
    finally:
        os.close(fd)
    return path


class RemoteClusterClient:
    """
    Context manager over a kubernetes ApiClient for the destination cluster.
    Temporary credential files are removed by close().
    """

    def __init__(
        self,
        api_client: Any,
        location: SupervisorLocation,
        *,
        temp_files: Optional[List[str]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_client = api_client
        self.location = location
        self.logger = logger or Log.get("remote")
        self._temp_files = list(temp_files or [])
        self._closed = False

    @property
    def namespace(self) -> str:
        return self.location.namespace

    def __enter__(self) -> "RemoteClusterClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            close = getattr(self.api_client, "close", None)
            if callable(close):
                close()
        finally:
            for path in self._temp_files:
                try:
                    os.unlink(path)
                except FileNotFoundError:
                    pass
            self._temp_files = []

    def server_version(self) -> str:
        try:
            info = k8s_client.VersionApi(self.api_client).get_code()
        except ApiException as e:
            raise VmOperatorError(
                code=1,
                msg=f"destination {self.location.server} unreachable: {e.status} {e.reason}",
                cause=e,
                context={"server": self.location.server},
            )
        return str(getattr(info, "git_version", "") or "")

    def _create(self, plural: str, namespace: str, body: Dict[str, Any]) -> bool:
        """Returns False when an object with the same name already exists."""
        name = body.get("metadata", {}).get("name", "")
        try:
            k8s_client.CustomObjectsApi(self.api_client).create_namespaced_custom_object(
                C.GROUP, C.VERSION, namespace, plural, body
            )
        except ApiException as e:
            if e.status == 409:
                self.logger.info("%s %s/%s already exists on %s", plural, namespace, name, self.location.server)
                return False
            raise VmOperatorError(
                code=1,
                msg=f"create {plural} {namespace}/{name} on {self.location.server} failed: {e.status} {e.reason}",
                cause=e,
                context={"server": self.location.server, "plural": plural},
            )
        return True

    def create_operation(self, namespace: str, body: Dict[str, Any]) -> bool:
        return self._create(C.OPERATIONS, namespace, body)

    def create_plan(self, namespace: str, body: Dict[str, Any]) -> bool:
        return self._create(C.PLANS, namespace, body)


class RemoteClusterClientFactory:
    def __init__(self, store: Any, *, logger: Optional[logging.Logger] = None) -> None:
        self.store = store
        self.logger = logger or Log.get("remote")

    def build(self, op: Operation) -> RemoteClusterClient:
        dest = op.spec.destination
        if not dest.name:
            raise ValidationError(code=2, msg=f"Operation {op.namespaced_name} has no destination")
        location = self.store.get_supervisor_location(dest.namespace or op.namespace, dest.name)
        identity = location.identity
        secret = self.store.get_secret(identity.namespace or dest.namespace or op.namespace, identity.name)

        cert = secret.get(TLS_CERT_KEY, "")
        key = secret.get(TLS_KEY_KEY, "")
        if not cert or not key:
            raise ValidationError(
                code=2,
                msg=f"identity secret {identity.namespace}/{identity.name} lacks {TLS_CERT_KEY}/{TLS_KEY_KEY}",
                context={"secret": f"{identity.namespace}/{identity.name}"},
            )

        cert_file = _write_private(cert, ".crt")
        try:
            key_file = _write_private(key, ".key")
        except Exception:
            os.unlink(cert_file)
            raise

        cfg = k8s_client.Configuration()
        cfg.host = location.server
        cfg.cert_file = cert_file
        cfg.key_file = key_file
        # TODO: pin the destination CA from the SupervisorLocation once it carries one.
        cfg.verify_ssl = False
        Log.warn_once(
            self.logger,
            ("remote-insecure", location.server),
            f"TLS verification is disabled for destination {location.server}",
        )
        if urllib3 is not None:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        try:
            api_client = k8s_client.ApiClient(cfg)
        except Exception:
            for path in (cert_file, key_file):
                os.unlink(path)
            raise
        return RemoteClusterClient(api_client, location, temp_files=[cert_file, key_file], logger=self.logger)
