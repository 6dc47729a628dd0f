# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import os
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException

from fakes.fake_logger import FakeLogger
from fakes.fake_store import FakeStore
from vmoperator.api import constants as C
from vmoperator.api.types import ObjectMeta, ObjectReference, Operation, OperationSpec, SupervisorLocation
from vmoperator.controlplane import remote
from vmoperator.controlplane.remote import RemoteClusterClient, RemoteClusterClientFactory
from vmoperator.core.exceptions import ValidationError, VmOperatorError

LOCATION = SupervisorLocation(
    metadata=ObjectMeta(name="supervisor-b", namespace="ns"),
    host="10.1.0.5",
    namespace="dest-ns",
    identity=ObjectReference(namespace="ns", name="supervisor-b-identity"),
)


def _op(dest_name="supervisor-b"):
    return Operation(
        metadata=ObjectMeta(name="op-1", namespace="ns"),
        spec=OperationSpec(operation_type="ColdMigration", entity_name="vm-1", destination=ObjectReference(name=dest_name)),
    )


@pytest.mark.unit
class TestRemoteClusterClient:
    def test_server_version(self):
        with patch.object(remote.k8s_client, "VersionApi") as version_api:
            version_api.return_value.get_code.return_value = SimpleNamespace(git_version="v1.27.1")

            assert RemoteClusterClient(MagicMock(), LOCATION, logger=FakeLogger()).server_version() == "v1.27.1"

    def test_unreachable(self):
        with patch.object(remote.k8s_client, "VersionApi") as version_api:
            version_api.return_value.get_code.side_effect = ApiException(status=503, reason="Service Unavailable")

            with pytest.raises(VmOperatorError, match="unreachable"):
                RemoteClusterClient(MagicMock(), LOCATION, logger=FakeLogger()).server_version()

    def test_create_conflict_is_success(self):
        with patch.object(remote.k8s_client, "CustomObjectsApi") as custom_api:
            create = custom_api.return_value.create_namespaced_custom_object
            create.side_effect = [None, ApiException(status=409, reason="AlreadyExists")]
            client = RemoteClusterClient(MagicMock(), LOCATION, logger=FakeLogger())
            body = {"metadata": {"name": "import-vm-1"}}

            assert client.create_operation("dest-ns", body) is True
            assert client.create_plan("dest-ns", body) is False

        assert [c.args[3] for c in create.call_args_list] == [C.OPERATIONS, C.PLANS]

    def test_create_failure(self):
        with patch.object(remote.k8s_client, "CustomObjectsApi") as custom_api:
            custom_api.return_value.create_namespaced_custom_object.side_effect = ApiException(status=403, reason="Forbidden")

            with pytest.raises(VmOperatorError, match="403"):
                RemoteClusterClient(MagicMock(), LOCATION, logger=FakeLogger()).create_operation("dest-ns", {"metadata": {}})

    def test_close_removes_credentials(self, tmp_path):
        cert = tmp_path / "c.crt"
        cert.write_text("x")
        api_client = MagicMock()

        with RemoteClusterClient(api_client, LOCATION, temp_files=[str(cert)], logger=FakeLogger()) as client:
            assert client.namespace == "dest-ns"

        assert not cert.exists()
        api_client.close.assert_called_once()


@pytest.mark.unit
class TestRemoteClusterClientFactory:
    def _store(self, secret=None):
        store = FakeStore()
        store.supervisor_locations[("ns", "supervisor-b")] = LOCATION
        store.secrets[("ns", "supervisor-b-identity")] = (
            secret if secret is not None else {"tls.crt": "CERT", "tls.key": "KEY"}
        )
        return store

    def test_build(self):
        with patch.object(remote.k8s_client, "ApiClient") as api_client_cls:
            client = RemoteClusterClientFactory(self._store(), logger=FakeLogger()).build(_op())

            cfg = api_client_cls.call_args.args[0]
            assert cfg.host == "https://10.1.0.5:6443"
            with open(cfg.cert_file) as f:
                assert f.read() == "CERT"
            assert oct(os.stat(cfg.key_file).st_mode & 0o777) == "0o600"

            client.close()
            assert not os.path.exists(cfg.cert_file)
            assert not os.path.exists(cfg.key_file)

    def test_no_destination(self):
        with pytest.raises(ValidationError, match="no destination"):
            RemoteClusterClientFactory(self._store(), logger=FakeLogger()).build(_op(dest_name=""))

    def test_identity_without_key(self):
        with pytest.raises(ValidationError, match="tls.key"):
            RemoteClusterClientFactory(self._store({"tls.crt": "CERT"}), logger=FakeLogger()).build(_op())

    def test_client_failure_removes_credentials(self):
        written = []
        real_write = remote._write_private

        def write(data, suffix):
            written.append(real_write(data, suffix))
            return written[-1]

        with patch.object(remote, "_write_private", side_effect=write), patch.object(
            remote.k8s_client, "ApiClient", side_effect=RuntimeError("bad client configuration")
        ):
            with pytest.raises(RuntimeError):
                RemoteClusterClientFactory(self._store(), logger=FakeLogger()).build(_op())

        assert len(written) == 2
        assert not any(os.path.exists(p) for p in written)
