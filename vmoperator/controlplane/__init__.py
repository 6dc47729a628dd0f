# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/controlplane/__init__.py
from .remote import RemoteClusterClient, RemoteClusterClientFactory
from .store import KubeStore, build_api_client

__all__ = ["KubeStore", "build_api_client", "RemoteClusterClient", "RemoteClusterClientFactory"]
