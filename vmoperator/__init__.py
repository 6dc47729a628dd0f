# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/__init__.py
"""
vmoperator - VirtualMachine and migration controllers for vSphere

Reconciles VirtualMachine objects stored in a Kubernetes control plane
into vSphere VMs, and drives Operation objects (Import, Export,
ColdMigration, LiveMigration) between clusters.

Usage as a library:

    from vmoperator import load_config, build_manager

    cfg = load_config(["operator.yaml"])
    manager = build_manager(cfg)
    manager.run()
"""

__version__ = "0.1.0"

from .core import Log, OperatorConfig, load_config
from .cli import build_manager

__all__ = [
    "__version__",
    "Log",
    "OperatorConfig",
    "load_config",
    "build_manager",
]
