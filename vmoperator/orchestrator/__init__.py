# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/orchestrator/__init__.py
"""
Reconcilers driven by the controller manager.
"""

from .operation_reconciler import OperationReconciler
from .result import ReconcileResult
from .vm_reconciler import VirtualMachineReconciler

__all__ = [
    "OperationReconciler",
    "ReconcileResult",
    "VirtualMachineReconciler",
]
