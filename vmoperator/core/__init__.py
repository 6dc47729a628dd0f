# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/core/__init__.py
from .admission import AdmissionGate
from .config import OperatorConfig, load_config
from .context import ReconcileContext
from .logger import Log

__all__ = ["AdmissionGate", "OperatorConfig", "load_config", "ReconcileContext", "Log"]
