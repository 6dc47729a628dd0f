# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/vmware/__init__.py
from .tasks import TaskWaiter

__all__ = ["TaskWaiter"]
