# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/provider/__init__.py
"""vSphere VM provider: desired VirtualMachine state -> vSphere calls."""
