# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/core/admission.py
"""
Process-wide admission control for VM creation.

The gate never blocks: a denied caller returns "not ready" and relies on
the reconcile scheduler to try again later.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Generator, Tuple


def _noop() -> None:
    return None


class AdmissionGate:
    """
    Bounds the number of in-flight create operations.

    The lock guards only the counter; it is never held across the
    infrastructure call that the caller performs after a grant.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def try_acquire(self, limit: int) -> Tuple[bool, Callable[[], None]]:
        """
        Returns (granted, release). release() is a no-op when not granted and
        decrements the counter at most once when granted.
        """
        with self._lock:
            if self._in_flight >= limit:
                return False, _noop
            self._in_flight += 1

        released = threading.Event()

        def release() -> None:
            with self._lock:
                if released.is_set():
                    return
                released.set()
                self._in_flight -= 1

        return True, release

    @contextmanager
    def admit(self, limit: int) -> Generator[bool, None, None]:
        """
        Scoped guard around try_acquire(); the slot is released on every
        exit path of the block, including exceptions.

            with gate.admit(limit) as granted:
                if not granted:
                    return False
                create()
        """
        granted, release = self.try_acquire(limit)
        try:
            yield granted
        finally:
            release()


def max_deploy_threads(max_concurrent_reconciles: int, max_create_vms_on_provider: int) -> int:
    """
    Share of reconcile workers allowed to create VMs at once, as a
    percentage of the reconcile worker count. Always at least one.
    """
    pct = min(max(int(max_create_vms_on_provider), 0), 100)
    return max(1, int(max_concurrent_reconciles) * pct // 100)
