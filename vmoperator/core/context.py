# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/core/context.py
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from .exceptions import TaskCancelledError, TaskTimeoutError
from .logger import ContextLoggerAdapter, Log


@dataclass
class ReconcileContext:
    """
    Per-call cancellation and logging scope.

    `cancel` is shared by every context derived from the same reconcile so
    that stopping the manager aborts in-flight task waits. `deadline` is a
    time.monotonic() value.
    """
    log: ContextLoggerAdapter = field(default_factory=lambda: Log.bind(Log.get()))
    cancel: threading.Event = field(default_factory=threading.Event)
    deadline: Optional[float] = None

    @classmethod
    def background(cls, *, timeout_s: Optional[float] = None, **ctx: Any) -> "ReconcileContext":
        deadline = time.monotonic() + timeout_s if timeout_s else None
        return cls(log=Log.bind(Log.get(), **ctx), deadline=deadline)

    def with_values(self, **ctx: Any) -> "ReconcileContext":
        return replace(self, log=self.log.bind(**ctx))

    def with_timeout(self, timeout_s: Optional[float]) -> "ReconcileContext":
        if not timeout_s:
            return self
        deadline = time.monotonic() + timeout_s
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return replace(self, deadline=deadline)

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def done(self) -> bool:
        return self.cancel.is_set() or (self.deadline is not None and time.monotonic() >= self.deadline)

    def check(self, what: str = "operation") -> None:
        if self.cancel.is_set():
            raise TaskCancelledError(msg=f"{what} cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise TaskTimeoutError(msg=f"{what} deadline exceeded")

    def sleep(self, seconds: float) -> None:
        """Sleep that wakes up early when the context is cancelled."""
        rem = self.remaining()
        if rem is not None:
            seconds = min(seconds, rem)
        self.cancel.wait(max(0.0, seconds))
