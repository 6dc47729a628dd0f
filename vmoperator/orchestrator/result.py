# SPDX-License-Identifier: LGPL-3.0-or-later
# vmoperator/orchestrator/result.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ReconcileResult:
    """
    Outcome of one reconcile that did not raise.

    requeue_after wins over requeue; neither set means the key is done
    until the next watch event.
    """
    requeue: bool = False
    requeue_after: Optional[float] = None

    @classmethod
    def done(cls) -> "ReconcileResult":
        return cls()

    @classmethod
    def not_ready(cls, after_s: Optional[float] = None) -> "ReconcileResult":
        return cls(requeue=True, requeue_after=after_s)

    @property
    def wants_requeue(self) -> bool:
        return self.requeue or self.requeue_after is not None
