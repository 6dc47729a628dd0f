# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/vmware/tasks.py
"""
Blocking wait on vSphere tasks.

pyVmomi task states are string enums (vim.TaskInfo.State), so the waiter
compares against plain strings and works with any object exposing
task.info.state/result/error.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from ..core.context import ReconcileContext
from ..core.exceptions import TaskCancelledError, TaskFailedError, TaskTimeoutError
from ..core.logger import Log

STATE_SUCCESS = "success"
STATE_ERROR = "error"


def _localized_message(error: Any) -> str:
    if error is None:
        return "unknown error"
    for attr in ("localizedMessage", "msg"):
        v = getattr(error, attr, None)
        if v:
            return str(v)
    fault = getattr(error, "fault", None)
    if fault is not None and getattr(fault, "msg", None):
        return str(fault.msg)
    return str(error)


def task_moid(task: Any) -> str:
    return str(getattr(task, "_moId", "") or getattr(getattr(task, "info", None), "key", "") or "")


class TaskWaiter:
    def __init__(self, *, poll_interval_s: float = 1.0, logger: Optional[logging.Logger] = None):
        self.poll_interval_s = poll_interval_s
        self.logger = logger or Log.get("tasks")

    def _abort(self, task: Any, op: str, target: str, exc_type: type, why: str) -> None:
        info = getattr(task, "info", None)
        if getattr(info, "cancelable", False):
            try:
                task.CancelTask()
            except Exception as e:
                self.logger.debug("CancelTask on %s failed: %s", task_moid(task), e)
        raise exc_type(
            code=50,
            msg=f"{op} on {target} {why}",
            context={"operation": op, "target": target, "task": task_moid(task)},
        )

    def wait(self, task: Any, *, op: str, target: str, ctx: Optional[ReconcileContext] = None) -> Any:
        """
        Poll `task` until it succeeds (returns task.info.result) or fails
        (TaskFailedError). A cancelled or expired ctx aborts the wait.
        """
        ctx = ctx or ReconcileContext()
        Log.trace(self.logger, "waiting for %s on %s (task %s)", op, target, task_moid(task))
        while True:
            info = task.info
            state = str(info.state)
            if state == STATE_SUCCESS:
                ctx.log.debug("%s on %s completed", op, target)
                return getattr(info, "result", None)
            if state == STATE_ERROR:
                message = _localized_message(getattr(info, "error", None))
                raise TaskFailedError(
                    code=50,
                    msg=f"{op} on {target} failed: {message}",
                    context={"operation": op, "target": target, "task": task_moid(task)},
                )
            if ctx.cancel.is_set():
                self._abort(task, op, target, TaskCancelledError, "cancelled")
            if ctx.deadline is not None and (ctx.remaining() or 0.0) <= 0.0:
                self._abort(task, op, target, TaskTimeoutError, "timed out")
            ctx.sleep(self.poll_interval_s)
