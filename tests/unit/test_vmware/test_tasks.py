# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import unittest
from types import SimpleNamespace
from unittest.mock import Mock

from vmoperator.core.context import ReconcileContext
from vmoperator.core.exceptions import TaskCancelledError, TaskFailedError, TaskTimeoutError
from vmoperator.vmware.tasks import TaskWaiter


class FakeTask:
    """Reports each state in turn, then the last one forever."""

    def __init__(self, states, *, result=None, error=None, cancelable=True):
        self._states = list(states)
        self._result = result
        self._error = error
        self._cancelable = cancelable
        self._moId = "task-1"
        self.CancelTask = Mock()

    @property
    def info(self):
        state = self._states.pop(0) if len(self._states) > 1 else self._states[0]
        return SimpleNamespace(state=state, result=self._result, error=self._error, cancelable=self._cancelable)


class TestTaskWaiter(unittest.TestCase):
    def setUp(self):
        self.waiter = TaskWaiter(poll_interval_s=0.0)

    def test_success_returns_result(self):
        task = FakeTask(["queued", "running", "success"], result="vm-42")

        self.assertEqual(self.waiter.wait(task, op="create VM", target="ns/vm"), "vm-42")

    def test_error_carries_remote_message(self):
        task = FakeTask(["running", "error"], error=SimpleNamespace(localizedMessage="Insufficient disk space"))

        with self.assertRaises(TaskFailedError) as cm:
            self.waiter.wait(task, op="create VM", target="ns/vm")

        self.assertIn("Insufficient disk space", str(cm.exception))
        self.assertIn("create VM", str(cm.exception))
        self.assertEqual(cm.exception.context["task"], "task-1")

    def test_error_falls_back_to_fault_msg(self):
        task = FakeTask(["error"], error=SimpleNamespace(fault=SimpleNamespace(msg="locked")))

        with self.assertRaisesRegex(TaskFailedError, "locked"):
            self.waiter.wait(task, op="reconfigure", target="vm-1")

    def test_cancelled_context_cancels_task(self):
        ctx = ReconcileContext.background()
        ctx.cancel.set()
        task = FakeTask(["running"])

        with self.assertRaises(TaskCancelledError):
            self.waiter.wait(task, op="relocate", target="vm-1", ctx=ctx)
        task.CancelTask.assert_called_once()

    def test_deadline_raises_timeout(self):
        ctx = ReconcileContext.background()
        ctx.deadline = 0.0
        task = FakeTask(["running"], cancelable=False)

        with self.assertRaises(TaskTimeoutError):
            self.waiter.wait(task, op="destroy", target="vm-1", ctx=ctx)
        task.CancelTask.assert_not_called()


if __name__ == "__main__":
    unittest.main()
