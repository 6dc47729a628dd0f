# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import threading
import unittest

import pytest

from vmoperator.core.admission import AdmissionGate, max_deploy_threads


@pytest.mark.unit
class TestMaxDeployThreads:
    def test_percentage_of_workers(self):
        assert max_deploy_threads(10, 80) == 8
        assert max_deploy_threads(10, 100) == 10

    def test_never_below_one(self):
        assert max_deploy_threads(1, 10) == 1
        assert max_deploy_threads(10, 0) == 1

    def test_percentage_is_clamped(self):
        assert max_deploy_threads(10, 250) == 10
        assert max_deploy_threads(10, -5) == 1


class TestAdmissionGate(unittest.TestCase):
    def test_grant_and_release(self):
        gate = AdmissionGate()

        ok, release = gate.try_acquire(1)
        self.assertTrue(ok)
        self.assertEqual(gate.in_flight, 1)

        release()
        self.assertEqual(gate.in_flight, 0)

    def test_denied_at_limit(self):
        gate = AdmissionGate()
        ok1, rel1 = gate.try_acquire(1)
        ok2, rel2 = gate.try_acquire(1)

        self.assertTrue(ok1)
        self.assertFalse(ok2)
        rel2()
        self.assertEqual(gate.in_flight, 1)
        rel1()
        self.assertEqual(gate.in_flight, 0)

    def test_release_is_idempotent(self):
        gate = AdmissionGate()
        _, release = gate.try_acquire(2)
        release()
        release()
        self.assertEqual(gate.in_flight, 0)

    def test_admit_releases_on_exception(self):
        gate = AdmissionGate()
        with self.assertRaises(RuntimeError):
            with gate.admit(1) as granted:
                self.assertTrue(granted)
                raise RuntimeError("create failed")
        self.assertEqual(gate.in_flight, 0)

    def test_concurrent_grants_never_exceed_limit(self):
        gate = AdmissionGate()
        limit = 3
        peak = []
        barrier = threading.Barrier(8)
        lock = threading.Lock()

        def worker():
            barrier.wait()
            with gate.admit(limit) as granted:
                if granted:
                    with lock:
                        peak.append(gate.in_flight)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertTrue(peak)
        self.assertLessEqual(max(peak), limit)
        self.assertEqual(gate.in_flight, 0)


if __name__ == "__main__":
    unittest.main()
