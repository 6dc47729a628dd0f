# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/stats.py
"""
Reconcile statistics for the controller manager.
Tracks per-kind outcomes, requeues and durations.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional


@dataclass
class ReconcileRecord:
    """One finished reconcile."""
    kind: str
    key: str
    start_time: str
    duration_seconds: float
    status: str  # 'success', 'not_ready', 'failed'
    error: Optional[str] = None


class ReconcileStatistics:
    """
    Thread-safe counters shared by all reconcile workers.

    When stats_file is set the summary is written there (atomically) at
    most once per save interval and on shutdown.
    """

    def __init__(self, logger: logging.Logger, stats_file: Optional[Path] = None, *, save_interval_s: float = 60.0):
        self.logger = logger
        self.stats_file = stats_file
        self.lock = threading.RLock()

        self.start_time = datetime.now()
        self.total_succeeded = 0
        self.total_failed = 0
        self.total_not_ready = 0
        self.total_requeued = 0
        self.total_time = 0.0
        self.in_flight: Dict[str, float] = {}
        self.recent: List[ReconcileRecord] = []
        self.by_kind: Dict[str, Dict[str, float]] = {}

        self._last_save = time.time()
        self._save_interval = save_interval_s

    def started(self, kind: str, key: str) -> None:
        with self.lock:
            self.in_flight[f"{kind}:{key}"] = time.monotonic()

    def finished(self, kind: str, key: str, status: str, error: Optional[str] = None) -> None:
        with self.lock:
            t0 = self.in_flight.pop(f"{kind}:{key}", None)
            duration = time.monotonic() - t0 if t0 is not None else 0.0

            if status == "success":
                self.total_succeeded += 1
                self.total_time += duration
            elif status == "not_ready":
                self.total_not_ready += 1
            else:
                self.total_failed += 1

            per = self.by_kind.setdefault(kind, {"succeeded": 0, "failed": 0, "not_ready": 0, "total_time": 0.0})
            if status == "success":
                per["succeeded"] += 1
                per["total_time"] += duration
            elif status == "not_ready":
                per["not_ready"] += 1
            else:
                per["failed"] += 1

            self.recent.append(
                ReconcileRecord(
                    kind=kind,
                    key=key,
                    start_time=datetime.now().isoformat(),
                    duration_seconds=round(duration, 3),
                    status=status,
                    error=error,
                )
            )
            # Keep only last 100 records
            if len(self.recent) > 100:
                self.recent = self.recent[-100:]

            self.logger.debug(f"📊 {kind} {key}: {status} ({duration:.2f}s)")

            if self.stats_file and time.time() - self._last_save > self._save_interval:
                self.save()

    def requeued(self) -> None:
        with self.lock:
            self.total_requeued += 1

    def get_summary(self) -> Dict:
        with self.lock:
            uptime_seconds = (datetime.now() - self.start_time).total_seconds()
            finished = self.total_succeeded + self.total_failed
            success_rate = (self.total_succeeded / finished * 100) if finished > 0 else 0
            avg_time = (self.total_time / self.total_succeeded) if self.total_succeeded > 0 else 0

            return {
                'manager_start_time': self.start_time.isoformat(),
                'uptime_seconds': uptime_seconds,
                'total_succeeded': self.total_succeeded,
                'total_failed': self.total_failed,
                'total_not_ready': self.total_not_ready,
                'total_requeued': self.total_requeued,
                'success_rate_percent': round(success_rate, 2),
                'average_reconcile_time_seconds': round(avg_time, 3),
                'in_flight': len(self.in_flight),
                'by_kind': self._kind_summary(),
                'recent': [asdict(r) for r in self.recent[-10:]],
            }

    def _kind_summary(self) -> Dict:
        summary = {}
        for kind, s in self.by_kind.items():
            avg = s['total_time'] / s['succeeded'] if s['succeeded'] > 0 else 0
            summary[kind] = {
                'succeeded': int(s['succeeded']),
                'failed': int(s['failed']),
                'not_ready': int(s['not_ready']),
                'average_time_seconds': round(avg, 3),
            }
        return summary

    def save(self) -> None:
        if not self.stats_file:
            return
        with self.lock:
            try:
                summary = self.get_summary()
                summary['last_updated'] = datetime.now().isoformat()
                self.stats_file.parent.mkdir(parents=True, exist_ok=True)

                # Write to temp file first, then atomic rename
                temp_file = self.stats_file.with_suffix('.tmp')
                with open(temp_file, 'w') as f:
                    json.dump(summary, f, indent=2)
                temp_file.replace(self.stats_file)
                self._last_save = time.time()
            except OSError as e:
                self.logger.error(f"Failed to save stats: {e}")

    def print_summary(self) -> None:
        summary = self.get_summary()

        self.logger.info("━" * 60)
        self.logger.info("📊 RECONCILE STATISTICS")
        self.logger.info("━" * 60)
        self.logger.info(f"Uptime: {summary['uptime_seconds'] / 3600:.1f} hours")
        self.logger.info(f"Succeeded: {summary['total_succeeded']}")
        self.logger.info(f"Failed: {summary['total_failed']}")
        self.logger.info(f"Not ready: {summary['total_not_ready']}")
        self.logger.info(f"Requeued: {summary['total_requeued']}")
        self.logger.info(f"Success Rate: {summary['success_rate_percent']}%")
        for kind, s in summary['by_kind'].items():
            self.logger.info(f"  {kind}: {s['succeeded']} ok, {s['failed']} failed, "
                             f"{s['not_ready']} not ready, {s['average_time_seconds']:.2f}s avg")
        self.logger.info("━" * 60)
