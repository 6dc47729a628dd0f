# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/manager.py
"""
Controller manager.

Features:
1. One watch thread per kind feeding a shared work queue
2. Queue deduplication: a key waiting in the queue is never added twice
3. At most one active reconcile per key
4. Worker pool sized by max_concurrent_reconciles
5. Requeue with exponential backoff + jitter on retryable failures,
   fixed delay when a reconcile reports "not ready"
6. Statistics and graceful shutdown on SIGTERM/SIGINT
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from threading import Event, Lock
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple

from .api import constants as C
from .core.config import OperatorConfig
from .core.context import ReconcileContext
from .core.exceptions import VmOperatorError, format_exception_for_cli, is_retryable
from .core.logger import Log
from .core.retry import backoff_delay
from .orchestrator.result import ReconcileResult
from .stats import ReconcileStatistics

Key = Tuple[str, str, str]  # (kind, namespace, name)


class WorkQueue:
    """
    Rate-limited work queue keyed by (kind, namespace, name).

    A key added while it is being processed is parked as dirty and handed
    out again once done() is called for it, so two workers never
    reconcile the same key concurrently.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(Lock())
        self._queue: Deque[Key] = deque()
        self._dirty: Set[Key] = set()
        self._processing: Set[Key] = set()
        self._failures: Dict[Key, int] = {}
        self._timers: Set[threading.Timer] = set()
        self._shutdown = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutdown

    def add(self, key: Key) -> None:
        with self._cond:
            if self._shutdown or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def add_after(self, key: Key, delay_s: float) -> None:
        if delay_s <= 0:
            self.add(key)
            return

        def fire() -> None:
            with self._cond:
                self._timers.discard(timer)
            self.add(key)

        timer = threading.Timer(delay_s, fire)
        timer.daemon = True
        with self._cond:
            if self._shutdown:
                return
            self._timers.add(timer)
        timer.start()

    def get(self, timeout_s: float = 1.0) -> Optional[Key]:
        """Next key, or None on timeout or shutdown."""
        deadline = time.monotonic() + timeout_s
        with self._cond:
            while not self._queue:
                if self._shutdown:
                    return None
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: Key) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def failure(self, key: Key) -> int:
        """Records a failure; returns the attempt number (1-based)."""
        with self._cond:
            n = self._failures.get(key, 0) + 1
            self._failures[key] = n
            return n

    def forget(self, key: Key) -> None:
        with self._cond:
            self._failures.pop(key, None)

    def shutdown(self) -> None:
        with self._cond:
            self._shutdown = True
            timers = list(self._timers)
            self._timers.clear()
            self._cond.notify_all()
        for t in timers:
            t.cancel()


class ControllerManager:
    """
    Runs the VirtualMachine and Operation reconcilers.

    reconcilers maps kind -> reconciler (an object with
    reconcile(namespace, name, ctx) -> ReconcileResult).
    """

    WATCHED: Dict[str, str] = {
        "VirtualMachine": C.VIRTUAL_MACHINES,
        "Operation": C.OPERATIONS,
    }

    def __init__(
        self,
        config: OperatorConfig,
        store: Any,
        reconcilers: Dict[str, Any],
        *,
        stats: Optional[ReconcileStatistics] = None,
        logger: Optional[logging.Logger] = None,
        watch_timeout_s: int = 300,
    ) -> None:
        self.config = config
        self.store = store
        self.reconcilers = dict(reconcilers)
        self.logger = logger or Log.get("manager")
        self.stats = stats or ReconcileStatistics(self.logger)
        self.watch_timeout_s = watch_timeout_s

        self.queue = WorkQueue()
        self.stop_event = Event()
        self.executor: Optional[ThreadPoolExecutor] = None
        self._watch_threads: List[threading.Thread] = []
        self.max_workers = max(1, int(config.max_concurrent_reconciles))

    # ------------------------------------------------------------------
    # signals
    # ------------------------------------------------------------------

    def _signal_handler(self, signum: int, frame) -> None:
        sig_name = signal.Signals(signum).name
        self.logger.info(f"🛑 Received {sig_name}, shutting down gracefully...")
        self.stop()

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)
        if hasattr(signal, "SIGUSR1"):
            signal.signal(signal.SIGUSR1, lambda signum, frame: self.stats.print_summary())

    # ------------------------------------------------------------------
    # queue feeding
    # ------------------------------------------------------------------

    def enqueue(self, kind: str, namespace: str, name: str) -> None:
        if kind not in self.reconcilers:
            raise VmOperatorError(code=2, msg=f"no reconciler for kind {kind!r}")
        self.queue.add((kind, namespace, name))

    def _listers(self) -> Dict[str, Callable[[str], Iterable[Any]]]:
        return {
            "VirtualMachine": self.store.list_vms,
            "Operation": self.store.list_operations,
        }

    def enqueue_existing(self) -> int:
        """Queues every existing object of each reconciled kind."""
        n = 0
        ns = self.config.watch_namespace
        for kind, lister in self._listers().items():
            if kind not in self.reconcilers:
                continue
            for obj in lister(ns):
                self.enqueue(kind, obj.metadata.namespace, obj.metadata.name)
                n += 1
        return n

    def handle_event(self, kind: str, event_type: str, obj: Dict[str, Any]) -> None:
        if event_type not in ("ADDED", "MODIFIED", "DELETED"):
            Log.trace(self.logger, "Ignoring %s watch event %s", kind, event_type)
            return
        meta = obj.get("metadata") or {}
        name = meta.get("name")
        if not name:
            return
        self.enqueue(kind, meta.get("namespace", ""), name)

    def _watch_loop(self, kind: str, plural: str) -> None:
        failures = 0
        while not self.stop_event.is_set():
            try:
                for event_type, obj in self.store.watch(plural, self.config.watch_namespace, timeout_s=self.watch_timeout_s):
                    if self.stop_event.is_set():
                        return
                    self.handle_event(kind, event_type, obj)
                failures = 0
            except Exception as e:
                failures += 1
                delay = backoff_delay(
                    failures,
                    base_backoff_s=self.config.requeue_base_backoff_s,
                    max_backoff_s=min(60.0, self.config.requeue_max_backoff_s),
                    jitter_s=self.config.requeue_jitter_s,
                )
                Log.warn_rl(self.logger, ("watch", kind), f"{kind} watch failed: {e}; reconnecting in {delay:.1f}s")
                self.stop_event.wait(delay)

    # ------------------------------------------------------------------
    # reconcile
    # ------------------------------------------------------------------

    def _context(self, key: Key) -> ReconcileContext:
        ctx = ReconcileContext(log=Log.bind(self.logger, kind=key[0]), cancel=self.stop_event)
        return ctx.with_timeout(self.config.task_timeout_s)

    def reconcile_key(self, key: Key) -> ReconcileResult:
        """Runs one reconcile and applies the requeue policy."""
        kind, ns, name = key
        ref = f"{ns}/{name}"
        self.stats.started(kind, ref)
        try:
            result = self.reconcilers[kind].reconcile(ns, name, self._context(key))
        except Exception as e:
            self.stats.finished(kind, ref, "failed", str(e))
            self._handle_error(key, e)
            raise

        if result.wants_requeue:
            self.stats.finished(kind, ref, "not_ready")
            delay = result.requeue_after if result.requeue_after is not None else self.config.not_ready_requeue_s
            self.stats.requeued()
            self.queue.add_after(key, delay)
        else:
            self.stats.finished(kind, ref, "success")
            self.queue.forget(key)
        return result

    def _handle_error(self, key: Key, e: BaseException) -> None:
        kind, ns, name = key
        msg = format_exception_for_cli(e, verbose=1)
        if not is_retryable(e):
            # retried on the next watch event for the object
            Log.fail(self.logger, f"{kind} {ns}/{name}: {msg}")
            self.queue.forget(key)
            return
        attempt = self.queue.failure(key)
        delay = backoff_delay(
            attempt,
            base_backoff_s=self.config.requeue_base_backoff_s,
            max_backoff_s=self.config.requeue_max_backoff_s,
            jitter_s=self.config.requeue_jitter_s,
        )
        self.logger.error(f"💥 {kind} {ns}/{name} failed (attempt {attempt}): {msg}; requeue in {delay:.1f}s")
        self.logger.debug("💥 Reconcile exception", exc_info=e)
        self.stats.requeued()
        self.queue.add_after(key, delay)

    def _worker_loop(self) -> None:
        while not self.stop_event.is_set():
            key = self.queue.get(timeout_s=1.0)
            if key is None:
                continue
            try:
                self.reconcile_key(key)
            except Exception:
                pass  # already logged and requeued by reconcile_key
            finally:
                self.queue.done(key)

    def run_once(self, kind: str, namespace: str, name: str) -> ReconcileResult:
        """Single synchronous reconcile; errors propagate to the caller."""
        if kind not in self.reconcilers:
            raise VmOperatorError(code=2, msg=f"no reconciler for kind {kind!r}")
        self.stats.started(kind, f"{namespace}/{name}")
        try:
            result = self.reconcilers[kind].reconcile(namespace, name, self._context((kind, namespace, name)))
        except Exception as e:
            self.stats.finished(kind, f"{namespace}/{name}", "failed", str(e))
            raise
        self.stats.finished(kind, f"{namespace}/{name}", "not_ready" if result.wants_requeue else "success")
        return result

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.logger.info("🚀 Starting controller manager")
        self.logger.info(f"⚙️  Workers: {self.max_workers}")
        if self.config.watch_namespace:
            self.logger.info(f"👀 Namespace: {self.config.watch_namespace}")

        queued = self.enqueue_existing()
        self.logger.info(f"📥 Queued {queued} existing object(s)")

        for kind, plural in self.WATCHED.items():
            if kind not in self.reconcilers:
                continue
            t = threading.Thread(target=self._watch_loop, args=(kind, plural), name=f"watch-{kind}", daemon=True)
            t.start()
            self._watch_threads.append(t)

        self.executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="reconcile")
        for _ in range(self.max_workers):
            self.executor.submit(self._worker_loop)
        self.logger.info("✅ Controller manager ready")

    def run(self, *, stats_interval_s: float = 3600.0) -> None:
        self._install_signal_handlers()
        self.start()
        last_stats = time.time()
        while not self.stop_event.wait(1.0):
            if time.time() - last_stats > stats_interval_s:
                self.stats.print_summary()
                last_stats = time.time()
        self.logger.info("🛑 Controller manager stopped")

    def stop(self) -> None:
        if self.stop_event.is_set():
            return
        self.logger.info("🛑 Stopping controller manager...")
        self.stop_event.set()
        self.queue.shutdown()
        if self.executor:
            self.executor.shutdown(wait=True, cancel_futures=False)
        self.stats.save()
        self.stats.print_summary()
        self.logger.info("✅ Controller manager shutdown complete")
