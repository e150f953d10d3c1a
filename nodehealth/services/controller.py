# nodehealth/services/controller.py
"""
Controller runtime: watches feed a work queue, workers run reconciliation
passes.

The queue hands a key to at most one worker at a time, so passes of one
policy never overlap while different policies are reconciled concurrently.
A key added while it is being processed is queued again once the running
pass is done.
"""
import heapq
import logging
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple

from nodehealth.core.config import settings
from nodehealth.core.exceptions import NodeHealthError
from nodehealth.models.node import Node
from nodehealth.models.policy import NodeHealthCheck
from nodehealth.services.kubernetes_service import KubernetesService
from nodehealth.services.mapper import policies_for_node
from nodehealth.services.reconciler import Reconciler

logger = logging.getLogger(__name__)

BASE_BACKOFF_SECONDS = 1.0
WATCH_RETRY_SECONDS = 5.0


class WorkQueue:
    def __init__(self, time_fn: Callable[[], float] = time.monotonic, max_backoff: Optional[float] = None):
        self._time = time_fn
        self._max_backoff = float(max_backoff or settings.MAX_BACKOFF_SECONDS)
        self._cond = threading.Condition()
        self._queue: Deque[str] = deque()
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._waiting: Dict[str, float] = {}
        self._heap: List[Tuple[float, str]] = []
        self._failures: Dict[str, int] = {}
        self._shutdown = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def _add_locked(self, key: str) -> None:
        if self._shutdown or key in self._dirty:
            return
        self._dirty.add(key)
        if key not in self._processing:
            self._queue.append(key)
            self._cond.notify()

    def add(self, key: str) -> None:
        with self._cond:
            self._add_locked(key)

    def add_after(self, key: str, delay_seconds: float) -> None:
        if delay_seconds <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutdown:
                return
            ready_at = self._time() + delay_seconds
            # an earlier wake-up for the same key already covers this one
            if key in self._waiting and self._waiting[key] <= ready_at:
                return
            self._waiting[key] = ready_at
            heapq.heappush(self._heap, (ready_at, key))
            self._cond.notify()

    def add_rate_limited(self, key: str) -> float:
        with self._cond:
            failures = self._failures.get(key, 0) + 1
            self._failures[key] = failures
        delay = min(BASE_BACKOFF_SECONDS * 2 ** (failures - 1), self._max_backoff)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        with self._cond:
            self._failures.pop(key, None)

    def _promote_due_locked(self) -> Optional[float]:
        """Moves due delayed keys into the queue, returns seconds until the next one."""
        now = self._time()
        while self._heap:
            ready_at, key = self._heap[0]
            if self._waiting.get(key) != ready_at:
                heapq.heappop(self._heap)  # superseded by an earlier wake-up
                continue
            if ready_at > now:
                return ready_at - now
            heapq.heappop(self._heap)
            del self._waiting[key]
            self._add_locked(key)
        return None

    def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """Blocks until a key is ready. Returns None on shutdown or timeout."""
        deadline = None if timeout is None else self._time() + timeout
        with self._cond:
            while True:
                next_delay = self._promote_due_locked()
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key
                if self._shutdown:
                    return None
                wait_for = next_delay
                if deadline is not None:
                    remaining = deadline - self._time()
                    if remaining <= 0:
                        return None
                    wait_for = remaining if wait_for is None else min(wait_for, remaining)
                self._cond.wait(wait_for)

    def done(self, key: str) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()


class Controller:
    def __init__(self, reconciler: Reconciler, k8s: KubernetesService, queue: Optional[WorkQueue] = None, workers: Optional[int] = None):
        self.reconciler = reconciler
        self.k8s = k8s
        # an empty queue is falsy, compare against None
        self.queue = queue if queue is not None else WorkQueue()
        self.workers = workers or settings.RECONCILE_WORKERS
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._nodes: Dict[str, Node] = {}
        self._policies: Dict[str, NodeHealthCheck] = {}

    # --- event handling ---

    def handle_node_event(self, event: Dict[str, Any]) -> Set[str]:
        event_type = event.get("type")
        if event_type == "ERROR":
            logger.warning(f"Node watch returned an error: {event.get('object')}")
            return set()
        node = Node.from_k8s(event["object"])
        with self._lock:
            old = self._nodes.get(node.name)
            if event_type == "DELETED":
                self._nodes.pop(node.name, None)
            else:
                self._nodes[node.name] = node
            policies = list(self._policies.values())
        affected = policies_for_node([old, node], policies)
        for name in affected:
            self.queue.add(name)
        if affected:
            logger.debug(f"Node {node.name} {event_type}: enqueued {sorted(affected)}")
        return affected

    def handle_policy_event(self, event: Dict[str, Any]) -> Optional[str]:
        event_type = event.get("type")
        if event_type == "ERROR":
            logger.warning(f"NHC watch returned an error: {event.get('object')}")
            return None
        try:
            policy = NodeHealthCheck.from_k8s(event["object"])
        except ValueError as e:
            logger.error(f"Ignoring unparsable NHC event: {e}")
            return None
        with self._lock:
            if event_type == "DELETED":
                self._policies.pop(policy.name, None)
            else:
                self._policies[policy.name] = policy
        if event_type != "DELETED":
            self.queue.add(policy.name)
        return policy.name

    def resync(self) -> None:
        """Re-lists all policies and enqueues every one of them."""
        policies = self.k8s.list_policies()
        with self._lock:
            self._policies = {policy.name: policy for policy in policies}
        for policy in policies:
            self.queue.add(policy.name)
        logger.info(f"Resync enqueued {len(policies)} NHC(s)")

    # --- workers ---

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Runs one pass for the next ready key. Returns False when the queue is shut down or empty."""
        key = self.queue.get(timeout=timeout)
        if key is None:
            return False
        try:
            result = self.reconciler.reconcile(key)
        except NodeHealthError as e:
            delay = self.queue.add_rate_limited(key)
            logger.warning(f"Reconcile of NHC {key} failed: {e}. Retrying in {delay:.0f}s")
        except Exception as e:
            delay = self.queue.add_rate_limited(key)
            logger.error(f"Unexpected error reconciling NHC {key}: {e}. Retrying in {delay:.0f}s", exc_info=True)
        else:
            self.queue.forget(key)
            if result.requeue_after is not None:
                self.queue.add_after(key, result.requeue_after.total_seconds())
        finally:
            self.queue.done(key)
        return True

    def _worker(self) -> None:
        while self.process_next():
            pass

    def _watch_loop(self, name: str, stream: Callable[[int], Any], handler: Callable[[Dict[str, Any]], Any]) -> None:
        while not self._stop.is_set():
            try:
                for event in stream(settings.WATCH_TIMEOUT_SECONDS):
                    if self._stop.is_set():
                        return
                    handler(event)
            except Exception as e:
                logger.error(f"{name} watch failed: {e}. Restarting in {WATCH_RETRY_SECONDS:.0f}s")
                self._stop.wait(WATCH_RETRY_SECONDS)

    def _resync_loop(self) -> None:
        period = settings.RESYNC_PERIOD_SECONDS
        while not self._stop.is_set():
            try:
                self.resync()
            except NodeHealthError as e:
                logger.error(f"Resync failed: {e}")
                period_to_wait = WATCH_RETRY_SECONDS
            else:
                if period <= 0:
                    return
                period_to_wait = period
            self._stop.wait(period_to_wait)

    def start(self) -> None:
        logger.info(f"Starting controller with {self.workers} worker(s)")
        self._stop.clear()
        targets = [
            ("nhc-resync", self._resync_loop, ()),
            ("node-watch", self._watch_loop, ("Node", self.k8s.watch_nodes, self.handle_node_event)),
            ("nhc-watch", self._watch_loop, ("NHC", self.k8s.watch_policies, self.handle_policy_event)),
        ]
        targets += [(f"reconcile-worker-{i}", self._worker, ()) for i in range(self.workers)]
        for name, target, args in targets:
            thread = threading.Thread(target=target, args=args, name=name, daemon=True)
            thread.start()
            self._threads.append(thread)

    def stop(self, timeout: float = 5.0) -> None:
        logger.info("Stopping controller...")
        self._stop.set()
        self.queue.shutdown()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Controller stopped.")
