# nodehealth/services/reconciler.py
"""
One reconciliation pass per policy:

    Target Resolver -> Conflict Guard -> Health Evaluator (per node)
    -> Healthy-Quorum Gate -> Escalation Engine (per unhealthy node)
    -> Status Aggregator

The pass reads fresh state, writes the status only when it changed and
reports when it wants to run again (next condition threshold or step
timeout). Status write conflicts restart the whole pass from a fresh read.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Protocol

from nodehealth.core.clock import Clock, system_clock
from nodehealth.core.config import settings
from nodehealth.core.exceptions import ConfigurationError, StatusConflictError
from nodehealth.models.node import Node
from nodehealth.models.policy import NodeHealthCheck
from nodehealth.models.status import NodeHealthCheckStatus, Phase, UnhealthyNode
from nodehealth.services.conflict import (
    ConflictGuard,
    ConflictResult,
    LegacyCheckDetector,
    NoopLegacyCheckDetector,
    NoopUpgradeChecker,
    UpgradeChecker,
)
from nodehealth.services.escalation import EscalationEngine, RemediationClient
from nodehealth.services.health import evaluate_node
from nodehealth.services.quorum import check_quorum, parse_min_healthy
from nodehealth.services.selector import compile_selector, node_in_scope
from nodehealth.services.status import build_status

logger = logging.getLogger(__name__)

MIN_REQUEUE = timedelta(seconds=1)


class ObjectStore(Protocol):
    def list_nodes(self) -> List[Node]:
        ...

    def get_policy(self, name: str) -> Optional[NodeHealthCheck]:
        ...

    def list_policies(self) -> List[NodeHealthCheck]:
        ...

    def update_status(self, policy: NodeHealthCheck, status: NodeHealthCheckStatus) -> NodeHealthCheck:
        """Writes status guarded by policy.resource_version, raises StatusConflictError on a race."""
        ...


@dataclass
class ReconcileResult:
    name: str
    phase: Optional[Phase] = None
    status: Optional[NodeHealthCheckStatus] = None
    status_written: bool = False
    requeue_after: Optional[timedelta] = None


class Reconciler:
    def __init__(
        self,
        store: ObjectStore,
        remediations: RemediationClient,
        upgrade_checker: Optional[UpgradeChecker] = None,
        legacy_detector: Optional[LegacyCheckDetector] = None,
        clock: Clock = system_clock,
        rounding: Optional[str] = None,
        status_retries: Optional[int] = None,
        disabled_recheck: Optional[timedelta] = None,
    ):
        self.store = store
        self.clock = clock
        self.rounding = rounding or settings.MIN_HEALTHY_ROUNDING
        self.status_retries = settings.STATUS_UPDATE_RETRIES if status_retries is None else status_retries
        self.disabled_recheck = disabled_recheck or timedelta(seconds=settings.DISABLED_RECHECK_SECONDS)
        self.guard = ConflictGuard(
            upgrade_checker or NoopUpgradeChecker(),
            legacy_detector or NoopLegacyCheckDetector(),
            remediations,
        )
        self.engine = EscalationEngine(remediations, clock)
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _policy_lock(self, name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(name, threading.Lock())

    def reconcile(self, name: str) -> ReconcileResult:
        """
        Runs one pass for the named policy.

        Passes of the same policy never overlap, whether they come from the
        controller's workers or from the API.
        """
        with self._policy_lock(name):
            return self._reconcile_with_retries(name)

    def _reconcile_with_retries(self, name: str) -> ReconcileResult:
        for attempt in range(self.status_retries + 1):
            policy = self.store.get_policy(name)
            if policy is None:
                logger.info(f"NHC {name} not found, nothing to reconcile")
                return ReconcileResult(name=name)
            try:
                return self._reconcile_once(policy)
            except StatusConflictError:
                logger.warning(f"NHC {name}: status update conflict (attempt {attempt + 1}), re-reading")
        raise StatusConflictError(f"NHC {name}: giving up after {self.status_retries + 1} status update conflicts")

    def _reconcile_once(self, policy: NodeHealthCheck) -> ReconcileResult:
        now = self.clock.now()
        spec = policy.spec

        try:
            selector = compile_selector(spec.selector)
            parse_min_healthy(spec.min_healthy)
        except ConfigurationError as e:
            logger.error(f"NHC {policy.name}: invalid configuration: {e}")
            status = build_status(
                policy.status, ConflictResult.invalid_config(e.message), policy.status.unhealthy_nodes,
                now, generation=policy.generation,
            )
            return self._finish(policy, status, None)

        targets = sorted(
            (node for node in self.store.list_nodes() if node_in_scope(selector, node)),
            key=lambda node: node.name,
        )
        target_names = {node.name for node in targets}
        in_scope: List[UnhealthyNode] = []
        for entry in policy.status.unhealthy_nodes:
            if entry.name in target_names:
                in_scope.append(entry)
            else:
                logger.info(f"NHC {policy.name}: node {entry.name} no longer selected, dropping it from status")

        conflict = self.guard.check(policy, targets)
        if conflict.frozen:
            status = build_status(
                policy.status, conflict, in_scope, now,
                observed_nodes=len(targets), generation=policy.generation,
            )
            return self._finish(policy, status, self.disabled_recheck)

        records = {node.name: evaluate_node(node, spec.unhealthy_conditions, now) for node in targets}
        healthy = sum(1 for record in records.values() if record.healthy)
        quorum = check_quorum(spec.min_healthy, len(targets), healthy, self.rounding)

        deadlines: List[datetime] = [record.next_check for record in records.values() if record.next_check]
        existing = {entry.name: entry for entry in in_scope}
        unhealthy: List[UnhealthyNode] = []
        for node in targets:
            record = records[node.name]
            entry = existing.get(node.name)
            if record.terminating:
                # neither advanced nor cleared while the node is deprovisioned
                if entry is not None:
                    unhealthy.append(entry)
                continue
            if not record.unhealthy:
                if entry is not None:
                    self.engine.clear(policy, entry)
                continue
            outcome = self.engine.advance(policy, node.name, entry, allow_start=quorum.open)
            if outcome.entry is not None:
                unhealthy.append(outcome.entry)
            if outcome.next_deadline is not None:
                deadlines.append(outcome.next_deadline)

        status = build_status(
            policy.status, ConflictResult.clear(), unhealthy, now, quorum=quorum,
            observed_nodes=len(targets), healthy_nodes=healthy, generation=policy.generation,
        )
        requeue = max(min(deadlines) - now, MIN_REQUEUE) if deadlines else None
        return self._finish(policy, status, requeue)

    def _finish(self, policy: NodeHealthCheck, status: NodeHealthCheckStatus, requeue: Optional[timedelta]) -> ReconcileResult:
        written = False
        if status != policy.status:
            self.store.update_status(policy, status)
            written = True
            logger.info(
                f"NHC {policy.name}: status updated, phase={status.phase.value}, "
                f"observed={status.observed_nodes}, healthy={status.healthy_nodes}, "
                f"in-flight={status.in_flight_count}"
            )
        else:
            logger.debug(f"NHC {policy.name}: status unchanged")
        if requeue is not None:
            logger.debug(f"NHC {policy.name}: re-evaluating in {requeue.total_seconds():.0f}s")
        return ReconcileResult(
            name=policy.name,
            phase=status.phase,
            status=status,
            status_written=written,
            requeue_after=requeue,
        )
