"""
Shared pytest fixtures for the node health check controller tests.

The reconciler talks to the cluster only through small protocols, so the
fixtures here replace the cluster with in-memory fakes: an object store with
resourceVersion checks, a remediation client that records what it creates
and a clock the tests move by hand.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from nodehealth.core.clock import Clock
from nodehealth.core.exceptions import StatusConflictError
from nodehealth.models.common import LabelSelector, ObjectReference
from nodehealth.models.node import CONTROL_PLANE_ROLE_LABEL, NODE_CONDITION_TERMINATING, Node, NodeCondition
from nodehealth.models.policy import EscalatingRemediation, NodeHealthCheck, NodeHealthCheckSpec, UnhealthyCondition
from nodehealth.models.status import NodeHealthCheckStatus, RemediationRef
from nodehealth.services.reconciler import Reconciler
from nodehealth.services.remediation_client import remediation_kind

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
WORKER_LABEL = "node-role.kubernetes.io/worker"


# =============================================================================
# FAKES
# =============================================================================


class FakeClock(Clock):
    def __init__(self, start: datetime = T0):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class InMemoryStore:
    """Object store with optimistic concurrency on status writes."""

    def __init__(self):
        self.nodes: Dict[str, Node] = {}
        self.policies: Dict[str, NodeHealthCheck] = {}
        self.writes: List[NodeHealthCheckStatus] = []
        # Number of upcoming status writes that lose a race against another writer
        self.conflicts = 0

    def add_node(self, node: Node) -> None:
        self.nodes[node.name] = node

    def add_policy(self, policy: NodeHealthCheck) -> None:
        policy = policy.model_copy(deep=True)
        policy.resource_version = policy.resource_version or "1"
        self.policies[policy.name] = policy

    def list_nodes(self) -> List[Node]:
        return [node.model_copy(deep=True) for node in self.nodes.values()]

    def get_policy(self, name: str) -> Optional[NodeHealthCheck]:
        policy = self.policies.get(name)
        return policy.model_copy(deep=True) if policy else None

    def list_policies(self) -> List[NodeHealthCheck]:
        return [policy.model_copy(deep=True) for policy in self.policies.values()]

    def update_status(self, policy: NodeHealthCheck, status: NodeHealthCheckStatus) -> NodeHealthCheck:
        stored = self.policies[policy.name]
        if self.conflicts > 0:
            self.conflicts -= 1
            stored.resource_version = str(int(stored.resource_version) + 1)
        if stored.resource_version != policy.resource_version:
            raise StatusConflictError(f"resourceVersion of {policy.name} changed")
        stored.status = status.model_copy(deep=True)
        stored.resource_version = str(int(stored.resource_version) + 1)
        self.writes.append(stored.status)
        return stored.model_copy(deep=True)


class FakeRemediationClient:
    def __init__(self):
        self.created: List[Tuple[str, str]] = []
        self.deleted: List[RemediationRef] = []
        self.missing_templates = set()

    def create(self, template: ObjectReference, node_name: str, owner: NodeHealthCheck) -> RemediationRef:
        kind = remediation_kind(template.kind)
        self.created.append((kind, node_name))
        return RemediationRef(
            api_version=template.api_version,
            kind=kind,
            name=node_name,
            namespace=template.namespace,
            uid=f"uid-{kind}-{node_name}",
        )

    def get(self, ref: RemediationRef):
        return {"metadata": {"name": ref.name}}

    def delete(self, ref: RemediationRef) -> bool:
        self.deleted.append(ref)
        return True

    def template_exists(self, template: ObjectReference) -> bool:
        return template.name not in self.missing_templates

    def kinds_for(self, node_name: str) -> List[str]:
        return [kind for kind, node in self.created if node == node_name]


class FakeUpgradeChecker:
    def __init__(self, upgrading: bool = False):
        self.upgrading = upgrading

    def check(self) -> bool:
        return self.upgrading


class FakeLegacyDetector:
    def __init__(self, overlapping: bool = False):
        self.overlapping = overlapping

    def overlaps(self, nodes) -> bool:
        return self.overlapping


# =============================================================================
# BUILDERS
# =============================================================================


def make_node(
    name: str,
    ready: str = "True",
    since: Optional[datetime] = None,
    labels: Optional[Dict[str, str]] = None,
    terminating: bool = False,
    control_plane: bool = False,
) -> Node:
    node_labels = {WORKER_LABEL: ""} if labels is None else dict(labels)
    if control_plane:
        node_labels[CONTROL_PLANE_ROLE_LABEL] = ""
    conditions = [NodeCondition(type="Ready", status=ready, last_transition_time=since or T0 - timedelta(hours=1))]
    if terminating:
        conditions.append(NodeCondition(type=NODE_CONDITION_TERMINATING, status="True"))
    return Node(name=name, labels=node_labels, conditions=conditions)


def template_ref(kind: str = "SelfNodeRemediationTemplate", name: str = "snr-template") -> ObjectReference:
    return ObjectReference(
        kind=kind,
        api_version="remediation.medik8s.io/v1alpha1",
        name=name,
        namespace="remediation-ns",
    )


def make_policy(
    name: str = "nhc-workers",
    min_healthy="51%",
    ladder: Optional[List[Tuple[str, int, str]]] = None,
    selector: Optional[LabelSelector] = None,
    duration: str = "300s",
    pause_requests: Optional[List[str]] = None,
) -> NodeHealthCheck:
    """ladder is a list of (template kind, order, timeout), otherwise a single classic template is used."""
    spec = NodeHealthCheckSpec(
        selector=selector or LabelSelector(match_expressions=[{"key": WORKER_LABEL, "operator": "Exists"}]),
        unhealthy_conditions=[
            UnhealthyCondition(type="Ready", status="False", duration=duration),
            UnhealthyCondition(type="Ready", status="Unknown", duration=duration),
        ],
        min_healthy=min_healthy,
        pause_requests=pause_requests or [],
    )
    if ladder:
        spec.escalating_remediations = [
            EscalatingRemediation(
                remediation_template=template_ref(kind, name=kind.lower()),
                order=order,
                timeout=timeout,
            )
            for kind, order, timeout in ladder
        ]
    else:
        spec.remediation_template = template_ref()
    return NodeHealthCheck(name=name, uid="nhc-uid", generation=1, spec=spec)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def remediations() -> FakeRemediationClient:
    return FakeRemediationClient()


@pytest.fixture
def upgrade_checker() -> FakeUpgradeChecker:
    return FakeUpgradeChecker()


@pytest.fixture
def legacy_detector() -> FakeLegacyDetector:
    return FakeLegacyDetector()


@pytest.fixture
def reconciler(store, remediations, upgrade_checker, legacy_detector, clock) -> Reconciler:
    return Reconciler(
        store=store,
        remediations=remediations,
        upgrade_checker=upgrade_checker,
        legacy_detector=legacy_detector,
        clock=clock,
        rounding="up",
        status_retries=2,
        disabled_recheck=timedelta(seconds=60),
    )
