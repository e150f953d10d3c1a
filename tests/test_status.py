from datetime import timedelta

from conftest import T0
from nodehealth.models.common import Condition
from nodehealth.models.status import (
    CONDITION_REASON_DISABLED_MHC,
    CONDITION_TYPE_DISABLED,
    NodeHealthCheckStatus,
    Phase,
    Remediation,
    RemediationRef,
    UnhealthyNode,
)
from nodehealth.services.conflict import ConflictResult
from nodehealth.services.quorum import QuorumResult
from nodehealth.services.status import build_status, compute_phase, set_condition


def _entry(name: str, started) -> UnhealthyNode:
    ref = RemediationRef(api_version="remediation.medik8s.io/v1alpha1", kind="SelfNodeRemediation", name=name)
    return UnhealthyNode(name=name, remediations=[Remediation(resource=ref, started=started)])


def test_set_condition_keeps_transition_time_without_flip():
    existing = [Condition(type="Disabled", status="False", reason="A", last_transition_time=T0)]
    later = T0 + timedelta(hours=1)

    same = set_condition(existing, Condition(type="Disabled", status="False", reason="B"), later)
    assert same[0].last_transition_time == T0
    assert same[0].reason == "B"

    flipped = set_condition(existing, Condition(type="Disabled", status="True", reason="C"), later)
    assert flipped[0].last_transition_time == later


def test_set_condition_appends_new_type():
    result = set_condition([], Condition(type="Disabled", status="False"), T0)
    assert len(result) == 1
    assert result[0].last_transition_time == T0


def test_conflict_wins_over_remediating():
    phase, reason = compute_phase(ConflictResult.paused("NHC is paused: upgrade"), has_in_flight=True)
    assert phase == Phase.PAUSED
    assert reason == "NHC is paused: upgrade"


def test_phase_from_in_flight():
    assert compute_phase(ConflictResult.clear(), has_in_flight=True)[0] == Phase.REMEDIATING
    assert compute_phase(ConflictResult.clear(), has_in_flight=False)[0] == Phase.ENABLED


def test_closed_gate_is_reported_in_reason():
    _, reason = compute_phase(ConflictResult.clear(), False, QuorumResult(targets=4, healthy=2, required=3))
    assert reason.endswith("blocked: 2 of 4 nodes healthy, 3 required")


def test_build_status_sorts_and_derives_in_flight():
    status = build_status(
        NodeHealthCheckStatus(),
        ConflictResult.clear(),
        [_entry("worker-b", T0), _entry("worker-a", T0 + timedelta(seconds=5))],
        T0,
        observed_nodes=5,
        healthy_nodes=3,
    )
    assert [entry.name for entry in status.unhealthy_nodes] == ["worker-a", "worker-b"]
    assert status.in_flight_remediations == {"worker-a": T0 + timedelta(seconds=5), "worker-b": T0}
    assert status.phase == Phase.REMEDIATING
    assert status.last_update_time == T0


def test_build_status_unchanged_keeps_last_update_time():
    first = build_status(NodeHealthCheckStatus(), ConflictResult.clear(), [], T0, observed_nodes=1, healthy_nodes=1)
    second = build_status(first, ConflictResult.clear(), [], T0 + timedelta(minutes=5), observed_nodes=1, healthy_nodes=1)
    assert second == first
    assert second.last_update_time == T0


def test_frozen_status_keeps_previous_counters():
    previous = NodeHealthCheckStatus(observed_nodes=4, healthy_nodes=3)
    conflict = ConflictResult.disabled(CONDITION_REASON_DISABLED_MHC, "NHC is disabled: MHC")
    status = build_status(previous, conflict, [], T0)
    assert status.observed_nodes == 4
    assert status.healthy_nodes == 3
    assert status.phase == Phase.DISABLED
    assert status.is_condition_true(CONDITION_TYPE_DISABLED)
