from datetime import timedelta

import pytest

from nodehealth.models.common import format_duration, parse_duration
from nodehealth.models.node import Node
from nodehealth.models.policy import NodeHealthCheck
from nodehealth.models.status import Phase


@pytest.mark.parametrize(
    "value,expected",
    [
        ("300s", timedelta(seconds=300)),
        ("1m30s", timedelta(seconds=90)),
        ("1h", timedelta(hours=1)),
        ("500ms", timedelta(milliseconds=500)),
        ("0", timedelta(0)),
        (45, timedelta(seconds=45)),
    ],
)
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["5 minutes", "1x", "m5"])
def test_parse_duration_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_duration(value)


def test_format_duration_go_style():
    assert format_duration(timedelta(seconds=10)) == "10s"
    assert format_duration(timedelta(minutes=1)) == "1m0s"
    assert format_duration(timedelta(hours=1, seconds=5)) == "1h0m5s"


def test_policy_from_k8s_defaults():
    policy = NodeHealthCheck.from_k8s({
        "metadata": {"name": "nhc", "uid": "u1", "resourceVersion": "7", "generation": 2},
        "spec": {
            "remediationTemplate": {
                "kind": "SelfNodeRemediationTemplate",
                "apiVersion": "self-node-remediation.medik8s.io/v1alpha1",
                "name": "snr",
                "namespace": "ns",
            },
        },
    })
    assert policy.resource_version == "7"
    assert policy.spec.min_healthy == "51%"
    assert [(rule.status, rule.duration) for rule in policy.spec.unhealthy_conditions] == [
        ("False", timedelta(minutes=5)),
        ("Unknown", timedelta(minutes=5)),
    ]
    ladder = policy.spec.escalation_ladder()
    assert len(ladder) == 1
    assert ladder[0].timeout is None
    assert ladder[0].remediation_template.group == "self-node-remediation.medik8s.io"
    assert policy.status.phase == Phase.ENABLED


def test_ladder_sorted_by_order():
    policy = NodeHealthCheck.from_k8s({
        "metadata": {"name": "nhc"},
        "spec": {
            "escalatingRemediations": [
                {"remediationTemplate": {"kind": "BTemplate", "apiVersion": "x.io/v1", "name": "b"}, "order": 10, "timeout": "5m"},
                {"remediationTemplate": {"kind": "ATemplate", "apiVersion": "x.io/v1", "name": "a"}, "order": 1, "timeout": "1m"},
            ],
        },
    })
    assert [step.order for step in policy.spec.escalation_ladder()] == [1, 10]


def test_status_round_trips_through_camel_case():
    policy = NodeHealthCheck.from_k8s({
        "metadata": {"name": "nhc"},
        "status": {
            "phase": "Remediating",
            "observedNodes": 3,
            "healthyNodes": 2,
            "inFlightRemediations": {"worker-0": "2024-01-01T12:00:00Z"},
            "unhealthyNodes": [{
                "name": "worker-0",
                "remediations": [{
                    "resource": {"apiVersion": "x.io/v1", "kind": "A", "name": "worker-0"},
                    "order": 0,
                    "started": "2024-01-01T12:00:00Z",
                    "timedOut": "2024-01-01T12:01:00Z",
                }],
            }],
        },
    })
    status = policy.status
    assert status.phase == Phase.REMEDIATING
    assert status.in_flight_count == 1
    assert status.unhealthy_node("worker-0").current.is_timed_out
    dumped = status.to_k8s()
    assert dumped["unhealthyNodes"][0]["remediations"][0]["timedOut"].startswith("2024-01-01T12:01:00")
    assert "lastUpdateTime" not in dumped


def test_node_from_k8s():
    node = Node.from_k8s({
        "metadata": {"name": "worker-0", "labels": {"node-role.kubernetes.io/master": ""}},
        "status": {"conditions": [
            {"type": "Ready", "status": "True", "lastTransitionTime": "2024-01-01T00:00:00Z"},
            {"type": "Terminating", "status": "True"},
        ]},
    })
    assert node.is_control_plane
    assert node.is_terminating
    assert node.condition("Ready").last_transition_time.year == 2024
