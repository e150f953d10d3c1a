"""
Cluster adapters tested against a mocked kubernetes client.

The KubernetesService singleton is never used here, each test builds a
MagicMock standing in for it with the API objects the adapters call.
"""

from unittest.mock import MagicMock

import pytest
from kubernetes.client.exceptions import ApiException

from conftest import make_node, make_policy, template_ref
from nodehealth.core.exceptions import RemediationError, TransientStoreError
from nodehealth.models.node import MACHINE_ANNOTATION
from nodehealth.models.status import RemediationRef
from nodehealth.services.cluster_checks import ClusterVersionUpgradeChecker, MachineHealthCheckDetector
from nodehealth.services.remediation_client import (
    NODE_NAME_ANNOTATION,
    RemediationClient,
    build_remediation,
    plural_of,
    remediation_kind,
)

TEMPLATE_OBJ = {"spec": {"template": {"spec": {"remediationStrategy": "Automatic"}}}}


def _k8s():
    k8s = MagicMock()
    k8s.is_available.return_value = True
    return k8s


def test_kind_and_plural():
    assert remediation_kind("SelfNodeRemediationTemplate") == "SelfNodeRemediation"
    assert remediation_kind("Custom") == "Custom"
    assert plural_of("SelfNodeRemediation") == "selfnoderemediations"


def test_build_remediation_from_template():
    body = build_remediation(template_ref(), TEMPLATE_OBJ, "worker-0", make_policy())
    assert body["kind"] == "SelfNodeRemediation"
    assert body["apiVersion"] == "remediation.medik8s.io/v1alpha1"
    assert body["metadata"]["name"] == "worker-0"
    assert body["metadata"]["namespace"] == "remediation-ns"
    assert body["metadata"]["annotations"] == {NODE_NAME_ANNOTATION: "worker-0"}
    owner = body["metadata"]["ownerReferences"][0]
    assert owner["uid"] == "nhc-uid"
    assert owner["kind"] == "NodeHealthCheck"
    assert body["spec"] == {"remediationStrategy": "Automatic"}


def test_create_remediation():
    k8s = _k8s()
    k8s.custom_api.get_namespaced_custom_object.return_value = TEMPLATE_OBJ
    k8s.custom_api.create_namespaced_custom_object.return_value = {"metadata": {"uid": "r-1"}}

    ref = RemediationClient(k8s).create(template_ref(), "worker-0", make_policy())

    assert ref.kind == "SelfNodeRemediation"
    assert ref.uid == "r-1"
    kwargs = k8s.custom_api.create_namespaced_custom_object.call_args.kwargs
    assert kwargs["plural"] == "selfnoderemediations"
    assert kwargs["group"] == "remediation.medik8s.io"
    assert kwargs["namespace"] == "remediation-ns"


def test_create_adopts_existing_remediation():
    k8s = _k8s()
    k8s.custom_api.get_namespaced_custom_object.side_effect = [TEMPLATE_OBJ, {"metadata": {"uid": "existing"}}]
    k8s.custom_api.create_namespaced_custom_object.side_effect = ApiException(status=409, reason="AlreadyExists")

    ref = RemediationClient(k8s).create(template_ref(), "worker-0", make_policy())

    assert ref.uid == "existing"


def test_create_fails_on_api_error():
    k8s = _k8s()
    k8s.custom_api.get_namespaced_custom_object.return_value = TEMPLATE_OBJ
    k8s.custom_api.create_namespaced_custom_object.side_effect = ApiException(status=500, reason="Internal")

    with pytest.raises(RemediationError):
        RemediationClient(k8s).create(template_ref(), "worker-0", make_policy())


def test_template_exists():
    k8s = _k8s()
    k8s.custom_api.get_namespaced_custom_object.side_effect = ApiException(status=404, reason="NotFound")
    assert not RemediationClient(k8s).template_exists(template_ref())


def test_delete_treats_not_found_as_success():
    k8s = _k8s()
    k8s.custom_api.delete_namespaced_custom_object.side_effect = ApiException(status=404, reason="NotFound")
    ref = RemediationRef(api_version="remediation.medik8s.io/v1alpha1", kind="SelfNodeRemediation", name="worker-0", namespace="ns")
    assert RemediationClient(k8s).delete(ref)


def test_delete_reports_api_failure():
    k8s = _k8s()
    ref = RemediationRef(api_version="remediation.medik8s.io/v1alpha1", kind="SelfNodeRemediation", name="worker-0", namespace="ns")
    assert RemediationClient(k8s).delete(ref)
    assert k8s.custom_api.delete_namespaced_custom_object.call_args.kwargs["plural"] == "selfnoderemediations"

    k8s.custom_api.delete_namespaced_custom_object.side_effect = ApiException(status=500, reason="Internal")
    assert not RemediationClient(k8s).delete(ref)


def test_unavailable_client_raises():
    k8s = _k8s()
    k8s.is_available.return_value = False
    with pytest.raises(RemediationError):
        RemediationClient(k8s).template_exists(template_ref())


def test_upgrade_checker():
    k8s = _k8s()
    k8s.custom_api.get_cluster_custom_object.return_value = {
        "status": {"conditions": [{"type": "Progressing", "status": "True"}]},
    }
    assert ClusterVersionUpgradeChecker(k8s).check()

    k8s.custom_api.get_cluster_custom_object.return_value = {
        "status": {"conditions": [{"type": "Progressing", "status": "False"}]},
    }
    assert not ClusterVersionUpgradeChecker(k8s).check()


def test_upgrade_checker_without_cluster_version():
    k8s = _k8s()
    k8s.custom_api.get_cluster_custom_object.side_effect = ApiException(status=404, reason="NotFound")
    assert not ClusterVersionUpgradeChecker(k8s).check()

    k8s.custom_api.get_cluster_custom_object.side_effect = ApiException(status=503, reason="Unavailable")
    with pytest.raises(TransientStoreError):
        ClusterVersionUpgradeChecker(k8s).check()


def _mhc(name, namespace="openshift-machine-api", selector=None):
    return {"metadata": {"name": name, "namespace": namespace}, "spec": {"selector": selector or {}}}


def test_machine_health_check_overlap():
    k8s = _k8s()
    k8s.custom_api.list_cluster_custom_object.return_value = {
        "items": [_mhc("workers", selector={"matchLabels": {"machine.openshift.io/cluster-api-machine-role": "worker"}})],
    }
    k8s.custom_api.get_namespaced_custom_object.return_value = {
        "metadata": {"labels": {"machine.openshift.io/cluster-api-machine-role": "worker"}},
    }
    node = make_node("worker-0")
    node.annotations[MACHINE_ANNOTATION] = "openshift-machine-api/worker-0-abc"

    assert MachineHealthCheckDetector(k8s).overlaps([node])


def test_default_termination_handler_is_ignored():
    k8s = _k8s()
    k8s.custom_api.list_cluster_custom_object.return_value = {"items": [_mhc("machine-api-termination-handler")]}
    node = make_node("worker-0")
    node.annotations[MACHINE_ANNOTATION] = "openshift-machine-api/worker-0-abc"

    assert not MachineHealthCheckDetector(k8s).overlaps([node])
    k8s.custom_api.get_namespaced_custom_object.assert_not_called()


def test_machine_health_check_in_other_namespace_does_not_overlap():
    k8s = _k8s()
    k8s.custom_api.list_cluster_custom_object.return_value = {"items": [_mhc("workers", namespace="elsewhere")]}
    k8s.custom_api.get_namespaced_custom_object.return_value = {"metadata": {"labels": {}}}
    node = make_node("worker-0")
    node.annotations[MACHINE_ANNOTATION] = "openshift-machine-api/worker-0-abc"

    assert not MachineHealthCheckDetector(k8s).overlaps([node])
