# nodehealth/services/cluster_checks.py
"""OpenShift backed implementations of the Conflict Guard collaborators."""
import logging
from kubernetes.client.exceptions import ApiException
from nodehealth.core.exceptions import SelectorError, TransientStoreError
from nodehealth.models.common import LabelSelector
from nodehealth.models.node import MACHINE_ANNOTATION, Node
from nodehealth.services.kubernetes_service import KubernetesService
from nodehealth.services.selector import compile_selector
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

MACHINE_GROUP = "machine.openshift.io"
MACHINE_VERSION = "v1beta1"
# Installed by default on OpenShift, only reacts to spot instance termination
DEFAULT_MHC_NAME = "machine-api-termination-handler"


class ClusterVersionUpgradeChecker:
    """Reports an upgrade while the ClusterVersion 'version' is Progressing."""

    def __init__(self, k8s: KubernetesService):
        self.k8s = k8s

    def check(self) -> bool:
        if not self.k8s.is_available():
            raise TransientStoreError("Kubernetes client not available")
        try:
            cv = self.k8s.custom_api.get_cluster_custom_object(
                group="config.openshift.io", version="v1", plural="clusterversions", name="version",
            )
        except ApiException as e:
            if e.status == 404:
                logger.debug("No ClusterVersion found, assuming no upgrade in progress")
                return False
            raise TransientStoreError("failed to get ClusterVersion", {"status": e.status}) from e
        for cond in (cv.get("status") or {}).get("conditions") or []:
            if cond.get("type") == "Progressing" and cond.get("status") == "True":
                return True
        return False


class MachineHealthCheckDetector:
    """Finds MachineHealthChecks selecting the machines behind a set of nodes."""

    def __init__(self, k8s: KubernetesService):
        self.k8s = k8s

    def _list_mhcs(self) -> List[Dict[str, Any]]:
        try:
            resp = self.k8s.custom_api.list_cluster_custom_object(
                group=MACHINE_GROUP, version=MACHINE_VERSION, plural="machinehealthchecks",
            )
        except ApiException as e:
            if e.status == 404:
                return []
            raise TransientStoreError("failed to list MachineHealthChecks", {"status": e.status}) from e
        return [mhc for mhc in resp.get("items", []) if mhc["metadata"]["name"] != DEFAULT_MHC_NAME]

    def _machine_labels(self, namespace: str, name: str) -> Optional[Dict[str, str]]:
        try:
            machine = self.k8s.custom_api.get_namespaced_custom_object(
                group=MACHINE_GROUP, version=MACHINE_VERSION, namespace=namespace, plural="machines", name=name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise TransientStoreError(f"failed to get Machine {namespace}/{name}", {"status": e.status}) from e
        return (machine.get("metadata") or {}).get("labels") or {}

    def overlaps(self, nodes: List[Node]) -> bool:
        if not self.k8s.is_available():
            raise TransientStoreError("Kubernetes client not available")
        mhcs = self._list_mhcs()
        if not mhcs:
            return False

        machines: List[Tuple[str, Dict[str, str]]] = []
        for node in nodes:
            ref = node.annotations.get(MACHINE_ANNOTATION)
            if not ref or "/" not in ref:
                continue
            namespace, name = ref.split("/", 1)
            labels = self._machine_labels(namespace, name)
            if labels is not None:
                machines.append((namespace, labels))

        for mhc in mhcs:
            mhc_name = mhc["metadata"]["name"]
            try:
                selector = compile_selector(LabelSelector.model_validate((mhc.get("spec") or {}).get("selector") or {}))
            except SelectorError as e:
                logger.error(f"Failed to use the selector of MachineHealthCheck {mhc_name}: {e}")
                continue
            for namespace, labels in machines:
                if namespace == mhc["metadata"].get("namespace") and selector.matches(labels):
                    logger.info(f"MachineHealthCheck {namespace}/{mhc_name} selects a target node's machine")
                    return True
        return False
