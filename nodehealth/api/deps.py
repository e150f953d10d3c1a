# nodehealth/api/deps.py
from functools import lru_cache
from nodehealth.core.config import settings
from nodehealth.services.cluster_checks import ClusterVersionUpgradeChecker, MachineHealthCheckDetector
from nodehealth.services.conflict import NoopLegacyCheckDetector, NoopUpgradeChecker
from nodehealth.services.kubernetes_service import KubernetesService, k8s_service
from nodehealth.services.reconciler import Reconciler
from nodehealth.services.remediation_client import RemediationClient
from nodehealth.services.validation import PolicyValidator, policy_validator


def build_reconciler(k8s: KubernetesService) -> Reconciler:
    """Wires the reconciler to the cluster, with OpenShift conflict checks when enabled."""
    if settings.ON_OPENSHIFT:
        upgrade_checker = ClusterVersionUpgradeChecker(k8s)
        legacy_detector = MachineHealthCheckDetector(k8s)
    else:
        upgrade_checker = NoopUpgradeChecker()
        legacy_detector = NoopLegacyCheckDetector()
    return Reconciler(
        store=k8s,
        remediations=RemediationClient(k8s),
        upgrade_checker=upgrade_checker,
        legacy_detector=legacy_detector,
    )


@lru_cache
def get_reconciler() -> Reconciler:
    return build_reconciler(k8s_service)


def get_store() -> KubernetesService:
    return k8s_service


def get_validator() -> PolicyValidator:
    return policy_validator
