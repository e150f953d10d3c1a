# nodehealth/services/conflict.py
"""
Conflict Guard: decides whether a policy must be frozen before any
remediation logic runs.

A policy is Disabled when a legacy MachineHealthCheck already watches one
of its nodes, when a referenced remediation template is missing, or when its
configuration cannot be parsed. It is Paused while the cluster upgrades or
while users hold pause requests on it.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

from nodehealth.models.common import ObjectReference
from nodehealth.models.node import Node
from nodehealth.models.policy import NodeHealthCheck
from nodehealth.models.status import (
    CONDITION_REASON_DISABLED_INVALID_CONFIG,
    CONDITION_REASON_DISABLED_MHC,
    CONDITION_REASON_DISABLED_TEMPLATE_NOT_FOUND,
    Phase,
)

logger = logging.getLogger(__name__)


class UpgradeChecker(Protocol):
    def check(self) -> bool:
        """True while a cluster upgrade is in progress. Raises on lookup failure."""
        ...


class LegacyCheckDetector(Protocol):
    def overlaps(self, nodes: List[Node]) -> bool:
        """True if an older generation health check selects any of the nodes."""
        ...


class TemplateLookup(Protocol):
    def template_exists(self, template: ObjectReference) -> bool:
        ...


class NoopUpgradeChecker:
    def check(self) -> bool:
        return False


class NoopLegacyCheckDetector:
    def overlaps(self, nodes: List[Node]) -> bool:
        return False


@dataclass(frozen=True)
class ConflictResult:
    phase: Optional[Phase] = None
    reason: str = ""
    # Reason of the Disabled condition, set only for Disabled phases
    condition_reason: Optional[str] = None

    @property
    def frozen(self) -> bool:
        return self.phase is not None

    @classmethod
    def clear(cls) -> "ConflictResult":
        return cls()

    @classmethod
    def disabled(cls, condition_reason: str, reason: str) -> "ConflictResult":
        return cls(phase=Phase.DISABLED, reason=reason, condition_reason=condition_reason)

    @classmethod
    def paused(cls, reason: str) -> "ConflictResult":
        return cls(phase=Phase.PAUSED, reason=reason)

    @classmethod
    def invalid_config(cls, message: str) -> "ConflictResult":
        return cls.disabled(CONDITION_REASON_DISABLED_INVALID_CONFIG, f"NHC is disabled: invalid configuration: {message}")


class ConflictGuard:
    def __init__(self, upgrade_checker: UpgradeChecker, legacy_detector: LegacyCheckDetector, templates: TemplateLookup):
        self.upgrade_checker = upgrade_checker
        self.legacy_detector = legacy_detector
        self.templates = templates

    def check(self, policy: NodeHealthCheck, targets: List[Node]) -> ConflictResult:
        """Disabled reasons win over Paused reasons when several apply."""
        if self.legacy_detector.overlaps(targets):
            logger.warning(f"NHC {policy.name}: a MachineHealthCheck selects some of its nodes, disabling")
            return ConflictResult.disabled(
                CONDITION_REASON_DISABLED_MHC,
                "NHC is disabled: a conflicting MachineHealthCheck selects nodes of this NHC",
            )

        for step in policy.spec.escalation_ladder():
            template = step.remediation_template
            if not self.templates.template_exists(template):
                logger.error(
                    f"NHC {policy.name}: remediation template {template.kind} "
                    f"{template.namespace}/{template.name} not found, disabling"
                )
                return ConflictResult.disabled(
                    CONDITION_REASON_DISABLED_TEMPLATE_NOT_FOUND,
                    f"NHC is disabled: remediation template {template.kind} "
                    f"{template.namespace}/{template.name} not found",
                )

        if self.upgrade_checker.check():
            logger.info(f"NHC {policy.name}: cluster upgrade in progress, pausing new remediations")
            return ConflictResult.paused("NHC is paused: cluster upgrade in progress")

        if policy.spec.pause_requests:
            requests = ", ".join(policy.spec.pause_requests)
            logger.info(f"NHC {policy.name}: paused by request ({requests})")
            return ConflictResult.paused(f"NHC is paused: pause requested: {requests}")

        return ConflictResult.clear()
