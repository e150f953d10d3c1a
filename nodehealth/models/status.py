# nodehealth/models/status.py
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import Field

from nodehealth.models.common import Condition, K8sModel


class Phase(str, Enum):
    ENABLED = "Enabled"
    DISABLED = "Disabled"
    PAUSED = "Paused"
    REMEDIATING = "Remediating"


CONDITION_TYPE_DISABLED = "Disabled"

CONDITION_REASON_ENABLED = "NodeHealthCheckEnabled"
CONDITION_REASON_DISABLED_MHC = "ConflictingMachineHealthCheckDetected"
CONDITION_REASON_DISABLED_TEMPLATE_NOT_FOUND = "RemediationTemplateNotFound"
CONDITION_REASON_DISABLED_INVALID_CONFIG = "InvalidConfiguration"


class RemediationRef(K8sModel):
    """Opaque handle of a remediation resource created for a node."""

    api_version: str
    kind: str
    name: str
    namespace: Optional[str] = None
    uid: Optional[str] = None


class Remediation(K8sModel):
    """State of one escalation step for one node."""

    resource: RemediationRef
    order: int = 0
    started: datetime
    deadline: Optional[datetime] = None
    # Set once when the deadline passes and never cleared afterwards
    timed_out: Optional[datetime] = None

    @property
    def is_timed_out(self) -> bool:
        return self.timed_out is not None


class UnhealthyNode(K8sModel):
    name: str
    remediations: List[Remediation] = Field(default_factory=list)

    @property
    def current(self) -> Optional[Remediation]:
        return self.remediations[-1] if self.remediations else None


class NodeHealthCheckStatus(K8sModel):
    phase: Phase = Phase.ENABLED
    reason: str = ""
    conditions: List[Condition] = Field(default_factory=list)
    observed_nodes: int = 0
    healthy_nodes: int = 0
    unhealthy_nodes: List[UnhealthyNode] = Field(default_factory=list)
    in_flight_remediations: Dict[str, datetime] = Field(default_factory=dict)
    last_update_time: Optional[datetime] = None

    @property
    def in_flight_count(self) -> int:
        return len(self.in_flight_remediations)

    def unhealthy_node(self, name: str) -> Optional[UnhealthyNode]:
        for entry in self.unhealthy_nodes:
            if entry.name == name:
                return entry
        return None

    def condition(self, condition_type: str) -> Optional[Condition]:
        for cond in self.conditions:
            if cond.type == condition_type:
                return cond
        return None

    def is_condition_true(self, condition_type: str) -> bool:
        cond = self.condition(condition_type)
        return cond is not None and cond.status == "True"
