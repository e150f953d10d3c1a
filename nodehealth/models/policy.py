# nodehealth/models/policy.py
from typing import Any, Dict, List, Optional, Union

from pydantic import Field

from nodehealth.models.common import Duration, K8sModel, LabelSelector, ObjectReference
from nodehealth.models.status import NodeHealthCheckStatus

DEFAULT_MIN_HEALTHY = "51%"


class UnhealthyCondition(K8sModel):
    type: str
    status: str
    duration: Duration


def default_unhealthy_conditions() -> List[UnhealthyCondition]:
    return [
        UnhealthyCondition(type="Ready", status="False", duration="300s"),
        UnhealthyCondition(type="Ready", status="Unknown", duration="300s"),
    ]


class EscalatingRemediation(K8sModel):
    remediation_template: ObjectReference
    order: int = 0
    # None means the step never times out (classic single template config)
    timeout: Optional[Duration] = None


class NodeHealthCheckSpec(K8sModel):
    selector: LabelSelector = Field(default_factory=LabelSelector)
    unhealthy_conditions: List[UnhealthyCondition] = Field(default_factory=default_unhealthy_conditions)
    min_healthy: Optional[Union[int, str]] = DEFAULT_MIN_HEALTHY
    remediation_template: Optional[ObjectReference] = None
    escalating_remediations: Optional[List[EscalatingRemediation]] = None
    pause_requests: List[str] = Field(default_factory=list)

    def escalation_ladder(self) -> List[EscalatingRemediation]:
        """Remediation steps sorted by order, lowest first."""
        if self.escalating_remediations:
            return sorted(self.escalating_remediations, key=lambda step: step.order)
        if self.remediation_template is not None:
            return [EscalatingRemediation(remediation_template=self.remediation_template, order=0)]
        return []


class NodeHealthCheck(K8sModel):
    """A remediation policy together with its last written status."""

    name: str
    uid: Optional[str] = None
    resource_version: Optional[str] = None
    generation: Optional[int] = None
    spec: NodeHealthCheckSpec = Field(default_factory=NodeHealthCheckSpec)
    status: NodeHealthCheckStatus = Field(default_factory=NodeHealthCheckStatus)

    @classmethod
    def from_k8s(cls, obj: Dict[str, Any]) -> "NodeHealthCheck":
        metadata = obj.get("metadata") or {}
        return cls(
            name=metadata["name"],
            uid=metadata.get("uid"),
            resource_version=metadata.get("resourceVersion"),
            generation=metadata.get("generation"),
            spec=NodeHealthCheckSpec.model_validate(obj.get("spec") or {}),
            status=NodeHealthCheckStatus.model_validate(obj.get("status") or {}),
        )
