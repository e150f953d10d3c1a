# nodehealth/models/node.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from nodehealth.models.common import K8sModel

# Set by the machine API on nodes that are about to be deleted
NODE_CONDITION_TERMINATING = "Terminating"

CONTROL_PLANE_ROLE_LABEL = "node-role.kubernetes.io/control-plane"
MASTER_ROLE_LABEL = "node-role.kubernetes.io/master"

MACHINE_ANNOTATION = "machine.openshift.io/machine"


class NodeCondition(K8sModel):
    type: str
    status: str
    last_transition_time: Optional[datetime] = None
    reason: Optional[str] = None
    message: Optional[str] = None


class Node(K8sModel):
    """Read-only view of a cluster node."""

    name: str
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    conditions: List[NodeCondition] = Field(default_factory=list)

    @classmethod
    def from_k8s(cls, obj: Dict[str, Any]) -> "Node":
        """Builds a Node from a serialized v1.Node object."""
        metadata = obj.get("metadata") or {}
        status = obj.get("status") or {}
        return cls(
            name=metadata["name"],
            labels=metadata.get("labels") or {},
            annotations=metadata.get("annotations") or {},
            conditions=status.get("conditions") or [],
        )

    def condition(self, condition_type: str) -> Optional[NodeCondition]:
        for cond in self.conditions:
            if cond.type == condition_type:
                return cond
        return None

    @property
    def is_terminating(self) -> bool:
        return self.condition(NODE_CONDITION_TERMINATING) is not None

    @property
    def is_control_plane(self) -> bool:
        return CONTROL_PLANE_ROLE_LABEL in self.labels or MASTER_ROLE_LABEL in self.labels
