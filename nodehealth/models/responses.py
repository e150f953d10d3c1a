# nodehealth/models/responses.py
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class PolicyStatusResponse(BaseModel):
    name: str
    phase: str
    reason: str
    observed_nodes: int
    healthy_nodes: int
    in_flight_remediations: int
    unhealthy_nodes: Dict[str, Any] = Field(default_factory=dict, description="Remediation steps by node name")


class ReconcileResponse(BaseModel):
    name: str
    phase: Optional[str] = None
    status_written: bool = False
    requeue_after_seconds: Optional[float] = None
