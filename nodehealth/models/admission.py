# nodehealth/models/admission.py
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional

from nodehealth.models.common import K8sModel


class AdmissionRequest(K8sModel):
    uid: str
    operation: str = Field(..., description="CREATE, UPDATE, DELETE or CONNECT")
    name: Optional[str] = None
    object: Optional[Dict[str, Any]] = None
    old_object: Optional[Dict[str, Any]] = None


class AdmissionStatus(BaseModel):
    code: int = 403
    message: str


class AdmissionResponse(BaseModel):
    uid: str
    allowed: bool
    status: Optional[AdmissionStatus] = None


class AdmissionReview(K8sModel):
    api_version: str = "admission.k8s.io/v1"
    kind: str = "AdmissionReview"
    request: Optional[AdmissionRequest] = None
    response: Optional[AdmissionResponse] = None
