# nodehealth/api/v1/endpoints/admission.py
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError
from nodehealth.api.deps import get_validator
from nodehealth.models.admission import AdmissionResponse, AdmissionReview, AdmissionStatus
from nodehealth.models.policy import NodeHealthCheck
from nodehealth.services.validation import PolicyValidator, ValidationResult

logger = logging.getLogger(__name__)
router = APIRouter()


def _parse(obj) -> NodeHealthCheck:
    if not obj:
        raise ValueError("object is missing")
    return NodeHealthCheck.from_k8s(obj)


def _malformed(e: ValidationError) -> ValidationResult:
    error = e.errors()[0]
    loc = error.get("loc") or ()
    field_path = "spec." + str(loc[0]) if loc else "spec"
    return ValidationResult.reject(field_path, error.get("msg", "invalid value"))


@router.post(
    "/validate",
    response_model=AdmissionReview,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    summary="Validating admission webhook for NodeHealthCheck",
    description="""
Receives an `AdmissionReview` for CREATE, UPDATE or DELETE of a NodeHealthCheck and
rejects invalid minHealthy values, malformed selectors and ladders, selector updates
while remediations are running and deletion while remediations are running.
    """,
)
async def validate_policy(review: AdmissionReview, validator: PolicyValidator = Depends(get_validator)) -> AdmissionReview:
    request = review.request
    if request is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="AdmissionReview without request")

    operation = request.operation.upper()
    try:
        if operation == "CREATE":
            result = validator.validate_create(_parse(request.object))
        elif operation == "UPDATE":
            result = validator.validate_update(_parse(request.old_object), _parse(request.object))
        elif operation == "DELETE":
            result = validator.validate_delete(_parse(request.old_object))
        else:
            result = ValidationResult.accept()
    except ValidationError as e:
        result = _malformed(e)
    except (ValueError, KeyError) as e:
        result = ValidationResult.reject("metadata", f"malformed object: {e}")

    if result.allowed:
        logger.debug(f"Admission {operation} of NHC {request.name} allowed")
        response = AdmissionResponse(uid=request.uid, allowed=True)
    else:
        logger.info(f"Admission {operation} of NHC {request.name} denied: {result.reason}")
        response = AdmissionResponse(
            uid=request.uid,
            allowed=False,
            status=AdmissionStatus(code=status.HTTP_403_FORBIDDEN, message=result.reason),
        )
    return AdmissionReview(api_version=review.api_version, kind=review.kind, response=response)
