# nodehealth/api/v1/endpoints/policies.py
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from typing import List
from nodehealth.api.deps import get_reconciler, get_store
from nodehealth.core.exceptions import NodeHealthError
from nodehealth.models.policy import NodeHealthCheck
from nodehealth.models.responses import PolicyStatusResponse, ReconcileResponse
from nodehealth.services.reconciler import ObjectStore, Reconciler

logger = logging.getLogger(__name__)
router = APIRouter()


def _to_response(policy: NodeHealthCheck) -> PolicyStatusResponse:
    policy_status = policy.status
    return PolicyStatusResponse(
        name=policy.name,
        phase=policy_status.phase.value,
        reason=policy_status.reason,
        observed_nodes=policy_status.observed_nodes,
        healthy_nodes=policy_status.healthy_nodes,
        in_flight_remediations=policy_status.in_flight_count,
        unhealthy_nodes={
            entry.name: [rem.to_k8s() for rem in entry.remediations]
            for entry in policy_status.unhealthy_nodes
        },
    )


def _unavailable(e: NodeHealthError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"Object store unavailable: {e}")


@router.get("", response_model=List[PolicyStatusResponse], summary="List NodeHealthCheck statuses")
def list_policies(store: ObjectStore = Depends(get_store)) -> List[PolicyStatusResponse]:
    try:
        policies = store.list_policies()
    except NodeHealthError as e:
        logger.error(f"Failed to list NHCs: {e}")
        raise _unavailable(e)
    return [_to_response(policy) for policy in sorted(policies, key=lambda p: p.name)]


@router.get("/{name}", response_model=PolicyStatusResponse, summary="Get the status of one NodeHealthCheck")
def get_policy(name: str, store: ObjectStore = Depends(get_store)) -> PolicyStatusResponse:
    try:
        policy = store.get_policy(name)
    except NodeHealthError as e:
        logger.error(f"Failed to get NHC {name}: {e}")
        raise _unavailable(e)
    if policy is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"NodeHealthCheck '{name}' not found")
    return _to_response(policy)


@router.post("/{name}/reconcile", response_model=ReconcileResponse, summary="Run one reconciliation pass now")
def reconcile_policy(name: str, reconciler: Reconciler = Depends(get_reconciler)) -> ReconcileResponse:
    logger.info(f"Reconcile of NHC {name} requested via API")
    try:
        result = reconciler.reconcile(name)
    except NodeHealthError as e:
        logger.error(f"Requested reconcile of NHC {name} failed: {e}")
        raise _unavailable(e)
    if result.status is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"NodeHealthCheck '{name}' not found")
    return ReconcileResponse(
        name=name,
        phase=result.phase.value,
        status_written=result.status_written,
        requeue_after_seconds=result.requeue_after.total_seconds() if result.requeue_after else None,
    )
