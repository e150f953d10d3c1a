# nodehealth/services/status.py
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from nodehealth.models.common import Condition
from nodehealth.models.status import (
    CONDITION_REASON_ENABLED,
    CONDITION_TYPE_DISABLED,
    NodeHealthCheckStatus,
    Phase,
    UnhealthyNode,
)
from nodehealth.services.conflict import ConflictResult
from nodehealth.services.quorum import QuorumResult

logger = logging.getLogger(__name__)


def set_condition(conditions: List[Condition], new: Condition, now: datetime) -> List[Condition]:
    """Same semantics as meta.SetStatusCondition: the transition time only moves on a status flip."""
    result: List[Condition] = []
    replaced = False
    for cond in conditions:
        if cond.type != new.type:
            result.append(cond)
            continue
        replaced = True
        updated = new.model_copy()
        if cond.status == new.status and cond.last_transition_time is not None:
            updated.last_transition_time = cond.last_transition_time
        else:
            updated.last_transition_time = new.last_transition_time or now
        result.append(updated)
    if not replaced:
        appended = new.model_copy()
        appended.last_transition_time = new.last_transition_time or now
        result.append(appended)
    return result


def compute_phase(conflict: ConflictResult, has_in_flight: bool, quorum: Optional[QuorumResult] = None) -> Tuple[Phase, str]:
    """Conflict reasons take precedence over Remediating."""
    if conflict.frozen:
        return conflict.phase, conflict.reason
    if has_in_flight:
        phase, reason = Phase.REMEDIATING, "NHC is remediating unhealthy nodes"
    else:
        phase, reason = Phase.ENABLED, "NHC is enabled, no ongoing remediation"
    if quorum is not None and not quorum.open:
        reason += (
            f", new remediations are blocked: {quorum.healthy} of {quorum.targets} nodes healthy, "
            f"{quorum.required} required"
        )
    return phase, reason


def build_status(
    previous: NodeHealthCheckStatus,
    conflict: ConflictResult,
    unhealthy_nodes: List[UnhealthyNode],
    now: datetime,
    quorum: Optional[QuorumResult] = None,
    observed_nodes: Optional[int] = None,
    healthy_nodes: Optional[int] = None,
    generation: Optional[int] = None,
) -> NodeHealthCheckStatus:
    """
    Folds one pass into a new status object.

    Counters that the pass could not compute keep their previous values.
    lastUpdateTime only moves when something else changed, so a pass over
    unchanged state yields an identical status.
    """
    unhealthy_nodes = sorted(unhealthy_nodes, key=lambda entry: entry.name)
    in_flight = {entry.name: entry.remediations[0].started for entry in unhealthy_nodes if entry.remediations}
    phase, reason = compute_phase(conflict, bool(in_flight), quorum)

    if phase == Phase.DISABLED:
        disabled = Condition(
            type=CONDITION_TYPE_DISABLED, status="True",
            reason=conflict.condition_reason or "", message=reason,
        )
    else:
        disabled = Condition(
            type=CONDITION_TYPE_DISABLED, status="False",
            reason=CONDITION_REASON_ENABLED, message="No issues found, NodeHealthCheck is enabled.",
        )
    disabled.observed_generation = generation

    candidate = NodeHealthCheckStatus(
        phase=phase,
        reason=reason,
        conditions=set_condition(previous.conditions, disabled, now),
        observed_nodes=previous.observed_nodes if observed_nodes is None else observed_nodes,
        healthy_nodes=previous.healthy_nodes if healthy_nodes is None else healthy_nodes,
        unhealthy_nodes=unhealthy_nodes,
        in_flight_remediations=in_flight,
        last_update_time=previous.last_update_time,
    )
    if candidate != previous:
        if candidate.phase != previous.phase:
            logger.info(f"Phase changed from {previous.phase.value} to {candidate.phase.value}: {reason}")
        candidate.last_update_time = now
    return candidate
