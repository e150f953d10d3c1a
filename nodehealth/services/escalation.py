# nodehealth/services/escalation.py
"""
Escalation Engine: walks the remediation ladder of a single unhealthy node.

Per node the states are NotRemediating, Step[k] active, Step[k] timed out
and Cleared. A timed out step is followed by the next step with a higher
order. When there is none the node stays in the timed out state and keeps
being reported as in flight. Remediation resources are never deleted here.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from nodehealth.core.clock import Clock, system_clock
from nodehealth.models.common import ObjectReference
from nodehealth.models.policy import EscalatingRemediation, NodeHealthCheck
from nodehealth.models.status import Remediation, RemediationRef, UnhealthyNode

logger = logging.getLogger(__name__)


class RemediationClient(Protocol):
    def create(self, template: ObjectReference, node_name: str, owner: NodeHealthCheck) -> RemediationRef:
        """Creates (or adopts an existing) remediation resource for the node."""
        ...

    def get(self, ref: RemediationRef) -> Optional[Dict[str, Any]]:
        ...

    def delete(self, ref: RemediationRef) -> bool:
        ...

    def template_exists(self, template: ObjectReference) -> bool:
        ...


@dataclass
class EscalationOutcome:
    entry: Optional[UnhealthyNode]
    next_deadline: Optional[datetime] = None
    started: Optional[EscalatingRemediation] = None


class EscalationEngine:
    def __init__(self, remediations: RemediationClient, clock: Clock = system_clock):
        self.remediations = remediations
        self.clock = clock

    def advance(
        self,
        policy: NodeHealthCheck,
        node_name: str,
        entry: Optional[UnhealthyNode],
        allow_start: bool,
    ) -> EscalationOutcome:
        """
        Moves an unhealthy node one transition along the ladder.

        allow_start is False while the healthy quorum gate is closed. Steps
        that are already running keep running and may still be marked timed
        out, but no step is started.
        """
        ladder = policy.spec.escalation_ladder()
        now = self.clock.now()

        if entry is None or not entry.remediations:
            if not allow_start or not ladder:
                return EscalationOutcome(entry=None)
            first = ladder[0]
            remediation = self._start_step(policy, node_name, first, now)
            return EscalationOutcome(
                entry=UnhealthyNode(name=node_name, remediations=[remediation]),
                next_deadline=remediation.deadline,
                started=first,
            )

        entry = entry.model_copy(deep=True)
        current = entry.current

        if not current.is_timed_out:
            if current.deadline is None or now < current.deadline:
                return EscalationOutcome(entry=entry, next_deadline=current.deadline)
            current.timed_out = now
            logger.warning(
                f"NHC {policy.name}: remediation {current.resource.kind} (order {current.order}) "
                f"for node {node_name} timed out"
            )
            just_timed_out = True
        else:
            just_timed_out = False

        next_step = self._next_step(ladder, current.order)
        if next_step is None:
            if just_timed_out:
                logger.warning(
                    f"NHC {policy.name}: no further remediation configured for node {node_name}, "
                    f"waiting for the node to recover"
                )
            return EscalationOutcome(entry=entry)

        if not allow_start:
            logger.info(f"NHC {policy.name}: escalation of node {node_name} deferred, healthy quorum not met")
            return EscalationOutcome(entry=entry)

        remediation = self._start_step(policy, node_name, next_step, now)
        entry.remediations.append(remediation)
        return EscalationOutcome(entry=entry, next_deadline=remediation.deadline, started=next_step)

    def clear(self, policy: NodeHealthCheck, entry: UnhealthyNode) -> None:
        """The node recovered, its step states are dropped from status."""
        steps = ", ".join(f"{rem.resource.kind}(order {rem.order})" for rem in entry.remediations)
        logger.info(f"NHC {policy.name}: node {entry.name} is healthy again, remediation finished [{steps}]")

    def _next_step(self, ladder, current_order: int) -> Optional[EscalatingRemediation]:
        for step in ladder:
            if step.order > current_order:
                return step
        return None

    def _start_step(self, policy: NodeHealthCheck, node_name: str, step: EscalatingRemediation, now: datetime) -> Remediation:
        ref = self.remediations.create(step.remediation_template, node_name, policy)
        deadline = now + step.timeout if step.timeout else None
        logger.info(
            f"NHC {policy.name}: started remediation {ref.kind} {ref.namespace}/{ref.name} "
            f"(order {step.order}) for node {node_name}"
            + (f", times out at {deadline.isoformat()}" if deadline else "")
        )
        return Remediation(resource=ref, order=step.order, started=now, deadline=deadline)
