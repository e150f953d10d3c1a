# nodehealth/services/health.py
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from nodehealth.models.node import Node
from nodehealth.models.policy import UnhealthyCondition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeHealthRecord:
    """Health of one node under one policy, recomputed every pass."""

    name: str
    unhealthy: bool = False
    terminating: bool = False
    matched_rule: Optional[UnhealthyCondition] = None
    unhealthy_since: Optional[datetime] = None
    # Earliest instant a currently matching condition crosses its duration
    next_check: Optional[datetime] = None

    @property
    def healthy(self) -> bool:
        return not self.unhealthy and not self.terminating


def evaluate_node(node: Node, rules: List[UnhealthyCondition], now: datetime) -> NodeHealthRecord:
    """
    Classifies a node against the policy's unhealthy condition rules.

    Rules are checked in declared order and the first rule whose condition
    type and status match, and which has held for at least its duration,
    makes the node unhealthy. A condition without a lastTransitionTime
    cannot prove its duration and never matches.
    """
    if node.is_terminating:
        logger.debug(f"Node {node.name} is terminating, skipping health evaluation")
        return NodeHealthRecord(name=node.name, terminating=True)

    next_check: Optional[datetime] = None
    for rule in rules:
        cond = node.condition(rule.type)
        if cond is None or cond.status != rule.status or cond.last_transition_time is None:
            continue
        crossed_at = cond.last_transition_time + rule.duration
        if now >= crossed_at:
            logger.debug(
                f"Node {node.name} unhealthy: {rule.type}={rule.status} since "
                f"{cond.last_transition_time.isoformat()} (duration {rule.duration})"
            )
            return NodeHealthRecord(
                name=node.name,
                unhealthy=True,
                matched_rule=rule,
                unhealthy_since=crossed_at,
            )
        if next_check is None or crossed_at < next_check:
            next_check = crossed_at

    return NodeHealthRecord(name=node.name, next_check=next_check)
