# nodehealth/services/mapper.py
import logging
from typing import Iterable, List, Optional, Set

from nodehealth.core.exceptions import SelectorError
from nodehealth.models.node import Node
from nodehealth.models.policy import NodeHealthCheck
from nodehealth.services.selector import compile_selector, node_in_scope

logger = logging.getLogger(__name__)


def policies_for_node(nodes: Iterable[Optional[Node]], policies: List[NodeHealthCheck]) -> Set[str]:
    """
    Maps a node change to the names of the policies that must be reconciled.

    Pass the old and the new version of the node: a policy is affected when
    either version falls into its selector, or when its status still lists
    the node as unhealthy. Policies with a broken selector are skipped.
    """
    versions = [node for node in nodes if node is not None]
    affected: Set[str] = set()
    for policy in policies:
        if any(policy.status.unhealthy_node(node.name) is not None for node in versions):
            affected.add(policy.name)
            continue
        try:
            selector = compile_selector(policy.spec.selector)
        except SelectorError as e:
            logger.error(f"Failed to use the selector of NHC {policy.name}: {e}")
            continue
        if any(node_in_scope(selector, node) for node in versions):
            affected.add(policy.name)
    return affected
