# nodehealth/services/selector.py
"""Label selector matching and target set resolution.

Control-plane and master nodes are never targeted unless the selector
asks for one of the role labels itself, with ``matchLabels`` or an ``In`` or
``Exists`` expression.
"""
import logging
import re
from typing import Dict, FrozenSet, Iterable, List, Tuple

from nodehealth.core.exceptions import SelectorError
from nodehealth.models.common import LabelSelector
from nodehealth.models.node import CONTROL_PLANE_ROLE_LABEL, MASTER_ROLE_LABEL, Node

logger = logging.getLogger(__name__)

OP_IN = "In"
OP_NOT_IN = "NotIn"
OP_EXISTS = "Exists"
OP_DOES_NOT_EXIST = "DoesNotExist"

_NAME = re.compile(r"^([A-Za-z0-9]([-A-Za-z0-9_.]*[A-Za-z0-9])?)?$")
_DNS_SUBDOMAIN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")

Requirement = Tuple[str, str, FrozenSet[str]]


def _validate_key(key: str) -> None:
    prefix, _, name = key.rpartition("/")
    if not name or len(name) > 63 or not _NAME.match(name):
        raise SelectorError(f"invalid label key '{key}'", {"field": "spec.selector"})
    if "/" in key and (not prefix or len(prefix) > 253 or not _DNS_SUBDOMAIN.match(prefix)):
        raise SelectorError(f"invalid label key prefix in '{key}'", {"field": "spec.selector"})


def _validate_value(key: str, value: str) -> None:
    if len(value) > 63 or not _NAME.match(value):
        raise SelectorError(f"invalid label value '{value}' for key '{key}'", {"field": "spec.selector"})


class CompiledSelector:
    def __init__(self, requirements: List[Requirement]):
        self.requirements = requirements

    def matches(self, labels: Dict[str, str]) -> bool:
        for key, operator, values in self.requirements:
            if operator == OP_IN:
                if key not in labels or labels[key] not in values:
                    return False
            elif operator == OP_NOT_IN:
                if key in labels and labels[key] in values:
                    return False
            elif operator == OP_EXISTS:
                if key not in labels:
                    return False
            elif key in labels:  # DoesNotExist
                return False
        return True

    def requires(self, key: str) -> bool:
        """True if a requirement asks for the label to be present (In or Exists)."""
        return any(
            req_key == key and operator in (OP_IN, OP_EXISTS)
            for req_key, operator, _ in self.requirements
        )

    @property
    def overrides_role_exclusion(self) -> bool:
        # NotIn / DoesNotExist on a role label narrow the selection, they never widen it
        return self.requires(CONTROL_PLANE_ROLE_LABEL) or self.requires(MASTER_ROLE_LABEL)


def compile_selector(selector: LabelSelector) -> CompiledSelector:
    """Converts a LabelSelector into a matcher, raising SelectorError if malformed."""
    requirements: List[Requirement] = []
    for key, value in sorted(selector.match_labels.items()):
        _validate_key(key)
        _validate_value(key, value)
        requirements.append((key, OP_IN, frozenset([value])))

    for expr in selector.match_expressions:
        _validate_key(expr.key)
        if expr.operator in (OP_IN, OP_NOT_IN):
            if not expr.values:
                raise SelectorError(
                    f"values must be non-empty for operator '{expr.operator}' on key '{expr.key}'",
                    {"field": "spec.selector"},
                )
        elif expr.operator in (OP_EXISTS, OP_DOES_NOT_EXIST):
            if expr.values:
                raise SelectorError(
                    f"values must be empty for operator '{expr.operator}' on key '{expr.key}'",
                    {"field": "spec.selector"},
                )
        else:
            raise SelectorError(f"unsupported selector operator '{expr.operator}'", {"field": "spec.selector"})
        for value in expr.values:
            _validate_value(expr.key, value)
        requirements.append((expr.key, expr.operator, frozenset(expr.values)))
    return CompiledSelector(requirements)


def node_in_scope(selector: CompiledSelector, node: Node) -> bool:
    if node.is_control_plane and not selector.overrides_role_exclusion:
        return False
    return selector.matches(node.labels)


def resolve_targets(selector: LabelSelector, nodes: Iterable[Node]) -> List[Node]:
    """Returns the nodes a policy selects, sorted by name."""
    compiled = compile_selector(selector)
    targets = [node for node in nodes if node_in_scope(compiled, node)]
    targets.sort(key=lambda node: node.name)
    logger.debug(f"Selector matched {len(targets)} node(s)")
    return targets
