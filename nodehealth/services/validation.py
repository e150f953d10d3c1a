# nodehealth/services/validation.py
"""
Validation Guard: admission time checks for remediation policies.

The rules only look at a policy through a PolicyFields view, so the same
validator serves every policy kind that has a selector, a minHealthy value
and a remediation ladder. Each rejection reason starts with the offending
field path.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, List, Optional, Union

from nodehealth.core.exceptions import InvalidMinHealthyError, SelectorError
from nodehealth.models.common import LabelSelector
from nodehealth.models.policy import EscalatingRemediation, NodeHealthCheck, UnhealthyCondition
from nodehealth.services.quorum import parse_min_healthy
from nodehealth.services.selector import compile_selector

logger = logging.getLogger(__name__)

ONGOING_REMEDIATION_ERROR = "prohibited due to running remediation"


@dataclass(frozen=True)
class ValidationResult:
    allowed: bool
    reason: str = ""
    field: Optional[str] = None

    @classmethod
    def accept(cls) -> "ValidationResult":
        return cls(allowed=True)

    @classmethod
    def reject(cls, field_path: str, message: str) -> "ValidationResult":
        return cls(allowed=False, reason=f"{field_path}: {message}", field=field_path)


@dataclass(frozen=True)
class PolicyFields:
    """The parts of a policy the validation rules need."""

    selector: LabelSelector
    min_healthy: Optional[Union[int, str]]
    unhealthy_conditions: List[UnhealthyCondition]
    ladder: List[EscalatingRemediation]
    in_flight_count: int
    has_template: bool = False
    has_escalating_remediations: bool = False
    ladder_field: str = "spec.escalatingRemediations"


def node_health_check_fields(policy: NodeHealthCheck) -> PolicyFields:
    spec = policy.spec
    return PolicyFields(
        selector=spec.selector,
        min_healthy=spec.min_healthy,
        unhealthy_conditions=spec.unhealthy_conditions,
        ladder=list(spec.escalating_remediations or []),
        in_flight_count=policy.status.in_flight_count,
        has_template=spec.remediation_template is not None,
        has_escalating_remediations=bool(spec.escalating_remediations),
    )


class PolicyValidator:
    def __init__(self, fields: Callable[[Any], PolicyFields] = node_health_check_fields):
        self.fields = fields

    def validate_create(self, policy: Any) -> ValidationResult:
        return self._validate_spec(self.fields(policy))

    def validate_update(self, old: Any, new: Any) -> ValidationResult:
        old_fields, new_fields = self.fields(old), self.fields(new)
        result = self._validate_spec(new_fields)
        if not result.allowed:
            return result
        if old_fields.in_flight_count > 0 and old_fields.selector != new_fields.selector:
            logger.info("Rejecting selector update of a policy with ongoing remediations")
            return ValidationResult.reject("spec.selector", f"selector update {ONGOING_REMEDIATION_ERROR}")
        return ValidationResult.accept()

    def validate_delete(self, policy: Any) -> ValidationResult:
        if self.fields(policy).in_flight_count > 0:
            logger.info("Rejecting deletion of a policy with ongoing remediations")
            return ValidationResult.reject("status.inFlightRemediations", f"deletion {ONGOING_REMEDIATION_ERROR}")
        return ValidationResult.accept()

    def _validate_spec(self, fields: PolicyFields) -> ValidationResult:
        checks = (
            self._check_min_healthy,
            self._check_selector,
            self._check_unhealthy_conditions,
            self._check_remediation_config,
            self._check_ladder,
        )
        for check in checks:
            result = check(fields)
            if not result.allowed:
                return result
        return ValidationResult.accept()

    def _check_min_healthy(self, fields: PolicyFields) -> ValidationResult:
        try:
            parse_min_healthy(fields.min_healthy)
        except InvalidMinHealthyError as e:
            return ValidationResult.reject("spec.minHealthy", e.message)
        return ValidationResult.accept()

    def _check_selector(self, fields: PolicyFields) -> ValidationResult:
        try:
            compile_selector(fields.selector)
        except SelectorError as e:
            return ValidationResult.reject("spec.selector", e.message)
        return ValidationResult.accept()

    def _check_unhealthy_conditions(self, fields: PolicyFields) -> ValidationResult:
        if not fields.unhealthy_conditions:
            return ValidationResult.reject("spec.unhealthyConditions", "at least one unhealthy condition is required")
        for i, rule in enumerate(fields.unhealthy_conditions):
            if rule.duration < timedelta(0):
                return ValidationResult.reject(f"spec.unhealthyConditions[{i}].duration", "duration must not be negative")
        return ValidationResult.accept()

    def _check_remediation_config(self, fields: PolicyFields) -> ValidationResult:
        if fields.has_template and fields.has_escalating_remediations:
            return ValidationResult.reject(
                "spec.remediationTemplate",
                "remediationTemplate and escalatingRemediations are mutually exclusive",
            )
        if not fields.has_template and not fields.has_escalating_remediations:
            return ValidationResult.reject(
                "spec.remediationTemplate",
                "either remediationTemplate or escalatingRemediations must be set",
            )
        return ValidationResult.accept()

    def _check_ladder(self, fields: PolicyFields) -> ValidationResult:
        orders = set()
        kinds = set()
        for i, step in enumerate(fields.ladder):
            path = f"{fields.ladder_field}[{i}]"
            if step.order in orders:
                return ValidationResult.reject(f"{path}.order", f"duplicate order {step.order}")
            orders.add(step.order)
            kind = step.remediation_template.kind
            if kind in kinds:
                return ValidationResult.reject(f"{path}.remediationTemplate", f"duplicate remediation template kind {kind}")
            kinds.add(kind)
            if step.timeout is None or step.timeout <= timedelta(0):
                return ValidationResult.reject(f"{path}.timeout", "timeout must be positive")
        return ValidationResult.accept()


policy_validator = PolicyValidator()
