# nodehealth/services/quorum.py
import logging
import math
import re
from dataclasses import dataclass
from typing import Optional, Union

from nodehealth.core.config import settings
from nodehealth.core.exceptions import InvalidMinHealthyError

logger = logging.getLogger(__name__)

_PERCENT = re.compile(r"^(\d+)%$")


def parse_min_healthy(value: Optional[Union[int, str]]) -> Union[int, float]:
    """Returns an absolute count (int) or a fraction of the target set (float)."""
    if value is None:
        raise InvalidMinHealthyError("MinHealthy must be set", {"field": "spec.minHealthy"})
    if isinstance(value, bool):
        raise InvalidMinHealthyError(f"MinHealthy has invalid type: {value!r}", {"field": "spec.minHealthy"})
    if isinstance(value, int):
        if value < 0:
            raise InvalidMinHealthyError("MinHealthy must not be negative", {"field": "spec.minHealthy"})
        return value
    match = _PERCENT.match(value.strip())
    if match is None:
        raise InvalidMinHealthyError(
            f"MinHealthy '{value}' is neither an integer nor a percentage", {"field": "spec.minHealthy"}
        )
    percent = int(match.group(1))
    if percent > 100:
        raise InvalidMinHealthyError(f"MinHealthy '{value}' exceeds 100%", {"field": "spec.minHealthy"})
    return percent / 100.0


def minimum_healthy(value: Optional[Union[int, str]], total: int, rounding: Optional[str] = None) -> int:
    """
    Scales minHealthy against the target set size.

    Percentages round up by default (51% of 3 nodes requires 2 healthy
    nodes), see settings.MIN_HEALTHY_ROUNDING.
    """
    parsed = parse_min_healthy(value)
    if isinstance(parsed, int):
        return parsed
    rounding = rounding or settings.MIN_HEALTHY_ROUNDING
    scaled = parsed * total
    # keep 0.29 * 100 from turning into 29.000000000000004 before ceil
    scaled = round(scaled, 9)
    return math.ceil(scaled) if rounding == "up" else math.floor(scaled)


@dataclass(frozen=True)
class QuorumResult:
    targets: int
    healthy: int
    required: int

    @property
    def open(self) -> bool:
        return self.targets == 0 or self.healthy >= self.required


def check_quorum(value: Optional[Union[int, str]], targets: int, healthy: int, rounding: Optional[str] = None) -> QuorumResult:
    result = QuorumResult(targets=targets, healthy=healthy, required=minimum_healthy(value, targets, rounding))
    if not result.open:
        logger.warning(
            f"Healthy quorum not met: {healthy}/{targets} healthy, {result.required} required. "
            f"New remediations are suppressed."
        )
    return result
