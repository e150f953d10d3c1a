# nodehealth/core/clock.py
from datetime import datetime, timezone


class Clock:
    """Source of the current time for duration and timeout checks."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(microsecond=0)


system_clock = Clock()
