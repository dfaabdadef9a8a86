from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from slotwise.core.errors import PolicyViolation
from slotwise.scheduling.intervals import UTC, ensure_utc

FREQUENCIES = ("weekly", "biweekly", "monthly")


def occurrences(
    first: datetime, frequency: str, count: int, zone: Optional[ZoneInfo] = None
) -> List[datetime]:
    """UTC start instants of a recurring series; the first is ``first`` itself.

    Steps are taken on the wall clock of ``zone`` (UTC when omitted) so a
    09:00 meeting stays at 09:00 local across DST changes. Monthly steps are
    calendar months from the first occurrence, clamped to the month's end.
    """
    if frequency not in FREQUENCIES:
        raise PolicyViolation("recurring_frequency", f"Unsupported recurring frequency '{frequency}'")
    if count < 1:
        raise PolicyViolation("recurring_count", "A series needs at least one occurrence")

    local_first = ensure_utc(first).astimezone(zone or UTC).replace(tzinfo=None)
    starts = []
    for i in range(count):
        if frequency == "weekly":
            wall = local_first + timedelta(days=7 * i)
        elif frequency == "biweekly":
            wall = local_first + timedelta(days=14 * i)
        else:
            wall = local_first + relativedelta(months=i)
        starts.append(wall.replace(tzinfo=zone or UTC).astimezone(UTC))
    return starts
