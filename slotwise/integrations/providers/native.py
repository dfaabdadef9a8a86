from __future__ import annotations

from typing import List

from slotwise.scheduling.intervals import TimeWindow


class NativeBusyTimeProvider:
    """No external calendar: only bookings stored here occupy time."""

    name = "native"

    async def get_busy_times(self, host_id: str, window: TimeWindow) -> List[TimeWindow]:
        return []
