from __future__ import annotations

from typing import List, Protocol

from slotwise.scheduling.intervals import TimeWindow


class BusyTimeProvider(Protocol):
    """External calendar that can report when a host is busy.

    Sync protocols live outside the core; the engine only subtracts the
    returned windows like any other occupancy.
    """

    name: str

    async def get_busy_times(self, host_id: str, window: TimeWindow) -> List[TimeWindow]:
        ...
