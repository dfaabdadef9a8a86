from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Sequence

from slotwise.scheduling.intervals import (
    TimeWindow,
    ensure_utc,
    intersect_all,
    subtract_all,
)

ACTIVE_STATUSES = frozenset({"PENDING", "ACCEPTED"})


@dataclass(frozen=True)
class Occupied:
    """An existing booking as seen by the occupancy filter.

    Buffers are those of the booking's own event type.
    """

    start: datetime
    end: datetime
    status: str = "ACCEPTED"
    before_buffer: int = 0
    after_buffer: int = 0


def footprint(booking: Occupied) -> TimeWindow:
    return TimeWindow(ensure_utc(booking.start), ensure_utc(booking.end)).padded(
        timedelta(minutes=booking.before_buffer),
        timedelta(minutes=booking.after_buffer),
    )


def filter_available(
    available: Iterable[TimeWindow],
    bookings: Sequence[Occupied],
    external_busy: Iterable[TimeWindow] = (),
) -> List[TimeWindow]:
    """Remove booking footprints and external busy time from ``available``.

    Only PENDING/ACCEPTED bookings may be passed in; callers load them with a
    status filter, and anything else here means a stale footprint leaked in.
    """
    busy: List[TimeWindow] = list(external_busy)
    for booking in bookings:
        if booking.status not in ACTIVE_STATUSES:
            raise ValueError(f"Booking with status {booking.status} cannot occupy time")
        busy.append(footprint(booking))
    return subtract_all(available, busy)


def combine_collective(per_member: Mapping[str, Iterable[TimeWindow]]) -> List[TimeWindow]:
    """Time when every member is free."""
    if not per_member:
        return []
    return intersect_all([list(windows) for windows in per_member.values()])


def combine_round_robin(per_member_starts: Mapping[str, Iterable[datetime]]) -> Dict[datetime, List[str]]:
    """Union of members' slot starts, annotated with who is free at each.

    Member order follows the mapping's order, which callers keep equal to
    team-membership order.
    """
    free: Dict[datetime, List[str]] = {}
    for member_id, starts in per_member_starts.items():
        for start in starts:
            free.setdefault(start, []).append(member_id)
    return dict(sorted(free.items()))
