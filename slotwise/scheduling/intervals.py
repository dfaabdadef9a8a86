"""Half-open time windows and the set operations the engine is built on.

Every window is ``[start, end)`` on timezone-aware UTC datetimes. Local
wall-clock reasoning (weekday, civil date, midnight) only happens in the
zone helpers at the bottom of this module.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Iterator, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from slotwise.core.errors import ConfigurationError

UTC = timezone.utc


@dataclass(frozen=True, order=True)
class TimeWindow:
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("TimeWindow bounds must be timezone-aware")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start

    def contains(self, other: "TimeWindow") -> bool:
        return self.start <= other.start and other.end <= self.end

    def overlaps(self, other: "TimeWindow") -> bool:
        return self.start < other.end and other.start < self.end

    def padded(self, before: timedelta, after: timedelta) -> "TimeWindow":
        return TimeWindow(self.start - before, self.end + after)


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Normalise a datetime to aware UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ──────────────────────────────────────────────────────────────────────────────
# Set operations
# ──────────────────────────────────────────────────────────────────────────────


def intersect(a: TimeWindow, b: TimeWindow) -> Optional[TimeWindow]:
    start = max(a.start, b.start)
    end = min(a.end, b.end)
    if start >= end:
        return None
    return TimeWindow(start, end)


def merge_overlapping(windows: Iterable[TimeWindow]) -> List[TimeWindow]:
    """Sort and coalesce overlapping or touching windows."""
    merged: List[TimeWindow] = []
    for window in sorted(w for w in windows if not w.is_empty):
        if merged and window.start <= merged[-1].end:
            last = merged[-1]
            if window.end > last.end:
                merged[-1] = TimeWindow(last.start, window.end)
            continue
        merged.append(window)
    return merged


def subtract(a: TimeWindow, busy: Sequence[TimeWindow]) -> List[TimeWindow]:
    """Return the pieces of ``a`` not covered by ``busy``.

    ``busy`` must already be sorted and merged (see ``merge_overlapping``).
    """
    remaining: List[TimeWindow] = []
    cursor = a.start
    for block in busy:
        if block.end <= cursor:
            continue
        if block.start >= a.end:
            break
        if block.start > cursor:
            remaining.append(TimeWindow(cursor, block.start))
        cursor = max(cursor, block.end)
        if cursor >= a.end:
            break
    if cursor < a.end:
        remaining.append(TimeWindow(cursor, a.end))
    return remaining


def subtract_all(windows: Iterable[TimeWindow], busy: Iterable[TimeWindow]) -> List[TimeWindow]:
    merged_busy = merge_overlapping(busy)
    result: List[TimeWindow] = []
    for window in merge_overlapping(windows):
        result.extend(subtract(window, merged_busy))
    return result


def _intersect_sorted(left: List[TimeWindow], right: List[TimeWindow]) -> List[TimeWindow]:
    out: List[TimeWindow] = []
    i = j = 0
    while i < len(left) and j < len(right):
        overlap = intersect(left[i], right[j])
        if overlap is not None:
            out.append(overlap)
        if left[i].end < right[j].end:
            i += 1
        else:
            j += 1
    return out


def intersect_all(window_sets: Sequence[Iterable[TimeWindow]]) -> List[TimeWindow]:
    """Time covered by every one of the given window sets."""
    if not window_sets:
        return []
    result = merge_overlapping(window_sets[0])
    for windows in window_sets[1:]:
        result = _intersect_sorted(result, merge_overlapping(windows))
        if not result:
            break
    return result


# ──────────────────────────────────────────────────────────────────────────────
# Zone helpers
# ──────────────────────────────────────────────────────────────────────────────


def load_zone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name; unknown names are configuration errors."""
    if not name:
        raise ConfigurationError("Timezone identifier is empty")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown timezone '{name}'") from e


def local_to_utc(day: date, wall_time: time, zone: ZoneInfo) -> datetime:
    # Times inside a spring-forward gap land after the gap (fold=0), ambiguous
    # fall-back times take the first occurrence.
    return datetime.combine(day, wall_time, tzinfo=zone).astimezone(UTC)


def civil_date_of(instant: datetime, zone: ZoneInfo) -> date:
    return ensure_utc(instant).astimezone(zone).date()


def day_bounds_utc(day: date, zone: ZoneInfo) -> TimeWindow:
    """Local midnight to the next local midnight, 23 or 25 hours across DST."""
    return TimeWindow(
        local_to_utc(day, time.min, zone),
        local_to_utc(day + timedelta(days=1), time.min, zone),
    )


def civil_dates_covering(window: TimeWindow, zone: ZoneInfo) -> Iterator[date]:
    """Yield every civil date in ``zone`` that intersects ``window``."""
    if window.is_empty:
        return
    day = civil_date_of(window.start, zone)
    last = civil_date_of(window.end - timedelta(microseconds=1), zone)
    while day <= last:
        yield day
        day += timedelta(days=1)


def week_bounds_utc(day: date, zone: ZoneInfo) -> TimeWindow:
    """Monday-to-Monday week containing ``day`` in ``zone``."""
    monday = day - timedelta(days=day.weekday())
    return TimeWindow(
        local_to_utc(monday, time.min, zone),
        local_to_utc(monday + timedelta(days=7), time.min, zone),
    )
