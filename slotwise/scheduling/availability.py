from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time, timedelta
from typing import Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from slotwise.core.errors import ConfigurationError
from slotwise.scheduling.intervals import (
    TimeWindow,
    civil_dates_covering,
    intersect,
    load_zone,
    local_to_utc,
    merge_overlapping,
)

MINUTES_PER_DAY = 24 * 60


def parse_wall_time(value: str) -> int:
    """Parse ``HH:MM`` into minutes after midnight. ``24:00`` is allowed."""
    try:
        hours_str, minutes_str = value.strip().split(":")
        hours, minutes = int(hours_str), int(minutes_str)
    except (AttributeError, ValueError) as e:
        raise ConfigurationError(f"Invalid wall-clock time '{value}'; expected HH:MM") from e
    total = hours * 60 + minutes
    if not (0 <= minutes < 60) or not (0 <= total <= MINUTES_PER_DAY):
        raise ConfigurationError(f"Wall-clock time '{value}' is out of range")
    return total


def format_wall_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def weekday_index(day: date) -> int:
    """Day-of-week with 0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def _local_instant(day: date, minutes: int, zone: ZoneInfo):
    # 24:00 is the following midnight; each endpoint is converted on its own
    # civil date so DST shifts never distort the window length.
    offset_days, rest = divmod(minutes, MINUTES_PER_DAY)
    wall = time(rest // 60, rest % 60)
    return local_to_utc(day + timedelta(days=offset_days), wall, zone)


@dataclass(frozen=True)
class WeeklyWindow:
    day: int
    start_minutes: int
    end_minutes: int

    @classmethod
    def from_strings(cls, day: int, start: str, end: str) -> "WeeklyWindow":
        return cls(day=day, start_minutes=parse_wall_time(start), end_minutes=parse_wall_time(end))

    def to_utc(self, on: date, zone: ZoneInfo) -> TimeWindow:
        return TimeWindow(
            _local_instant(on, self.start_minutes, zone),
            _local_instant(on, self.end_minutes, zone),
        )


@dataclass(frozen=True)
class DateOverrideSpec:
    """Replaces the weekly windows for one civil date.

    ``is_unavailable`` blocks the whole date; otherwise the date is open only
    during ``[start_minutes, end_minutes)``.
    """

    day: date
    is_unavailable: bool = False
    start_minutes: Optional[int] = None
    end_minutes: Optional[int] = None

    @property
    def has_window(self) -> bool:
        return self.start_minutes is not None and self.end_minutes is not None


@dataclass
class ScheduleSpec:
    timezone: str
    windows: List[WeeklyWindow] = field(default_factory=list)
    overrides: Dict[date, DateOverrideSpec] = field(default_factory=dict)

    @property
    def zone(self) -> ZoneInfo:
        return load_zone(self.timezone)

    def validate(self) -> None:
        load_zone(self.timezone)

        by_day: Dict[int, List[WeeklyWindow]] = {}
        for window in self.windows:
            if not 0 <= window.day <= 6:
                raise ConfigurationError(f"Day of week {window.day} is out of range 0-6")
            _check_bounds(window.start_minutes, window.end_minutes)
            by_day.setdefault(window.day, []).append(window)

        for day, windows in by_day.items():
            ordered = sorted(windows, key=lambda w: w.start_minutes)
            for prev, nxt in zip(ordered, ordered[1:]):
                if nxt.start_minutes < prev.end_minutes:
                    raise ConfigurationError(
                        f"Availability windows overlap on day {day}: "
                        f"{format_wall_time(prev.start_minutes)}-{format_wall_time(prev.end_minutes)} and "
                        f"{format_wall_time(nxt.start_minutes)}-{format_wall_time(nxt.end_minutes)}"
                    )

        for override in self.overrides.values():
            if override.has_window and not override.is_unavailable:
                _check_bounds(override.start_minutes, override.end_minutes)

    def windows_for(self, day: date) -> List[WeeklyWindow]:
        weekday = weekday_index(day)
        return [w for w in self.windows if w.day == weekday]


def _check_bounds(start: int, end: int) -> None:
    if not (0 <= start < end <= MINUTES_PER_DAY):
        raise ConfigurationError(
            f"Window {format_wall_time(start)}-{format_wall_time(end)} must have start < end within one day"
        )


def _windows_for_date(schedule: ScheduleSpec, day: date, zone: ZoneInfo) -> Iterable[TimeWindow]:
    override = schedule.overrides.get(day)
    if override is not None:
        if override.is_unavailable:
            return []
        if override.has_window:
            return [
                TimeWindow(
                    _local_instant(day, override.start_minutes, zone),
                    _local_instant(day, override.end_minutes, zone),
                )
            ]
    return [w.to_utc(day, zone) for w in schedule.windows_for(day)]


def resolve(schedule: ScheduleSpec, window: TimeWindow) -> List[TimeWindow]:
    """Available UTC windows of ``schedule`` inside ``window``, sorted and merged."""
    zone = schedule.zone
    pieces: List[TimeWindow] = []
    for day in civil_dates_covering(window, zone):
        for candidate in _windows_for_date(schedule, day, zone):
            clipped = intersect(candidate, window)
            if clipped is not None:
                pieces.append(clipped)
    return merge_overlapping(pieces)
