from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from slotwise.core.errors import ConfigurationError, PolicyViolation
from slotwise.scheduling.intervals import (
    TimeWindow,
    civil_date_of,
    day_bounds_utc,
    ensure_utc,
    week_bounds_utc,
)


@dataclass(frozen=True)
class SlotPolicy:
    """Slot-shaping rules of an event type, all durations in minutes."""

    duration: int
    cadence: Optional[int] = None
    before_buffer: int = 0
    after_buffer: int = 0
    minimum_notice: int = 0
    future_limit_days: int = 60
    max_bookings_per_day: Optional[int] = None
    max_bookings_per_week: Optional[int] = None

    @classmethod
    def from_event_type(cls, event_type) -> "SlotPolicy":
        policy = cls(
            duration=event_type.duration,
            cadence=event_type.slot_interval,
            before_buffer=event_type.before_buffer or 0,
            after_buffer=event_type.after_buffer or 0,
            minimum_notice=event_type.minimum_notice or 0,
            future_limit_days=event_type.future_limit,
            max_bookings_per_day=event_type.max_bookings_per_day,
            max_bookings_per_week=event_type.max_bookings_per_week,
        )
        policy.validate()
        return policy

    @property
    def step(self) -> int:
        return self.cadence or self.duration

    def validate(self) -> None:
        if self.duration is None or self.duration <= 0:
            raise ConfigurationError(f"Event duration must be positive, got {self.duration}")
        if self.cadence is not None and self.cadence <= 0:
            raise ConfigurationError(f"Slot interval must be positive, got {self.cadence}")
        if self.before_buffer < 0 or self.after_buffer < 0:
            raise ConfigurationError("Buffers cannot be negative")
        if self.minimum_notice < 0:
            raise ConfigurationError("Minimum notice cannot be negative")
        if self.future_limit_days is None or self.future_limit_days < 0:
            raise ConfigurationError("Future limit cannot be negative")
        for cap in (self.max_bookings_per_day, self.max_bookings_per_week):
            if cap is not None and cap < 1:
                raise ConfigurationError("Booking limits must be at least 1 when set")

    def earliest_start(self, now: datetime) -> datetime:
        return ensure_utc(now) + timedelta(minutes=self.minimum_notice)

    def latest_start(self, now: datetime) -> datetime:
        return ensure_utc(now) + timedelta(days=self.future_limit_days)


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime
    local_time: str
    free_host_ids: Tuple[str, ...] = field(default_factory=tuple)


def generate(
    available: Iterable[TimeWindow],
    duration: int,
    cadence: Optional[int],
    before_buffer: int,
    after_buffer: int,
    min_notice: int,
    horizon_days: int,
    now: datetime,
) -> List[datetime]:
    """Discretise available windows into candidate start instants.

    A start is emitted when its padded footprint
    ``[start - before_buffer, start + duration + after_buffer)`` fits inside
    the containing window; a footprint ending exactly on the window end fits.
    """
    step = timedelta(minutes=cadence or duration)
    length = timedelta(minutes=duration)
    before = timedelta(minutes=before_buffer)
    after = timedelta(minutes=after_buffer)
    now = ensure_utc(now)
    earliest = now + timedelta(minutes=min_notice)
    latest = now + timedelta(days=horizon_days)

    starts = set()
    for window in available:
        start = window.start + before
        if start < earliest:
            # Jump forward while staying on the window's cadence grid
            skipped = -(-(earliest - start) // step)
            start += step * skipped
        while start + length + after <= window.end and start <= latest:
            starts.add(start)
            start += step
    return sorted(starts)


def generate_for_policy(
    available: Iterable[TimeWindow], policy: SlotPolicy, now: datetime
) -> List[datetime]:
    return generate(
        available,
        duration=policy.duration,
        cadence=policy.cadence,
        before_buffer=policy.before_buffer,
        after_buffer=policy.after_buffer,
        min_notice=policy.minimum_notice,
        horizon_days=policy.future_limit_days,
        now=now,
    )


def check_policy(start: datetime, policy: SlotPolicy, now: datetime) -> None:
    """Raise ``PolicyViolation`` if ``start`` breaks notice or horizon limits."""
    start = ensure_utc(start)
    if start < policy.earliest_start(now):
        raise PolicyViolation(
            "minimum_notice",
            f"Bookings need at least {policy.minimum_notice} minutes notice",
        )
    if start > policy.latest_start(now):
        raise PolicyViolation(
            "future_limit",
            f"Bookings can be made at most {policy.future_limit_days} days ahead",
        )


def apply_booking_limits(
    starts: Sequence[datetime],
    policy: SlotPolicy,
    zone: ZoneInfo,
    booked: Sequence[TimeWindow],
) -> List[datetime]:
    """Drop starts on days/weeks that already hold their cap of bookings.

    Days are civil dates in ``zone``; weeks run Monday to Sunday.
    """
    if policy.max_bookings_per_day is None and policy.max_bookings_per_week is None:
        return list(starts)

    day_counts: Counter = Counter()
    week_counts: Counter = Counter()
    kept: List[datetime] = []
    for start in starts:
        day = civil_date_of(start, zone)
        if policy.max_bookings_per_day is not None:
            if day not in day_counts:
                bounds = day_bounds_utc(day, zone)
                day_counts[day] = sum(1 for b in booked if b.overlaps(bounds))
            if day_counts[day] >= policy.max_bookings_per_day:
                continue
        if policy.max_bookings_per_week is not None:
            week = week_bounds_utc(day, zone)
            if week.start not in week_counts:
                week_counts[week.start] = sum(1 for b in booked if b.overlaps(week))
            if week_counts[week.start] >= policy.max_bookings_per_week:
                continue
        kept.append(start)
    return kept


def to_slots(
    starts: Iterable[datetime],
    duration: int,
    attendee_zone: ZoneInfo,
    free_hosts: Optional[dict] = None,
) -> List[Slot]:
    length = timedelta(minutes=duration)
    slots = []
    for start in starts:
        slots.append(
            Slot(
                start=start,
                end=start + length,
                local_time=start.astimezone(attendee_zone).strftime("%H:%M"),
                free_host_ids=tuple(free_hosts.get(start, ())) if free_hosts else (),
            )
        )
    return slots
