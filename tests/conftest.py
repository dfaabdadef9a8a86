from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Sequence
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from slotwise.core.database import build_engine, init_models
from slotwise.models import (
    AvailabilityWindow,
    Booking,
    DateOverride,
    EventType,
    Host,
    Schedule,
    Team,
    TeamMember,
)
from slotwise.scheduling.intervals import UTC, TimeWindow, day_bounds_utc
from slotwise.services.booking_service import AttendeeInfo, BookingService
from slotwise.services.locks import HostLockRegistry
from slotwise.services.slot_service import SlotService

NEW_YORK = "America/New_York"

# Monday 2025-03-03, 07:00 in New York (EST, the week before DST starts)
NOW = datetime(2025, 3, 3, 12, 0, tzinfo=UTC)
TUESDAY = date(2025, 3, 4)
WEDNESDAY = date(2025, 3, 5)
# First Tuesday after the spring-forward change (EDT)
TUESDAY_AFTER_DST = date(2025, 3, 11)

WEEKDAYS = (1, 2, 3, 4, 5)


def fixed_clock() -> datetime:
    return NOW


def at(day: date, wall: str, timezone: str = NEW_YORK) -> datetime:
    """UTC instant of a local wall-clock time."""
    hours, minutes = (int(part) for part in wall.split(":"))
    local = datetime(day.year, day.month, day.day, hours, minutes, tzinfo=ZoneInfo(timezone))
    return local.astimezone(UTC)


def local_times(slots, timezone: str = NEW_YORK):
    zone = ZoneInfo(timezone)
    return [s.start.astimezone(zone).strftime("%H:%M") for s in slots]


class Factory:
    """Seeds rows and commits after each helper."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def host(self, name: Optional[str] = None, timezone: str = NEW_YORK) -> Host:
        n = self._next()
        host = Host(name=name or f"Host {n}", email=f"host{n}@example.com", timezone=timezone)
        self.session.add(host)
        await self.session.commit()
        return host

    async def schedule(
        self,
        host: Host,
        timezone: str = NEW_YORK,
        days: Iterable[int] = WEEKDAYS,
        start: str = "09:00",
        end: str = "17:00",
        overrides: Sequence[dict] = (),
    ) -> Schedule:
        schedule = Schedule(host_id=host.id, name="Business Hours", timezone=timezone)
        schedule.windows = [AvailabilityWindow(day=d, start_time=start, end_time=end) for d in days]
        schedule.overrides = [DateOverride(**o) for o in overrides]
        self.session.add(schedule)
        await self.session.commit()
        return schedule

    async def event_type(
        self,
        owner: Host,
        schedule: Optional[Schedule] = None,
        team: Optional[Team] = None,
        **fields,
    ) -> EventType:
        values = dict(
            title=f"Meeting {self._next()}",
            duration=30,
            future_limit=30,
            scheduling_type="SINGLE",
        )
        values.update(fields)
        event_type = EventType(
            owner_id=owner.id,
            schedule_id=schedule.id if schedule else None,
            team_id=team.id if team else None,
            **values,
        )
        self.session.add(event_type)
        await self.session.commit()
        return event_type

    async def team(self, members: Sequence[Host], accepted: Optional[Sequence[bool]] = None) -> Team:
        n = self._next()
        team = Team(name=f"Team {n}", slug=f"team-{n}")
        self.session.add(team)
        await self.session.flush()
        # Distinct creation times fix the round-robin order
        base = NOW - timedelta(days=30)
        for index, member in enumerate(members):
            self.session.add(
                TeamMember(
                    team_id=team.id,
                    host_id=member.id,
                    accepted=accepted[index] if accepted else True,
                    created_at=base + timedelta(minutes=index),
                )
            )
        await self.session.commit()
        return team

    async def booking(
        self,
        event_type: EventType,
        host: Host,
        start: datetime,
        minutes: Optional[int] = None,
        status: str = "ACCEPTED",
        hosts: Optional[Sequence[Host]] = None,
        series_id: Optional[str] = None,
    ) -> Booking:
        booking = Booking(
            event_type_id=event_type.id,
            host_id=host.id,
            start_time=start,
            end_time=start + timedelta(minutes=minutes or event_type.duration),
            status=status,
            attendee_name="Existing",
            attendee_email=f"existing{self._next()}@example.com",
            recurring_series_id=series_id,
        )
        booking.hosts = list(hosts or [host])
        self.session.add(booking)
        await self.session.commit()
        return booking


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'slotwise-test.db'}", echo=False)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def factory(session) -> Factory:
    return Factory(session)


@pytest.fixture
def locks() -> HostLockRegistry:
    return HostLockRegistry()


@pytest.fixture
def list_slots(session_factory):
    """List slots for whole local days, each call on a fresh session."""

    async def _list(event_type, first: date, last: Optional[date] = None, timezone: str = NEW_YORK, provider=None):
        zone = ZoneInfo(timezone)
        window = TimeWindow(day_bounds_utc(first, zone).start, day_bounds_utc(last or first, zone).end)
        async with session_factory() as session:
            service = SlotService(session, provider=provider, clock=fixed_clock)
            return await service.list_slots(str(event_type.id), window, timezone)

    return _list


@pytest.fixture
def book(session_factory, locks):
    """Create a booking through the service on a fresh session."""

    async def _book(event_type, start: datetime, email: str = "guest@example.com", provider=None, **kwargs):
        async with session_factory() as session:
            service = BookingService(session, provider=provider, locks=locks, clock=fixed_clock)
            return await service.create_booking(
                str(event_type.id),
                start,
                AttendeeInfo(name="Guest", email=email, timezone=NEW_YORK),
                **kwargs,
            )

    return _book


@pytest.fixture
def booking_action(session_factory, locks):
    """Run one BookingService method on a fresh session."""

    async def _run(method: str, *args, **kwargs):
        async with session_factory() as session:
            service = BookingService(session, locks=locks, clock=fixed_clock)
            return await getattr(service, method)(*args, **kwargs)

    return _run
