from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from slotwise.core.errors import ScheduleInUse
from slotwise.models import Booking, EventType, Host, Schedule, TeamMember, booking_hosts
from slotwise.scheduling.intervals import TimeWindow, ensure_utc
from slotwise.scheduling.occupancy import ACTIVE_STATUSES, Occupied
from typing import Dict, Iterable, List, Optional
from datetime import datetime, timedelta
import uuid

# Bookings are fetched this far beyond a window so their padded footprints
# are still seen
FOOTPRINT_MARGIN = timedelta(days=1)


def _as_uuid(value) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class DBService:
    """
    Service for database operations

    Writes only flush; the caller owns the transaction and decides when to
    commit or roll back.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== HOSTS ====================

    async def get_host(self, host_id) -> Optional[Host]:
        """Get host by ID"""
        h_uuid = _as_uuid(host_id)
        if h_uuid is None:
            return None
        result = await self.session.execute(select(Host).where(Host.id == h_uuid))
        return result.scalar_one_or_none()

    async def lock_hosts(self, host_ids: Iterable[str]) -> None:
        """Row-lock hosts for the rest of the transaction (no-op on SQLite)."""
        ids = sorted(u for u in (_as_uuid(h) for h in host_ids) if u is not None)
        if not ids:
            return
        await self.session.execute(
            select(Host.id).where(Host.id.in_(ids)).order_by(Host.id).with_for_update()
        )

    # ==================== SCHEDULES ====================

    async def get_schedule(self, schedule_id) -> Optional[Schedule]:
        s_uuid = _as_uuid(schedule_id)
        if s_uuid is None:
            return None
        result = await self.session.execute(
            select(Schedule)
            .where(Schedule.id == s_uuid)
            .options(selectinload(Schedule.windows), selectinload(Schedule.overrides))
        )
        return result.scalar_one_or_none()

    async def delete_schedule(self, schedule_id) -> bool:
        """Delete a schedule unless an event type still points at it."""
        schedule = await self.get_schedule(schedule_id)
        if not schedule:
            return False
        result = await self.session.execute(
            select(EventType.id).where(EventType.schedule_id == schedule.id).limit(1)
        )
        if result.first() is not None:
            raise ScheduleInUse(f"Schedule {schedule.id} is used by an event type")
        await self.session.delete(schedule)
        await self.session.flush()
        return True

    async def get_personal_schedule(self, host_id) -> Optional[Schedule]:
        """Schedule of the host's earliest active personal event type."""
        h_uuid = _as_uuid(host_id)
        if h_uuid is None:
            return None
        result = await self.session.execute(
            select(Schedule)
            .join(EventType, EventType.schedule_id == Schedule.id)
            .where(
                EventType.owner_id == h_uuid,
                EventType.is_active.is_(True),
                EventType.team_id.is_(None),
            )
            .order_by(EventType.created_at.asc())
            .limit(1)
            .options(selectinload(Schedule.windows), selectinload(Schedule.overrides))
        )
        return result.scalars().first()

    # ==================== EVENT TYPES ====================

    async def get_event_type(
        self,
        event_type_id,
        active_only: bool = True,
        refresh: bool = False,
    ) -> Optional[EventType]:
        """Get event type with its schedule loaded.

        ``refresh`` re-reads the row even if it is already in the session,
        which the commit path needs for the round-robin cursor.
        """
        et_uuid = _as_uuid(event_type_id)
        if et_uuid is None:
            return None
        query = (
            select(EventType)
            .where(EventType.id == et_uuid)
            .options(
                selectinload(EventType.schedule).selectinload(Schedule.windows),
                selectinload(EventType.schedule).selectinload(Schedule.overrides),
            )
        )
        if active_only:
            query = query.where(EventType.is_active.is_(True))
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_team_member_ids(self, team_id) -> List[str]:
        """Accepted members in membership creation order."""
        t_uuid = _as_uuid(team_id)
        if t_uuid is None:
            return []
        result = await self.session.execute(
            select(TeamMember.host_id)
            .where(TeamMember.team_id == t_uuid, TeamMember.accepted.is_(True))
            .order_by(TeamMember.created_at.asc(), TeamMember.id.asc())
        )
        return [str(host_id) for host_id in result.scalars().all()]

    # ==================== BOOKINGS ====================

    async def get_active_occupancy(
        self,
        host_ids: Iterable[str],
        window: TimeWindow,
        exclude_booking_ids: Iterable = (),
    ) -> Dict[str, List[Occupied]]:
        """PENDING/ACCEPTED bookings per host that may touch ``window``.

        Inactive bookings never leave the database, so no stale footprint can
        reach the occupancy filter.
        """
        ids = [u for u in (_as_uuid(h) for h in host_ids) if u is not None]
        occupancy: Dict[str, List[Occupied]] = {str(h): [] for h in ids}
        if not ids:
            return occupancy

        query = (
            select(
                booking_hosts.c.host_id,
                Booking.start_time,
                Booking.end_time,
                Booking.status,
                EventType.before_buffer,
                EventType.after_buffer,
            )
            .select_from(Booking)
            .join(booking_hosts, booking_hosts.c.booking_id == Booking.id)
            .join(EventType, EventType.id == Booking.event_type_id)
            .where(
                booking_hosts.c.host_id.in_(ids),
                Booking.status.in_(sorted(ACTIVE_STATUSES)),
                Booking.start_time < window.end + FOOTPRINT_MARGIN,
                Booking.end_time > window.start - FOOTPRINT_MARGIN,
            )
        )
        excluded = [u for u in (_as_uuid(b) for b in exclude_booking_ids) if u is not None]
        if excluded:
            query = query.where(Booking.id.not_in(excluded))

        result = await self.session.execute(query)
        for host_id, start, end, status, before, after in result.all():
            occupancy[str(host_id)].append(
                Occupied(
                    start=ensure_utc(start),
                    end=ensure_utc(end),
                    status=status,
                    before_buffer=before or 0,
                    after_buffer=after or 0,
                )
            )
        return occupancy

    async def get_event_type_booked_windows(
        self,
        event_type_id,
        window: TimeWindow,
        exclude_booking_ids: Iterable = (),
    ) -> List[TimeWindow]:
        """Active bookings of one event type around ``window`` (for booking caps)."""
        et_uuid = _as_uuid(event_type_id)
        query = select(Booking.start_time, Booking.end_time).where(
            Booking.event_type_id == et_uuid,
            Booking.status.in_(sorted(ACTIVE_STATUSES)),
            Booking.start_time < window.end + timedelta(days=7),
            Booking.end_time > window.start - timedelta(days=7),
        )
        excluded = [u for u in (_as_uuid(b) for b in exclude_booking_ids) if u is not None]
        if excluded:
            query = query.where(Booking.id.not_in(excluded))
        result = await self.session.execute(query)
        return [TimeWindow(ensure_utc(s), ensure_utc(e)) for s, e in result.all()]

    async def add_booking(self, data: dict, host_ids: Iterable[str]) -> Booking:
        """Stage a new booking occupying ``host_ids``."""
        hosts = []
        for host_id in host_ids:
            host = await self.get_host(host_id)
            if host is not None:
                hosts.append(host)
        booking = Booking(**data)
        booking.hosts = hosts
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_booking(self, booking_id) -> Optional[Booking]:
        """Get booking by ID or public uid"""
        b_uuid = _as_uuid(booking_id)
        if b_uuid is not None:
            condition = Booking.id == b_uuid
        else:
            condition = Booking.uid == str(booking_id)
        result = await self.session.execute(
            select(Booking).where(condition).options(selectinload(Booking.hosts))
        )
        booking = result.scalar_one_or_none()
        if booking is None and b_uuid is not None:
            # uids are uuid hex strings, which also parse as UUIDs
            result = await self.session.execute(
                select(Booking).where(Booking.uid == str(booking_id)).options(selectinload(Booking.hosts))
            )
            booking = result.scalar_one_or_none()
        return booking

    async def get_series_bookings(
        self,
        series_id: str,
        starting_from: Optional[datetime] = None,
    ) -> List[Booking]:
        """Bookings of a recurring series, optionally from a start instant on."""
        query = select(Booking).where(Booking.recurring_series_id == series_id)
        if starting_from is not None:
            query = query.where(Booking.start_time >= starting_from)
        result = await self.session.execute(query.order_by(Booking.start_time.asc()))
        return list(result.scalars().all())
