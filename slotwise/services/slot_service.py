"""Read path: turn an event type's configuration and live occupancy into slots.

Listing is side-effect free and takes no locks. The booking transaction
reuses ``free_hosts_at`` to re-run the same pipeline for a single instant
inside its serialized section.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from slotwise.core.config import BUSY_TIME_PROVIDER, SLOT_READ_RETRIES
from slotwise.core.errors import ConfigurationError, EventTypeNotFound
from slotwise.integrations.providers import BusyTimeProvider, resolve_provider
from slotwise.models import EventType
from slotwise.scheduling.assignment import SchedulingType
from slotwise.scheduling.availability import ScheduleSpec, resolve
from slotwise.scheduling.intervals import (
    TimeWindow,
    civil_date_of,
    day_bounds_utc,
    ensure_utc,
    intersect,
    load_zone,
    utcnow,
)
from slotwise.scheduling.occupancy import (
    combine_collective,
    combine_round_robin,
    filter_available,
)
from slotwise.scheduling.slots import (
    Slot,
    SlotPolicy,
    apply_booking_limits,
    generate_for_policy,
    to_slots,
)
from slotwise.services.db_service import DBService

logger = logging.getLogger(__name__)


@dataclass
class HostPlan:
    """One host taking part in an event type, with the schedule to use."""

    host_id: str
    schedule: ScheduleSpec


def day_aligned(window: TimeWindow, zone) -> TimeWindow:
    """Widen ``window`` to local midnights one day beyond each end.

    Availability is resolved over whole civil days so the cadence grid of a
    window never depends on where a caller's range happened to start.
    """
    first = civil_date_of(window.start, zone) - timedelta(days=1)
    last = civil_date_of(window.end, zone) + timedelta(days=1)
    return TimeWindow(day_bounds_utc(first, zone).start, day_bounds_utc(last, zone).end)


class SlotService:
    def __init__(
        self,
        session: AsyncSession,
        provider: Optional[BusyTimeProvider] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.db = DBService(session)
        self.provider = provider or resolve_provider(BUSY_TIME_PROVIDER)
        self.clock = clock

    async def list_slots(
        self,
        event_type_id: str,
        window: TimeWindow,
        attendee_timezone: str,
    ) -> List[Slot]:
        """Bookable slots of an event type whose start lies in ``window``."""
        attendee_zone = load_zone(attendee_timezone)
        attempt = 0
        while True:
            try:
                return await self._list_slots(event_type_id, window, attendee_zone)
            except DBAPIError as e:
                attempt += 1
                await self.session.rollback()
                if attempt > SLOT_READ_RETRIES:
                    raise
                logger.warning(f"Slot read failed (attempt {attempt}), retrying: {e}")

    async def _list_slots(self, event_type_id: str, window: TimeWindow, attendee_zone) -> List[Slot]:
        event_type = await self.db.get_event_type(event_type_id)
        if event_type is None:
            raise EventTypeNotFound(f"Event type {event_type_id} not found or inactive")

        policy = SlotPolicy.from_event_type(event_type)
        now = self.clock()
        # Nothing outside [now, horizon] can be offered anyway
        bookable = intersect(
            window,
            TimeWindow(now, policy.latest_start(now) + timedelta(microseconds=1)),
        )
        if bookable is None:
            return []

        plans = await self.host_plans(event_type)
        free = await self.compute_starts(event_type, policy, plans, bookable, now, strict=False)
        return to_slots(free.keys(), policy.duration, attendee_zone, free_hosts=free)

    async def host_plans(self, event_type: EventType) -> List[HostPlan]:
        """Hosts relevant to ``event_type`` in round-robin order."""
        owner_id = str(event_type.owner_id)
        if SchedulingType(event_type.scheduling_type) is SchedulingType.SINGLE:
            if event_type.schedule is None:
                raise ConfigurationError(f"Event type {event_type.id} has no schedule")
            return [HostPlan(owner_id, event_type.schedule.to_spec())]

        if event_type.team_id is None:
            raise ConfigurationError(f"Team event type {event_type.id} has no team")
        member_ids = await self.db.get_team_member_ids(event_type.team_id)
        plans = []
        for member_id in member_ids:
            schedule = None
            if member_id != owner_id:
                schedule = await self.db.get_personal_schedule(member_id)
            # The creator, and members without a personal schedule, use the
            # team event type's schedule
            schedule = schedule or event_type.schedule
            if schedule is None:
                raise ConfigurationError(f"No schedule available for team member {member_id}")
            plans.append(HostPlan(member_id, schedule.to_spec()))
        return plans

    async def free_windows(
        self,
        plans: List[HostPlan],
        window: TimeWindow,
        *,
        exclude_booking_ids: Iterable = (),
        strict: bool = True,
    ) -> Dict[str, List[TimeWindow]]:
        """Availability minus occupancy per host, over ``window``."""
        occupancy = await self.db.get_active_occupancy(
            [p.host_id for p in plans], window, exclude_booking_ids
        )
        free: Dict[str, List[TimeWindow]] = {}
        for plan in plans:
            plan.schedule.validate()
            available = resolve(plan.schedule, window)
            busy = await self._external_busy(plan.host_id, window, strict)
            free[plan.host_id] = filter_available(available, occupancy.get(plan.host_id, []), busy)
        return free

    async def _external_busy(self, host_id: str, window: TimeWindow, strict: bool) -> List[TimeWindow]:
        try:
            return await self.provider.get_busy_times(host_id, window)
        except Exception as e:
            # At commit time an unknown calendar state must not be read as free
            if strict:
                raise
            logger.warning(f"Busy-time provider '{self.provider.name}' failed for host {host_id}: {e}")
            return []

    async def compute_starts(
        self,
        event_type: EventType,
        policy: SlotPolicy,
        plans: List[HostPlan],
        window: TimeWindow,
        now: datetime,
        *,
        exclude_booking_ids: Iterable = (),
        strict: bool = True,
    ) -> Dict[datetime, List[str]]:
        """Slot starts inside ``window`` mapped to the hosts free at each."""
        if not plans:
            return {}
        exclude_booking_ids = list(exclude_booking_ids)
        zone = plans[0].schedule.zone
        expanded = day_aligned(window, zone)
        free = await self.free_windows(
            plans, expanded, exclude_booking_ids=exclude_booking_ids, strict=strict
        )

        scheduling_type = SchedulingType(event_type.scheduling_type)
        if scheduling_type is SchedulingType.ROUND_ROBIN:
            per_member = {host_id: generate_for_policy(windows, policy, now) for host_id, windows in free.items()}
            starts = combine_round_robin(per_member)
        else:
            if scheduling_type is SchedulingType.COLLECTIVE:
                available = combine_collective(free)
            else:
                available = free[plans[0].host_id]
            host_ids = [p.host_id for p in plans]
            starts = {start: list(host_ids) for start in generate_for_policy(available, policy, now)}

        in_range = [s for s in starts if window.start <= s < window.end]
        if policy.max_bookings_per_day is not None or policy.max_bookings_per_week is not None:
            booked = await self.db.get_event_type_booked_windows(
                event_type.id, expanded, exclude_booking_ids
            )
            in_range = apply_booking_limits(in_range, policy, zone, booked)
        return {s: starts[s] for s in in_range}

    async def free_hosts_at(
        self,
        event_type: EventType,
        policy: SlotPolicy,
        plans: List[HostPlan],
        start: datetime,
        now: datetime,
        *,
        exclude_booking_ids: Iterable = (),
    ) -> List[str]:
        """Hosts for whom ``start`` is a valid slot right now (strict reads)."""
        start = ensure_utc(start)
        narrow = TimeWindow(start, start + timedelta(minutes=policy.duration))
        starts = await self.compute_starts(
            event_type,
            policy,
            plans,
            narrow,
            now,
            exclude_booking_ids=exclude_booking_ids,
            strict=True,
        )
        return starts.get(start, [])
