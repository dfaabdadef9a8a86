"""Write path: commit, cancel and reschedule bookings.

Every commit runs inside a critical section keyed by the affected hosts
(all members for team event types). Inside it the selected instant is
re-validated against live occupancy, hosts are assigned and the booking
rows are written, all in one database transaction.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from slotwise.core.errors import (
    BookingNotFound,
    ConfigurationError,
    EventTypeNotFound,
    InvalidTransition,
    PolicyViolation,
    SlotConflict,
)
from slotwise.integrations.providers import BusyTimeProvider
from slotwise.models import Booking, EventType
from slotwise.scheduling.assignment import Assignment, SchedulingType, assign
from slotwise.scheduling.intervals import ensure_utc, utcnow
from slotwise.scheduling.recurrence import occurrences
from slotwise.scheduling.slots import SlotPolicy, check_policy
from slotwise.services.db_service import DBService
from slotwise.services.locks import HostLockRegistry, host_locks
from slotwise.services.slot_service import HostPlan, SlotService

logger = logging.getLogger(__name__)


class BookingStatus(str, enum.Enum):
    COMMITTED = "COMMITTED"
    CONFLICT = "CONFLICT"
    REJECTED_POLICY = "REJECTED_POLICY"


class CancelScope(str, enum.Enum):
    ONE = "ONE"
    SERIES_FROM_HERE = "SERIES_FROM_HERE"


# Valid status transitions
STATUS_TRANSITIONS = {
    "PENDING": {"ACCEPTED", "REJECTED", "CANCELLED", "RESCHEDULED"},
    "ACCEPTED": {"CANCELLED", "RESCHEDULED"},
    "REJECTED": set(),
    "CANCELLED": set(),
    "RESCHEDULED": set(),
}


def can_transition(current: str, requested: str) -> bool:
    return requested in STATUS_TRANSITIONS.get(current, set())


@dataclass
class AttendeeInfo:
    name: str
    email: str
    timezone: str = "UTC"
    notes: Optional[str] = None


@dataclass
class OccurrenceResult:
    start: datetime
    status: BookingStatus
    booking_id: Optional[str] = None
    host_ids: Tuple[str, ...] = ()
    reason: Optional[str] = None


@dataclass
class BookingResult:
    """Outcome of a booking request.

    - status: COMMITTED, CONFLICT or REJECTED_POLICY
    - booking_id / assigned_host_ids: first committed occurrence
    - confirmation: PENDING or ACCEPTED for committed bookings
    - occurrences: one entry per requested occurrence of a series
    """

    status: BookingStatus
    booking_id: Optional[str] = None
    assigned_host_ids: Tuple[str, ...] = ()
    confirmation: Optional[str] = None
    series_id: Optional[str] = None
    reason: Optional[str] = None
    occurrences: List[OccurrenceResult] = field(default_factory=list)

    @property
    def committed(self) -> bool:
        return self.status is BookingStatus.COMMITTED

    @property
    def assigned_host_id(self) -> Optional[str]:
        return self.assigned_host_ids[0] if self.assigned_host_ids else None

    @property
    def booking_ids(self) -> List[str]:
        return [o.booking_id for o in self.occurrences if o.booking_id]


def _conflict(reason: str, outcomes: Optional[List[OccurrenceResult]] = None) -> BookingResult:
    return BookingResult(status=BookingStatus.CONFLICT, reason=reason, occurrences=outcomes or [])


def _rejected(violation: PolicyViolation) -> BookingResult:
    return BookingResult(status=BookingStatus.REJECTED_POLICY, reason=violation.reason)


class BookingService:
    def __init__(
        self,
        session: AsyncSession,
        provider: Optional[BusyTimeProvider] = None,
        locks: Optional[HostLockRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.db = DBService(session)
        self.slots = SlotService(session, provider=provider, clock=clock)
        self.locks = locks or host_locks
        self.clock = clock

    # ==================== CREATE ====================

    async def create_booking(
        self,
        event_type_id: str,
        start: datetime,
        attendee: AttendeeInfo,
        recurring_count: Optional[int] = None,
        all_or_nothing: bool = False,
    ) -> BookingResult:
        """Reserve ``start`` (and its series) if it is still free.

        A later occurrence of a series that conflicts is skipped on its own
        unless ``all_or_nothing`` is set, in which case nothing is written.
        """
        event_type = await self.db.get_event_type(event_type_id)
        if event_type is None:
            raise EventTypeNotFound(f"Event type {event_type_id} not found or inactive")

        # Plain copy for logging; ORM attributes expire on rollback
        event_key = str(event_type.id)
        policy = SlotPolicy.from_event_type(event_type)
        start = ensure_utc(start)
        now = self.clock()

        try:
            check_policy(start, policy, now)
            starts = self._series_starts(event_type, start, recurring_count)
        except PolicyViolation as e:
            logger.info(f"Booking rejected by policy ({e.reason}) for event type {event_key} at {start.isoformat()}")
            return _rejected(e)

        plans = await self.slots.host_plans(event_type)
        async with self.locks.hold(p.host_id for p in plans):
            try:
                result = await self._commit(event_type, policy, plans, starts, attendee, now, all_or_nothing)
            except ConfigurationError:
                await self.session.rollback()
                raise
            except Exception:
                # Fail closed: an uncertain commit is reported as a conflict
                await self.session.rollback()
                logger.exception(f"Booking commit failed for event type {event_key} at {start.isoformat()}")
                return _conflict("commit_failed")

        if result.committed:
            logger.info(
                f"Booking committed: {result.booking_id} hosts={list(result.assigned_host_ids)} "
                f"start={start.isoformat()} occurrences={len(result.booking_ids)}"
            )
        else:
            logger.warning(f"Booking conflict for event type {event_key} at {start.isoformat()}: {result.reason}")
        return result

    def _series_starts(self, event_type: EventType, start: datetime, recurring_count: Optional[int]) -> List[datetime]:
        count = recurring_count or 1
        if count == 1:
            return [start]
        if not event_type.recurring_enabled or not event_type.recurring_frequency:
            raise PolicyViolation("recurring_disabled", "This event type does not allow recurring bookings")
        if event_type.recurring_max_occurrences is not None and count > event_type.recurring_max_occurrences:
            raise PolicyViolation(
                "recurring_max_occurrences",
                f"recurring count ({count}) exceeds the maximum allowed occurrences "
                f"({event_type.recurring_max_occurrences})",
            )
        zone = event_type.schedule.to_spec().zone if event_type.schedule else None
        return occurrences(start, event_type.recurring_frequency, count, zone)

    async def _commit(
        self,
        event_type: EventType,
        policy: SlotPolicy,
        plans: List[HostPlan],
        starts: List[datetime],
        attendee: AttendeeInfo,
        now: datetime,
        all_or_nothing: bool,
    ) -> BookingResult:
        await self.db.lock_hosts(p.host_id for p in plans)
        # Re-read inside the critical section; the cursor may have moved
        event_type = await self.db.get_event_type(event_type.id, refresh=True)
        if event_type is None:
            await self.session.rollback()
            return _conflict("event_type_inactive")

        member_ids = [p.host_id for p in plans]
        cursor = event_type.round_robin_cursor
        round_robin = SchedulingType(event_type.scheduling_type) is SchedulingType.ROUND_ROBIN
        confirmation = "PENDING" if event_type.requires_confirmation else "ACCEPTED"
        series_id = uuid.uuid4().hex if len(starts) > 1 else None
        # A round-robin series stays with the host picked for its first occurrence
        series_host: Optional[str] = None

        outcomes: List[OccurrenceResult] = []
        for index, occurrence_start in enumerate(starts):
            try:
                if index > 0:
                    check_policy(occurrence_start, policy, now)
                free = await self.slots.free_hosts_at(event_type, policy, plans, occurrence_start, now)
                if series_host is not None:
                    if series_host not in free:
                        raise SlotConflict("Series host is not free at the requested time")
                    assignment = Assignment(host_ids=(series_host,), cursor=cursor)
                else:
                    assignment = assign(
                        event_type.scheduling_type,
                        str(event_type.owner_id),
                        member_ids,
                        free,
                        cursor,
                    )
                    if round_robin:
                        series_host = assignment.primary_host_id
            except SlotConflict as e:
                outcomes.append(OccurrenceResult(occurrence_start, BookingStatus.CONFLICT, reason=str(e)))
            except PolicyViolation as e:
                outcomes.append(OccurrenceResult(occurrence_start, BookingStatus.REJECTED_POLICY, reason=e.reason))
            else:
                booking = await self._write_booking(
                    event_type, policy, occurrence_start, assignment, attendee, confirmation, series_id
                )
                cursor = assignment.cursor
                outcomes.append(
                    OccurrenceResult(
                        occurrence_start,
                        BookingStatus.COMMITTED,
                        booking_id=str(booking.id),
                        host_ids=assignment.host_ids,
                    )
                )
                continue

            if index == 0 or all_or_nothing:
                await self.session.rollback()
                return _conflict(outcomes[-1].reason or "slot_taken", outcomes)

        if round_robin:
            event_type.round_robin_cursor = cursor
        await self.session.commit()

        first = outcomes[0]
        return BookingResult(
            status=BookingStatus.COMMITTED,
            booking_id=first.booking_id,
            assigned_host_ids=first.host_ids,
            confirmation=confirmation,
            series_id=series_id,
            occurrences=outcomes,
        )

    async def _write_booking(
        self,
        event_type: EventType,
        policy: SlotPolicy,
        start: datetime,
        assignment: Assignment,
        attendee: AttendeeInfo,
        status: str,
        series_id: Optional[str],
        rescheduled_from_uid: Optional[str] = None,
    ) -> Booking:
        return await self.db.add_booking(
            {
                "event_type_id": event_type.id,
                "host_id": uuid.UUID(assignment.primary_host_id),
                "start_time": start,
                "end_time": start + timedelta(minutes=policy.duration),
                "status": status,
                "attendee_name": attendee.name,
                "attendee_email": attendee.email,
                "attendee_timezone": attendee.timezone,
                "attendee_notes": attendee.notes,
                "recurring_series_id": series_id,
                "rescheduled_from_uid": rescheduled_from_uid,
            },
            assignment.host_ids,
        )

    # ==================== STATUS CHANGES ====================

    async def _get_booking(self, booking_id) -> Booking:
        booking = await self.db.get_booking(booking_id)
        if booking is None:
            raise BookingNotFound(f"Booking {booking_id} not found")
        return booking

    async def cancel_booking(
        self,
        booking_id,
        scope: CancelScope = CancelScope.ONE,
        reason: Optional[str] = None,
    ) -> List[Booking]:
        """Cancel one booking, or it and every later occurrence of its series.

        Siblings that are already inactive are left alone. Freed time shows
        up on the next slot listing since occupancy is read live.
        """
        booking = await self._get_booking(booking_id)
        if not can_transition(booking.status, "CANCELLED"):
            raise InvalidTransition(booking.status, "CANCELLED")

        targets = [booking]
        if CancelScope(scope) is CancelScope.SERIES_FROM_HERE and booking.recurring_series_id:
            siblings = await self.db.get_series_bookings(booking.recurring_series_id, booking.start_time)
            targets = [b for b in siblings if b.id == booking.id or can_transition(b.status, "CANCELLED")]

        cancelled_at = utcnow()
        for target in targets:
            target.status = "CANCELLED"
            target.cancellation_reason = reason
            target.cancelled_at = cancelled_at
        await self.session.commit()

        logger.info(f"Cancelled {len(targets)} booking(s) starting from {booking.uid} (scope={CancelScope(scope).value})")
        return targets

    async def accept_booking(self, booking_id) -> Booking:
        return await self._transition(booking_id, "ACCEPTED")

    async def reject_booking(self, booking_id, reason: Optional[str] = None) -> Booking:
        return await self._transition(booking_id, "REJECTED", reason)

    async def _transition(self, booking_id, requested: str, reason: Optional[str] = None) -> Booking:
        booking = await self._get_booking(booking_id)
        if not can_transition(booking.status, requested):
            raise InvalidTransition(booking.status, requested)
        booking.status = requested
        if requested == "REJECTED":
            booking.cancellation_reason = reason
        await self.session.commit()
        logger.info(f"Booking {booking.uid} moved to {requested}")
        return booking

    # ==================== RESCHEDULE ====================

    async def reschedule_booking(
        self,
        booking_id,
        new_start: datetime,
        reason: Optional[str] = None,
    ) -> BookingResult:
        """Replace a booking with a new one at ``new_start``.

        The booking being replaced does not block its own new time. When
        possible the same host keeps the booking.
        """
        booking = await self._get_booking(booking_id)
        if not can_transition(booking.status, "RESCHEDULED"):
            raise InvalidTransition(booking.status, "RESCHEDULED")
        booking_uid = booking.uid

        event_type = await self.db.get_event_type(booking.event_type_id, active_only=False)
        if event_type is None:
            raise EventTypeNotFound(f"Event type {booking.event_type_id} not found")
        policy = SlotPolicy.from_event_type(event_type)
        new_start = ensure_utc(new_start)
        now = self.clock()
        try:
            check_policy(new_start, policy, now)
        except PolicyViolation as e:
            return _rejected(e)

        plans = await self.slots.host_plans(event_type)
        attendee = AttendeeInfo(
            name=booking.attendee_name,
            email=booking.attendee_email,
            timezone=booking.attendee_timezone,
            notes=booking.attendee_notes,
        )
        async with self.locks.hold(p.host_id for p in plans):
            try:
                await self.db.lock_hosts(p.host_id for p in plans)
                await self.session.refresh(booking)
                event_type = await self.db.get_event_type(event_type.id, active_only=False, refresh=True)
                if booking.status not in ("PENDING", "ACCEPTED"):
                    raise InvalidTransition(booking.status, "RESCHEDULED")
                free = await self.slots.free_hosts_at(
                    event_type, policy, plans, new_start, now, exclude_booking_ids=[booking.id]
                )
                previous_host = str(booking.host_id)
                if SchedulingType(event_type.scheduling_type) is SchedulingType.ROUND_ROBIN and previous_host in free:
                    assignment = Assignment(host_ids=(previous_host,), cursor=event_type.round_robin_cursor)
                else:
                    assignment = assign(
                        event_type.scheduling_type,
                        str(event_type.owner_id),
                        [p.host_id for p in plans],
                        free,
                        event_type.round_robin_cursor,
                    )
                status = "PENDING" if event_type.requires_confirmation else "ACCEPTED"
                replacement = await self._write_booking(
                    event_type,
                    policy,
                    new_start,
                    assignment,
                    attendee,
                    status,
                    booking.recurring_series_id,
                    rescheduled_from_uid=booking.uid,
                )
                booking.status = "RESCHEDULED"
                booking.cancellation_reason = reason
                if SchedulingType(event_type.scheduling_type) is SchedulingType.ROUND_ROBIN:
                    event_type.round_robin_cursor = assignment.cursor
                await self.session.commit()
            except SlotConflict as e:
                await self.session.rollback()
                logger.warning(f"Reschedule conflict for booking {booking_uid} at {new_start.isoformat()}: {e}")
                return _conflict(str(e))
            except (ConfigurationError, InvalidTransition):
                await self.session.rollback()
                raise
            except Exception:
                await self.session.rollback()
                logger.exception(f"Reschedule commit failed for booking {booking_uid}")
                return _conflict("commit_failed")

        logger.info(f"Booking {booking_uid} rescheduled to {replacement.uid} at {new_start.isoformat()}")
        return BookingResult(
            status=BookingStatus.COMMITTED,
            booking_id=str(replacement.id),
            assigned_host_ids=assignment.host_ids,
            confirmation=status,
            series_id=booking.recurring_series_id,
            occurrences=[
                OccurrenceResult(new_start, BookingStatus.COMMITTED, str(replacement.id), assignment.host_ids)
            ],
        )
