import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from slotwise.core.errors import BookingNotFound, InvalidTransition, ScheduleInUse
from slotwise.models import Booking, EventType
from slotwise.services.booking_service import BookingStatus, CancelScope
from slotwise.services.db_service import DBService

from conftest import TUESDAY, TUESDAY_AFTER_DST, WEDNESDAY, at, local_times


class BrokenProvider:
    name = "broken"

    async def get_busy_times(self, host_id, window):
        raise RuntimeError("calendar unreachable")


@pytest.fixture
async def single(factory):
    host = await factory.host("Ada")
    schedule = await factory.schedule(host)
    event_type = await factory.event_type(host, schedule)
    return host, schedule, event_type


@pytest.fixture
async def recurring(factory):
    host = await factory.host("Grace")
    schedule = await factory.schedule(host)
    event_type = await factory.event_type(
        host,
        schedule,
        future_limit=60,
        recurring_enabled=True,
        recurring_frequency="weekly",
        recurring_max_occurrences=4,
    )
    return host, event_type


async def count_bookings(session_factory, **filters) -> int:
    async with session_factory() as session:
        query = select(func.count()).select_from(Booking)
        for name, value in filters.items():
            query = query.where(getattr(Booking, name) == value)
        return (await session.execute(query)).scalar_one()


async def test_commit_returns_booking_and_host(single, book):
    host, _, event_type = single
    result = await book(event_type, at(TUESDAY, "09:00"))
    assert result.status is BookingStatus.COMMITTED
    assert result.booking_id is not None
    assert result.assigned_host_id == str(host.id)
    assert result.confirmation == "ACCEPTED"


async def test_requires_confirmation_commits_as_pending(factory, book):
    host = await factory.host()
    schedule = await factory.schedule(host)
    event_type = await factory.event_type(host, schedule, requires_confirmation=True)
    result = await book(event_type, at(TUESDAY, "09:00"))
    assert result.committed
    assert result.confirmation == "PENDING"


async def test_concurrent_requests_for_same_slot_commit_once(single, book, session_factory):
    _, _, event_type = single
    first, second = await asyncio.gather(
        book(event_type, at(TUESDAY, "09:00"), email="one@example.com"),
        book(event_type, at(TUESDAY, "09:00"), email="two@example.com"),
    )
    statuses = sorted([first.status.value, second.status.value])
    assert statuses == ["COMMITTED", "CONFLICT"]
    assert await count_bookings(session_factory) == 1


async def test_concurrent_overlapping_requests_commit_once(factory, book):
    host = await factory.host()
    schedule = await factory.schedule(host)
    event_type = await factory.event_type(host, schedule, duration=60, slot_interval=30)
    results = await asyncio.gather(
        book(event_type, at(TUESDAY, "09:00")),
        book(event_type, at(TUESDAY, "09:30")),
    )
    assert sorted(r.status.value for r in results) == ["COMMITTED", "CONFLICT"]


async def test_start_off_the_slot_grid_conflicts(single, book):
    _, _, event_type = single
    result = await book(event_type, at(TUESDAY, "09:10"))
    assert result.status is BookingStatus.CONFLICT


async def test_start_outside_availability_conflicts(single, book):
    _, _, event_type = single
    result = await book(event_type, at(TUESDAY, "18:00"))
    assert result.status is BookingStatus.CONFLICT


async def test_policy_violations_are_reported_separately(factory, book):
    host = await factory.host()
    schedule = await factory.schedule(host)
    event_type = await factory.event_type(host, schedule, minimum_notice=26 * 60, future_limit=10)

    too_soon = await book(event_type, at(TUESDAY - timedelta(days=1), "09:00"))
    assert too_soon.status is BookingStatus.REJECTED_POLICY
    assert too_soon.reason == "minimum_notice"

    too_far = await book(event_type, at(TUESDAY + timedelta(days=14), "09:00"))
    assert too_far.status is BookingStatus.REJECTED_POLICY
    assert too_far.reason == "future_limit"


async def test_cancel_frees_the_exact_footprint(single, book, booking_action, list_slots):
    _, _, event_type = single
    result = await book(event_type, at(TUESDAY, "10:00"))
    assert "10:00" not in local_times(await list_slots(event_type, TUESDAY))

    cancelled = await booking_action("cancel_booking", result.booking_id, CancelScope.ONE, "sick")
    assert [b.status for b in cancelled] == ["CANCELLED"]
    assert cancelled[0].cancellation_reason == "sick"
    assert cancelled[0].cancelled_at is not None

    slots = await list_slots(event_type, TUESDAY)
    assert len(slots) == 16
    assert (await book(event_type, at(TUESDAY, "10:00"))).committed


async def test_cancel_twice_is_an_invalid_transition(single, book, booking_action):
    _, _, event_type = single
    result = await book(event_type, at(TUESDAY, "10:00"))
    await booking_action("cancel_booking", result.booking_id)
    with pytest.raises(InvalidTransition):
        await booking_action("cancel_booking", result.booking_id)


async def test_unknown_booking(booking_action):
    with pytest.raises(BookingNotFound):
        await booking_action("cancel_booking", "does-not-exist")


async def test_recurring_series_is_stored_as_sibling_rows(recurring, book, session_factory):
    _, event_type = recurring
    result = await book(event_type, at(TUESDAY, "09:00"), recurring_count=3)
    assert result.committed
    assert result.series_id is not None
    assert len(result.booking_ids) == 3
    starts = [o.start for o in result.occurrences]
    # Weekly steps keep 09:00 local through the DST change
    assert starts[1] == at(TUESDAY_AFTER_DST, "09:00")
    assert await count_bookings(session_factory, recurring_series_id=result.series_id) == 3


async def test_recurring_conflict_skips_only_that_occurrence(recurring, factory, book, session_factory):
    host, event_type = recurring
    await factory.booking(event_type, host, at(TUESDAY_AFTER_DST, "09:00"))

    result = await book(event_type, at(TUESDAY, "09:00"), recurring_count=3)
    assert result.committed
    assert [o.status for o in result.occurrences] == [
        BookingStatus.COMMITTED,
        BookingStatus.CONFLICT,
        BookingStatus.COMMITTED,
    ]
    assert await count_bookings(session_factory, recurring_series_id=result.series_id) == 2


async def test_recurring_all_or_nothing_rolls_back(recurring, factory, book, session_factory):
    host, event_type = recurring
    await factory.booking(event_type, host, at(TUESDAY_AFTER_DST, "09:00"))

    result = await book(event_type, at(TUESDAY, "09:00"), recurring_count=3, all_or_nothing=True)
    assert result.status is BookingStatus.CONFLICT
    assert await count_bookings(session_factory) == 1


async def test_recurring_limits(recurring, single, book):
    _, event_type = recurring
    too_many = await book(event_type, at(TUESDAY, "09:00"), recurring_count=5)
    assert too_many.status is BookingStatus.REJECTED_POLICY
    assert too_many.reason == "recurring_max_occurrences"

    _, _, plain = single
    disabled = await book(plain, at(TUESDAY, "09:00"), recurring_count=2)
    assert disabled.status is BookingStatus.REJECTED_POLICY
    assert disabled.reason == "recurring_disabled"


async def test_cancel_series_from_here(recurring, book, booking_action, session_factory):
    _, event_type = recurring
    result = await book(event_type, at(TUESDAY, "09:00"), recurring_count=4)
    second = result.occurrences[1].booking_id

    cancelled = await booking_action("cancel_booking", second, CancelScope.SERIES_FROM_HERE)
    assert len(cancelled) == 3
    assert await count_bookings(session_factory, recurring_series_id=result.series_id, status="CANCELLED") == 3
    assert await count_bookings(session_factory, recurring_series_id=result.series_id, status="ACCEPTED") == 1


async def test_round_robin_cycles_through_members(factory, book, session_factory):
    members = [await factory.host(f"Member {i}") for i in range(3)]
    schedule = await factory.schedule(members[0])
    team = await factory.team(members)
    event_type = await factory.event_type(members[0], schedule, team=team, scheduling_type="ROUND_ROBIN")

    assigned = []
    for wall in ("09:00", "09:30", "10:00", "10:30", "11:00", "11:30"):
        result = await book(event_type, at(TUESDAY, wall))
        assert result.committed
        assigned.append(result.assigned_host_id)

    order = [str(m.id) for m in members]
    assert assigned == order + order

    async with session_factory() as session:
        stored = await session.get(EventType, event_type.id)
        assert stored.round_robin_cursor == 2


async def test_round_robin_skips_busy_member(factory, book):
    members = [await factory.host(f"Member {i}") for i in range(2)]
    schedule = await factory.schedule(members[0])
    team = await factory.team(members)
    event_type = await factory.event_type(members[0], schedule, team=team, scheduling_type="ROUND_ROBIN")
    other = await factory.event_type(members[0], schedule, title="Personal")
    await factory.booking(other, members[0], at(TUESDAY, "09:00"))

    result = await book(event_type, at(TUESDAY, "09:00"))
    assert result.assigned_host_id == str(members[1].id)


async def test_round_robin_concurrent_bookings_use_different_members(factory, book):
    members = [await factory.host(f"Member {i}") for i in range(2)]
    schedule = await factory.schedule(members[0])
    team = await factory.team(members)
    event_type = await factory.event_type(members[0], schedule, team=team, scheduling_type="ROUND_ROBIN")

    results = await asyncio.gather(*(book(event_type, at(TUESDAY, "09:00")) for _ in range(3)))
    committed = [r for r in results if r.committed]
    assert len(committed) == 2
    assert {r.assigned_host_id for r in committed} == {str(m.id) for m in members}


@pytest.fixture
async def round_robin_series(factory):
    members = [await factory.host(f"Member {i}") for i in range(2)]
    schedule = await factory.schedule(members[0])
    team = await factory.team(members)
    event_type = await factory.event_type(
        members[0],
        schedule,
        team=team,
        scheduling_type="ROUND_ROBIN",
        future_limit=60,
        recurring_enabled=True,
        recurring_frequency="weekly",
        recurring_max_occurrences=4,
    )
    return members, schedule, event_type


async def test_round_robin_series_keeps_one_host(round_robin_series, book):
    members, _, event_type = round_robin_series

    result = await book(event_type, at(TUESDAY, "09:00"), recurring_count=4)
    assert result.committed
    assert len(result.booking_ids) == 4
    assert len({o.host_ids for o in result.occurrences}) == 1
    assert result.occurrences[0].host_ids == (str(members[0].id),)

    # The cursor moved once for the whole series
    following = await book(event_type, at(WEDNESDAY, "09:00"))
    assert following.assigned_host_id == str(members[1].id)


async def test_round_robin_series_conflicts_when_its_host_is_busy(round_robin_series, factory, book):
    members, schedule, event_type = round_robin_series
    personal = await factory.event_type(members[0], schedule, title="Personal")
    await factory.booking(personal, members[0], at(TUESDAY_AFTER_DST, "09:00"))

    result = await book(event_type, at(TUESDAY, "09:00"), recurring_count=3)
    assert result.committed
    assert [o.status for o in result.occurrences] == [
        BookingStatus.COMMITTED,
        BookingStatus.CONFLICT,
        BookingStatus.COMMITTED,
    ]
    hosts = {o.host_ids for o in result.occurrences if o.status is BookingStatus.COMMITTED}
    assert hosts == {(str(members[0].id),)}


async def test_collective_booking_occupies_every_member(factory, book, list_slots):
    owner = await factory.host("Owner")
    other = await factory.host("Other")
    schedule = await factory.schedule(owner)
    other_personal = await factory.event_type(other, await factory.schedule(other))
    team = await factory.team([owner, other])
    event_type = await factory.event_type(owner, schedule, team=team, scheduling_type="COLLECTIVE")

    result = await book(event_type, at(TUESDAY, "13:00"))
    assert result.committed
    assert set(result.assigned_host_ids) == {str(owner.id), str(other.id)}

    # The other member's own calendar is now busy at 13:00 too
    assert "13:00" not in local_times(await list_slots(other_personal, TUESDAY))


async def test_collective_conflicts_when_a_member_is_busy(factory, book):
    owner = await factory.host("Owner")
    other = await factory.host("Other")
    schedule = await factory.schedule(owner)
    other_personal = await factory.event_type(other, await factory.schedule(other))
    await factory.booking(other_personal, other, at(TUESDAY, "13:00"))
    team = await factory.team([owner, other])
    event_type = await factory.event_type(owner, schedule, team=team, scheduling_type="COLLECTIVE")

    result = await book(event_type, at(TUESDAY, "13:00"))
    assert result.status is BookingStatus.CONFLICT


async def test_daily_limit_is_enforced_at_commit(factory, book):
    host = await factory.host()
    schedule = await factory.schedule(host)
    event_type = await factory.event_type(host, schedule, max_bookings_per_day=1)
    assert (await book(event_type, at(TUESDAY, "09:00"))).committed
    assert (await book(event_type, at(TUESDAY, "11:00"))).status is BookingStatus.CONFLICT
    assert (await book(event_type, at(WEDNESDAY, "11:00"))).committed


async def test_provider_failure_fails_closed_at_commit(single, book, session_factory):
    _, _, event_type = single
    result = await book(event_type, at(TUESDAY, "09:00"), provider=BrokenProvider())
    assert result.status is BookingStatus.CONFLICT
    assert result.reason == "commit_failed"
    assert await count_bookings(session_factory) == 0


async def test_accept_and_reject_pending_bookings(factory, book, booking_action):
    host = await factory.host()
    schedule = await factory.schedule(host)
    event_type = await factory.event_type(host, schedule, requires_confirmation=True)

    first = await book(event_type, at(TUESDAY, "09:00"))
    accepted = await booking_action("accept_booking", first.booking_id)
    assert accepted.status == "ACCEPTED"
    with pytest.raises(InvalidTransition):
        await booking_action("reject_booking", first.booking_id)

    second = await book(event_type, at(TUESDAY, "10:00"))
    rejected = await booking_action("reject_booking", second.booking_id, "double booked elsewhere")
    assert rejected.status == "REJECTED"
    # Rejection frees the slot again
    assert (await book(event_type, at(TUESDAY, "10:00"))).committed


async def test_reschedule_may_overlap_the_booking_it_replaces(factory, book, booking_action, list_slots, session_factory):
    host = await factory.host()
    schedule = await factory.schedule(host)
    event_type = await factory.event_type(host, schedule, duration=60, slot_interval=30)
    original = await book(event_type, at(TUESDAY, "09:00"))

    result = await booking_action("reschedule_booking", original.booking_id, at(TUESDAY, "09:30"), "running late")
    assert result.committed
    assert result.assigned_host_id == str(host.id)

    async with session_factory() as session:
        db = DBService(session)
        old = await db.get_booking(original.booking_id)
        new = await db.get_booking(result.booking_id)
    assert old.status == "RESCHEDULED"
    assert old.cancellation_reason == "running late"
    assert new.rescheduled_from_uid == old.uid
    assert new.status == "ACCEPTED"

    times = local_times(await list_slots(event_type, TUESDAY))
    assert "09:00" not in times and "09:30" not in times and "10:00" not in times
    assert times[0] == "10:30"


async def test_reschedule_onto_a_taken_slot_conflicts(single, book, booking_action):
    _, _, event_type = single
    first = await book(event_type, at(TUESDAY, "09:00"))
    await book(event_type, at(TUESDAY, "10:00"))

    result = await booking_action("reschedule_booking", first.booking_id, at(TUESDAY, "10:00"))
    assert result.status is BookingStatus.CONFLICT

    # The original booking is untouched
    retry = await booking_action("reschedule_booking", first.booking_id, at(TUESDAY, "11:00"))
    assert retry.committed


async def test_cancelled_booking_cannot_be_rescheduled(single, book, booking_action):
    _, _, event_type = single
    result = await book(event_type, at(TUESDAY, "09:00"))
    await booking_action("cancel_booking", result.booking_id)
    with pytest.raises(InvalidTransition):
        await booking_action("reschedule_booking", result.booking_id, at(TUESDAY, "11:00"))


async def test_schedule_in_use_cannot_be_deleted(single, factory, session_factory):
    host, schedule, _ = single
    unused = await factory.schedule(host, days=(6,))
    async with session_factory() as session:
        db = DBService(session)
        with pytest.raises(ScheduleInUse):
            await db.delete_schedule(schedule.id)
        assert await db.delete_schedule(unused.id) is True
        await session.commit()
