from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from slotwise.core.errors import ConfigurationError, SlotConflict


class SchedulingType(str, enum.Enum):
    SINGLE = "SINGLE"
    ROUND_ROBIN = "ROUND_ROBIN"
    COLLECTIVE = "COLLECTIVE"


@dataclass(frozen=True)
class Assignment:
    host_ids: Tuple[str, ...]
    # Index into the membership ordering of the last assigned member
    cursor: Optional[int] = None

    @property
    def primary_host_id(self) -> str:
        return self.host_ids[0]


def next_round_robin(
    member_ids: Sequence[str], free_member_ids: Iterable[str], cursor: Optional[int]
) -> Assignment:
    """Pick the first free member circularly after ``cursor``."""
    if not member_ids:
        raise ConfigurationError("Round-robin event type has no accepted members")
    free = set(free_member_ids)
    count = len(member_ids)
    first = 0 if cursor is None else (cursor + 1) % count
    for offset in range(count):
        index = (first + offset) % count
        if member_ids[index] in free:
            return Assignment(host_ids=(member_ids[index],), cursor=index)
    raise SlotConflict("No team member is free at the requested time")


def assign(
    scheduling_type: SchedulingType,
    owner_id: str,
    member_ids: Sequence[str],
    free_member_ids: Iterable[str],
    cursor: Optional[int] = None,
) -> Assignment:
    """Decide which host(s) a booking at a validated instant binds to.

    Called only at commit time, inside the serialized section, with the set
    of hosts that are free at that instant.
    """
    free = list(free_member_ids)
    scheduling_type = SchedulingType(scheduling_type)

    if scheduling_type is SchedulingType.SINGLE:
        if owner_id not in free:
            raise SlotConflict("Host is not free at the requested time")
        return Assignment(host_ids=(owner_id,), cursor=cursor)

    if scheduling_type is SchedulingType.COLLECTIVE:
        if not member_ids:
            raise ConfigurationError("Collective event type has no accepted members")
        busy = [m for m in member_ids if m not in free]
        if busy:
            raise SlotConflict(f"{len(busy)} team member(s) are not free at the requested time")
        return Assignment(host_ids=tuple(member_ids), cursor=cursor)

    return next_round_robin(member_ids, free, cursor)
