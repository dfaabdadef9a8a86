from slotwise.models.host import Host
from slotwise.models.team import Team, TeamMember
from slotwise.models.schedule import Schedule, AvailabilityWindow, DateOverride
from slotwise.models.event_type import EventType
from slotwise.models.booking import Booking, booking_hosts

__all__ = [
    "Host",
    "Team",
    "TeamMember",
    "Schedule",
    "AvailabilityWindow",
    "DateOverride",
    "EventType",
    "Booking",
    "booking_hosts",
]
