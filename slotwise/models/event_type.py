from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
import uuid
from slotwise.core.database import Base
from slotwise.scheduling.intervals import utcnow


class EventType(Base):
    __tablename__ = "event_types"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid(as_uuid=True), ForeignKey("hosts.id", ondelete="CASCADE"), nullable=False)
    team_id = Column(Uuid(as_uuid=True), ForeignKey("teams.id", ondelete="CASCADE"), nullable=True)
    # Shared reference: a schedule in use cannot be deleted out from under us
    schedule_id = Column(Uuid(as_uuid=True), ForeignKey("schedules.id", ondelete="RESTRICT"), nullable=True)

    title = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Slot shaping (minutes unless noted)
    duration = Column(Integer, nullable=False, default=30)
    slot_interval = Column(Integer, nullable=True)  # cadence; None = duration
    before_buffer = Column(Integer, nullable=False, default=0)
    after_buffer = Column(Integer, nullable=False, default=0)
    minimum_notice = Column(Integer, nullable=False, default=0)
    future_limit = Column(Integer, nullable=False, default=60)  # days
    max_bookings_per_day = Column(Integer, nullable=True)
    max_bookings_per_week = Column(Integer, nullable=True)

    requires_confirmation = Column(Boolean, default=False, nullable=False)
    scheduling_type = Column(String, nullable=False, default="SINGLE")  # SINGLE, ROUND_ROBIN, COLLECTIVE

    # Recurring series
    recurring_enabled = Column(Boolean, default=False, nullable=False)
    recurring_frequency = Column(String, nullable=True)  # weekly, biweekly, monthly
    recurring_max_occurrences = Column(Integer, nullable=True)

    # Index (in team-membership order) of the last round-robin assignee.
    # Only written inside the booking commit section.
    round_robin_cursor = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    owner = relationship("Host")
    team = relationship("Team")
    schedule = relationship("Schedule")

    def __repr__(self):
        return f"<EventType(id={self.id}, title={self.title}, type={self.scheduling_type})>"
