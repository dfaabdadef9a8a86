from sqlalchemy import Column, String, DateTime, ForeignKey, Index, Table, Text, Uuid
from sqlalchemy.orm import relationship
import uuid
from slotwise.core.database import Base
from slotwise.scheduling.intervals import utcnow


# Every host whose calendar a booking occupies (one row for single and
# round-robin bookings, one per member for collective bookings)
booking_hosts = Table(
    "booking_hosts",
    Base.metadata,
    Column("booking_id", Uuid(as_uuid=True), ForeignKey("bookings.id", ondelete="CASCADE"), primary_key=True),
    Column("host_id", Uuid(as_uuid=True), ForeignKey("hosts.id", ondelete="CASCADE"), primary_key=True),
)


def _new_uid() -> str:
    return uuid.uuid4().hex


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("idx_bookings_event_type_start", "event_type_id", "start_time"),
        Index("idx_bookings_status_start", "status", "start_time"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    uid = Column(String, unique=True, nullable=False, default=_new_uid)
    event_type_id = Column(Uuid(as_uuid=True), ForeignKey("event_types.id", ondelete="CASCADE"), nullable=False)
    host_id = Column(Uuid(as_uuid=True), ForeignKey("hosts.id", ondelete="CASCADE"), nullable=False)

    # Booking window (UTC)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)

    # Status
    status = Column(String, nullable=False, default="PENDING")  # PENDING, ACCEPTED, CANCELLED, REJECTED, RESCHEDULED

    # Attendee (timezone is for display only)
    attendee_name = Column(String, nullable=False)
    attendee_email = Column(String, nullable=False)
    attendee_timezone = Column(String, nullable=False, default="UTC")
    attendee_notes = Column(Text, nullable=True)

    # Series / lineage
    recurring_series_id = Column(String, nullable=True, index=True)
    rescheduled_from_uid = Column(String, nullable=True)

    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    event_type = relationship("EventType")
    host = relationship("Host")
    hosts = relationship("Host", secondary=booking_hosts)

    def __repr__(self):
        return f"<Booking(id={self.id}, start={self.start_time}, status={self.status})>"
