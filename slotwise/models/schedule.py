from sqlalchemy import Column, String, Integer, Boolean, Date, DateTime, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
import uuid
from slotwise.core.database import Base
from slotwise.scheduling.availability import DateOverrideSpec, ScheduleSpec, WeeklyWindow, parse_wall_time
from slotwise.scheduling.intervals import utcnow


class Schedule(Base):
    __tablename__ = "schedules"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    host_id = Column(Uuid(as_uuid=True), ForeignKey("hosts.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False, default="Working Hours")
    timezone = Column(String, nullable=False, default="UTC")

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    host = relationship("Host", back_populates="schedules")
    windows = relationship(
        "AvailabilityWindow",
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="AvailabilityWindow.day",
    )
    overrides = relationship(
        "DateOverride",
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="DateOverride.date",
    )

    def to_spec(self) -> ScheduleSpec:
        """Snapshot this schedule for the pure availability resolver."""
        overrides = {}
        for override in self.overrides:
            overrides[override.date] = DateOverrideSpec(
                day=override.date,
                is_unavailable=override.is_unavailable,
                start_minutes=parse_wall_time(override.start_time) if override.start_time else None,
                end_minutes=parse_wall_time(override.end_time) if override.end_time else None,
            )
        return ScheduleSpec(
            timezone=self.timezone,
            windows=[WeeklyWindow.from_strings(w.day, w.start_time, w.end_time) for w in self.windows],
            overrides=overrides,
        )

    def __repr__(self):
        return f"<Schedule(id={self.id}, name={self.name}, timezone={self.timezone})>"


class AvailabilityWindow(Base):
    __tablename__ = "availability_windows"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    schedule_id = Column(Uuid(as_uuid=True), ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False)

    day = Column(Integer, nullable=False)  # 0 = Sunday ... 6 = Saturday
    start_time = Column(String(5), nullable=False)  # HH:MM, schedule timezone
    end_time = Column(String(5), nullable=False)  # HH:MM, 24:00 allowed

    schedule = relationship("Schedule", back_populates="windows")

    def __repr__(self):
        return f"<AvailabilityWindow(day={self.day}, {self.start_time}-{self.end_time})>"


class DateOverride(Base):
    __tablename__ = "date_overrides"
    __table_args__ = (UniqueConstraint("schedule_id", "date", name="uq_date_overrides_schedule_date"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    schedule_id = Column(Uuid(as_uuid=True), ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False)

    date = Column(Date, nullable=False)  # civil date in the schedule timezone
    is_unavailable = Column(Boolean, default=False, nullable=False)
    start_time = Column(String(5), nullable=True)
    end_time = Column(String(5), nullable=True)

    schedule = relationship("Schedule", back_populates="overrides")

    def __repr__(self):
        return f"<DateOverride(date={self.date}, unavailable={self.is_unavailable})>"
